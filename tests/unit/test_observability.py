"""Tests for request-id handling and log level helpers."""

import io
import json
import logging

import pytest
import structlog

from helix_simulator.observability import logging as hlx_logging
from helix_simulator.observability.logging import request_id_ctx, status_to_level, strain_ctx
from helix_simulator.observability.middleware import request_surface, resolve_request_id


def test_request_surface():
    assert request_surface('/__internal__/metrics') == 'internal'
    assert request_surface('/index.html') == 'delivery'
    assert request_surface('/__internal__') == 'delivery'


def test_resolve_request_id_keeps_valid_incoming():
    assert resolve_request_id('abcdef12-3456') == 'abcdef12-3456'


@pytest.mark.parametrize('incoming', [None, '', 'short', 'has spaces in it', 'x' * 200])
def test_resolve_request_id_generates_for_invalid(incoming):
    rid = resolve_request_id(incoming)
    assert rid != incoming
    assert len(rid) == 36


@pytest.mark.parametrize('status,level', [
    (200, 'debug'),
    (304, 'info'),
    (404, 'warning'),
    (502, 'error'),
])
def test_status_to_level(status, level):
    assert status_to_level(status) == level


def test_log_entries_carry_request_context(monkeypatch):
    monkeypatch.setattr(hlx_logging, '_configured', False)
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    stream = io.StringIO()
    try:
        hlx_logging.configure_logging(level='INFO', json_output=True, stream=stream)
        rid_token = request_id_ctx.set('req-12345678')
        strain_token = strain_ctx.set('preview')
        try:
            hlx_logging.get_logger('test').info('static_resource_served', path='/a.css')
        finally:
            strain_ctx.reset(strain_token)
            request_id_ctx.reset(rid_token)
    finally:
        root.handlers[:] = saved_handlers
        root.setLevel(saved_level)
        structlog.reset_defaults()

    entry = json.loads(stream.getvalue().strip().splitlines()[-1])
    assert entry['event'] == 'static_resource_served'
    assert entry['request_id'] == 'req-12345678'
    assert entry['strain'] == 'preview'
    assert entry['path'] == '/a.css'
