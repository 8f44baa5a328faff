"""Pytest configuration for helix_simulator tests."""
import sys
from pathlib import Path

# Add src/ to path for src-layout imports
_SRC = Path(__file__).parent.parent / 'src'
if str(_SRC) not in sys.path:
    sys.path.insert(0, str(_SRC))

import pytest

from helix_simulator.config.git_url import GitReference
from helix_simulator.config.strain import StaticContent, Strain


def _make_strain(
    name: str = 'default',
    content: str = 'https://github.com/adobe/project-helix.io.git#master',
    static_path: str = '/htdocs',
    **kwargs,
) -> Strain:
    """Build a strain the way the config loader would."""
    ref = GitReference.parse(content)
    return Strain(
        name=name,
        content=ref,
        static=StaticContent(url=ref.with_path(static_path)),
        **kwargs,
    )


@pytest.fixture
def make_strain():
    return _make_strain


@pytest.fixture
def project_dir(tmp_path):
    """Create a temporary project directory with a src/ folder."""
    project = tmp_path / 'project'
    (project / 'src').mkdir(parents=True)
    return project
