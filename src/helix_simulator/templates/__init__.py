"""Render-script lookup."""

from .resolver import ScriptDescriptor, TemplateResolver, scan_scripts, script_name

__all__ = ['ScriptDescriptor', 'TemplateResolver', 'scan_scripts', 'script_name']
