"""Render-script execution."""

from .engine import ModuleRenderEngine, RenderEngine, RenderResult, ScriptArena, normalize_result

__all__ = ['ModuleRenderEngine', 'RenderEngine', 'RenderResult', 'ScriptArena', 'normalize_result']
