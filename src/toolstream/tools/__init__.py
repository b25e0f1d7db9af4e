"""OpenAPI tools for toolstream."""

from toolstream.tools.openapi import AuthSpec, OpenAPITool
from toolstream.tools.registry import PluginSpec, ToolRegistry, ToolSet

__all__ = ["AuthSpec", "OpenAPITool", "PluginSpec", "ToolRegistry", "ToolSet"]
