"""Plugin registry: stores tool descriptions and resolves them to callables."""

from __future__ import annotations

import logging
import time
from importlib.metadata import entry_points
from typing import Any, Iterable, Mapping, NamedTuple

import httpx
from pydantic import BaseModel, Field, ValidationError

from toolstream.errors import AdapterError
from toolstream.tools.openapi import AuthSpec, OpenAPITool
from toolstream.types import FunctionSchema, Invoker

_logger = logging.getLogger(__name__)

ENTRY_POINT_GROUP = "toolstream.plugins"


class PluginSpec(BaseModel):
    """A registered tool: its OpenAPI document plus auth settings."""

    id: str = Field(min_length=1)
    title: str = ""
    version: str = "1.0.0"
    content: str
    builtin: bool = False
    auth: AuthSpec = Field(default_factory=AuthSpec)
    base_url: str | None = None
    created_at: float = Field(default_factory=time.time)


class ToolSet(NamedTuple):
    """Functions offered to the model for one turn."""

    schemas: list[FunctionSchema]
    invokers: dict[str, Invoker]


class ToolRegistry:
    """Registry of plugins with lazy, cached adaptation.

    A plugin's document is adapted the first time it is resolved and the
    result is reused until the plugin is updated.
    """

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._plugins: dict[str, PluginSpec] = {}
        self._tools: dict[str, OpenAPITool] = {}
        self._transport = transport

    def register(self, plugin: PluginSpec | Mapping[str, Any]) -> PluginSpec:
        """Register (or replace) a plugin record."""
        if not isinstance(plugin, PluginSpec):
            try:
                plugin = PluginSpec.model_validate(plugin)
            except ValidationError as e:
                raise AdapterError(f"invalid plugin record: {e}") from e
        self._plugins[plugin.id] = plugin
        self._tools.pop(plugin.id, None)
        return plugin

    def register_many(self, plugins: Iterable[PluginSpec | Mapping[str, Any]]) -> None:
        """Register several plugins, skipping invalid records."""
        for plugin in plugins:
            try:
                self.register(plugin)
            except AdapterError as e:
                _logger.warning("Skipping plugin: %s", e)

    def update(self, plugin: PluginSpec) -> OpenAPITool:
        """Replace a plugin and adapt it immediately."""
        self.register(plugin)
        return self.build(plugin.id)

    def remove(self, plugin_id: str) -> None:
        self._plugins.pop(plugin_id, None)
        self._tools.pop(plugin_id, None)

    def get(self, plugin_id: str) -> PluginSpec | None:
        return self._plugins.get(plugin_id)

    def list_plugins(self) -> list[PluginSpec]:
        """All plugins, newest first."""
        return sorted(self._plugins.values(), key=lambda p: p.created_at, reverse=True)

    def build(self, plugin_id: str) -> OpenAPITool:
        """Adapt a plugin's document (cached).  Raises AdapterError."""
        tool = self._tools.get(plugin_id)
        if tool is not None:
            return tool
        plugin = self._plugins.get(plugin_id)
        if plugin is None:
            raise AdapterError(f"unknown plugin: {plugin_id}")

        tool = OpenAPITool.from_document(
            plugin.content,
            auth=plugin.auth,
            base_url=plugin.base_url,
            transport=self._transport,
        )
        if not plugin.title and tool.title:
            plugin.title = tool.title
        if tool.version:
            plugin.version = tool.version
        self._tools[plugin_id] = tool
        _logger.info(
            "Adapted plugin %s: %d function(s)", plugin_id, len(tool.schemas),
        )
        return tool

    def resolve_tools(self, plugin_ids: Iterable[str]) -> ToolSet:
        """Build the active tool set for a turn.

        Plugins that fail to adapt are excluded with a warning.  When two
        plugins expose the same function name, the later one wins.
        """
        schemas: dict[str, FunctionSchema] = {}
        invokers: dict[str, Invoker] = {}
        for plugin_id in plugin_ids:
            try:
                tool = self.build(plugin_id)
            except AdapterError as e:
                _logger.warning("Excluding plugin %s: %s", plugin_id, e)
                continue
            for schema in tool.schemas:
                if schema.name in schemas:
                    _logger.warning(
                        "Function %s from plugin %s shadows an earlier definition",
                        schema.name, plugin_id,
                    )
                schemas[schema.name] = schema
                invokers[schema.name] = tool.invokers[schema.name]
        return ToolSet(schemas=list(schemas.values()), invokers=invokers)

    def discover(self) -> None:
        """Load plugins from entry_points group ``toolstream.plugins``.

        Each entry point should be a ``PluginSpec``, a mapping, or a
        callable returning either (or a list of them).
        """
        for ep in entry_points(group=ENTRY_POINT_GROUP):
            try:
                obj = ep.load()
                if callable(obj):
                    obj = obj()
                found = obj if isinstance(obj, list) else [obj]
                for plugin in found:
                    registered = self.register(plugin)
                    _logger.info("Discovered plugin: %s", registered.id)
            except Exception:
                _logger.exception("Failed to load plugin entry point: %s", ep.name)
