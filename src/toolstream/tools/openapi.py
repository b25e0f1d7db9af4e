"""OpenAPI 3 adapter: one tool description -> function schemas + invokers.

Usage::

    tool = OpenAPITool.from_document(content, AuthSpec(type="bearer", token=key))
    schemas = tool.schemas          # list[FunctionSchema]
    result = await tool.invokers["searchWeb"]({"query": "weather"})

Every operation in the document becomes one function.  The parameters
schema is the JSON request body schema extended with the operation's
query and path parameters; the invoker splits the model-supplied
arguments back into those parts and performs the HTTP call.
"""

from __future__ import annotations

import copy
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Iterator, Literal, Mapping
from urllib.parse import quote, urlsplit

import httpx
import yaml
from pydantic import BaseModel, Field, ValidationError

from toolstream.errors import AdapterError
from toolstream.types import FunctionSchema, ToolResult

_logger = logging.getLogger(__name__)

_HTTP_METHODS = ("get", "put", "post", "delete", "options", "head", "patch", "trace")
_METHODS_WITHOUT_BODY = ("get", "head", "delete", "options", "trace")
_JSON_CONTENT = "application/json"
_NAME_UNSAFE = re.compile(r"[^A-Za-z0-9_-]+")
_PATH_TEMPLATE = re.compile(r"\{([^{}]+)\}")

# Property name used when the request body schema is not an object
BODY_PROPERTY = "body"

_DEFAULT_TIMEOUT = 30.0


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------

class AuthSpec(BaseModel):
    """How a tool's credential is attached to every request."""

    type: Literal["none", "basic", "bearer", "custom"] = "none"
    location: Literal["header", "query", "body"] = "header"
    header_name: str = Field(default="Authorization", min_length=1)
    token: str = ""

    @property
    def key(self) -> str:
        """Header, query or body field name that receives the credential."""
        return self.header_name if self.type == "custom" else "Authorization"

    @property
    def credential(self) -> str | None:
        if self.type == "none":
            return None
        if self.type == "basic":
            return f"Basic {self.token}"
        if self.type == "bearer":
            return f"Bearer {self.token}"
        return self.token


def parse_auth(raw: Mapping[str, Any] | AuthSpec | None) -> AuthSpec:
    """Validate an auth descriptor, raising AdapterError on bad input."""
    if raw is None:
        return AuthSpec()
    if isinstance(raw, AuthSpec):
        return raw
    try:
        return AuthSpec.model_validate(raw)
    except ValidationError as e:
        raise AdapterError(f"invalid auth descriptor: {e}") from e


# ---------------------------------------------------------------------------
# Document helpers
# ---------------------------------------------------------------------------

def load_document(content: str | Mapping[str, Any]) -> dict[str, Any]:
    """Parse YAML or JSON text into an OpenAPI 3 mapping."""
    if isinstance(content, Mapping):
        doc = dict(content)
    else:
        try:
            doc = yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise AdapterError(f"document is not valid YAML/JSON: {e}") from e
    if not isinstance(doc, dict):
        raise AdapterError("document is not a mapping")
    version = str(doc.get("openapi", ""))
    if not version.startswith("3."):
        raise AdapterError(f"unsupported OpenAPI version: {version or 'missing'}")
    if not isinstance(doc.get("paths"), dict) or not doc["paths"]:
        raise AdapterError("document declares no paths")
    return doc


def _resolve_pointer(doc: dict[str, Any], ref: str) -> Any:
    if not ref.startswith("#/"):
        raise AdapterError(f"only local references are supported: {ref}")
    node: Any = doc
    for part in ref[2:].split("/"):
        part = part.replace("~1", "/").replace("~0", "~")
        if not isinstance(node, dict) or part not in node:
            raise AdapterError(f"unresolvable reference: {ref}")
        node = node[part]
    return node


def resolve_refs(doc: dict[str, Any], node: Any, _seen: tuple[str, ...] = ()) -> Any:
    """Return a deep copy of *node* with local ``$ref`` pointers inlined."""
    if isinstance(node, dict):
        ref = node.get("$ref")
        if isinstance(ref, str):
            if ref in _seen:
                # Recursive schema: stop expanding, keep a permissive object
                return {"type": "object"}
            return resolve_refs(doc, _resolve_pointer(doc, ref), _seen + (ref,))
        return {k: resolve_refs(doc, v, _seen) for k, v in node.items()}
    if isinstance(node, list):
        return [resolve_refs(doc, v, _seen) for v in node]
    return copy.deepcopy(node)


def server_url(doc: dict[str, Any]) -> str | None:
    """First declared server URL with its variables substituted."""
    servers = doc.get("servers") or []
    if not servers or not isinstance(servers[0], dict):
        return None
    url = servers[0].get("url")
    if not isinstance(url, str):
        return None
    for name, var in (servers[0].get("variables") or {}).items():
        if isinstance(var, dict) and "default" in var:
            url = url.replace("{" + name + "}", str(var["default"]))
    return url


def _sanitize_name(raw: str) -> str:
    return _NAME_UNSAFE.sub("_", raw).strip("_")


def derive_operation_name(method: str, path: str) -> str:
    """Deterministic function name for an operation without ``operationId``.

    ``get /v1/items/{id}`` -> ``get_v1_items_id``
    """
    return _sanitize_name(f"{method.lower()}_{path.strip('/')}") or method.lower()


# ---------------------------------------------------------------------------
# Operation
# ---------------------------------------------------------------------------

@dataclass
class Parameter:
    """A declared query or path parameter."""

    name: str
    location: str  # "query" or "path"
    required: bool = False
    schema: dict[str, Any] = field(default_factory=dict)
    description: str = ""


@dataclass
class Operation:
    """One HTTP operation of an OpenAPI document."""

    name: str
    method: str
    path: str
    description: str = ""
    parameters: list[Parameter] = field(default_factory=list)
    body_schema: dict[str, Any] | None = None
    body_required: bool = False
    wrap_body: bool = False

    def to_schema(self) -> FunctionSchema:
        if self.body_schema is None:
            params: dict[str, Any] = {"type": "object", "properties": {}}
        elif self.wrap_body:
            params = {
                "type": "object",
                "properties": {BODY_PROPERTY: self.body_schema},
                "required": [BODY_PROPERTY] if self.body_required else [],
            }
        else:
            params = copy.deepcopy(self.body_schema)
            params.setdefault("type", "object")
        params.setdefault("properties", {})
        params["required"] = list(params.get("required") or [])

        for p in self.parameters:
            prop: dict[str, Any] = {"type": p.schema.get("type", "string")}
            description = p.description or p.schema.get("description", "")
            if description:
                prop["description"] = description
            if p.schema.get("enum"):
                prop["enum"] = list(p.schema["enum"])
            params["properties"][p.name] = prop
            if p.required and p.name not in params["required"]:
                params["required"].append(p.name)

        return FunctionSchema(
            name=self.name,
            description=self.description,
            parameters=params,
        )


def _collect_parameters(
    doc: dict[str, Any], path_item: dict[str, Any], op: dict[str, Any],
) -> list[Parameter]:
    """Merge path-level and operation-level parameters (operation wins)."""
    merged: dict[tuple[str, str], dict[str, Any]] = {}
    for raw in list(path_item.get("parameters") or []) + list(op.get("parameters") or []):
        resolved = resolve_refs(doc, raw)
        if not isinstance(resolved, dict) or "name" not in resolved:
            raise AdapterError(f"malformed parameter: {raw!r}")
        merged[(resolved["name"], resolved.get("in", ""))] = resolved

    params: list[Parameter] = []
    for (name, location), raw in merged.items():
        if location not in ("query", "path"):
            continue
        params.append(Parameter(
            name=name,
            location=location,
            required=location == "path" or bool(raw.get("required")),
            schema=raw.get("schema") or {},
            description=raw.get("description", ""),
        ))
    return params


def _body_schema(doc: dict[str, Any], op: dict[str, Any]) -> tuple[dict[str, Any] | None, bool]:
    body = op.get("requestBody")
    if not body:
        return None, False
    body = resolve_refs(doc, body)
    if not isinstance(body, dict):
        raise AdapterError("requestBody is not a mapping")
    schema = ((body.get("content") or {}).get(_JSON_CONTENT) or {}).get("schema")
    if not isinstance(schema, dict):
        return None, bool(body.get("required"))
    return schema, bool(body.get("required"))


def _iter_operations(
    doc: dict[str, Any],
) -> Iterator[tuple[str, dict[str, Any], str, dict[str, Any]]]:
    for path, path_item in doc["paths"].items():
        if not isinstance(path_item, dict):
            raise AdapterError(f"path item for {path} is not a mapping")
        for method in _HTTP_METHODS:
            op = path_item.get(method)
            if op is None:
                continue
            if not isinstance(op, dict):
                raise AdapterError(f"operation {method.upper()} {path} is not a mapping")
            yield path, path_item, method, op


def parse_operations(doc: dict[str, Any]) -> list[Operation]:
    """Extract every operation, assigning unique function names.

    Declared ``operationId`` values are reserved first; derived names get a
    numeric suffix when they collide with any other name.
    """
    declared: set[str] = set()
    for _, _, _, op in _iter_operations(doc):
        op_id = op.get("operationId")
        if op_id:
            name = _sanitize_name(str(op_id))
            if name in declared:
                raise AdapterError(f"duplicate operationId: {op_id}")
            declared.add(name)

    operations: list[Operation] = []
    names = set(declared)
    for path, path_item, method, op in _iter_operations(doc):
        op_id = op.get("operationId")
        if op_id:
            name = _sanitize_name(str(op_id))
        else:
            base = derive_operation_name(method, path)
            name, n = base, 2
            while name in names:
                name = f"{base}_{n}"
                n += 1
            names.add(name)

        schema, required = _body_schema(doc, op)
        operations.append(Operation(
            name=name,
            method=method,
            path=path,
            description=op.get("description") or op.get("summary") or "",
            parameters=_collect_parameters(doc, path_item, op),
            body_schema=schema,
            body_required=required,
            wrap_body=schema is not None and schema.get("type", "object") != "object",
        ))

    if not operations:
        raise AdapterError("document declares no operations")
    return operations


# ---------------------------------------------------------------------------
# Invoker
# ---------------------------------------------------------------------------

class OperationInvoker:
    """Calls one operation.  Holds no per-call state."""

    def __init__(
        self,
        operation: Operation,
        base_url: str,
        auth: AuthSpec,
        timeout: float = _DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.operation = operation
        self._base_url = base_url.rstrip("/")
        self._auth = auth
        self._timeout = timeout
        self._transport = transport
        self._params = {p.name: p for p in operation.parameters}

    def build_request(self, arguments: Mapping[str, Any]) -> httpx.Request:
        """Split *arguments* and build the HTTP request.

        The caller's mapping is never modified.
        """
        op = self.operation
        path_args: dict[str, Any] = {}
        query: dict[str, Any] = {}
        body: dict[str, Any] = {}
        for key, value in arguments.items():
            param = self._params.get(key)
            if param is not None:
                (path_args if param.location == "path" else query)[key] = value
            else:
                body[key] = value

        missing = [
            p.name for p in op.parameters
            if p.location == "path" and path_args.get(p.name) is None
        ]
        if missing:
            raise ValueError(f"missing path parameter(s): {', '.join(missing)}")

        path = _PATH_TEMPLATE.sub(
            lambda m: quote(str(path_args.get(m.group(1), m.group(0))), safe=""),
            op.path,
        )
        query = {k: v for k, v in query.items() if v is not None}

        headers: dict[str, str] = {}
        credential = self._auth.credential
        if credential is not None:
            if self._auth.location == "header":
                headers[self._auth.key] = credential
            elif self._auth.location == "query":
                query[self._auth.key] = credential
            else:
                body[self._auth.key] = credential

        json_body: Any = None
        if op.wrap_body:
            json_body = body.pop(BODY_PROPERTY, None)
            if body:
                _logger.debug("%s: ignoring extra arguments %s", op.name, sorted(body))
        elif op.body_schema is not None or (body and op.method not in _METHODS_WITHOUT_BODY):
            json_body = body
        elif body:
            _logger.debug("%s: ignoring extra arguments %s", op.name, sorted(body))

        return httpx.Request(
            op.method.upper(),
            self._base_url + path,
            params=query or None,
            headers=headers,
            json=json_body,
        )

    async def __call__(self, arguments: Mapping[str, Any]) -> ToolResult:
        op = self.operation
        try:
            request = self.build_request(arguments)
        except ValueError as e:
            return ToolResult(success=False, output="", error=f"{op.name}: {e}")

        _logger.debug("%s %s", request.method, request.url)
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport,
            ) as client:
                resp = await client.send(request)
        except httpx.HTTPError as e:
            return ToolResult(
                success=False,
                output="",
                error=f"{op.name}: request failed: {type(e).__name__}: {e}",
            )

        metadata = {"status_code": resp.status_code}
        if resp.is_success:
            return ToolResult(success=True, output=resp.text, metadata=metadata)
        return ToolResult(
            success=False,
            output=resp.text,
            error=f"{op.name}: HTTP {resp.status_code}",
            metadata=metadata,
        )


# ---------------------------------------------------------------------------
# Tool
# ---------------------------------------------------------------------------

class OpenAPITool:
    """All functions exposed by one OpenAPI document.

    Built once at registration; ``schemas`` and ``invokers`` never change
    afterwards.
    """

    def __init__(
        self,
        doc: dict[str, Any],
        operations: list[Operation],
        invokers: dict[str, OperationInvoker],
    ) -> None:
        self.document = doc
        self.operations = operations
        self.schemas = [op.to_schema() for op in operations]
        self.invokers = invokers

    @property
    def title(self) -> str:
        return str((self.document.get("info") or {}).get("title", ""))

    @property
    def version(self) -> str:
        return str((self.document.get("info") or {}).get("version", ""))

    @classmethod
    def from_document(
        cls,
        content: str | Mapping[str, Any],
        auth: Mapping[str, Any] | AuthSpec | None = None,
        base_url: str | None = None,
        timeout: float = _DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> OpenAPITool:
        """Adapt a document.  Raises AdapterError if it cannot be used."""
        auth_spec = parse_auth(auth)
        doc = load_document(content)

        url = base_url or server_url(doc)
        if not url:
            raise AdapterError("no server URL declared and no base URL given")
        parts = urlsplit(url)
        if parts.scheme not in ("http", "https") or not parts.netloc:
            raise AdapterError(f"base URL must be absolute http(s): {url}")

        operations = parse_operations(doc)
        invokers = {
            op.name: OperationInvoker(op, url, auth_spec, timeout, transport)
            for op in operations
        }
        return cls(doc, operations, invokers)
