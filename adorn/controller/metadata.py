"""
Controller Metadata - the route IR.

Plain data shared by the collector, the static analyzer, the manifest
builder, the schema generator and the registry. Nothing in here knows how
facts were produced.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple


HTTP_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE")

# Verbs whose unbound object-typed parameter is treated as the request body
BODY_METHODS = frozenset({"POST", "PUT", "PATCH"})

DEFAULT_STATUS: Dict[str, int] = {
    "GET": 200,
    "POST": 201,
    "PUT": 200,
    "PATCH": 200,
    "DELETE": 204,
}

# OpenAPI security requirement: scheme name -> required scopes
SecurityRequirement = Dict[str, List[str]]

_DYNAMIC_SEGMENT = re.compile(r"^\{([A-Za-z_][A-Za-z0-9_]*)\}$")
_INT_IDENTIFIER = re.compile(r"^(id|.+_id|.+Id)$")


class ScalarHint(str, Enum):
    """Primitive type inferred for a dynamic path or query token."""
    STRING = "string"
    INT = "int"
    NUMBER = "number"
    BOOLEAN = "boolean"
    UUID = "uuid"


class BindingKind(str, Enum):
    """Request data a handler argument is populated from."""
    CONTEXT = "context"
    QUERY = "query"
    PARAMS = "params"
    BODY = "body"
    HEADERS = "headers"
    STATE = "state"


def is_int_identifier(name: str) -> bool:
    """``id``, ``user_id`` and ``userId`` follow the integer-identifier convention."""
    return bool(_INT_IDENTIFIER.match(name))


# ─── Paths ────────────────────────────────────────────────────────────────────

def normalize_path(*parts: Optional[str]) -> str:
    """
    Join path fragments into one normalized template.

    Slashes collapse, the result always starts with ``/`` and never ends
    with one unless it is the root.

    >>> normalize_path("/users/", "//{id}/")
    '/users/{id}'
    """
    segments: List[str] = []
    for part in parts:
        if not part:
            continue
        segments.extend(s for s in part.split("/") if s)
    return "/" + "/".join(segments)


def split_path(path: str) -> List[str]:
    return [s for s in path.split("/") if s]


def dynamic_name(segment: str) -> Optional[str]:
    """Return the token name of a ``{name}`` segment, ``None`` for literals."""
    m = _DYNAMIC_SEGMENT.match(segment)
    return m.group(1) if m else None


def path_tokens(path: str) -> List[str]:
    """Ordered dynamic segment names of a template."""
    tokens = []
    for segment in split_path(path):
        name = dynamic_name(segment)
        if name is not None:
            tokens.append(name)
    return tokens


# ─── Parameters & bindings ────────────────────────────────────────────────────

@dataclass(frozen=True)
class ArgBinding:
    """
    How to populate one handler argument at dispatch time.

    Attributes:
        index: Positional index among the handler's parameters (``self`` excluded)
        kind: Source of the value
        name: Single field to bind; ``None`` binds the whole mapping
        param: Python parameter name the value is passed as
    """
    index: int
    kind: BindingKind
    name: Optional[str] = None
    param: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"index": self.index, "kind": self.kind.value}
        if self.name is not None:
            data["name"] = self.name
        return data


@dataclass
class ParamModel:
    """
    One handler parameter as seen in source.

    Attributes:
        name: Parameter name
        type_text: Declared annotation text ("" when unannotated)
        optional: Has a default value or an Optional annotation
        hint: Scalar hint when bound from a path or query token
    """
    name: str
    type_text: str = ""
    optional: bool = False
    hint: Optional[ScalarHint] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "name": self.name,
            "type": self.type_text,
            "optional": self.optional,
        }
        if self.hint is not None:
            data["hint"] = self.hint.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ParamModel":
        hint = data.get("hint")
        return cls(
            name=data["name"],
            type_text=data.get("type", ""),
            optional=data.get("optional", False),
            hint=ScalarHint(hint) if hint else None,
        )


@dataclass
class ReturnModel:
    """Return annotation text, raw and with one async wrapper removed."""
    type_text: str = ""
    unwrapped_type_text: str = ""
    is_async: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type_text,
            "unwrapped": self.unwrapped_type_text,
            "async": self.is_async,
        }


@dataclass
class ResponseMeta:
    """Declared response for one status code."""
    status: int
    description: str = ""
    model: Any = None
    content_type: str = "application/json"

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "status": self.status,
            "contentType": self.content_type,
        }
        if self.description:
            data["description"] = self.description
        if self.model is not None:
            data["model"] = getattr(self.model, "__name__", str(self.model))
        return data


@dataclass(frozen=True)
class PipelineNode:
    """A middleware or guard attached to a controller or method."""
    kind: str  # "middleware" | "guard"
    handler: Callable[..., Any]

    @property
    def name(self) -> str:
        return getattr(self.handler, "__qualname__", None) or type(self.handler).__name__


@dataclass
class ValidationContract:
    """Validation schemas attached to a route, one per request source."""
    params: Any = None
    query: Any = None
    body: Any = None
    headers: Any = None

    def items(self) -> Iterator[Tuple[str, Any]]:
        for source in ("params", "query", "body", "headers"):
            schema = getattr(self, source)
            if schema is not None:
                yield source, schema

    def to_dict(self) -> Dict[str, str]:
        return {
            source: getattr(schema, "name", None) or type(schema).__name__
            for source, schema in self.items()
        }


# ─── Method / controller buckets ──────────────────────────────────────────────

@dataclass
class MethodMeta:
    """
    Decorator facts for one controller method.

    Scalar fields are last-write-wins; list fields accumulate. ``security``
    accumulates too but stays ``None`` until declared, so an empty list can
    mark a route public under a secured controller.
    """
    http_method: Optional[str] = None
    path: Optional[str] = None
    summary: Optional[str] = None
    description: Optional[str] = None
    status: Optional[int] = None
    deprecated: Optional[bool] = None
    validation: Optional[ValidationContract] = None
    tags: List[str] = field(default_factory=list)
    responses: List[ResponseMeta] = field(default_factory=list)
    pipeline: List[PipelineNode] = field(default_factory=list)
    bindings: List[ArgBinding] = field(default_factory=list)
    security: Optional[List[SecurityRequirement]] = None

    SCALAR_FIELDS = (
        "http_method", "path", "summary", "description",
        "status", "deprecated", "validation",
    )

    @property
    def is_route(self) -> bool:
        return self.http_method is not None


@dataclass
class ControllerDefinition:
    """
    Complete collector-side description of one controller class.

    Attributes:
        identity: The controller class
        controller_id: Stable ``module:QualName`` identifier
        base_path: URL prefix for all routes
        tags: Class-level OpenAPI tags
        methods: Method name -> MethodMeta, in declaration order
        pipeline: Class-level middlewares/guards
        instantiation_mode: "per_request" or "singleton"
        security: Class-level security requirements, ``None`` when undeclared
        security_schemes: Scheme name -> OpenAPI security scheme object
        routes: Derived RouteDefinitions (filled by the manifest builder)
    """
    identity: type
    controller_id: str
    base_path: str = ""
    tags: List[str] = field(default_factory=list)
    methods: Dict[str, MethodMeta] = field(default_factory=dict)
    pipeline: List[PipelineNode] = field(default_factory=list)
    instantiation_mode: str = "per_request"
    security: Optional[List[SecurityRequirement]] = None
    security_schemes: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    routes: List["RouteDefinition"] = field(default_factory=list)

    @property
    def class_name(self) -> str:
        return self.identity.__name__


def controller_id_of(cls: type) -> str:
    return f"{cls.__module__}:{cls.__qualname__}"


# ─── Route definition ─────────────────────────────────────────────────────────

@dataclass
class RouteDefinition:
    """
    Canonical, merged description of one HTTP route.

    Invariant: ``(http_method, full_path)`` is unique across a frozen registry.
    """
    controller: type
    controller_id: str
    handler_name: str
    http_method: str
    path: str
    full_path: str
    status: int
    params: List[ParamModel] = field(default_factory=list)
    bindings: List[ArgBinding] = field(default_factory=list)
    responses: List[ResponseMeta] = field(default_factory=list)
    returns: ReturnModel = field(default_factory=ReturnModel)
    validation: Optional[ValidationContract] = None
    pipeline: List[PipelineNode] = field(default_factory=list)
    summary: str = ""
    description: str = ""
    tags: List[str] = field(default_factory=list)
    deprecated: bool = False
    instantiation_mode: str = "per_request"
    security: Optional[List[SecurityRequirement]] = None
    security_schemes: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    source_file: Optional[str] = None
    line: Optional[int] = None

    @property
    def key(self) -> Tuple[str, str]:
        return (self.http_method, self.full_path)

    @property
    def operation_id(self) -> str:
        name = self.controller.__name__
        if name.endswith("Controller") and name != "Controller":
            name = name[: -len("Controller")]
        return f"{name}_{self.handler_name}"

    @property
    def path_tokens(self) -> List[str]:
        return path_tokens(self.full_path)

    def param(self, name: str) -> Optional[ParamModel]:
        for p in self.params:
            if p.name == name:
                return p
        return None

    def hint_for(self, binding: ArgBinding) -> Optional[ScalarHint]:
        """Scalar hint of the parameter a named path/query binding feeds."""
        if binding.param is None:
            return None
        p = self.param(binding.param)
        return p.hint if p else None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "operationId": self.operation_id,
            "controller": self.controller_id,
            "handler": self.handler_name,
            "method": self.http_method,
            "path": self.path,
            "fullPath": self.full_path,
            "status": self.status,
            "params": [p.to_dict() for p in self.params],
            "args": [b.to_dict() for b in self.bindings],
            "responses": [r.to_dict() for r in self.responses],
            "returns": self.returns.to_dict(),
            "tags": list(self.tags),
            "pipeline": [{"kind": n.kind, "name": n.name} for n in self.pipeline],
        }
        if self.summary:
            data["summary"] = self.summary
        if self.deprecated:
            data["deprecated"] = True
        if self.validation is not None:
            data["validation"] = self.validation.to_dict()
        if self.security is not None:
            data["security"] = [dict(r) for r in self.security]
        return data
