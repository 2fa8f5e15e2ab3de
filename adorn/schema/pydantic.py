"""
Pydantic schema provider.

Provider-native schemas are Python type expressions that pydantic's
``TypeAdapter`` understands. Rendering goes through pydantic's JSON Schema
generator and is then flattened so documents match the native provider's.
"""

from __future__ import annotations

import itertools
import re
import uuid
from typing import Annotated, Any, Callable, Dict, List, Optional, Union, get_args, get_origin

from pydantic import BeforeValidator, AfterValidator, ConfigDict, StringConstraints, TypeAdapter, create_model
from pydantic import ValidationError as PydanticValidationError

from .provider import ParseResult, SchemaIssue, SchemaRef


_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_NUMERIC_RE = re.compile(r"^-?\d+(\.\d+)?$")


class _OptionalMarker:
    def __repr__(self) -> str:
        return "OPTIONAL"


OPTIONAL = _OptionalMarker()


class _Format:
    """Annotated metadata adding ``format`` to the rendered JSON schema."""

    def __init__(self, fmt: str):
        self.fmt = fmt

    def __get_pydantic_json_schema__(self, core_schema: Any, handler: Any) -> Dict[str, Any]:
        schema = handler(core_schema)
        schema = handler.resolve_ref_schema(schema)
        schema["format"] = self.fmt
        return schema


def _check_email(value: str) -> str:
    if not _EMAIL_RE.match(value):
        raise ValueError("Invalid email")
    return value


def _coerce_numeric(value: Any) -> Any:
    if isinstance(value, str) and _NUMERIC_RE.match(value.strip()):
        return float(value) if "." in value else int(value)
    return value


def _map_base(tp: Any, fn: Callable[[Any], Any]) -> Any:
    """Apply ``fn`` to the innermost type(s) of Annotated/Union wrappers."""
    origin = get_origin(tp)
    if origin is Annotated:
        base, *meta = get_args(tp)
        return Annotated[(_map_base(base, fn), *meta)]
    if origin is Union:
        return Union[tuple(_map_base(a, fn) for a in get_args(tp))]
    return fn(tp)


def _is_optional(tp: Any) -> bool:
    return get_origin(tp) is Annotated and any(m is OPTIONAL for m in get_args(tp)[1:])


def _strip_optional(tp: Any) -> Any:
    base, *meta = get_args(tp)
    meta = [m for m in meta if m is not OPTIONAL]
    if not meta:
        return base
    return Annotated[(base, *meta)]


# ============================================================================
# Rendering helpers
# ============================================================================

def _inline_refs(node: Any, defs: Dict[str, Any], seen: frozenset = frozenset()) -> Any:
    if isinstance(node, dict):
        ref = node.get("$ref")
        if isinstance(ref, str) and ref.startswith("#/$defs/"):
            name = ref[len("#/$defs/"):]
            if name in defs and name not in seen:
                return _inline_refs(defs[name], defs, seen | {name})
        return {k: _inline_refs(v, defs, seen) for k, v in node.items()}
    if isinstance(node, list):
        return [_inline_refs(v, defs, seen) for v in node]
    return node


def _clean(node: Any) -> Any:
    """Drop generator noise (titles, null defaults) pydantic adds."""
    if isinstance(node, list):
        return [_clean(v) for v in node]
    if not isinstance(node, dict):
        return node
    out: Dict[str, Any] = {}
    for key, value in node.items():
        if key == "title" and isinstance(value, str):
            continue
        if key == "default" and value is None:
            continue
        if key == "properties" and isinstance(value, dict):
            out[key] = {name: _clean(prop) for name, prop in value.items()}
        else:
            out[key] = _clean(value)
    return out


# ============================================================================
# Provider
# ============================================================================

class PydanticSchemaProvider:
    """SchemaProvider whose native schemas are pydantic-compatible types."""

    id = "pydantic"

    def __init__(self):
        self._counter = itertools.count(1)

    def string(self) -> Any:
        return str

    def number(self) -> Any:
        return float

    def boolean(self) -> Any:
        return bool

    def any(self) -> Any:
        return Any

    def array(self, schema: Any) -> Any:
        return List[schema]

    def object(self, shape: Dict[str, Any]) -> Any:
        fields: Dict[str, Any] = {}
        for name, schema in shape.items():
            if _is_optional(schema):
                fields[name] = (_strip_optional(schema), None)
            else:
                fields[name] = (schema, ...)
        return create_model(
            f"AdornObject{next(self._counter)}",
            __config__=ConfigDict(extra="allow"),
            **fields,
        )

    def optional(self, schema: Any) -> Any:
        return Annotated[schema, OPTIONAL]

    def nullable(self, schema: Any) -> Any:
        if _is_optional(schema):
            return Annotated[Optional[_strip_optional(schema)], OPTIONAL]
        return Optional[schema]

    def int(self, schema: Any) -> Any:
        return _map_base(schema, lambda t: int if t is float else t)

    def uuid(self, schema: Any) -> Any:
        return _map_base(schema, lambda t: uuid.UUID if t is str else t)

    def email(self, schema: Any) -> Any:
        return _map_base(
            schema,
            lambda t: Annotated[t, AfterValidator(_check_email), _Format("email")] if t is str else t,
        )

    def min_length(self, schema: Any, minimum: int) -> Any:
        return _map_base(
            schema,
            lambda t: Annotated[t, StringConstraints(min_length=minimum)] if t is str else t,
        )

    def coerce_number(self, schema: Any) -> Any:
        return Annotated[schema, BeforeValidator(_coerce_numeric)]

    def to_schema_ref(self, id: str, schema: Any) -> SchemaRef:
        return SchemaRef(provider=self.id, id=id, schema=schema)

    def render(self, schema: Any) -> Dict[str, Any]:
        if _is_optional(schema):
            schema = _strip_optional(schema)
        raw = TypeAdapter(schema).json_schema()
        defs = raw.pop("$defs", {})
        return _clean(_inline_refs(raw, defs))


# ============================================================================
# Validation schemas
# ============================================================================

class PydanticValidationSchema:
    """
    ValidationSchema backed by a pydantic ``TypeAdapter``.

    Parsing a ``BaseModel`` subclass yields a model instance.
    """

    def __init__(self, annotation: Any):
        self.annotation = annotation
        self.name = getattr(annotation, "__name__", None) or repr(annotation)
        self._adapter = TypeAdapter(annotation)

    def parse(self, data: Any) -> ParseResult:
        try:
            value = self._adapter.validate_python(data)
        except PydanticValidationError as exc:
            return ParseResult.failure([
                SchemaIssue(message=err["msg"], path=list(err["loc"]))
                for err in exc.errors()
            ])
        return ParseResult.success(value)

    def json_schema(self) -> Dict[str, Any]:
        raw = self._adapter.json_schema()
        defs = raw.pop("$defs", {})
        return _clean(_inline_refs(raw, defs))

    def __repr__(self) -> str:
        return f"<PydanticValidationSchema {self.name}>"


def from_pydantic(annotation: Any) -> PydanticValidationSchema:
    """
    Wrap a pydantic model (or any type pydantic can validate) as a
    ValidationSchema usable in ``@Validate``.

    Example:
        class CreateUser(BaseModel):
            name: str

        @POST("/")
        @Validate(body=from_pydantic(CreateUser))
        async def create(self, body: CreateUser): ...
    """
    return PydanticValidationSchema(annotation)
