"""
Schema provider contract.

A SchemaProvider builds schemas in its own native representation from a
fixed capability set and renders them to plain OpenAPI JSON. The document
generator talks to providers through these capabilities only, so swapping
providers never changes the generator.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Protocol, Union, runtime_checkable


CAPABILITIES = (
    "string", "number", "boolean", "any", "array", "object",
    "optional", "nullable", "int", "uuid", "email", "min_length",
    "coerce_number", "to_schema_ref",
)

COMPONENTS_PREFIX = "#/components/schemas/"


# ============================================================================
# Parse results
# ============================================================================

@dataclass
class SchemaIssue:
    """A single failure reported by a validation schema."""
    message: str
    path: List[Union[str, int]] = field(default_factory=list)


@dataclass
class ParseResult:
    """
    Outcome of ``ValidationSchema.parse``.

    Attributes:
        ok: Whether the input satisfied the schema
        value: The parsed (possibly coerced) value when ``ok``
        issues: Failures when not ``ok``
    """
    ok: bool
    value: Any = None
    issues: List[SchemaIssue] = field(default_factory=list)

    @classmethod
    def success(cls, value: Any) -> "ParseResult":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, issues: List[SchemaIssue]) -> "ParseResult":
        return cls(ok=False, issues=list(issues))


@runtime_checkable
class ValidationSchema(Protocol):
    """Anything that can parse request data."""

    def parse(self, data: Any) -> ParseResult: ...


# ============================================================================
# SchemaNode
# ============================================================================

@dataclass(frozen=True)
class SchemaNode:
    """
    Provider-neutral schema fragment.

    ``kind`` is one of ``object``, ``array``, ``scalar`` or ``ref``. A scalar
    with ``type=None`` accepts anything.
    """
    kind: str
    type: Optional[str] = None
    format: Optional[str] = None
    min_length: Optional[int] = None
    items: Optional["SchemaNode"] = None
    properties: Dict[str, "SchemaNode"] = field(default_factory=dict)
    ref: Optional[str] = None
    optional: bool = False
    nullable: bool = False
    coerce: Optional[str] = None
    description: Optional[str] = None

    # -- constructors -------------------------------------------------------

    @classmethod
    def scalar(cls, type_: Optional[str], **kwargs: Any) -> "SchemaNode":
        return cls(kind="scalar", type=type_, **kwargs)

    @classmethod
    def array(cls, items: "SchemaNode") -> "SchemaNode":
        return cls(kind="array", type="array", items=items)

    @classmethod
    def object(cls, properties: Dict[str, "SchemaNode"]) -> "SchemaNode":
        return cls(kind="object", type="object", properties=dict(properties))

    @classmethod
    def reference(cls, name: str) -> "SchemaNode":
        return cls(kind="ref", ref=name)

    def evolve(self, **changes: Any) -> "SchemaNode":
        return replace(self, **changes)

    # -- rendering ----------------------------------------------------------

    @property
    def required(self) -> List[str]:
        return [k for k, v in self.properties.items() if not v.optional]

    def to_openapi(self) -> Dict[str, Any]:
        """Render to an OpenAPI 3.1 schema dict (internal markers stripped)."""
        if self.kind == "ref":
            base: Dict[str, Any] = {"$ref": f"{COMPONENTS_PREFIX}{self.ref}"}
        elif self.kind == "array":
            base = {"type": "array", "items": self.items.to_openapi() if self.items else {}}
        elif self.kind == "object":
            base = {
                "type": "object",
                "properties": {k: v.to_openapi() for k, v in self.properties.items()},
                "additionalProperties": True,
            }
            if self.required:
                base["required"] = self.required
        elif self.type is None:
            base = {}
        else:
            base = {"type": self.type}
            if self.format:
                base["format"] = self.format
            if self.min_length is not None:
                base["minLength"] = self.min_length

        if self.description:
            base["description"] = self.description
        if self.nullable:
            return {"anyOf": [base, {"type": "null"}]}
        return base


@dataclass(frozen=True)
class SchemaRef:
    """Named schema produced by ``to_schema_ref``; ``schema`` is provider-native."""
    provider: str
    id: str
    schema: Any


# ============================================================================
# SchemaProvider
# ============================================================================

@runtime_checkable
class SchemaProvider(Protocol):
    """
    Capability set every schema adapter implements.

    ``render`` turns a provider-native schema into plain JSON data.
    """

    id: str

    def string(self) -> Any: ...
    def number(self) -> Any: ...
    def boolean(self) -> Any: ...
    def any(self) -> Any: ...
    def array(self, schema: Any) -> Any: ...
    def object(self, shape: Dict[str, Any]) -> Any: ...
    def optional(self, schema: Any) -> Any: ...
    def nullable(self, schema: Any) -> Any: ...
    def int(self, schema: Any) -> Any: ...
    def uuid(self, schema: Any) -> Any: ...
    def email(self, schema: Any) -> Any: ...
    def min_length(self, schema: Any, minimum: int) -> Any: ...
    def coerce_number(self, schema: Any) -> Any: ...
    def to_schema_ref(self, id: str, schema: Any) -> SchemaRef: ...
    def render(self, schema: Any) -> Dict[str, Any]: ...
