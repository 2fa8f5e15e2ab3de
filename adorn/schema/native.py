"""
Native schema provider.

Schemas are plain ``SchemaNode`` data that render to OpenAPI and validate
request data on their own, with no third-party validation library.

Example:
    s = NativeSchemaProvider()
    CreateUser = s.object({
        "name": s.min_length(s.string(), 1),
        "email": s.email(s.string()),
        "age": s.optional(s.int(s.number())),
    })
    CreateUser.parse({"name": "Ada", "email": "ada@example.com"}).ok  # True
"""

from __future__ import annotations

import re
import uuid as uuid_module
from typing import Any, Dict, List, Union

from .provider import ParseResult, SchemaIssue, SchemaNode, SchemaRef


_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
NUMERIC_RE = re.compile(r"^-?\d+(\.\d+)?$")


class NativeSchema(SchemaNode):
    """A SchemaNode that can also validate data."""

    def parse(self, data: Any) -> ParseResult:
        issues: List[SchemaIssue] = []
        value = _validate(self, data, [], issues)
        if issues:
            return ParseResult.failure(issues)
        return ParseResult.success(value)


def _native(node: SchemaNode) -> NativeSchema:
    if isinstance(node, NativeSchema):
        return node
    return NativeSchema(**{f: getattr(node, f) for f in node.__dataclass_fields__})


def _describe(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list):
        return "array"
    if isinstance(value, dict):
        return "object"
    return type(value).__name__


def _type_issue(issues: List[SchemaIssue], path: List[Union[str, int]], expected: str, value: Any) -> None:
    issues.append(SchemaIssue(
        message=f"Expected {expected}, received {_describe(value)}",
        path=list(path),
    ))


def _validate(schema: SchemaNode, value: Any, path: List[Union[str, int]], issues: List[SchemaIssue]) -> Any:
    if value is None and schema.optional:
        return None
    if value is None and schema.nullable:
        return None

    if schema.kind == "ref" or schema.type is None:
        return value

    if schema.kind == "array":
        if not isinstance(value, list):
            _type_issue(issues, path, "array", value)
            return value
        return [
            _validate(schema.items, item, path + [i], issues) if schema.items else item
            for i, item in enumerate(value)
        ]

    if schema.kind == "object":
        if not isinstance(value, dict):
            _type_issue(issues, path, "object", value)
            return value
        out: Dict[str, Any] = {}
        for key, prop in schema.properties.items():
            if key not in value:
                if not prop.optional:
                    issues.append(SchemaIssue(message="Required", path=path + [key]))
                continue
            out[key] = _validate(prop, value[key], path + [key], issues)
        return out

    expected = schema.type

    if expected == "string":
        if not isinstance(value, str):
            _type_issue(issues, path, "string", value)
            return value
        if schema.min_length is not None and len(value) < schema.min_length:
            issues.append(SchemaIssue(
                message=f"String must contain at least {schema.min_length} character(s)",
                path=list(path),
            ))
        if schema.format == "email" and not _EMAIL_RE.match(value):
            issues.append(SchemaIssue(message="Invalid email", path=list(path)))
        if schema.format == "uuid":
            try:
                uuid_module.UUID(value)
            except ValueError:
                issues.append(SchemaIssue(message="Invalid uuid", path=list(path)))
        return value

    if expected in ("number", "integer"):
        n = value
        if schema.coerce == "number" and isinstance(n, str) and NUMERIC_RE.match(n.strip()):
            n = float(n) if "." in n else int(n)
        if isinstance(n, bool) or not isinstance(n, (int, float)):
            _type_issue(issues, path, expected, value)
            return value
        if expected == "integer":
            if isinstance(n, float):
                if not n.is_integer():
                    issues.append(SchemaIssue(message="Expected integer", path=list(path)))
                    return n
                n = int(n)
        return n

    if expected == "boolean":
        if not isinstance(value, bool):
            _type_issue(issues, path, "boolean", value)
        return value

    return value


class NativeSchemaProvider:
    """SchemaProvider producing ``NativeSchema`` values."""

    id = "native"

    def string(self) -> NativeSchema:
        return NativeSchema(kind="scalar", type="string")

    def number(self) -> NativeSchema:
        return NativeSchema(kind="scalar", type="number")

    def boolean(self) -> NativeSchema:
        return NativeSchema(kind="scalar", type="boolean")

    def any(self) -> NativeSchema:
        return NativeSchema(kind="scalar", type=None)

    def array(self, schema: SchemaNode) -> NativeSchema:
        return NativeSchema(kind="array", type="array", items=schema)

    def object(self, shape: Dict[str, SchemaNode]) -> NativeSchema:
        return NativeSchema(kind="object", type="object", properties=dict(shape))

    def optional(self, schema: SchemaNode) -> NativeSchema:
        return _native(schema.evolve(optional=True))

    def nullable(self, schema: SchemaNode) -> NativeSchema:
        return _native(schema.evolve(nullable=True))

    def int(self, schema: SchemaNode) -> NativeSchema:
        if schema.kind == "scalar" and schema.type == "number":
            return _native(schema.evolve(type="integer"))
        return _native(schema)

    def uuid(self, schema: SchemaNode) -> NativeSchema:
        if schema.kind == "scalar" and schema.type == "string":
            return _native(schema.evolve(format="uuid"))
        return _native(schema)

    def email(self, schema: SchemaNode) -> NativeSchema:
        if schema.kind == "scalar" and schema.type == "string":
            return _native(schema.evolve(format="email"))
        return _native(schema)

    def min_length(self, schema: SchemaNode, minimum: int) -> NativeSchema:
        if schema.kind == "scalar" and schema.type == "string":
            return _native(schema.evolve(min_length=minimum))
        return _native(schema)

    def coerce_number(self, schema: SchemaNode) -> NativeSchema:
        return _native(schema.evolve(coerce="number"))

    def to_schema_ref(self, id: str, schema: SchemaNode) -> SchemaRef:
        return SchemaRef(provider=self.id, id=id, schema=schema)

    def render(self, schema: SchemaNode) -> Dict[str, Any]:
        return schema.to_openapi()
