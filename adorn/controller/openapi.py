"""
OpenAPI 3.1 generation from RouteDefinitions.

Every schema fragment is built through the SchemaProvider capability set
(string, number, boolean, any, array, object, optional, nullable, int,
uuid, email, min_length, coerce_number, to_schema_ref) and rendered to
plain JSON data by the same provider, so the document never contains
provider objects.
"""

from __future__ import annotations

import collections.abc
import dataclasses
import decimal
import inspect
import logging
import types
import typing
import uuid
from dataclasses import dataclass, field
from http import HTTPStatus
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from jinja2 import Environment, select_autoescape

from adorn.response import Response
from adorn.schema import NativeSchemaProvider, SchemaNode, SchemaProvider
from adorn.schema.provider import COMPONENTS_PREFIX

from .metadata import BindingKind, RouteDefinition, ScalarHint


logger = logging.getLogger("adorn.controller.openapi")

OPENAPI_VERSION = "3.1.0"


# ─── Configuration ───────────────────────────────────────────────────────────

@dataclass
class OpenAPIConfig:
    """Document info and the URLs the docs are served from."""
    title: str = "Adorn API"
    version: str = "1.0.0"
    description: str = ""
    servers: List[Dict[str, str]] = field(default_factory=list)
    openapi_json_path: str = "/openapi.json"
    docs_path: str = "/docs"
    swagger_ui_version: str = "5.17.14"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OpenAPIConfig":
        """Create config from dict (unknown keys are ignored)."""
        config = cls()
        for key, value in data.items():
            if key.startswith("_"):
                continue
            if hasattr(config, key):
                setattr(config, key, value)
        return config


# ─── Standard components ─────────────────────────────────────────────────────

VALIDATION_ERROR_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "error": {"type": "string", "const": "ValidationError"},
        "issues": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "source": {"type": "string", "enum": ["params", "query", "body", "headers"]},
                    "path": {
                        "type": "array",
                        "items": {"anyOf": [{"type": "string"}, {"type": "integer"}]},
                    },
                    "message": {"type": "string"},
                },
                "required": ["source", "message"],
            },
        },
    },
    "required": ["error", "issues"],
}

PROBLEM_DETAILS_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "type": {"type": "string"},
        "title": {"type": "string"},
        "status": {"type": "integer"},
        "detail": {"type": "string"},
        "instance": {"type": "string"},
    },
    "required": ["title", "status"],
    "additionalProperties": True,
}


def merge_components(
    target: Dict[str, Any],
    source: Dict[str, Any],
    origin: str = "",
    kind: str = "schema",
) -> Dict[str, Any]:
    """
    Merge one component map into another in place.

    On a key collision the incoming entry wins; differing entries are
    logged as warnings. ``kind`` names the component section in the log.
    """
    for name, schema in source.items():
        existing = target.get(name)
        if existing is not None and existing != schema:
            logger.warning(
                "Component %s %r redefined%s; the later definition wins",
                kind, name, f" by {origin}" if origin else "",
            )
        target[name] = schema
    return target


def _ref(name: str) -> Dict[str, str]:
    return {"$ref": f"{COMPONENTS_PREFIX}{name}"}


def _is_named_model(tp: Any) -> bool:
    return inspect.isclass(tp) and (
        dataclasses.is_dataclass(tp) or hasattr(tp, "model_fields")
    )


def _render_contract(schema: Any) -> Optional[Dict[str, Any]]:
    """Plain JSON schema of a validation-contract schema, when it can describe itself."""
    if isinstance(schema, SchemaNode):
        return schema.to_openapi()
    json_schema = getattr(schema, "json_schema", None)
    if callable(json_schema):
        return json_schema()
    return None


# ─── Generator ───────────────────────────────────────────────────────────────

class SchemaGenerator:
    """
    Projects RouteDefinitions into an OpenAPI document.

    Example:
        generator = SchemaGenerator(PydanticSchemaProvider(), OpenAPIConfig(title="Shop"))
        document = generator.generate(routes)
    """

    def __init__(
        self,
        provider: Optional[SchemaProvider] = None,
        config: Optional[OpenAPIConfig] = None,
    ):
        self.provider = provider or NativeSchemaProvider()
        self.config = config or OpenAPIConfig()

    def generate(self, routes: Iterable[RouteDefinition]) -> Dict[str, Any]:
        """Build the document. Output is plain JSON data."""
        # Input order is registration order; components merge in that order
        routes = list(routes)
        paths: Dict[str, Dict[str, Any]] = {}
        tags: List[str] = []
        operation_ids: Set[str] = set()

        per_controller: Dict[str, Dict[str, Any]] = {}
        security_schemes: Dict[str, Any] = {}
        for route in routes:
            if route.controller_id not in per_controller:
                merge_components(
                    security_schemes, route.security_schemes, route.controller_id, kind="security scheme"
                )
            components = per_controller.setdefault(route.controller_id, {})
            operation = self._operation(route, components)

            op_id = operation["operationId"]
            suffix = 2
            while operation["operationId"] in operation_ids:
                operation["operationId"] = f"{op_id}_{suffix}"
                suffix += 1
            operation_ids.add(operation["operationId"])

            for tag in route.tags:
                if tag not in tags:
                    tags.append(tag)
            paths.setdefault(route.full_path, {})[route.http_method.lower()] = operation

        schemas: Dict[str, Any] = {}
        for controller_id in per_controller:
            merge_components(schemas, per_controller[controller_id], controller_id)
        schemas["ValidationError"] = VALIDATION_ERROR_SCHEMA
        schemas["ProblemDetails"] = PROBLEM_DETAILS_SCHEMA

        info: Dict[str, Any] = {"title": self.config.title, "version": self.config.version}
        if self.config.description:
            info["description"] = self.config.description

        document: Dict[str, Any] = {
            "openapi": OPENAPI_VERSION,
            "info": info,
            "paths": {
                path: dict(sorted(ops.items())) for path, ops in sorted(paths.items())
            },
            "components": {"schemas": dict(sorted(schemas.items()))},
        }
        if security_schemes:
            document["components"]["securitySchemes"] = dict(sorted(security_schemes.items()))
        if self.config.servers:
            document["servers"] = list(self.config.servers)
        if tags:
            document["tags"] = [{"name": t} for t in sorted(tags)]
        return document

    # ── Operation ─────────────────────────────────────────────────────────

    def _operation(self, route: RouteDefinition, components: Dict[str, Any]) -> Dict[str, Any]:
        hints = _handler_hints(route)
        operation: Dict[str, Any] = {"operationId": route.operation_id}
        if route.summary:
            operation["summary"] = route.summary
        if route.description:
            operation["description"] = route.description
        if route.tags:
            operation["tags"] = list(route.tags)
        if route.deprecated:
            operation["deprecated"] = True
        if route.security is not None:
            operation["security"] = [dict(r) for r in route.security]

        parameters = self._parameters(route)
        if parameters:
            operation["parameters"] = parameters

        body = self._request_body(route, hints, components)
        if body is not None:
            operation["requestBody"] = body

        operation["responses"] = self._responses(route, hints, components)
        return operation

    def _scalar(self, hint: Optional[ScalarHint]) -> Any:
        p = self.provider
        if hint is ScalarHint.INT:
            return p.int(p.coerce_number(p.number()))
        if hint is ScalarHint.NUMBER:
            return p.coerce_number(p.number())
        if hint is ScalarHint.BOOLEAN:
            return p.boolean()
        if hint is ScalarHint.UUID:
            return p.uuid(p.string())
        return p.string()

    def _parameters(self, route: RouteDefinition) -> List[Dict[str, Any]]:
        parameters: List[Dict[str, Any]] = []
        seen: Set[Tuple[str, str]] = set()
        contract = route.validation
        overrides: Dict[str, Dict[str, Any]] = {}
        for source in ("params", "query", "headers"):
            rendered = _render_contract(getattr(contract, source)) if contract is not None else None
            overrides[source] = rendered or {}

        def add(name: str, location: str, required: bool, schema: Dict[str, Any]) -> None:
            if (name, location) in seen:
                return
            seen.add((name, location))
            parameters.append({"name": name, "in": location, "required": required, "schema": schema})

        locations = {BindingKind.PARAMS: "path", BindingKind.QUERY: "query", BindingKind.HEADERS: "header"}
        sources = {BindingKind.PARAMS: "params", BindingKind.QUERY: "query", BindingKind.HEADERS: "headers"}

        # Path parameters follow template order
        for token in route.path_tokens:
            override = overrides["params"].get("properties", {}).get(token)
            binding = next(
                (b for b in route.bindings if b.kind is BindingKind.PARAMS and b.name == token), None
            )
            hint = route.hint_for(binding) if binding is not None else ScalarHint.STRING
            add(token, "path", True, override or self.provider.render(self._scalar(hint)))

        for binding in route.bindings:
            if binding.kind not in locations or binding.name is None or binding.kind is BindingKind.PARAMS:
                continue
            model = route.param(binding.param) if binding.param else None
            override = overrides[sources[binding.kind]].get("properties", {}).get(binding.name)
            schema = override or self.provider.render(self._scalar(route.hint_for(binding)))
            add(binding.name, locations[binding.kind], not (model and model.optional), schema)

        # Whole-mapping contracts contribute one parameter per property
        for source, location in (("query", "query"), ("headers", "header")):
            rendered = overrides[source]
            required = set(rendered.get("required", []))
            for name, schema in rendered.get("properties", {}).items():
                add(name, location, name in required, schema)
        return parameters

    def _request_body(
        self,
        route: RouteDefinition,
        hints: Dict[str, Any],
        components: Dict[str, Any],
    ) -> Optional[Dict[str, Any]]:
        schema: Optional[Dict[str, Any]] = None
        required = True
        if route.validation is not None and route.validation.body is not None:
            schema = _render_contract(route.validation.body)
        if schema is None:
            binding = next((b for b in route.bindings if b.kind is BindingKind.BODY), None)
            if binding is None:
                return None
            model = route.param(binding.param) if binding.param else None
            required = not (model and model.optional)
            schema = self._type_schema(hints.get(binding.param, Any), components)
        return {
            "required": required,
            "content": {"application/json": {"schema": schema}},
        }

    def _responses(
        self,
        route: RouteDefinition,
        hints: Dict[str, Any],
        components: Dict[str, Any],
    ) -> Dict[str, Any]:
        responses: Dict[str, Any] = {}
        declared = {r.status: r for r in route.responses}

        success = declared.get(route.status)
        entry: Dict[str, Any] = {
            "description": (success.description if success and success.description
                            else _phrase(route.status)),
        }
        if route.status != 204:
            model = success.model if success and success.model is not None else hints.get("return")
            schema = self._return_schema(model, components)
            if schema is not None:
                entry["content"] = {"application/json": {"schema": schema}}
        responses[str(route.status)] = entry

        takes_input = route.validation is not None or any(
            b.kind in (BindingKind.PARAMS, BindingKind.QUERY, BindingKind.BODY, BindingKind.HEADERS)
            for b in route.bindings
        )
        if takes_input:
            responses["400"] = {
                "description": "Validation failed",
                "content": {"application/json": {"schema": _ref("ValidationError")}},
            }

        for status, meta in sorted(declared.items()):
            if status == route.status:
                continue
            item: Dict[str, Any] = {"description": meta.description or _phrase(status)}
            if meta.model is not None:
                item["content"] = {meta.content_type: {"schema": self._type_schema(meta.model, components)}}
            elif status >= 400 and status != 400:
                item["content"] = {"application/problem+json": {"schema": _ref("ProblemDetails")}}
            responses[str(status)] = item
        return responses

    def _return_schema(self, annotation: Any, components: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        if annotation is None or annotation is type(None):
            return None
        if inspect.isclass(annotation) and issubclass(annotation, Response):
            return None
        return self._type_schema(annotation, components)

    # ── Types ─────────────────────────────────────────────────────────────

    def _type_schema(self, annotation: Any, components: Dict[str, Any]) -> Dict[str, Any]:
        """
        Render a handler annotation.

        A named model (dataclass or pydantic model) at the top level becomes
        a component referenced by ``$ref``; nested models are inlined.
        """
        if _is_named_model(annotation):
            name = annotation.__name__
            ref = self.provider.to_schema_ref(name, self._native(annotation, set()))
            components[ref.id] = self.provider.render(ref.schema)
            return _ref(ref.id)
        origin = typing.get_origin(annotation)
        if origin in (list, tuple, set, frozenset):
            args = [a for a in typing.get_args(annotation) if a is not Ellipsis]
            if len(args) == 1 and _is_named_model(args[0]):
                return {"type": "array", "items": self._type_schema(args[0], components)}
        return self.provider.render(self._native(annotation, set()))

    def _native(self, annotation: Any, stack: Set[Any]) -> Any:
        """Map a Python annotation to a provider-native schema."""
        p = self.provider
        if annotation is Any or annotation is inspect.Parameter.empty or isinstance(annotation, str):
            return p.any()

        origin = typing.get_origin(annotation)
        args = typing.get_args(annotation)

        if origin is typing.Annotated:
            return self._native(args[0], stack)
        if origin is typing.Union or origin is types.UnionType:
            members = [a for a in args if a is not type(None)]
            inner = self._native(members[0], stack) if len(members) == 1 else p.any()
            return p.nullable(inner) if len(members) < len(args) else inner
        if origin in (list, set, frozenset, tuple, collections.abc.Sequence):
            items = [a for a in args if a is not Ellipsis]
            return p.array(self._native(items[0], stack) if len(items) == 1 else p.any())
        if origin is dict or annotation is dict:
            return p.object({})

        if annotation is bool:
            return p.boolean()
        if annotation is int:
            return p.int(p.number())
        if annotation in (float, decimal.Decimal):
            return p.number()
        if annotation is str:
            return p.string()
        if annotation is uuid.UUID:
            return p.uuid(p.string())

        if _is_named_model(annotation):
            if annotation in stack:
                return p.any()
            stack = stack | {annotation}
            shape = {}
            for name, (tp, required) in _model_fields(annotation).items():
                schema = self._native(tp, stack)
                shape[name] = schema if required else p.optional(schema)
            return p.object(shape)
        return p.any()


def _model_fields(model: type) -> Dict[str, Tuple[Any, bool]]:
    """Field name -> (annotation, required) for dataclasses and pydantic models."""
    if dataclasses.is_dataclass(model):
        try:
            hints = typing.get_type_hints(model)
        except (NameError, TypeError):
            hints = {}
        out = {}
        for f in dataclasses.fields(model):
            required = f.default is dataclasses.MISSING and f.default_factory is dataclasses.MISSING
            out[f.name] = (hints.get(f.name, Any), required)
        return out
    return {
        name: (info.annotation, info.is_required())
        for name, info in model.model_fields.items()
    }


def _handler_hints(route: RouteDefinition) -> Dict[str, Any]:
    func = getattr(route.controller, route.handler_name)
    try:
        return typing.get_type_hints(func)
    except (NameError, TypeError):
        return {}


def _phrase(status: int) -> str:
    try:
        return HTTPStatus(status).phrase
    except ValueError:
        return "Response"


# ─── Swagger UI ──────────────────────────────────────────────────────────────

_SWAGGER_UI_TEMPLATE = """<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="utf-8">
    <meta name="viewport" content="width=device-width, initial-scale=1">
    <title>{{ config.title }} - Swagger UI</title>
    <link rel="stylesheet"
          href="https://cdn.jsdelivr.net/npm/swagger-ui-dist@{{ config.swagger_ui_version }}/swagger-ui.css">
    <style>
        body { margin: 0; background: #fafafa; }
        .topbar { display: none !important; }
    </style>
</head>
<body>
    <div id="swagger-ui"></div>
    <script src="https://cdn.jsdelivr.net/npm/swagger-ui-dist@{{ config.swagger_ui_version }}/swagger-ui-bundle.js"></script>
    <script>
        window.onload = () => {
            window.ui = SwaggerUIBundle({
                url: {{ config.openapi_json_path | tojson }},
                dom_id: '#swagger-ui',
                deepLinking: true,
                presets: [SwaggerUIBundle.presets.apis],
                docExpansion: 'list',
                filter: true,
            });
        };
    </script>
</body>
</html>"""

_env = Environment(autoescape=select_autoescape(default_for_string=True))


def render_docs_html(config: OpenAPIConfig) -> str:
    """Render the Swagger UI page pointing at ``config.openapi_json_path``."""
    return _env.from_string(_SWAGGER_UI_TEMPLATE).render(config=config)
