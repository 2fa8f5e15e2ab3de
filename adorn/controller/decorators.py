"""
Controller Decorators

HTTP method decorators, controller marker, OpenAPI/pipeline/validation
decorators and argument binding markers.

Decorators only attach facts to the decorated object. Nothing is written
to global state; ``MetadataCollector.register_controller`` replays them.
"""

import inspect
import types
import typing
from typing import Any, Callable, Dict, List, Mapping, Optional, TypeVar, Union

from .analyzer import (
    AnnotationInfo,
    BindingError,
    ParamSource,
    classify_params,
    describe_annotation_text,
)
from .metadata import (
    ArgBinding,
    BindingKind,
    PipelineNode,
    ResponseMeta,
    ValidationContract,
)


F = TypeVar("F", bound=Callable[..., Any])

ROUTE_ATTR = "__route_metadata__"
CLASS_PARTIALS_ATTR = "__controller_partials__"
CONTROLLER_ATTR = "__controller_metadata__"


def _record(target: Any, partial: Dict[str, Any]) -> None:
    """Append a partial metadata record to a function or class."""
    if inspect.isclass(target):
        # Own list per class so subclasses never append to a parent's records
        partials = list(target.__dict__.get(CLASS_PARTIALS_ATTR, ()))
        partials.append(partial)
        setattr(target, CLASS_PARTIALS_ATTR, partials)
        return
    if not hasattr(target, ROUTE_ATTR):
        target.__route_metadata__ = []
    target.__route_metadata__.append(partial)


# ============================================================================
# Controller marker
# ============================================================================

def controller(
    base_path: Union[str, type, None] = None,
    *,
    tags: Optional[List[str]] = None,
    instantiation_mode: Optional[str] = None,
):
    """
    Mark a class as a controller.

    Usable bare (``@controller``) or with a base path (``@controller("/users")``).

    Args:
        base_path: URL prefix for every route of the class
        tags: OpenAPI tags applied to every route
        instantiation_mode: "per_request" (default) or "singleton"
    """
    def decorate(cls: type, path: Optional[str]) -> type:
        setattr(cls, CONTROLLER_ATTR, {
            "base_path": path or "",
            "tags": list(tags or []),
            "instantiation_mode": instantiation_mode,
        })
        return cls

    if inspect.isclass(base_path):
        return decorate(base_path, None)

    def decorator(cls: type) -> type:
        return decorate(cls, base_path)

    return decorator


def is_controller_class(cls: Any) -> bool:
    from .base import Controller

    if not inspect.isclass(cls):
        return False
    if CONTROLLER_ATTR in cls.__dict__:
        return True
    return issubclass(cls, Controller) and cls is not Controller


# ============================================================================
# HTTP method decorators
# ============================================================================

class RouteDecorator:
    """
    Base route decorator.

    Attaches metadata to controller methods for registration-time extraction.
    """

    method: Optional[str] = None

    def __init__(
        self,
        path: str = "",
        *,
        summary: Optional[str] = None,
        description: Optional[str] = None,
        tags: Optional[List[str]] = None,
        status: Optional[int] = None,
        deprecated: Optional[bool] = None,
        responses: Optional[Mapping[int, Any]] = None,
    ):
        """
        Initialize route decorator.

        Args:
            path: Path template relative to the controller (e.g. "/{id}")
            summary: OpenAPI summary
            description: OpenAPI description (defaults to the docstring)
            tags: OpenAPI tags (extends class-level)
            status: Success status override
            deprecated: Mark as deprecated in OpenAPI
            responses: Declared responses, see ``Responses``
        """
        self.path = path
        self.summary = summary
        self.description = description
        self.tags = tags or []
        self.status = status
        self.deprecated = deprecated
        self.responses = _response_list(responses or {})

    def __call__(self, func: F) -> F:
        _record(func, {
            "http_method": self.method,
            "path": self.path,
            "summary": self.summary,
            "description": self.description or inspect.getdoc(func),
            "tags": self.tags,
            "status": self.status,
            "deprecated": self.deprecated,
            "responses": self.responses,
        })
        return func


class GET(RouteDecorator):
    """GET request decorator."""
    method = "GET"


class POST(RouteDecorator):
    """POST request decorator."""
    method = "POST"


class PUT(RouteDecorator):
    """PUT request decorator."""
    method = "PUT"


class PATCH(RouteDecorator):
    """PATCH request decorator."""
    method = "PATCH"


class DELETE(RouteDecorator):
    """DELETE request decorator."""
    method = "DELETE"


# ============================================================================
# Metadata decorators
# ============================================================================

def Tags(*tags: str):
    """Add OpenAPI tags to a controller class or a method."""
    def decorator(target):
        _record(target, {"tags": list(tags)})
        return target
    return decorator


def _requirements(requirement: Any, scopes: Optional[List[str]]) -> List[Dict[str, List[str]]]:
    if isinstance(requirement, str):
        return [{requirement: list(scopes or [])}]
    if isinstance(requirement, Mapping):
        requirement = [requirement]
    return [{name: list(s) for name, s in item.items()} for item in requirement]


def Security(requirement: Any, scopes: Optional[List[str]] = None):
    """
    Declare OpenAPI security requirements on a controller class or a method.

    ``requirement`` is a scheme name (with its ``scopes``), a requirement
    mapping or a list of mappings. Repeated use accumulates. Method
    requirements replace the class ones; ``Security([])`` marks a method public.

    Example:
        @Security("oauth", ["orders:read"])
    """
    items = _requirements(requirement, scopes)

    def decorator(target):
        _record(target, {"security": items})
        return target
    return decorator


def SecurityScheme(name: str, scheme: Mapping[str, Any]):
    """Publish a security scheme under ``components.securitySchemes``."""
    def decorator(cls):
        if not inspect.isclass(cls):
            raise TypeError(f"SecurityScheme({name!r}) can only decorate a class")
        _record(cls, {"security_schemes": {name: dict(scheme)}})
        return cls
    return decorator


def Summary(summary: str, description: Optional[str] = None):
    def decorator(func):
        _record(func, {"summary": summary, "description": description})
        return func
    return decorator


def Status(status: int):
    """Override the success status of a route."""
    def decorator(func):
        _record(func, {"status": status})
        return func
    return decorator


def _response_list(responses: Mapping[int, Any]) -> List[ResponseMeta]:
    out = []
    for status, spec in responses.items():
        if isinstance(spec, ResponseMeta):
            out.append(spec)
        elif isinstance(spec, tuple):
            description, model = spec
            out.append(ResponseMeta(status=int(status), description=description, model=model))
        elif isinstance(spec, str):
            out.append(ResponseMeta(status=int(status), description=spec))
        else:
            out.append(ResponseMeta(status=int(status), model=spec))
    return out


def Responses(responses: Mapping[int, Any]):
    """
    Declare responses by status.

    Values may be a description, a model type, a ``(description, model)``
    tuple or a ``ResponseMeta``.

    Example:
        @Responses({200: ("The user", User), 404: "User not found"})
    """
    items = _response_list(responses)

    def decorator(func):
        _record(func, {"responses": items})
        return func
    return decorator


def Use(*middlewares: Callable[..., Any]):
    """
    Attach middlewares to a controller class or method.

    A middleware is called with the keyword arguments it declares out of
    ``ctx``, ``request`` and ``route``. Returning a ``Response`` short-circuits
    the request; raising sends it down the error path.
    """
    nodes = [PipelineNode("middleware", m) for m in middlewares]

    def decorator(target):
        _record(target, {"pipeline": nodes})
        return target
    return decorator


def Guard(*guards: Callable[..., Any]):
    """
    Attach guards to a controller class or method.

    A guard returning ``False`` rejects the request with 403.
    """
    nodes = [PipelineNode("guard", g) for g in guards]

    def decorator(target):
        _record(target, {"pipeline": nodes})
        return target
    return decorator


def Validate(
    *,
    params: Any = None,
    query: Any = None,
    body: Any = None,
    headers: Any = None,
):
    """Attach a validation contract (one schema per request source)."""
    contract = ValidationContract(params=params, query=query, body=body, headers=headers)

    def decorator(func):
        _record(func, {"validation": contract})
        return func
    return decorator


# ============================================================================
# Binding markers (used with typing.Annotated)
# ============================================================================

class BindingMarker:
    """
    Explicit argument source.

    Example:
        async def search(self, q: Annotated[str, Query("term")]): ...
    """

    kind: BindingKind

    def __init__(self, name: Optional[str] = None):
        self.name = name

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r})" if self.name else f"{type(self).__name__}()"


class Body(BindingMarker):
    kind = BindingKind.BODY


class Query(BindingMarker):
    kind = BindingKind.QUERY


class Header(BindingMarker):
    """Single request header; defaults to the parameter name with ``_`` as ``-``."""
    kind = BindingKind.HEADERS


class Headers(BindingMarker):
    kind = BindingKind.HEADERS


class State(BindingMarker):
    kind = BindingKind.STATE


class Params(BindingMarker):
    kind = BindingKind.PARAMS


# ============================================================================
# Runtime binding inference
# ============================================================================

class BindingInferenceError(Exception):
    """A handler parameter cannot be bound to any request source."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


def describe_annotation_object(annotation: Any) -> AnnotationInfo:
    """
    Describe a live annotation the way the static analyzer describes its text.

    Types are identified by name, so a parameter classifies identically
    whether it is read from source or from the running function.
    """
    if isinstance(annotation, str):
        return describe_annotation_text(annotation)

    optional = False
    marker: Optional[BindingMarker] = None
    while True:
        origin = typing.get_origin(annotation)
        if origin is typing.Annotated:
            args = typing.get_args(annotation)
            annotation = args[0]
            for meta in args[1:]:
                if isinstance(meta, BindingMarker):
                    marker = meta
            continue
        if origin is Union or origin is types.UnionType:
            members = typing.get_args(annotation)
            rest = [a for a in members if a is not type(None)]
            if len(rest) < len(members):
                optional = True
            if len(rest) == 1:
                annotation = rest[0]
                continue
        break

    if isinstance(annotation, type) and typing.get_origin(annotation) is None:
        base = annotation.__name__
    else:
        base = repr(annotation)

    return AnnotationInfo(
        text=repr(annotation) if not isinstance(annotation, type) else annotation.__name__,
        base=base,
        optional=optional,
        marker=type(marker).__name__ if marker is not None else None,
        marker_name=marker.name if marker is not None else None,
    )


def infer_bindings(func: Callable[..., Any], http_method: str, full_path: str) -> List[ArgBinding]:
    """
    Compute how each handler parameter is populated.

    Applies the same rules as the static analyzer: ``ctx``/RequestCtx ->
    context; Annotated marker -> its source; path token -> params; first
    non-scalar on POST/PUT/PATCH -> body; scalar -> query field; other
    annotated -> whole query; unannotated with a default -> query field.

    Raises:
        BindingInferenceError: If a parameter cannot be bound
    """
    signature = inspect.signature(func)
    try:
        hints = typing.get_type_hints(func, include_extras=True)
    except (NameError, TypeError):
        hints = {}

    sources: List[ParamSource] = []
    # Skip the instance parameter
    for name, param in list(signature.parameters.items())[1:]:
        if param.kind in (param.VAR_POSITIONAL, param.VAR_KEYWORD):
            continue
        annotation = hints.get(name, param.annotation)
        if annotation is inspect.Parameter.empty:
            info = None
        else:
            info = describe_annotation_object(annotation)
        sources.append(ParamSource(
            name=name,
            annotation=info,
            has_default=param.default is not inspect.Parameter.empty,
        ))

    try:
        _, bindings = classify_params(sources, http_method, full_path)
    except BindingError as e:
        raise BindingInferenceError(e.message) from e
    return bindings
