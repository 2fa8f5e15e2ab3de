"""
Dispatcher - executes requests against a frozen RouteRegistry.

Per request:
1. Match (404 / 405 otherwise)
2. Class then method pipeline nodes (guards and middlewares)
3. Collect request data per ArgBinding and coerce path/query tokens
4. Run the route's validation contract
5. Instantiate the controller and invoke the handler (sync or async)
6. Serialize the result with the route's resolved status

Every failure is turned into a response by the ErrorNormalizer. Nothing
request-scoped is stored on the dispatcher.
"""

import dataclasses
import inspect
import logging
import typing
from typing import Any, Dict, Optional, Set, Tuple

from adorn.faults import (
    ErrorNormalizer,
    Forbidden,
    Issue,
    RegistryFrozenError,
    ValidationError,
    error_headers,
)
from adorn.request import ClientDisconnect, Request
from adorn.response import Response
from adorn.schema.pydantic import from_pydantic

from .base import RequestCtx
from .coercion import coerce_all
from .metadata import ArgBinding, BindingKind, PipelineNode, RouteDefinition
from .router import RouteRegistry


logger = logging.getLogger("adorn.controller.engine")

_MISSING = object()

# Names a pipeline node may declare to receive request objects
_NODE_ARGS = ("ctx", "request", "route", "controller")


class Dispatcher:
    """
    Binds, validates and executes requests.

    Args:
        registry: Frozen route registry
        normalizer: Error normalizer (a default one is created if omitted)

    Example:
        dispatcher = Dispatcher(registry)
        response = await dispatcher.dispatch(Request.build("GET", "/items/100"))
    """

    def __init__(
        self,
        registry: RouteRegistry,
        *,
        normalizer: Optional[ErrorNormalizer] = None,
    ):
        self.registry = registry
        self.normalizer = normalizer or ErrorNormalizer()
        self._singletons: Dict[type, Any] = {}
        self._hints: Dict[Tuple[str, str], Dict[str, Any]] = {}
        # Per-callable caches; filled lazily, never hold request data
        self._signatures: Dict[Any, inspect.Signature] = {}
        self._node_params: Dict[Any, Set[str]] = {}

    async def dispatch(self, request: Request) -> Response:
        """
        Handle one request end to end.

        Raises:
            RegistryFrozenError: the registry has not been frozen yet
            ClientDisconnect: the client went away while the body was read
        """
        if not self.registry.is_frozen:
            raise RegistryFrozenError("serve requests", self.registry.state.value)

        try:
            resolved = self.registry.match(request.method, request.path)
            ctx = RequestCtx(request=request, route=resolved.route, params=dict(resolved.params))
            return await self._execute(resolved.route, ctx)
        except ClientDisconnect:
            raise
        except Exception as e:
            return self._error_response(e, request)

    # ========================================================================
    # Pipeline
    # ========================================================================

    async def _execute(self, route: RouteDefinition, ctx: RequestCtx) -> Response:
        controller = self._instantiate(route)

        for node in route.pipeline:
            result = await self._run_node(node, ctx, route, controller)
            if isinstance(result, Response):
                return result

        kwargs = await self._bind_arguments(route, ctx)

        on_request = getattr(controller, "on_request", None)
        if on_request is not None:
            await self._safe_call(on_request, ctx)

        handler = getattr(controller, route.handler_name)
        result = await self._safe_call(handler, **kwargs)
        response = self._to_response(result, route.status)

        on_response = getattr(controller, "on_response", None)
        if on_response is not None:
            replaced = await self._safe_call(on_response, ctx, response)
            if isinstance(replaced, Response):
                response = replaced
        return response

    def _instantiate(self, route: RouteDefinition) -> Any:
        cls = route.controller
        if route.instantiation_mode == "singleton":
            instance = self._singletons.get(cls)
            if instance is None:
                instance = cls()
                self._singletons[cls] = instance
                logger.debug("Created singleton controller %s", route.controller_id)
            return instance
        return cls()

    async def _run_node(
        self,
        node: PipelineNode,
        ctx: RequestCtx,
        route: RouteDefinition,
        controller: Any,
    ) -> Optional[Response]:
        """Run a guard or middleware with the keyword arguments it declares."""
        func = node.handler
        params = self._node_params.get(func)
        if params is None:
            params = set(inspect.signature(func).parameters)
            self._node_params[func] = params

        available = {"ctx": ctx, "request": ctx.request, "route": route, "controller": controller}
        kwargs = {name: available[name] for name in _NODE_ARGS if name in params}
        result = await self._safe_call(func, **kwargs)

        if isinstance(result, Response):
            return result
        if node.kind == "guard" and result is False:
            logger.debug("Guard %s rejected %s %s", node.name, ctx.method, ctx.path)
            raise Forbidden(f"Guard {node.name} rejected the request")
        return None

    # ========================================================================
    # Binding
    # ========================================================================

    async def _bind_arguments(self, route: RouteDefinition, ctx: RequestCtx) -> Dict[str, Any]:
        """
        Build handler kwargs.

        Sources are gathered lazily (the body is only read when something
        needs it), path/query tokens are coerced per their scalar hint, the
        validation contract replaces each source it covers with its parsed
        value, then each ArgBinding picks its value.
        """
        request = ctx.request
        sources: Dict[str, Any] = {}
        kinds = {b.kind for b in route.bindings}
        contract = dict(route.validation.items()) if route.validation is not None else {}

        if BindingKind.PARAMS in kinds or "params" in contract:
            sources["params"] = self._coerced(route, BindingKind.PARAMS, dict(ctx.params))
        if BindingKind.QUERY in kinds or "query" in contract:
            sources["query"] = self._coerced(route, BindingKind.QUERY, request.query)
        if BindingKind.BODY in kinds or "body" in contract:
            sources["body"] = await request.json()
        if BindingKind.HEADERS in kinds or "headers" in contract:
            sources["headers"] = request.headers

        for source, schema in contract.items():
            result = schema.parse(sources[source])
            if not result.ok:
                raise ValidationError(source, [
                    Issue(source=source, message=issue.message, path=list(issue.path))
                    for issue in result.issues
                ])
            sources[source] = result.value

        hints = self._handler_hints(route)
        defaults = self._defaults(route)
        kwargs: Dict[str, Any] = {}
        for binding in route.bindings:
            value = self._value_for(binding, route, ctx, sources)
            if value is _MISSING:
                if binding.param in defaults:
                    continue
                if binding.kind is BindingKind.STATE:
                    raise LookupError(f"State key {binding.name!r} was not set by any pipeline node")
                model = route.param(binding.param)
                if model is not None and model.optional:
                    kwargs[binding.param] = None
                    continue
                raise ValidationError.for_field(binding.kind.value, binding.name or binding.param, "Required")
            if binding.kind is BindingKind.BODY and binding.name is None:
                value = _structure(value, hints.get(binding.param), "body")
            kwargs[binding.param] = value
        return kwargs

    def _coerced(self, route: RouteDefinition, kind: BindingKind, values: Dict[str, Any]) -> Dict[str, Any]:
        hints = {
            b.name: route.hint_for(b)
            for b in route.bindings
            if b.kind is kind and b.name is not None
        }
        return coerce_all(values, hints, kind.value)

    def _value_for(
        self,
        binding: ArgBinding,
        route: RouteDefinition,
        ctx: RequestCtx,
        sources: Dict[str, Any],
    ) -> Any:
        if binding.kind is BindingKind.CONTEXT:
            return ctx
        if binding.kind is BindingKind.STATE:
            if binding.name is None:
                return ctx.state
            return ctx.state.get(binding.name, _MISSING)

        data = sources.get(binding.kind.value)
        if binding.name is None:
            if binding.kind is BindingKind.BODY:
                return data if data is not None else _MISSING
            return data if data is not None else {}
        if binding.kind is BindingKind.HEADERS:
            return _field(data, binding.name.lower())
        return _field(data, binding.name)

    def _handler_hints(self, route: RouteDefinition) -> Dict[str, Any]:
        hints = self._hints.get(route.key)
        if hints is None:
            func = getattr(route.controller, route.handler_name)
            try:
                hints = typing.get_type_hints(func)
            except (NameError, TypeError):
                hints = {}
            self._hints[route.key] = hints
        return hints

    def _defaults(self, route: RouteDefinition) -> Set[str]:
        func = getattr(route.controller, route.handler_name)
        sig = self._signatures.get(func)
        if sig is None:
            sig = inspect.signature(func)
            self._signatures[func] = sig
        return {name for name, p in sig.parameters.items() if p.default is not inspect.Parameter.empty}

    # ========================================================================
    # Invocation & serialization
    # ========================================================================

    async def _safe_call(self, func: Any, *args, **kwargs) -> Any:
        """Call a sync or async function."""
        if inspect.iscoroutinefunction(func):
            return await func(*args, **kwargs)
        result = func(*args, **kwargs)
        if inspect.isawaitable(result):
            return await result
        return result

    def _to_response(self, result: Any, status: int) -> Response:
        """Convert a handler result to a Response; Responses pass through untouched."""
        if isinstance(result, Response):
            return result
        return Response.json(result, status=status)

    def _error_response(
        self,
        error: Exception,
        request: Request,
    ) -> Response:
        if isinstance(error, ValidationError):
            logger.debug("Validation failed for %s %s: %s", request.method, request.path, error.message)
        status, body = self.normalizer.normalize(error, instance=request.path)
        return Response.json(body, status=status, headers=error_headers(error))


def _field(data: Any, name: str) -> Any:
    if isinstance(data, dict):
        return data.get(name, _MISSING)
    if data is None:
        return _MISSING
    return getattr(data, name, _MISSING)


def _structure(value: Any, annotation: Any, source: str) -> Any:
    """
    Turn a body mapping into the handler's declared model.

    Pydantic models are validated; dataclasses are constructed from the
    mapping. Anything else is handed over as parsed JSON.
    """
    if annotation is None or value is None:
        return value
    if typing.get_origin(annotation) is typing.Union:
        members = [a for a in typing.get_args(annotation) if a is not type(None)]
        if len(members) != 1:
            return value
        annotation = members[0]
    if inspect.isclass(annotation) and isinstance(value, annotation):
        return value
    if hasattr(annotation, "model_validate"):
        result = from_pydantic(annotation).parse(value)
        if not result.ok:
            raise ValidationError(source, [
                Issue(source=source, message=i.message, path=list(i.path)) for i in result.issues
            ])
        return result.value
    if dataclasses.is_dataclass(annotation) and isinstance(value, dict):
        names = {f.name for f in dataclasses.fields(annotation)}
        unknown = sorted(set(value) - names)
        if unknown:
            raise ValidationError(source, [
                Issue(source=source, message="Unknown field", path=[k]) for k in unknown
            ])
        try:
            return annotation(**value)
        except TypeError as e:
            raise ValidationError(source, [Issue(source=source, message=str(e))]) from None
    return value
