"""
ASGI adapter - bridges the ASGI protocol to the Dispatcher.

Serves three things:
- the OpenAPI document at ``config.openapi_json_path``
- the Swagger UI page at ``config.docs_path``
- every other HTTP request through the frozen route registry
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Optional, Union

from .config import AdornConfig, load_config
from .controller.engine import Dispatcher
from .controller.metadata import RouteDefinition
from .controller.openapi import render_docs_html
from .controller.router import RouteRegistry
from .faults import ErrorNormalizer
from .manifest import build_manifest, freeze_routes, generate_openapi, openapi_config
from .request import ClientDisconnect, Request
from .response import Response


class AdornApp:
    """
    ASGI application.

    Args:
        routes: Frozen registry, or route definitions to freeze into one
        config: Application config (defaults when omitted)

    Example:
        result = build_manifest("app.py")
        app = AdornApp(result.routes)
        # uvicorn app:app
    """

    def __init__(
        self,
        routes: Union[RouteRegistry, Iterable[RouteDefinition]],
        config: Optional[AdornConfig] = None,
    ):
        self.config = config or AdornConfig()
        if isinstance(routes, RouteRegistry):
            if not routes.is_frozen:
                routes.freeze()
            self.registry = routes
        else:
            self.registry = freeze_routes(routes)
        self.dispatcher = Dispatcher(
            self.registry,
            normalizer=ErrorNormalizer(include_detail=self.config.include_error_detail),
        )
        self.logger = logging.getLogger("adorn.asgi")
        self._openapi: Optional[Dict[str, Any]] = None
        self._docs_html: Optional[str] = None

    @classmethod
    def from_entry(
        cls,
        entry: Union[str, Path],
        config: Optional[AdornConfig] = None,
        cwd: Union[str, Path, None] = None,
        **kwargs: Any,
    ) -> "AdornApp":
        """Build the manifest for ``entry`` and serve its routes."""
        config = config or load_config(cwd)
        result = build_manifest(entry, cwd=cwd, config=config, **kwargs)
        return cls(result.routes, config)

    # ------------------------------------------------------------------
    # Cached documents
    # ------------------------------------------------------------------

    def openapi(self) -> Dict[str, Any]:
        """The OpenAPI document, generated on first use."""
        if self._openapi is None:
            self._openapi = generate_openapi(self.registry.routes, self.config)
        return self._openapi

    def docs_html(self) -> str:
        if self._docs_html is None:
            self._docs_html = render_docs_html(openapi_config(self.config))
        return self._docs_html

    # ------------------------------------------------------------------
    # ASGI entry point
    # ------------------------------------------------------------------

    async def __call__(self, scope: dict, receive: Callable, send: Callable):
        scope_type = scope["type"]
        if scope_type == "http":
            await self.handle_http(scope, receive, send)
        elif scope_type == "lifespan":
            await self.handle_lifespan(scope, receive, send)
        elif scope_type == "websocket":
            self.logger.warning("WebSocket connection attempt rejected")
            await send({"type": "websocket.close", "code": 1003})

    async def handle_http(self, scope: dict, receive: Callable, send: Callable):
        method = scope.get("method", "GET")
        path = scope.get("path", "/")

        if method in ("GET", "HEAD"):
            if path == self.config.openapi_json_path:
                await Response.json(self.openapi()).send_asgi(send)
                return
            if path == self.config.docs_path:
                await Response.html(self.docs_html()).send_asgi(send)
                return

        request = Request(scope, receive)
        try:
            response = await self.dispatcher.dispatch(request)
        except ClientDisconnect:
            self.logger.debug("Client disconnected during %s %s", method, path)
            return
        except Exception as e:
            self.logger.error(f"Critical error in request pipeline: {e}", exc_info=True)
            response = Response.json({"error": "Internal server error"}, status=500)

        await response.send_asgi(send)

    async def handle_lifespan(self, scope: dict, receive: Callable, send: Callable):
        """Handle ASGI lifespan events."""
        while True:
            message = await receive()

            if message["type"] == "lifespan.startup":
                self.logger.debug("Serving %d route(s)", len(self.registry))
                await send({"type": "lifespan.startup.complete"})
            elif message["type"] == "lifespan.shutdown":
                await send({"type": "lifespan.shutdown.complete"})
                break
