"""
Controllers and the per-request context handed to them.
"""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Optional

if TYPE_CHECKING:
    from adorn.request import Request
    from adorn.response import Response
    from .metadata import RouteDefinition


@dataclass
class RequestCtx:
    """
    Everything a single dispatch knows about the request in flight.

    Guards, middlewares and handlers all see the same object; a new one is
    built for every request. ``params`` holds the raw path captures before
    any coercion, ``state`` is free for the pipeline to write into.
    """

    request: "Request"
    route: Optional["RouteDefinition"] = None
    params: Dict[str, str] = field(default_factory=dict)
    state: Dict[str, Any] = field(default_factory=dict)

    @property
    def method(self) -> str:
        return self.request.method

    @property
    def path(self) -> str:
        return self.request.path


class Controller:
    """
    Subclass to declare a group of routes sharing a prefix.

    Plain classes can opt in with ``@controller`` instead. Leaving
    ``instantiation_mode`` unset defers to the configured default.

        class OrdersController(Controller):
            prefix = "/orders"
            tags = ["orders"]

            @GET("/{order_id}")
            async def fetch(self, order_id: int):
                return {"id": order_id}
    """

    prefix: str = ""
    tags: List[str] = []
    pipeline: List[Any] = []
    instantiation_mode: str = "per_request"

    async def on_request(self, ctx: RequestCtx) -> None:
        """Runs ahead of the handler on every dispatch."""

    async def on_response(self, ctx: RequestCtx, response: "Response") -> "Response":
        """Runs once the handler has produced ``response``; may return a replacement."""
        return response
