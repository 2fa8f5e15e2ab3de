"""
Request - ASGI request wrapper.

Provides:
- Typed access to ASGI scope (method, path, query, headers)
- Idempotent body caching
- JSON parsing with size and depth limits
"""

from __future__ import annotations

import json as stdlib_json
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional
from urllib.parse import parse_qsl

from .faults import HttpError


# ============================================================================
# Request Faults
# ============================================================================

class InvalidJSON(HttpError):
    """Request body is not valid JSON."""

    def __init__(self, message: str = "Invalid JSON body"):
        super().__init__(400, message, code="INVALID_JSON")


class PayloadTooLarge(HttpError):
    """Request body exceeds the configured limit."""

    def __init__(self, limit: int):
        super().__init__(
            413,
            "Request body too large",
            code="PAYLOAD_TOO_LARGE",
            details={"max_allowed": limit},
        )


class ClientDisconnect(Exception):
    """Client went away while the body was being read."""


# ============================================================================
# Request
# ============================================================================

class Request:
    """
    Request object handed to pipeline nodes and handlers.

    Args:
        scope: ASGI scope dict
        receive: ASGI receive callable
        max_body_size: Maximum request body size in bytes
        json_max_depth: Maximum JSON nesting depth
    """

    def __init__(
        self,
        scope: Mapping[str, Any],
        receive: Optional[Callable[[], Awaitable[dict]]] = None,
        *,
        max_body_size: int = 10_485_760,  # 10 MiB
        json_max_depth: int = 64,
    ):
        self.scope = scope
        self._receive = receive
        self.max_body_size = max_body_size
        self.json_max_depth = json_max_depth

        self._body: Optional[bytes] = None
        self._json: Any = None
        self._json_loaded = False
        self._query_params: Optional[Dict[str, List[str]]] = None
        self._headers: Optional[Dict[str, str]] = None

    @classmethod
    def build(
        cls,
        method: str,
        path: str,
        *,
        query_string: str = "",
        headers: Optional[Mapping[str, str]] = None,
        body: bytes = b"",
        **kwargs: Any,
    ) -> "Request":
        """
        Build a request without a transport.

        Example:
            Request.build("GET", "/items/100", query_string="verbose=true")
        """
        scope = {
            "type": "http",
            "method": method.upper(),
            "path": path,
            "query_string": query_string.encode("latin-1"),
            "headers": [
                (k.lower().encode("latin-1"), v.encode("latin-1"))
                for k, v in (headers or {}).items()
            ],
        }
        sent = False

        async def receive() -> dict:
            nonlocal sent
            if sent:
                return {"type": "http.disconnect"}
            sent = True
            return {"type": "http.request", "body": body, "more_body": False}

        return cls(scope, receive, **kwargs)

    # ========================================================================
    # Basic Properties
    # ========================================================================

    @property
    def method(self) -> str:
        return self.scope.get("method", "GET")

    @property
    def path(self) -> str:
        return self.scope.get("path", "/")

    @property
    def query_string(self) -> str:
        raw = self.scope.get("query_string", b"")
        return raw.decode("latin-1") if isinstance(raw, bytes) else raw

    # ========================================================================
    # Query Parameters
    # ========================================================================

    @property
    def query_params(self) -> Dict[str, List[str]]:
        """All query values, repeated keys kept in order."""
        if self._query_params is None:
            params: Dict[str, List[str]] = {}
            for key, value in parse_qsl(self.query_string, keep_blank_values=True):
                params.setdefault(key, []).append(value)
            self._query_params = params
        return self._query_params

    @property
    def query(self) -> Dict[str, Any]:
        """Query values flattened: single values as strings, repeats as lists."""
        return {
            key: values[0] if len(values) == 1 else list(values)
            for key, values in self.query_params.items()
        }

    def query_param(self, name: str, default: Optional[str] = None) -> Optional[str]:
        values = self.query_params.get(name)
        return values[0] if values else default

    # ========================================================================
    # Headers
    # ========================================================================

    @property
    def headers(self) -> Dict[str, str]:
        """Headers with lower-cased names; repeated headers joined with ``,``."""
        if self._headers is None:
            headers: Dict[str, str] = {}
            for raw_key, raw_value in self.scope.get("headers", []):
                key = raw_key.decode("latin-1").lower()
                value = raw_value.decode("latin-1")
                headers[key] = f"{headers[key]},{value}" if key in headers else value
            self._headers = headers
        return self._headers

    def header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        return self.headers.get(name.lower(), default)

    # ========================================================================
    # Body
    # ========================================================================

    async def body(self) -> bytes:
        """
        Read full request body (idempotent).

        Raises:
            ClientDisconnect: If client disconnects
            PayloadTooLarge: If body exceeds max_body_size
        """
        if self._body is not None:
            return self._body
        if self._receive is None:
            self._body = b""
            return self._body

        chunks = []
        total = 0
        while True:
            message = await self._receive()
            if message["type"] == "http.disconnect":
                raise ClientDisconnect("Client disconnected")
            chunk = message.get("body", b"")
            total += len(chunk)
            if total > self.max_body_size:
                raise PayloadTooLarge(self.max_body_size)
            chunks.append(chunk)
            if not message.get("more_body", False):
                break

        self._body = b"".join(chunks)
        return self._body

    async def json(self) -> Any:
        """
        Parse request body as JSON. An empty body parses to ``None``.

        Raises:
            InvalidJSON: If JSON is malformed or too deeply nested
        """
        if self._json_loaded:
            return self._json

        raw = await self.body()
        if not raw.strip():
            data = None
        else:
            try:
                data = stdlib_json.loads(raw.decode("utf-8"))
            except UnicodeDecodeError as e:
                raise InvalidJSON(f"Invalid UTF-8 in JSON payload: {e}")
            except stdlib_json.JSONDecodeError as e:
                raise InvalidJSON(f"Invalid JSON: {e}")
            if not _within_depth(data, self.json_max_depth):
                raise InvalidJSON("JSON nesting exceeds maximum depth")

        self._json = data
        self._json_loaded = True
        return data

    def __repr__(self) -> str:
        return f"<Request {self.method} {self.path}>"


def _within_depth(obj: Any, max_depth: int, depth: int = 0) -> bool:
    if depth > max_depth:
        return False
    if isinstance(obj, dict):
        return all(_within_depth(v, max_depth, depth + 1) for v in obj.values())
    if isinstance(obj, list):
        return all(_within_depth(v, max_depth, depth + 1) for v in obj)
    return True
