"""
Response - HTTP response builder with ASGI send support.

Provides:
- JSON (orjson), text, HTML and empty responses
- Header normalization (lower-cased, multi-value aware)
- ASGI 3 ``http.response.start`` / ``http.response.body`` emission
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence, Union

import orjson


def _json_default_serializer(o: Any) -> Any:
    """Default JSON serializer for types orjson does not handle natively."""
    if hasattr(o, "model_dump"):
        return o.model_dump(mode="json")
    if isinstance(o, (set, frozenset, tuple)):
        return list(o)
    if hasattr(o, "isoformat"):
        return o.isoformat()
    return str(o)


def dumps(obj: Any, *, indent: bool = False, sort_keys: bool = False) -> bytes:
    """Serialize ``obj`` to JSON bytes with the response serializer rules."""
    option = 0
    if indent:
        option |= orjson.OPT_INDENT_2
    if sort_keys:
        option |= orjson.OPT_SORT_KEYS
    return orjson.dumps(obj, default=_json_default_serializer, option=option)


class Response:
    """
    HTTP response.

    Args:
        content: Response body (bytes, str, dict/list serialized as JSON)
        status: HTTP status code
        headers: Response headers (supports multi-value)
        media_type: Content-Type override
    """

    def __init__(
        self,
        content: Union[bytes, str, Mapping, Sequence, None] = b"",
        status: int = 200,
        headers: Optional[Mapping[str, Union[str, Sequence[str]]]] = None,
        media_type: Optional[str] = None,
        *,
        encoding: str = "utf-8",
    ):
        self.status = status
        self.encoding = encoding

        self._headers: Dict[str, Union[str, List[str]]] = {}
        if headers:
            for key, value in headers.items():
                if isinstance(value, (list, tuple)):
                    self._headers[key.lower()] = list(value)
                else:
                    self._headers[key.lower()] = value

        self.body = self._encode_body(content)

        if media_type:
            self._headers["content-type"] = media_type
        elif "content-type" not in self._headers and status != 204:
            self._headers["content-type"] = self._detect_media_type(content)

    @property
    def headers(self) -> Dict[str, Union[str, List[str]]]:
        return self._headers

    def _detect_media_type(self, content: Any) -> str:
        if isinstance(content, (dict, list)):
            return "application/json; charset=utf-8"
        if isinstance(content, str):
            return "text/plain; charset=utf-8"
        return "application/octet-stream"

    def _encode_body(self, content: Any) -> bytes:
        if content is None:
            return b""
        if isinstance(content, bytes):
            return content
        if isinstance(content, str):
            return content.encode(self.encoding)
        if isinstance(content, (dict, list)):
            return dumps(content)
        return str(content).encode(self.encoding)

    # ========================================================================
    # Factory Methods
    # ========================================================================

    @classmethod
    def json(
        cls,
        obj: Any,
        status: int = 200,
        *,
        headers: Optional[Mapping[str, str]] = None,
    ) -> "Response":
        """
        Create JSON response.

        A 204 status always yields an empty body.
        """
        if status == 204:
            return cls(b"", status=status, headers=headers)
        return cls(
            content=dumps(obj),
            status=status,
            headers=headers,
            media_type="application/json; charset=utf-8",
        )

    @classmethod
    def html(cls, content: str, status: int = 200, **kwargs) -> "Response":
        return cls(content, status=status, media_type="text/html; charset=utf-8", **kwargs)

    @classmethod
    def text(cls, content: str, status: int = 200, **kwargs) -> "Response":
        return cls(content, status=status, media_type="text/plain; charset=utf-8", **kwargs)

    def json_body(self) -> Any:
        """Decode the body back to data (handy in tests and middlewares)."""
        return orjson.loads(self.body) if self.body else None

    # ========================================================================
    # Headers
    # ========================================================================

    def set_header(self, name: str, value: str) -> None:
        self._headers[name.lower()] = value

    # ========================================================================
    # ASGI
    # ========================================================================

    async def send_asgi(self, send: Callable[[dict], Awaitable[None]]) -> None:
        """Send response via ASGI."""
        if "content-length" not in self._headers:
            self._headers["content-length"] = str(len(self.body))

        await send({
            "type": "http.response.start",
            "status": self.status,
            "headers": self._prepare_headers(),
        })
        await send({
            "type": "http.response.body",
            "body": self.body,
            "more_body": False,
        })

    def _prepare_headers(self) -> List[tuple]:
        headers_list = []
        for name, value in self._headers.items():
            name_bytes = name.encode("latin1")
            if isinstance(value, list):
                for v in value:
                    headers_list.append((name_bytes, v.encode("latin1")))
            else:
                headers_list.append((name_bytes, value.encode("latin1")))
        return headers_list

    def __repr__(self) -> str:
        return f"<Response {self.status} {self._headers.get('content-type', '')}>"
