"""
Error normalization.

Maps anything raised on the request path into ``(status, body)``:

- ValidationError      -> 400 {error: "ValidationError", issues: [...]}
- HTTP-error-like      -> its own status, message/details only when exposed
- anything else        -> 500 Problem Details, original error only in logs
"""

import logging
from http import HTTPStatus
from typing import Any, Dict, Optional, Tuple

from .core import ProblemDetails
from .domains import ValidationError


logger = logging.getLogger("adorn.faults.normalizer")


def _phrase(status: int) -> str:
    try:
        return HTTPStatus(status).phrase
    except ValueError:
        return "Error"


def is_http_error_like(error: Any) -> bool:
    """True for any error exposing an integer ``status`` attribute."""
    status = getattr(error, "status", None)
    return isinstance(status, int) and not isinstance(status, bool) and 100 <= status <= 599


class ErrorNormalizer:
    """
    Converts errors into a uniform response payload.

    Args:
        include_detail: Put the exception class name into ``detail`` of 500
            bodies. Never the message, never the traceback.
    """

    def __init__(
        self,
        *,
        include_detail: bool = False,
        logger_: Optional[logging.Logger] = None,
    ):
        self.include_detail = include_detail
        self.logger = logger_ or logger

    def normalize(
        self,
        error: BaseException,
        instance: Optional[str] = None,
    ) -> Tuple[int, Dict[str, Any]]:
        if isinstance(error, ValidationError):
            return 400, {
                "error": "ValidationError",
                "issues": [issue.to_dict() for issue in error.issues],
            }

        if is_http_error_like(error):
            return self._normalize_http(error)

        self.logger.error(
            "Unhandled error%s: %r",
            f" at {instance}" if instance else "",
            error,
            exc_info=(type(error), error, error.__traceback__),
        )
        problem = ProblemDetails(
            title=_phrase(500),
            status=500,
            detail=type(error).__name__ if self.include_detail else None,
            instance=instance,
        )
        return 500, problem.to_dict()

    def _normalize_http(self, error: Any) -> Tuple[int, Dict[str, Any]]:
        status: int = error.status
        expose = getattr(error, "expose", None)
        if expose is None:
            expose = 400 <= status < 500

        if status >= 500:
            self.logger.error("HTTP %s raised: %r", status, error)

        if not expose:
            return status, {"error": _phrase(status), "message": _phrase(status)}

        code = getattr(error, "code", None)
        body: Dict[str, Any] = {
            "error": code if isinstance(code, str) and code else _phrase(status),
            "message": getattr(error, "message", None) or str(error) or _phrase(status),
        }
        details = getattr(error, "details", None)
        if details is not None:
            body["details"] = details
        return status, body


def error_headers(error: BaseException) -> Dict[str, str]:
    """Extra response headers an HTTP error asks for (e.g. ``Allow``)."""
    headers = getattr(error, "headers", None)
    if isinstance(headers, dict) and is_http_error_like(error):
        return {str(k): str(v) for k, v in headers.items()}
    return {}

