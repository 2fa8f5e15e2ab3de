"""
Adorn Faults - Domain-specific fault types.

Provides concrete fault classes for each domain:
- VALIDATION faults (request-time, 400)
- HTTP faults (request-time, declared status)
- METADATA faults (boot-time, fatal)
- ANALYSIS faults (build-time, fatal)
- REGISTRY faults (programming errors, fatal)
- CONFIG faults
"""

from dataclasses import dataclass, field
from http import HTTPStatus
from typing import Any, List, Optional, Sequence, Union

from .core import Fault, FaultDomain, Severity


PathSegment = Union[str, int]


# ============================================================================
# VALIDATION Faults
# ============================================================================

VALIDATION_SOURCES = ("params", "query", "body", "headers")


@dataclass
class Issue:
    """
    A single validation issue.

    Attributes:
        source: Where the offending value came from (params, query, body, headers)
        message: Human-readable description
        path: Location of the value inside the source (field name, index, ...)
    """
    source: str
    message: str
    path: List[PathSegment] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"source": self.source}
        if self.path:
            data["path"] = list(self.path)
        data["message"] = self.message
        return data


class ValidationError(Fault):
    """
    Request data failed coercion or schema validation.

    Always surfaced as ``400`` with the issue list.
    """

    def __init__(
        self,
        source: str,
        issues: Sequence[Issue],
        message: Optional[str] = None,
    ):
        if source not in VALIDATION_SOURCES:
            raise ValueError(f"Unknown validation source: {source!r}")
        self.source = source
        self.issues = list(issues)
        super().__init__(
            code="VALIDATION_ERROR",
            message=message or f"{source.capitalize()} validation failed",
            domain=FaultDomain.VALIDATION,
            public=True,
            metadata={"source": source, "issue_count": len(self.issues)},
        )

    @classmethod
    def for_field(cls, source: str, name: PathSegment, message: str) -> "ValidationError":
        """Build a single-issue error for one offending field."""
        return cls(source, [Issue(source=source, path=[name], message=message)])


# ============================================================================
# HTTP Faults
# ============================================================================

class HttpError(Fault):
    """
    Declared HTTP error.

    ``message`` and ``details`` reach the client only when ``expose`` is true,
    which defaults to true for 4xx and false for 5xx.

    Example:
        raise HttpError(404, "User not found", code="USER_NOT_FOUND",
                        details={"id": user_id})
    """

    def __init__(
        self,
        status: int,
        message: Optional[str] = None,
        *,
        code: Optional[str] = None,
        details: Any = None,
        expose: Optional[bool] = None,
        headers: Optional[dict[str, str]] = None,
    ):
        self.status = status
        self.details = details
        self.expose = expose if expose is not None else 400 <= status < 500
        self.headers = headers or {}
        super().__init__(
            code=code or _reason(status).upper().replace(" ", "_"),
            message=message or _reason(status),
            domain=FaultDomain.HTTP,
            severity=Severity.ERROR if status >= 500 else Severity.WARN,
            public=self.expose,
            metadata={"status": status},
        )


class NotFound(HttpError):
    def __init__(self, message: str = "Not Found", **kwargs):
        super().__init__(404, message, **kwargs)


class MethodNotAllowed(HttpError):
    def __init__(self, allowed: Sequence[str], **kwargs):
        allow = ", ".join(sorted(allowed))
        super().__init__(
            405,
            "Method Not Allowed",
            details={"allowed": sorted(allowed)},
            headers={"allow": allow},
            **kwargs,
        )


class Forbidden(HttpError):
    def __init__(self, message: str = "Forbidden", **kwargs):
        super().__init__(403, message, **kwargs)


def _reason(status: int) -> str:
    try:
        return HTTPStatus(status).phrase
    except ValueError:
        return "Error"


# ============================================================================
# METADATA Faults
# ============================================================================

class MissingMetadataError(Fault):
    """
    Decorator metadata was consumed before ``finalize`` ran, or mutated after.

    Fatal at boot: startup must abort.
    """

    def __init__(self, identity: str, reason: str):
        super().__init__(
            code="MISSING_METADATA",
            message=f"Controller metadata for '{identity}' is unavailable: {reason}",
            domain=FaultDomain.METADATA,
            metadata={"identity": identity, "reason": reason},
        )


# ============================================================================
# ANALYSIS Faults
# ============================================================================

class AnalyzerError(Fault):
    """
    Static analysis or manifest build failed.

    Carries file/class/method context. Never accompanied by a partial manifest.
    """

    code = "ANALYZER_ERROR"

    def __init__(
        self,
        message: str,
        *,
        file: Optional[str] = None,
        class_name: Optional[str] = None,
        method_name: Optional[str] = None,
        line: Optional[int] = None,
        code: Optional[str] = None,
    ):
        self.file = file
        self.class_name = class_name
        self.method_name = method_name
        self.line = line
        self.reason = message
        super().__init__(
            code=code or self.code,
            message=f"{self._location()}{message}",
            domain=FaultDomain.ANALYSIS,
            metadata={
                "file": file,
                "class": class_name,
                "method": method_name,
                "line": line,
            },
        )

    def _location(self) -> str:
        parts = []
        if self.file:
            parts.append(f"{self.file}:{self.line}" if self.line else self.file)
        if self.class_name:
            target = self.class_name
            if self.method_name:
                target += f".{self.method_name}"
            parts.append(target)
        return f"{' '.join(parts)}: " if parts else ""


class RouteConflictError(AnalyzerError):
    """Two routes resolve to the same (method, full path)."""

    code = "ROUTE_CONFLICT"


class ManifestMismatchError(AnalyzerError):
    """Decorator facts and static facts disagree."""

    code = "MANIFEST_MISMATCH"


# ============================================================================
# REGISTRY Faults
# ============================================================================

class RegistryFrozenError(Fault):
    """
    The registry was mutated after freezing, or served before it.

    A programming error; not recoverable in-process.
    """

    def __init__(self, operation: str, state: str):
        super().__init__(
            code="REGISTRY_STATE",
            message=f"Cannot {operation} while registry is {state}",
            domain=FaultDomain.REGISTRY,
            metadata={"operation": operation, "state": state},
        )


# ============================================================================
# CONFIG Faults
# ============================================================================

class ConfigInvalidFault(Fault):
    """Configuration value is invalid."""

    def __init__(self, key: str, reason: str):
        super().__init__(
            code="CONFIG_INVALID",
            message=f"Configuration key '{key}' is invalid: {reason}",
            domain=FaultDomain.CONFIG,
            metadata={"key": key, "reason": reason},
        )
