"""
Fault taxonomy shared by every layer of adorn.

Build-time problems (bad config, unanalyzable decorators, a frozen registry)
and request-time problems (validation, declared HTTP errors) are all raised
as ``Fault`` subclasses. Anything else that escapes a handler is rendered as
``ProblemDetails`` by the normalizer.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


# ============================================================================
# Severity & Domain
# ============================================================================

class Severity(str, Enum):
    """FATAL stops a build or startup; lower levels only affect one request."""
    INFO = "info"
    WARN = "warn"
    ERROR = "error"
    FATAL = "fatal"


class FaultDomain:
    """
    Named area of the framework a fault belongs to.

    Compares equal to its plain string name.
    """

    def __init__(self, name: str, description: str = ""):
        self.name = self.value = name
        self.description = description

    def __str__(self) -> str:
        return self.name

    def __repr__(self) -> str:
        return f"<FaultDomain {self.name}>"

    def __eq__(self, other: Any) -> bool:
        name = other.name if isinstance(other, FaultDomain) else other
        return self.name == name

    def __hash__(self) -> int:
        return hash(self.name)


FaultDomain.CONFIG = FaultDomain("config", "Configuration errors")
FaultDomain.METADATA = FaultDomain("metadata", "Decorator metadata lifecycle errors")
FaultDomain.ANALYSIS = FaultDomain("analysis", "Static route analysis and manifest build errors")
FaultDomain.REGISTRY = FaultDomain("registry", "Route registry state errors")
FaultDomain.VALIDATION = FaultDomain("validation", "Request validation failures")
FaultDomain.HTTP = FaultDomain("http", "Declared HTTP errors")


DOMAIN_DEFAULTS = {
    FaultDomain.CONFIG: Severity.FATAL,
    FaultDomain.METADATA: Severity.FATAL,
    FaultDomain.ANALYSIS: Severity.FATAL,
    FaultDomain.REGISTRY: Severity.FATAL,
    FaultDomain.VALIDATION: Severity.INFO,
    FaultDomain.HTTP: Severity.WARN,
}


# ============================================================================
# Fault - Base Class
# ============================================================================

class Fault(Exception):
    """
    Exception with a stable ``code``, a readable ``message`` and a ``domain``.

    Subclasses may pin any of the three as class attributes; whatever is not
    pinned must be passed in. Severity falls back to the domain default and
    ``public`` decides whether the message may reach an HTTP client.

        raise Fault(
            code="MANIFEST_EMPTY",
            message="No controllers were registered",
            domain=FaultDomain.ANALYSIS,
        )
    """

    def __init__(
        self,
        code: str | None = None,
        message: str | None = None,
        *,
        domain: FaultDomain | None = None,
        severity: Optional[Severity] = None,
        public: bool = False,
        metadata: Optional[dict[str, Any]] = None,
    ):
        cls = type(self)
        self.code = getattr(cls, "code", None) if code is None else code
        self.message = getattr(cls, "message", None) if message is None else message
        self.domain = getattr(cls, "domain", None) if domain is None else domain

        missing = [name for name in ("code", "message", "domain") if getattr(self, name) is None]
        if missing:
            raise TypeError(f"{cls.__name__}() needs {', '.join(missing)}")

        super().__init__(self.message)
        self.severity = severity or DOMAIN_DEFAULTS.get(self.domain, Severity.ERROR)
        self.public = public
        self.metadata = dict(metadata or {})

    @property
    def is_fatal(self) -> bool:
        return self.severity is Severity.FATAL

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.code} {self.domain}/{self.severity.value}>"

    def to_dict(self) -> dict[str, Any]:
        """Plain form used in log records."""
        return dict(
            code=self.code,
            message=self.message,
            domain=str(self.domain),
            severity=self.severity.value,
            public=self.public,
            metadata=self.metadata,
        )


# ============================================================================
# Problem Details
# ============================================================================

@dataclass
class ProblemDetails:
    """
    RFC 9457 style problem body.

    Attributes:
        title: Short human-readable summary
        status: HTTP status code
        detail: Optional explanation specific to this occurrence
        instance: Optional URI reference identifying the occurrence
        type: Optional URI reference identifying the problem type
        extensions: Open extension members
    """
    title: str
    status: int
    detail: Optional[str] = None
    instance: Optional[str] = None
    type: Optional[str] = None
    extensions: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = dict(self.extensions)
        if self.type is not None:
            body["type"] = self.type
        body["title"] = self.title
        body["status"] = self.status
        if self.detail is not None:
            body["detail"] = self.detail
        if self.instance is not None:
            body["instance"] = self.instance
        return body
