"""
Adorn Faults - structured error taxonomy.

Build-time faults (MissingMetadataError, AnalyzerError, RegistryFrozenError)
are fatal and halt startup. Request-time faults (ValidationError, HttpError)
are caught at the dispatcher boundary and normalized into responses.
"""

from .core import Fault, FaultDomain, Severity, ProblemDetails
from .domains import (
    Issue,
    ValidationError,
    HttpError,
    NotFound,
    MethodNotAllowed,
    Forbidden,
    MissingMetadataError,
    AnalyzerError,
    RouteConflictError,
    ManifestMismatchError,
    RegistryFrozenError,
    ConfigInvalidFault,
)
from .normalizer import ErrorNormalizer, is_http_error_like, error_headers

__all__ = [
    # Core
    "Fault",
    "FaultDomain",
    "Severity",
    "ProblemDetails",

    # Request-time
    "Issue",
    "ValidationError",
    "HttpError",
    "NotFound",
    "MethodNotAllowed",
    "Forbidden",

    # Build-time
    "MissingMetadataError",
    "AnalyzerError",
    "RouteConflictError",
    "ManifestMismatchError",
    "RegistryFrozenError",
    "ConfigInvalidFault",

    # Normalization
    "ErrorNormalizer",
    "is_http_error_like",
    "error_headers",
]
