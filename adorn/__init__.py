"""
Adorn - decorator-driven controllers with a statically checked route manifest.

Complete integration of:
- Controllers: class-based handlers described by decorators
- Analysis: source-level route extraction checked against the decorators
- Manifest: canonical route definitions, cached between builds
- Runtime: frozen registry, binding, coercion and dispatch
- OpenAPI: document generation through pluggable schema providers
"""

__version__ = "0.1.0"

# ============================================================================
# Controller System
# ============================================================================

from .controller import (
    Controller,
    RequestCtx,
    GET, POST, PUT, PATCH, DELETE,
    controller,
    Tags,
    Summary,
    Status,
    Responses,
    Security,
    SecurityScheme,
    Use,
    Guard,
    Validate,
    Body,
    Query,
    Header,
    Headers,
    State,
    Params,
    MetadataCollector,
    StaticRouteAnalyzer,
    ManifestBuilder,
    RouteDefinition,
    RouteRegistry,
    Dispatcher,
    SchemaGenerator,
    OpenAPIConfig,
)

# ============================================================================
# Request / Response
# ============================================================================

from .request import Request
from .response import Response

# ============================================================================
# Faults
# ============================================================================

from .faults import (
    Fault,
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

# ============================================================================
# Schema Providers
# ============================================================================

from .schema import (
    SchemaProvider,
    NativeSchema,
    NativeSchemaProvider,
    PydanticSchemaProvider,
)

# ============================================================================
# Build & Serve
# ============================================================================

from .config import AdornConfig, ConfigLoader, load_config
from .manifest import BuildResult, build_manifest, freeze_routes, generate_openapi, render_manifest
from .asgi import AdornApp

__all__ = [
    "__version__",
    # Controllers
    "Controller", "RequestCtx",
    "GET", "POST", "PUT", "PATCH", "DELETE",
    "controller", "Tags", "Summary", "Status", "Responses",
    "Security", "SecurityScheme",
    "Use", "Guard", "Validate",
    "Body", "Query", "Header", "Headers", "State", "Params",
    "MetadataCollector", "StaticRouteAnalyzer", "ManifestBuilder",
    "RouteDefinition", "RouteRegistry", "Dispatcher",
    "SchemaGenerator", "OpenAPIConfig",
    # HTTP
    "Request", "Response",
    # Faults
    "Fault", "ValidationError", "HttpError", "NotFound", "MethodNotAllowed", "Forbidden",
    "MissingMetadataError", "AnalyzerError", "RouteConflictError", "ManifestMismatchError",
    "RegistryFrozenError", "ConfigInvalidFault",
    # Schema
    "SchemaProvider", "NativeSchema", "NativeSchemaProvider", "PydanticSchemaProvider",
    # Build & serve
    "AdornConfig", "ConfigLoader", "load_config",
    "BuildResult", "build_manifest", "freeze_routes", "generate_openapi", "render_manifest",
    "AdornApp",
]
