"""
Adorn Controller System

Class-based controllers whose routes are described twice, once by the
decorators at class-definition time and once by static analysis of the
source, and reconciled into a single manifest.

Example:
    from adorn import Controller, GET, POST

    class ItemsController(Controller):
        prefix = "/items"
        tags = ["items"]

        @GET("/{id}")
        async def get(self, id: int):
            return {"id": id}

        @POST("/")
        async def create(self, body: NewItem):
            return body
"""

from .base import Controller, RequestCtx
from .decorators import (
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
)
from .metadata import (
    ArgBinding,
    BindingKind,
    ControllerDefinition,
    MethodMeta,
    ParamModel,
    PipelineNode,
    ResponseMeta,
    ReturnModel,
    RouteDefinition,
    ScalarHint,
    ValidationContract,
)
from .collector import MetadataCollector
from .analyzer import (
    AnalyzerPort,
    DescriptorAnalyzer,
    RouteMatch,
    StaticRouteAnalyzer,
    analyze_files,
)
from .compiler import ManifestBuilder
from .router import RegistryState, ResolvedRoute, RouteRegistry
from .coercion import coerce
from .engine import Dispatcher
from .openapi import OpenAPIConfig, SchemaGenerator, merge_components, render_docs_html

__all__ = [
    # Base
    "Controller",
    "RequestCtx",

    # Decorators
    "GET", "POST", "PUT", "PATCH", "DELETE",
    "controller",
    "Tags",
    "Summary",
    "Status",
    "Responses",
    "Security",
    "SecurityScheme",
    "Use",
    "Guard",
    "Validate",
    "Body",
    "Query",
    "Header",
    "Headers",
    "State",
    "Params",

    # Metadata
    "ArgBinding",
    "BindingKind",
    "ControllerDefinition",
    "MethodMeta",
    "ParamModel",
    "PipelineNode",
    "ResponseMeta",
    "ReturnModel",
    "RouteDefinition",
    "ScalarHint",
    "ValidationContract",

    # Build
    "MetadataCollector",
    "AnalyzerPort",
    "DescriptorAnalyzer",
    "RouteMatch",
    "StaticRouteAnalyzer",
    "analyze_files",
    "ManifestBuilder",

    # Runtime
    "RegistryState",
    "ResolvedRoute",
    "RouteRegistry",
    "coerce",
    "Dispatcher",

    # OpenAPI
    "OpenAPIConfig",
    "SchemaGenerator",
    "merge_components",
    "render_docs_html",
]
