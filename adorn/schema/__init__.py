"""
Adorn Schema - pluggable schema providers and validation schemas.
"""

from .provider import (
    CAPABILITIES,
    ParseResult,
    SchemaIssue,
    SchemaNode,
    SchemaProvider,
    SchemaRef,
    ValidationSchema,
)
from .native import NativeSchema, NativeSchemaProvider
from .pydantic import PydanticSchemaProvider, PydanticValidationSchema, from_pydantic

__all__ = [
    "CAPABILITIES",
    "ParseResult",
    "SchemaIssue",
    "SchemaNode",
    "SchemaProvider",
    "SchemaRef",
    "ValidationSchema",
    "NativeSchema",
    "NativeSchemaProvider",
    "PydanticSchemaProvider",
    "PydanticValidationSchema",
    "from_pydantic",
]
