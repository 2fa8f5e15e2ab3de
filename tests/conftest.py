"""
Shared test fixtures and helpers for the Adorn test suite.
"""

import os
import textwrap
from pathlib import Path
from typing import Dict, List, Optional

import pytest

from adorn.controller import (
    Dispatcher,
    ManifestBuilder,
    MetadataCollector,
    RouteDefinition,
    RouteRegistry,
    analyze_files,
)
from adorn.manifest import source_files
from adorn.request import Request
from adorn.response import Response


# ============================================================================
# Route Helpers
# ============================================================================


def build_routes(*controllers: type, mode: str = "per_request") -> List[RouteDefinition]:
    """Run collector, static analysis and builder for controllers defined in test modules."""
    collector = MetadataCollector(mode)
    for cls in controllers:
        collector.register_controller(cls)
    return ManifestBuilder().build(collector.definitions(), analyze_files(source_files(controllers)))


def make_registry(*controllers: type, **kwargs) -> RouteRegistry:
    registry = RouteRegistry(build_routes(*controllers, **kwargs))
    registry.freeze()
    return registry


def make_dispatcher(*controllers: type, **kwargs) -> Dispatcher:
    return Dispatcher(make_registry(*controllers, **kwargs))


async def call(
    dispatcher: Dispatcher,
    method: str,
    path: str,
    *,
    query_string: str = "",
    headers: Optional[Dict[str, str]] = None,
    body: bytes = b"",
) -> Response:
    """Dispatch one request built without a transport."""
    request = Request.build(method, path, query_string=query_string, headers=headers, body=body)
    return await dispatcher.dispatch(request)


# ============================================================================
# Project Fixtures
# ============================================================================


APP_SOURCE = '''
from dataclasses import dataclass
from typing import Optional

from adorn import Controller, GET, POST, DELETE


@dataclass
class NewItem:
    name: str
    price: float = 0.0


class ItemsController(Controller):
    prefix = "/items"
    tags = ["items"]

    @GET("/{id}")
    async def get_item(self, id: int) -> dict:
        return {"id": id}

    @GET("/")
    async def list_items(self, limit: int = 10, q: Optional[str] = None) -> list:
        return [{"limit": limit, "q": q}]

    @POST("/")
    async def create(self, body: NewItem) -> NewItem:
        return body

    @DELETE("/{id}")
    async def remove(self, id: int) -> None:
        return None
'''


def write_module(directory: Path, name: str, source: str) -> Path:
    path = directory / name
    path.write_text(textwrap.dedent(source), encoding="utf-8")
    return path


@pytest.fixture
def project(tmp_path: Path, monkeypatch) -> Path:
    """A project root holding ``app.py`` with one items controller."""
    write_module(tmp_path, "app.py", APP_SOURCE)
    monkeypatch.chdir(tmp_path)
    # Keep the real environment out of config loading
    for key in list(os.environ):
        if key.startswith("ADORN_"):
            monkeypatch.delenv(key)
    return tmp_path
