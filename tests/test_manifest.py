"""
Manifest build pipeline and build cache.
"""

import logging
import os

import pytest

from adorn.cache import (
    ANALYSIS_FILE,
    CACHE_FILE,
    MANIFEST_FILE,
    StaleResult,
    cached_inputs,
    is_stale,
    read_analysis,
    read_manifest,
)
from adorn.config import AdornConfig
from adorn.controller import RegistryState
from adorn.manifest import (
    EntryModuleError,
    build_manifest,
    discover_controllers,
    freeze_routes,
    load_entry,
    render_manifest,
)

from tests.conftest import write_module


def _touch_later(path, seconds=10):
    stat = os.stat(path)
    os.utime(path, (stat.st_atime + seconds, stat.st_mtime + seconds))


# ============================================================================
# Entry module
# ============================================================================

class TestEntry:

    def test_missing_file(self, project):
        with pytest.raises(EntryModuleError) as exc:
            load_entry("nope.py", project)
        assert exc.value.code == "ENTRY_NOT_FOUND"

    def test_import_failure(self, project):
        write_module(project, "broken.py", "raise RuntimeError('boom')\n")
        with pytest.raises(EntryModuleError) as exc:
            load_entry("broken.py", project)
        assert exc.value.code == "ENTRY_IMPORT_FAILED"
        assert "RuntimeError: boom" in exc.value.message

    def test_discovers_controllers_in_definition_order(self, project):
        module = load_entry("app.py", project)
        assert [c.__name__ for c in discover_controllers(module)] == ["ItemsController"]

    def test_explicit_controllers_list(self, project, caplog):
        write_module(project, "explicit.py", '''
            from adorn import Controller, GET


            class PublicController(Controller):
                prefix = "/public"

                @GET("/")
                def index(self):
                    return {}


            class InternalController(Controller):
                prefix = "/internal"

                @GET("/")
                def index(self):
                    return {}


            controllers = [PublicController]
        ''')
        module = load_entry("explicit.py", project)
        assert [c.__name__ for c in discover_controllers(module)] == ["PublicController"]

        with caplog.at_level(logging.WARNING):
            result = build_manifest("explicit.py", cwd=project, use_cache=False)
        assert [r.full_path for r in result.routes] == ["/public"]
        assert "InternalController" in caplog.text

    def test_explicit_list_rejects_non_controllers(self, project):
        write_module(project, "wrong.py", "controllers = [object]\n")
        module = load_entry("wrong.py", project)
        with pytest.raises(EntryModuleError, match="not a controller class"):
            discover_controllers(module)


# ============================================================================
# Build
# ============================================================================

class TestBuild:

    def test_routes_and_manifest(self, project):
        result = build_manifest("app.py", cwd=project, use_cache=False)
        assert result.cache is None
        assert not result.from_cache
        assert [(r.http_method, r.full_path) for r in result.routes] == [
            ("GET", "/items/{id}"),
            ("GET", "/items"),
            ("POST", "/items"),
            ("DELETE", "/items/{id}"),
        ]
        assert result.inputs == [str((project / "app.py").resolve())]
        assert {r["operationId"] for r in result.manifest["routes"]} == {
            "Items_get_item", "Items_list_items", "Items_create", "Items_remove",
        }
        assert not (project / ".adorn").exists()

    def test_config_mode_is_collector_default(self, project):
        result = build_manifest("app.py", cwd=project, use_cache=False,
                                config=AdornConfig(instantiation_mode="singleton"))
        assert {r.instantiation_mode for r in result.routes} == {"singleton"}

    def test_freeze_routes(self, project):
        registry = freeze_routes(build_manifest("app.py", cwd=project, use_cache=False).routes)
        assert registry.state is RegistryState.FROZEN
        assert registry.match("GET", "/items/3").params == {"id": "3"}

    def test_controller_with_base_in_sibling_module(self, project):
        write_module(project, "catalog_base.py", '''
            from adorn import Controller, GET


            class CatalogBase(Controller):
                @GET("/ping")
                async def ping(self):
                    return "pong"
        ''')
        write_module(project, "shop.py", '''
            from adorn import GET

            from catalog_base import CatalogBase


            class ShopController(CatalogBase):
                prefix = "/shop"

                @GET("/{item_id}")
                async def fetch(self, item_id: int):
                    return {"id": item_id}


            controllers = [ShopController]
        ''')
        result = build_manifest("shop.py", cwd=project)
        assert [(r.http_method, r.full_path) for r in result.routes] == [
            ("GET", "/shop/ping"),
            ("GET", "/shop/{item_id}"),
        ]
        assert result.inputs == sorted(
            str((project / name).resolve()) for name in ("catalog_base.py", "shop.py")
        )

    def test_render_is_stable(self, project):
        first = build_manifest("app.py", cwd=project, use_cache=False).manifest
        second = build_manifest("app.py", cwd=project, use_cache=False).manifest
        assert render_manifest(first) == render_manifest(second)
        assert render_manifest(first).startswith("{\n")


# ============================================================================
# Cache
# ============================================================================

class TestCache:

    def test_cold_build_writes_cache(self, project):
        result = build_manifest("app.py", cwd=project)
        assert result.cache == StaleResult(True, "missing-manifest")

        cache_dir = project / ".adorn"
        for name in (CACHE_FILE, ANALYSIS_FILE, MANIFEST_FILE):
            assert (cache_dir / name).is_file()
        assert read_manifest(cache_dir) == result.manifest
        assert cached_inputs(cache_dir) == result.inputs
        assert len(read_analysis(cache_dir)) == 4

    def test_warm_build_reuses_analysis(self, project):
        cold = build_manifest("app.py", cwd=project)
        warm = build_manifest("app.py", cwd=project)
        assert warm.from_cache
        assert warm.cache.reason == "up-to-date"
        assert render_manifest(warm.manifest) == render_manifest(cold.manifest)

    def test_custom_out_dir(self, project):
        build_manifest("app.py", cwd=project, out_dir="build/cache")
        assert (project / "build" / "cache" / CACHE_FILE).is_file()
        assert build_manifest("app.py", cwd=project, out_dir="build/cache").from_cache

    def test_input_updated(self, project):
        build_manifest("app.py", cwd=project)
        _touch_later(project / "app.py")
        result = build_manifest("app.py", cwd=project)
        assert result.cache.reason == "input-updated"
        assert build_manifest("app.py", cwd=project).from_cache

    def test_config_updated(self, project):
        build_manifest("app.py", cwd=project)
        (project / "pyproject.toml").write_text("[project]\nname = 'shop'\n", encoding="utf-8")
        assert is_stale(project / ".adorn", root=project).reason == "config-updated"
        assert build_manifest("app.py", cwd=project).cache.reason == "config-updated"

    def test_lockfile_appeared(self, project):
        build_manifest("app.py", cwd=project)
        (project / "poetry.lock").write_text("", encoding="utf-8")
        assert is_stale(project / ".adorn", root=project).reason == "lockfile-updated"

    def test_lockfile_updated(self, project):
        (project / "uv.lock").write_text("", encoding="utf-8")
        build_manifest("app.py", cwd=project)
        _touch_later(project / "uv.lock")
        assert is_stale(project / ".adorn", root=project).reason == "lockfile-updated"

    def test_corrupt_cache(self, project):
        build_manifest("app.py", cwd=project)
        (project / ".adorn" / CACHE_FILE).write_text("{not json", encoding="utf-8")
        assert is_stale(project / ".adorn", root=project).reason == "missing-cache"

    def test_missing_analysis(self, project):
        build_manifest("app.py", cwd=project)
        (project / ".adorn" / ANALYSIS_FILE).unlink()
        assert build_manifest("app.py", cwd=project).cache.reason == "missing-analysis"

    def test_malformed_analysis(self, project):
        build_manifest("app.py", cwd=project)
        (project / ".adorn" / ANALYSIS_FILE).write_text('[{"class": "ItemsController"}, 3]', encoding="utf-8")
        assert read_analysis(project / ".adorn") is None
        result = build_manifest("app.py", cwd=project)
        assert result.cache.reason == "missing-analysis"
        assert len(result.routes) == 4

    def test_project_moved(self, project, tmp_path_factory):
        build_manifest("app.py", cwd=project)
        other = tmp_path_factory.mktemp("elsewhere")
        assert is_stale(project / ".adorn", root=other).reason == "project-changed"

    def test_stale_result_truthiness(self):
        assert StaleResult(True, "missing-manifest")
        assert not StaleResult(False, "up-to-date")
