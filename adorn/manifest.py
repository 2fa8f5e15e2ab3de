"""
Manifest build pipeline.

    entry module -> controllers -> MetadataCollector ─┐
    controller source files -> StaticRouteAnalyzer ───┴─> ManifestBuilder

The build is a boot barrier: it either yields the full route list and
manifest or raises. Static analysis results are cached in the output
directory and reused while nothing they depend on has changed.
"""

import importlib.util
import inspect
import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path
from types import ModuleType
from typing import Any, Dict, Iterable, List, Optional, Union

from .cache import StaleResult, cached_inputs, is_stale, read_analysis, write_cache
from .config import AdornConfig
from .controller.analyzer import RouteMatch, analyze_files
from .controller.collector import MetadataCollector
from .controller.compiler import ManifestBuilder
from .controller.base import Controller
from .controller.decorators import ROUTE_ATTR, is_controller_class
from .controller.metadata import RouteDefinition
from .controller.openapi import OpenAPIConfig, SchemaGenerator
from .controller.router import RouteRegistry
from .faults import Fault, FaultDomain
from .response import dumps
from .schema import NativeSchemaProvider, PydanticSchemaProvider, SchemaProvider


logger = logging.getLogger("adorn.manifest")


class EntryModuleError(Fault):
    """The entry module cannot be found or fails to import."""

    def __init__(self, entry: str, reason: str, code: str = "ENTRY_MODULE"):
        super().__init__(
            code=code,
            message=f"Cannot load entry module {entry}: {reason}",
            domain=FaultDomain.ANALYSIS,
            metadata={"entry": entry},
        )


@dataclass
class BuildResult:
    """
    Outcome of ``build_manifest``.

    Attributes:
        routes: Canonical route definitions, in controller registration order
        manifest: JSON-ready manifest
        inputs: Source files the static analysis covered
        cache: Staleness verdict, ``None`` when caching was disabled
    """
    routes: List[RouteDefinition]
    manifest: Dict[str, Any]
    inputs: List[str] = field(default_factory=list)
    cache: Optional[StaleResult] = None

    @property
    def from_cache(self) -> bool:
        return self.cache is not None and not self.cache.stale


# ============================================================================
# Entry module
# ============================================================================

def load_entry(entry: Union[str, Path], cwd: Union[str, Path, None] = None) -> ModuleType:
    """
    Import the entry module by file path (relative paths resolve against ``cwd``).

    The module's directory is put on ``sys.path`` so it can import its
    siblings, and the module is registered in ``sys.modules`` so type hints
    of its classes resolve.

    Raises:
        EntryModuleError: missing file or import failure
    """
    base = Path(cwd) if cwd is not None else Path.cwd()
    path = Path(entry)
    if not path.is_absolute():
        path = base / path
    if path.is_dir():
        path = path / "__init__.py"
    if not path.is_file():
        raise EntryModuleError(str(entry), "file not found", code="ENTRY_NOT_FOUND")

    path = path.resolve()
    name = path.parent.name if path.name == "__init__.py" else path.stem
    directory = str(path.parent.parent if path.name == "__init__.py" else path.parent)
    if directory not in sys.path:
        sys.path.insert(0, directory)

    spec = importlib.util.spec_from_file_location(name, path)
    if spec is None or spec.loader is None:
        raise EntryModuleError(str(entry), "not a Python module", code="ENTRY_NOT_FOUND")
    module = importlib.util.module_from_spec(spec)
    sys.modules[name] = module
    try:
        spec.loader.exec_module(module)
    except Exception as e:
        sys.modules.pop(name, None)
        raise EntryModuleError(str(entry), f"{type(e).__name__}: {e}", code="ENTRY_IMPORT_FAILED") from e
    logger.debug("Loaded entry module %s from %s", name, path)
    return module


def discover_controllers(module: ModuleType) -> List[type]:
    """
    Controllers exposed by the entry module.

    An explicit ``controllers`` list wins; otherwise every controller class
    reachable from the module's namespace is used, in definition order.
    """
    explicit = getattr(module, "controllers", None)
    candidates: Iterable[Any] = explicit if explicit is not None else vars(module).values()

    found: List[type] = []
    for obj in candidates:
        if is_controller_class(obj) and obj not in found:
            found.append(obj)
        elif explicit is not None:
            raise EntryModuleError(module.__name__, f"{obj!r} in 'controllers' is not a controller class")
    return found


def _source_file(cls: type) -> Optional[str]:
    try:
        source = inspect.getsourcefile(cls)
    except TypeError:
        return None
    return str(Path(source).resolve()) if source else None


def source_files(controllers: Iterable[type]) -> List[str]:
    """
    Files the static analysis must read for ``controllers``.

    Besides each controller's own module this includes the modules of its
    bases that are controllers or declare route methods.
    """
    files = set()
    for cls in controllers:
        for klass in cls.__mro__:
            if klass in (Controller, object):
                continue
            declares_routes = any(hasattr(attr, ROUTE_ATTR) for attr in vars(klass).values())
            if klass is cls or is_controller_class(klass) or declares_routes:
                source = _source_file(klass)
                if source:
                    files.add(source)
    return sorted(files)


# ============================================================================
# Build
# ============================================================================

def build_manifest(
    entry: Union[str, Path],
    *,
    cwd: Union[str, Path, None] = None,
    out_dir: Union[str, Path, None] = None,
    use_cache: bool = True,
    config: Optional[AdornConfig] = None,
    collector: Optional[MetadataCollector] = None,
) -> BuildResult:
    """
    Run the whole build.

    Args:
        entry: Path of the entry module
        cwd: Project root (defaults to the working directory)
        out_dir: Cache directory, relative to ``cwd`` (default: ``config.cache_dir``)
        use_cache: Reuse and refresh the static analysis cache
        config: Build configuration (defaults when omitted)
        collector: Collector to register controllers into (a fresh one by default)

    Raises:
        EntryModuleError, MissingMetadataError, AnalyzerError
    """
    config = config or AdornConfig()
    root = Path(cwd) if cwd is not None else Path.cwd()
    module = load_entry(entry, root)
    controllers = discover_controllers(module)
    if not controllers:
        logger.warning("Entry module %s exposes no controllers", entry)

    collector = collector or MetadataCollector(config.instantiation_mode)
    for cls in controllers:
        collector.register_controller(cls)

    inputs = source_files(controllers)

    cache_dir = root / (out_dir if out_dir is not None else config.cache_dir)
    verdict: Optional[StaleResult] = None
    matches: Optional[List[RouteMatch]] = None
    if use_cache:
        verdict = is_stale(cache_dir, root=root)
        if not verdict.stale and cached_inputs(cache_dir) != inputs:
            verdict = StaleResult(True, "inputs-changed")
        if not verdict.stale:
            matches = read_analysis(cache_dir)
            if matches is None:
                verdict = StaleResult(True, "missing-analysis")
        logger.debug("Build cache: %s%s", verdict.reason, f" ({verdict.detail})" if verdict.detail else "")

    if matches is None:
        matches = analyze_files(inputs)

    builder = ManifestBuilder()
    routes = builder.build(collector.definitions(), matches)
    manifest = builder.to_manifest(routes)

    if verdict is not None and verdict.stale:
        write_cache(cache_dir, root=root, inputs=inputs, matches=matches, manifest=manifest)

    return BuildResult(routes=routes, manifest=manifest, inputs=inputs, cache=verdict)


def render_manifest(manifest: Dict[str, Any]) -> str:
    """Indented JSON with sorted keys; identical input gives identical text."""
    return dumps(manifest, indent=True, sort_keys=True).decode("utf-8")


def freeze_routes(routes: Iterable[RouteDefinition]) -> RouteRegistry:
    """Registry holding ``routes``, already frozen."""
    registry = RouteRegistry(list(routes))
    registry.freeze()
    return registry


# ============================================================================
# OpenAPI helpers
# ============================================================================

def schema_provider(name: str) -> SchemaProvider:
    if name == "pydantic":
        return PydanticSchemaProvider()
    return NativeSchemaProvider()


def openapi_config(config: AdornConfig) -> OpenAPIConfig:
    return OpenAPIConfig(
        title=config.openapi_title,
        version=config.openapi_version,
        description=config.openapi_description,
        servers=list(config.servers),
        openapi_json_path=config.openapi_json_path,
        docs_path=config.docs_path,
    )


def generate_openapi(routes: Iterable[RouteDefinition], config: Optional[AdornConfig] = None) -> Dict[str, Any]:
    config = config or AdornConfig()
    return SchemaGenerator(schema_provider(config.schema_provider), openapi_config(config)).generate(routes)
