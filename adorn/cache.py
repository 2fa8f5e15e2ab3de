"""
Build cache - skips static analysis when nothing it depends on changed.

Layout of the cache directory::

    cache.json      fingerprint (generator, Python, config files, lockfile, inputs)
    analysis.json   serialized RouteMatch records
    manifest.json   last manifest written by the build

Any difference between the recorded fingerprint and the filesystem makes
the cache stale; ``StaleResult.reason`` says which check failed.
"""

import logging
import os
import platform
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

import orjson

from adorn import __version__
from adorn.controller.analyzer import RouteMatch
from adorn.response import dumps


logger = logging.getLogger("adorn.cache")

CACHE_VERSION = 1
CACHE_FILE = "cache.json"
ANALYSIS_FILE = "analysis.json"
MANIFEST_FILE = "manifest.json"

PROJECT_CONFIG_FILES = ("pyproject.toml", "setup.cfg", "setup.py", "adorn.json", "adorn.yaml")
LOCKFILES = ("poetry.lock", "uv.lock", "Pipfile.lock", "pdm.lock")

# Filesystems report mtimes with float noise
_MTIME_TOLERANCE = 1e-4

PathLike = Union[str, Path]


@dataclass
class StaleResult:
    """Outcome of ``is_stale``; ``reason`` is "up-to-date" when fresh."""
    stale: bool
    reason: str
    detail: Optional[str] = None

    def __bool__(self) -> bool:
        return self.stale


def _mtime(path: PathLike) -> Optional[float]:
    try:
        return os.stat(path).st_mtime
    except OSError:
        return None


def _read_json(path: Path) -> Any:
    try:
        return orjson.loads(path.read_bytes())
    except (OSError, orjson.JSONDecodeError):
        return None


def _abs(path: PathLike) -> str:
    return os.path.abspath(os.fspath(path))


def find_lockfile(start: PathLike) -> Optional[Dict[str, Any]]:
    """First lockfile found walking up from ``start``."""
    directory = Path(_abs(start))
    for _ in range(20):
        for name in LOCKFILES:
            candidate = directory / name
            mtime = _mtime(candidate)
            if mtime is not None:
                return {"path": str(candidate), "mtime": mtime}
        if directory.parent == directory:
            break
        directory = directory.parent
    return None


def config_mtimes(root: PathLike) -> Dict[str, float]:
    """Modification times of the project config files that exist under ``root``."""
    out = {}
    for name in PROJECT_CONFIG_FILES:
        path = os.path.join(_abs(root), name)
        mtime = _mtime(path)
        if mtime is not None:
            out[path] = mtime
    return out


def _changed(recorded: Any, current: Optional[float]) -> bool:
    return current is None or not isinstance(recorded, (int, float)) or abs(recorded - current) > _MTIME_TOLERANCE


# ============================================================================
# Read / write
# ============================================================================

def write_cache(
    out_dir: PathLike,
    *,
    root: PathLike,
    inputs: Iterable[PathLike],
    matches: Iterable[RouteMatch],
    manifest: Optional[Dict[str, Any]] = None,
) -> None:
    """
    Record the fingerprint of a build together with its analysis.

    Args:
        out_dir: Cache directory (created if missing)
        root: Project root holding the config files
        inputs: Source files that were analyzed
        matches: Analysis result to reuse on the next warm build
        manifest: Manifest to store next to the cache
    """
    out = Path(out_dir)
    out.mkdir(parents=True, exist_ok=True)

    input_mtimes: Dict[str, float] = {}
    for path in inputs:
        mtime = _mtime(path)
        if mtime is not None:
            input_mtimes[_abs(path)] = mtime

    cache = {
        "cache_version": CACHE_VERSION,
        "generator": {
            "name": "adorn",
            "version": __version__,
            "python": platform.python_version(),
        },
        "project": {
            "root": _abs(root),
            "config_files": config_mtimes(root),
            "lockfile": find_lockfile(root),
        },
        "inputs": input_mtimes,
    }
    (out / ANALYSIS_FILE).write_bytes(dumps([m.to_dict() for m in matches], indent=True))
    if manifest is not None:
        (out / MANIFEST_FILE).write_bytes(dumps(manifest, indent=True, sort_keys=True))
    # Written last: a cache.json on disk implies the other files are complete
    (out / CACHE_FILE).write_bytes(dumps(cache, indent=True, sort_keys=True))
    logger.debug("Wrote build cache to %s (%d input(s))", out, len(input_mtimes))


def read_analysis(out_dir: PathLike) -> Optional[List[RouteMatch]]:
    """Cached RouteMatches, or ``None`` if unreadable or malformed."""
    data = _read_json(Path(out_dir) / ANALYSIS_FILE)
    if not isinstance(data, list):
        return None
    try:
        return [RouteMatch.from_dict(item) for item in data]
    except (AttributeError, KeyError, TypeError, ValueError) as e:
        logger.debug("Ignoring malformed analysis cache in %s: %r", out_dir, e)
        return None


def read_manifest(out_dir: PathLike) -> Optional[Dict[str, Any]]:
    data = _read_json(Path(out_dir) / MANIFEST_FILE)
    return data if isinstance(data, dict) else None


def cached_inputs(out_dir: PathLike) -> List[str]:
    """Source files recorded by the last build."""
    cache = _read_json(Path(out_dir) / CACHE_FILE)
    if not isinstance(cache, dict):
        return []
    return sorted((cache.get("inputs") or {}).keys())


# ============================================================================
# Staleness
# ============================================================================

def is_stale(out_dir: PathLike, *, root: PathLike) -> StaleResult:
    """
    Decide whether the cached analysis can be reused.

    Checks, in order: manifest and cache present, cache format, generator
    and Python version, project root, config files, lockfile, inputs.
    """
    out = Path(out_dir)
    if not (out / MANIFEST_FILE).exists():
        return StaleResult(True, "missing-manifest")

    cache = _read_json(out / CACHE_FILE)
    if not isinstance(cache, dict):
        return StaleResult(True, "missing-cache")
    if cache.get("cache_version") != CACHE_VERSION:
        return StaleResult(True, "cache-version-changed", str(cache.get("cache_version")))
    if not (out / ANALYSIS_FILE).exists():
        return StaleResult(True, "missing-analysis")

    generator = cache.get("generator") or {}
    if generator.get("version") != __version__:
        return StaleResult(True, "generator-version-changed", f"{generator.get('version')} -> {__version__}")
    if generator.get("python") != platform.python_version():
        return StaleResult(
            True, "python-version-changed", f"{generator.get('python')} -> {platform.python_version()}"
        )

    project = cache.get("project") or {}
    if project.get("root") != _abs(root):
        return StaleResult(True, "project-changed", _abs(root))

    recorded = project.get("config_files") or {}
    current = config_mtimes(root)
    for path in sorted(set(recorded) | set(current)):
        if _changed(recorded.get(path), current.get(path)):
            return StaleResult(True, "config-updated", path)

    lockfile = project.get("lockfile")
    if lockfile and lockfile.get("path"):
        mtime = _mtime(lockfile["path"])
        if mtime is None:
            return StaleResult(True, "lockfile-missing", lockfile["path"])
        if _changed(lockfile.get("mtime"), mtime):
            return StaleResult(True, "lockfile-updated", lockfile["path"])
    elif find_lockfile(root) is not None:
        return StaleResult(True, "lockfile-updated", find_lockfile(root)["path"])

    for path, recorded_mtime in (cache.get("inputs") or {}).items():
        mtime = _mtime(path)
        if mtime is None:
            return StaleResult(True, "input-missing", path)
        if _changed(recorded_mtime, mtime):
            return StaleResult(True, "input-updated", path)

    return StaleResult(False, "up-to-date")
