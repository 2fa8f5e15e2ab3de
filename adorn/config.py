"""
Config system - layered configuration for the manifest build and the ASGI app.

Merge order (later overrides earlier):
1. Defaults (AdornConfig field defaults)
2. adorn.json / adorn.yaml in the project root
3. .env file (ADORN_* keys only)
4. Environment variables (ADORN_* prefix)
5. Manual overrides
"""

import json
import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union, get_args, get_origin

import yaml
from dotenv import dotenv_values

from .faults import ConfigInvalidFault


logger = logging.getLogger("adorn.config")

CONFIG_FILES = ("adorn.json", "adorn.yaml", "adorn.yml")
ENV_PREFIX = "ADORN_"
INSTANTIATION_MODES = ("per_request", "singleton")


@dataclass
class AdornConfig:
    """
    Typed view of the merged configuration.

    Attributes:
        openapi_title: ``info.title`` of the generated document
        openapi_version: ``info.version`` of the generated document
        openapi_description: ``info.description``
        openapi_json_path: URL the OpenAPI JSON is served from
        docs_path: URL the Swagger UI page is served from
        cache_dir: Directory of the build cache
        instantiation_mode: Default controller instantiation mode
        schema_provider: "native" or "pydantic"
        include_error_detail: Put the exception class name in 500 bodies
    """
    openapi_title: str = "Adorn API"
    openapi_version: str = "1.0.0"
    openapi_description: str = ""
    openapi_json_path: str = "/openapi.json"
    docs_path: str = "/docs"
    cache_dir: str = ".adorn"
    instantiation_mode: str = "per_request"
    schema_provider: str = "native"
    include_error_detail: bool = False
    servers: List[Dict[str, str]] = field(default_factory=list)

    def __post_init__(self):
        if self.instantiation_mode not in INSTANTIATION_MODES:
            raise ConfigInvalidFault(
                "instantiation_mode",
                f"expected one of {', '.join(INSTANTIATION_MODES)}, got {self.instantiation_mode!r}",
            )
        if self.schema_provider not in ("native", "pydantic"):
            raise ConfigInvalidFault(
                "schema_provider",
                f"expected 'native' or 'pydantic', got {self.schema_provider!r}",
            )


class ConfigLoader:
    """
    Collects raw settings from every source into one nested mapping.

        config = ConfigLoader.load(root=".").to_config()
    """

    def __init__(self, env_prefix: str = ENV_PREFIX):
        self.env_prefix = env_prefix
        self.config_data: Dict[str, Any] = {}

    @classmethod
    def load(
        cls,
        root: Union[str, Path, None] = None,
        *,
        paths: Optional[List[str]] = None,
        env_prefix: str = ENV_PREFIX,
        env_file: Optional[str] = ".env",
        environ: Optional[Dict[str, str]] = None,
        overrides: Optional[Dict[str, Any]] = None,
    ) -> "ConfigLoader":
        """
        Read every source under ``root`` in precedence order.

        Args:
            root: Project root, defaults to the working directory
            paths: Files to read instead of the first existing CONFIG_FILES entry
            env_prefix: Only variables starting with this are considered
            env_file: Dotenv file under ``root``; ``None`` skips it
            environ: Stands in for ``os.environ``
            overrides: Applied last
        """
        loader = cls(env_prefix=env_prefix)
        base = Path.cwd() if root is None else Path(root)

        if paths is None:
            paths = next(([name] for name in CONFIG_FILES if (base / name).is_file()), [])
        for name in paths:
            loader.update(_read_file(base / name))

        if env_file and (base / env_file).is_file():
            loader.update_from_env(dotenv_values(base / env_file))
        loader.update_from_env(os.environ if environ is None else environ)

        loader.update(overrides or {})
        return loader

    def update(self, data: Dict[str, Any]) -> None:
        _deep_merge(self.config_data, data)

    def update_from_env(self, environ: Mapping[str, Optional[str]]) -> None:
        """``ADORN_OPENAPI__TITLE`` lands at ``openapi.title``."""
        for name, raw in environ.items():
            if raw is None or not name.startswith(self.env_prefix):
                continue
            *parents, leaf = name[len(self.env_prefix):].lower().split("__")
            node = self.config_data
            for part in parents:
                if not isinstance(node.get(part), dict):
                    node[part] = {}
                node = node[part]
            node[leaf] = _env_scalar(raw)

    def get(self, path: str, default: Any = None) -> Any:
        node: Any = self.config_data
        for part in path.split("."):
            if not isinstance(node, dict) or part not in node:
                return default
            node = node[part]
        return node

    def to_dict(self) -> Dict[str, Any]:
        return dict(self.config_data)

    def to_config(self) -> AdornConfig:
        """
        Build the typed config.

        A nested ``openapi`` section is accepted as an alternative to the
        flat ``openapi_*`` keys (``openapi.title`` == ``openapi_title``).

        Raises:
            ConfigInvalidFault: a value has the wrong type
        """
        flat = {k: v for k, v in self.config_data.items() if not isinstance(v, dict)}
        for key, value in (self.config_data.get("openapi") or {}).items():
            name = key if key in ("openapi_json_path", "docs_path", "servers") else f"openapi_{key}"
            flat.setdefault(name, value)

        kwargs: Dict[str, Any] = {}
        for f in fields(AdornConfig):
            if f.name not in flat:
                continue
            value = flat[f.name]
            if f.type is str and isinstance(value, (int, float)) and not isinstance(value, bool):
                # YAML reads `version: 2` as an int
                value = str(value)
            if not _check_type(value, f.type):
                raise ConfigInvalidFault(
                    f.name, f"expected {getattr(f.type, '__name__', f.type)}, got {type(value).__name__}"
                )
            kwargs[f.name] = value
        return AdornConfig(**kwargs)


def _read_file(path: Path) -> Dict[str, Any]:
    if not path.is_file():
        return {}
    text = path.read_text(encoding="utf-8")
    data = json.loads(text) if path.suffix == ".json" else yaml.safe_load(text)
    if not data:
        return {}
    if not isinstance(data, dict):
        raise ConfigInvalidFault(str(path), "top level must be a mapping")
    logger.debug("Loaded config from %s", path)
    return data


def _deep_merge(target: Dict[str, Any], source: Dict[str, Any]) -> None:
    for key, value in source.items():
        current = target.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            _deep_merge(current, value)
        else:
            target[key] = value


def _env_scalar(raw: str) -> Any:
    """Booleans, integers and JSON arrays/objects are decoded; the rest stays text."""
    lowered = raw.strip().lower()
    if lowered in ("true", "yes", "on"):
        return True
    if lowered in ("false", "no", "off"):
        return False
    if lowered.lstrip("-").isdigit():
        return int(lowered)
    if raw.lstrip().startswith(("{", "[")):
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Environment value %r is not valid JSON, keeping it as text", raw)
    return raw


def _check_type(value: Any, expected: Any) -> bool:
    """Basic type checking."""
    origin = get_origin(expected)
    if origin is Union:
        return value is None or any(_check_type(value, a) for a in get_args(expected) if a is not type(None))
    if origin:
        return isinstance(value, origin)
    if expected is str:
        return isinstance(value, str)
    if expected is bool:
        return isinstance(value, bool)
    try:
        return isinstance(value, expected)
    except TypeError:
        return True


def load_config(root: Union[str, Path, None] = None, **kwargs: Any) -> AdornConfig:
    """Shortcut for ``ConfigLoader.load(root, **kwargs).to_config()``."""
    return ConfigLoader.load(root, **kwargs).to_config()
