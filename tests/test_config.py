"""
Layered configuration.
"""

import json

import pytest

from adorn.config import AdornConfig, ConfigLoader, load_config
from adorn.faults import ConfigInvalidFault


@pytest.fixture
def root(tmp_path):
    return tmp_path


class TestDefaults:

    def test_defaults(self, root):
        config = load_config(root, environ={})
        assert config == AdornConfig()
        assert config.openapi_json_path == "/openapi.json"
        assert config.docs_path == "/docs"
        assert config.cache_dir == ".adorn"
        assert config.instantiation_mode == "per_request"
        assert not config.include_error_detail

    def test_invalid_mode(self):
        with pytest.raises(ConfigInvalidFault, match="instantiation_mode"):
            AdornConfig(instantiation_mode="pooled")

    def test_invalid_provider(self):
        with pytest.raises(ConfigInvalidFault, match="schema_provider"):
            AdornConfig(schema_provider="marshmallow")


# ============================================================================
# Sources
# ============================================================================

class TestSources:

    def test_yaml_file(self, root):
        (root / "adorn.yaml").write_text(
            "openapi_title: Shop\ninstantiation_mode: singleton\n", encoding="utf-8"
        )
        config = load_config(root, environ={})
        assert config.openapi_title == "Shop"
        assert config.instantiation_mode == "singleton"

    def test_json_file_wins_over_yaml(self, root):
        (root / "adorn.json").write_text(json.dumps({"docs_path": "/swagger"}), encoding="utf-8")
        (root / "adorn.yaml").write_text("docs_path: /ignored\n", encoding="utf-8")
        assert load_config(root, environ={}).docs_path == "/swagger"

    def test_nested_openapi_section(self, root):
        (root / "adorn.yaml").write_text(
            "openapi:\n  title: Nested\n  version: '3.2'\n  docs_path: /api/docs\n", encoding="utf-8"
        )
        config = load_config(root, environ={})
        assert config.openapi_title == "Nested"
        assert config.openapi_version == "3.2"
        assert config.docs_path == "/api/docs"

    def test_flat_key_wins_over_nested(self, root):
        (root / "adorn.yaml").write_text(
            "openapi_title: Flat\nopenapi:\n  title: Nested\n", encoding="utf-8"
        )
        assert load_config(root, environ={}).openapi_title == "Flat"

    def test_dotenv(self, root):
        (root / ".env").write_text(
            "ADORN_INCLUDE_ERROR_DETAIL=true\nOTHER_KEY=ignored\n", encoding="utf-8"
        )
        loader = ConfigLoader.load(root, environ={})
        assert loader.get("include_error_detail") is True
        assert loader.get("other_key") is None
        assert loader.to_config().include_error_detail

    def test_env_file_disabled(self, root):
        (root / ".env").write_text("ADORN_DOCS_PATH=/env-docs\n", encoding="utf-8")
        assert load_config(root, env_file=None, environ={}).docs_path == "/docs"

    def test_environment_nesting(self, root):
        loader = ConfigLoader.load(root, environ={"ADORN_OPENAPI__TITLE": "From Env", "HOME": "/root"})
        assert loader.get("openapi.title") == "From Env"
        assert loader.to_config().openapi_title == "From Env"

    def test_numbers_become_strings(self, root):
        config = load_config(root, environ={"ADORN_OPENAPI_VERSION": "2.0"})
        assert config.openapi_version == "2.0"

    def test_json_values(self, root):
        config = load_config(root, environ={"ADORN_SERVERS": '[{"url": "https://api.example.com"}]'})
        assert config.servers == [{"url": "https://api.example.com"}]


# ============================================================================
# Precedence
# ============================================================================

class TestPrecedence:

    def test_order(self, root):
        (root / "adorn.yaml").write_text("openapi_title: File\ncache_dir: build\n", encoding="utf-8")
        (root / ".env").write_text("ADORN_OPENAPI_TITLE=Dotenv\nADORN_DOCS_PATH=/d\n", encoding="utf-8")
        config = load_config(
            root,
            environ={"ADORN_OPENAPI_TITLE": "Env"},
            overrides={"docs_path": "/override"},
        )
        assert config.cache_dir == "build"
        assert config.openapi_title == "Env"
        assert config.docs_path == "/override"

    def test_wrong_type(self, root):
        with pytest.raises(ConfigInvalidFault, match="include_error_detail"):
            load_config(root, environ={}, overrides={"include_error_detail": "sometimes"})

    def test_non_mapping_file(self, root):
        (root / "adorn.yaml").write_text("- a\n- b\n", encoding="utf-8")
        with pytest.raises(ConfigInvalidFault, match="top level must be a mapping"):
            load_config(root, environ={})

    def test_get_with_default(self, root):
        loader = ConfigLoader.load(root, environ={})
        assert loader.get("openapi.title", "fallback") == "fallback"
        assert loader.to_dict() == {}
