"""Tests for configuration loading.

Antagon Inc. | CAGE: 17E75
"""

from __future__ import annotations

import os

import pytest

from ideaverdict.config import (
    DEFAULT_VERDICT_BANDS,
    ServiceConfig,
    get_config,
    load_config,
    reset_config,
)
from ideaverdict.verdict import DEFAULT_BAND_TABLE, VerdictCategory


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Remove any ambient configuration from the environment."""
    for name in list(os.environ):
        if name.startswith(("IDEAVERDICT_", "GEMINI_API_KEY")):
            monkeypatch.delenv(name)
    reset_config()
    yield
    reset_config()


class TestDefaults:
    def test_defaults(self):
        config = load_config()

        assert config.gateway.primary_key is None
        assert config.gateway.cooldown_seconds == 2700
        assert config.capability("evaluate").rate_limit == 15
        assert config.capability("chat").rate_limit == 30
        assert config.capability("evaluate").cache_ttl == 600
        assert config.verdict_bands == DEFAULT_VERDICT_BANDS
        assert config.band_table() == DEFAULT_BAND_TABLE

    def test_unknown_capability(self):
        with pytest.raises(KeyError):
            ServiceConfig().capability("summarize")


class TestYamlLoading:
    """Tests for YAML configuration files."""

    def test_sections(self, tmp_path):
        path = tmp_path / "ideaverdict.yaml"
        path.write_text(
            "gateway:\n"
            "  model: gemini-test\n"
            "  cooldown_seconds: 600\n"
            "capabilities:\n"
            "  evaluate:\n"
            "    rate_limit: 5\n"
            "cors:\n"
            "  allowed_origins: [https://app.test]\n"
            "cache_max_entries: 50\n"
        )

        config = load_config(path)

        assert config.gateway.model == "gemini-test"
        assert config.gateway.cooldown_seconds == 600
        assert config.capability("evaluate").rate_limit == 5
        assert config.capability("evaluate").rate_window == 60.0
        assert config.cors.allowed_origins == ["https://app.test"]
        assert config.cache_max_entries == 50

    def test_band_mapping_form(self, tmp_path):
        path = tmp_path / "bands.yaml"
        path.write_text("verdict_bands:\n  BUILD: 80\n  NARROW: 50\n  KILL: 0\n")

        table = load_config(path).band_table()

        assert table.categorize(79) is VerdictCategory.NARROW
        assert table.categorize(80) is VerdictCategory.BUILD

    def test_invalid_bands_fail_at_load(self, tmp_path):
        path = tmp_path / "bands.yaml"
        path.write_text("verdict_bands: '70:BUILD,40:NARROW'\n")

        with pytest.raises(ValueError):
            load_config(path)

    def test_malformed_yaml(self, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text("gateway: [unclosed\n")

        with pytest.raises(ValueError, match="Invalid YAML"):
            load_config(path)

    def test_non_mapping_yaml(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")

        with pytest.raises(ValueError):
            load_config(path)

    def test_missing_file_uses_defaults(self, tmp_path):
        config = load_config(tmp_path / "absent.yaml")
        assert config.capability("structure").rate_limit == 15

    def test_unknown_keys_ignored(self, tmp_path, caplog):
        path = tmp_path / "extra.yaml"
        path.write_text("gateway:\n  colour: blue\nflavour: mint\n")

        load_config(path)

        assert "gateway.colour" in caplog.text
        assert "flavour" in caplog.text

    def test_path_from_environment(self, tmp_path, monkeypatch):
        path = tmp_path / "env.yaml"
        path.write_text("gateway:\n  timeout: 5\n")
        monkeypatch.setenv("IDEAVERDICT_CONFIG", str(path))

        assert load_config().gateway.timeout == 5


class TestEnvOverrides:
    """Tests for environment variable precedence."""

    def test_keys(self, monkeypatch):
        monkeypatch.setenv("GEMINI_API_KEY_PRIMARY", "p-key")
        monkeypatch.setenv("GEMINI_API_KEY_SECONDARY", "s-key")

        config = load_config()

        assert config.gateway.primary_key == "p-key"
        assert config.gateway.secondary_key == "s-key"

    def test_legacy_primary_alias(self, monkeypatch):
        monkeypatch.setenv("GEMINI_API_KEY", "legacy")
        assert load_config().gateway.primary_key == "legacy"

    def test_env_beats_yaml(self, tmp_path, monkeypatch):
        path = tmp_path / "c.yaml"
        path.write_text("capabilities:\n  chat:\n    rate_limit: 10\n")
        monkeypatch.setenv("IDEAVERDICT_CHAT_RATE_LIMIT", "99")

        assert load_config(path).capability("chat").rate_limit == 99

    def test_typed_overrides(self, monkeypatch):
        monkeypatch.setenv("IDEAVERDICT_COOLDOWN_SECONDS", "30")
        monkeypatch.setenv("IDEAVERDICT_EVALUATE_CACHE_TTL", "1.5")
        monkeypatch.setenv("IDEAVERDICT_CORS_ORIGINS", "https://a.test, https://b.test,")

        config = load_config()

        assert config.gateway.cooldown_seconds == 30.0
        assert config.capability("evaluate").cache_ttl == 1.5
        assert config.cors.allowed_origins == ["https://a.test", "https://b.test"]

    def test_invalid_value(self, monkeypatch):
        monkeypatch.setenv("IDEAVERDICT_STRUCTURE_RATE_LIMIT", "lots")

        with pytest.raises(ValueError, match="IDEAVERDICT_STRUCTURE_RATE_LIMIT"):
            load_config()

    def test_invalid_bands(self, monkeypatch):
        monkeypatch.setenv("IDEAVERDICT_VERDICT_BANDS", "70:BUILD,40:NARROW,10:KILL")

        with pytest.raises(ValueError):
            load_config()


class TestGlobalConfig:
    def test_cached_until_reset(self, monkeypatch):
        first = get_config()
        assert get_config() is first

        monkeypatch.setenv("IDEAVERDICT_MODEL", "other-model")
        assert get_config().gateway.model != "other-model"

        reset_config()
        assert get_config().gateway.model == "other-model"
