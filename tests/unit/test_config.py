"""Tests for configuration loading."""

from pathlib import Path

import pytest

from painel_compras.config import DEFAULT_JWT_SECRET, Config, get_config, reload_config


class TestConfig:
    """Test YAML and environment sources."""

    def test_defaults_without_yaml(self) -> None:
        config = get_config()

        assert config.sankhya["timeout"] == 20.0
        assert config.orders["default_top"] == "107"
        assert config.replenishment["safety_days"] == 5
        assert config.divergences["table"] == "AD_DIVERGENCIA"
        assert config.token_ttl_seconds == 8 * 3600

    def test_yaml_overrides_are_merged(self, tmp_path: Path) -> None:
        config_dir = tmp_path / "custom"
        config_dir.mkdir()
        (config_dir / "settings.yaml").write_text(
            "orders:\n  report_id: 88\nauth:\n  token_ttl_hours: 0.5\n"
        )

        config = Config(config_dir=config_dir)

        assert config.orders["report_id"] == 88
        # untouched keys keep their defaults
        assert config.orders["codnat"] == "70101"
        assert config.token_ttl_seconds == 1800

    def test_empty_yaml(self, tmp_path: Path) -> None:
        (tmp_path / "config" / "settings.yaml").write_text("")
        assert get_config().sankhya["max_retries"] == 2

    def test_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SANKHYA_URL", "http://erp:8180/")
        monkeypatch.setenv("PORT", "8080")
        monkeypatch.setenv("CORS_ORIGIN", "http://a,http://b")
        monkeypatch.setenv("SANKHYA_SERVICE_USER", "MCP")

        config = reload_config()

        assert config.sankhya_url == "http://erp:8180"
        assert config.port == 8080
        assert config.cors_origin == "http://a,http://b"
        assert config.service_user == "MCP"
        assert config.jwt_secret == "test-secret"

    def test_development_secret(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("JWT_SECRET")
        assert reload_config().jwt_secret == DEFAULT_JWT_SECRET

    def test_entity_allowlist(self) -> None:
        config = get_config()
        assert config.is_entity_allowed("CabecalhoNota")
        assert config.is_entity_allowed("ItemNota")
        assert not config.is_entity_allowed("Parceiro")

    def test_singleton(self) -> None:
        assert get_config() is get_config()
        assert reload_config() is get_config()
