"""
Configuration loading for Painel de Compras.

Loads the YAML settings file and environment variables.

Sources, in priority order:
1. Environment variables (SANKHYA_URL, JWT_SECRET, PORT, CORS_ORIGIN, ...)
2. config/settings.yaml (or $PAINEL_CONFIG_DIR/settings.yaml)
3. Built-in defaults
"""

import copy
import logging
import os
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

DEFAULT_JWT_SECRET = "dev-secret-change-me"

DEFAULT_SETTINGS: dict[str, Any] = {
    "sankhya": {
        "timeout": 20.0,
        "max_retries": 2,
        "retry_delay": 1.0,
        "retry_backoff": 2.0,
    },
    "auth": {
        "token_ttl_hours": 8,
        "login_max_attempts": 10,
        "login_window_seconds": 300,
        "enforce_login_limit": True,
        "session_purge_seconds": 300,
    },
    "orders": {
        "codemp": "1",
        "codempnegoc": "1",
        "codcencus": "1030201",
        "serienota": "1",
        "codnat": "70101",
        "codtipvenda": "87",
        "codlocalorig": "1010101",
        "default_top": "107",
        "allowed_tops": ["107", "113"],
        "report_id": 0,
    },
    "replenishment": {
        "safety_days": 5,
        "top": 30,
        "late_days": 5,
        "consumption_window_days": 90,
    },
    "divergences": {
        "table": "AD_DIVERGENCIA",
    },
    "dataset": {
        "allowed_entities": ["CabecalhoNota", "ItemNota"],
    },
}


def _merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge ``override`` into a copy of ``base``."""
    merged = copy.deepcopy(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class Config:
    """Configuration manager for Painel de Compras."""

    def __init__(self, config_dir: Path | None = None):
        """Initialize configuration from the YAML file and environment.

        Args:
            config_dir: Path to config directory. Defaults to
                $PAINEL_CONFIG_DIR or the project config/ directory.
        """
        load_dotenv()

        if config_dir is None:
            env_dir = os.getenv("PAINEL_CONFIG_DIR")
            if env_dir:
                config_dir = Path(env_dir)
            else:
                # __file__ = src/painel_compras/config.py -> project root
                project_root = Path(__file__).parent.parent.parent
                config_dir = project_root / "config"

        self.config_dir = config_dir
        self._settings = _merge(DEFAULT_SETTINGS, self._load_yaml("settings.yaml"))

        if self.jwt_secret == DEFAULT_JWT_SECRET:
            logger.warning("JWT_SECRET not set, using the development secret")

    def _load_yaml(self, filename: str) -> dict[str, Any]:
        """Load a YAML file from the config directory.

        Args:
            filename: Name of the YAML file to load.

        Returns:
            Parsed YAML content, or an empty dict when the file is absent.
        """
        filepath = self.config_dir / filename
        if not filepath.exists():
            return {}

        with filepath.open() as f:
            return yaml.safe_load(f) or {}

    # === Environment ===

    @property
    def sankhya_url(self) -> str:
        """Base URL of the Sankhya server (e.g. http://erp:8180)."""
        return os.getenv("SANKHYA_URL", "").rstrip("/")

    @property
    def jwt_secret(self) -> str:
        return os.getenv("JWT_SECRET", DEFAULT_JWT_SECRET)

    @property
    def port(self) -> int:
        return int(os.getenv("PORT", "3000"))

    @property
    def cors_origin(self) -> str:
        return os.getenv("CORS_ORIGIN", "http://localhost:5173")

    @property
    def service_user(self) -> str:
        """ERP user for the MCP tools (no interactive login there)."""
        return os.getenv("SANKHYA_SERVICE_USER", "")

    @property
    def service_password(self) -> str:
        return os.getenv("SANKHYA_SERVICE_PASSWORD", "")

    # === YAML sections ===

    @property
    def sankhya(self) -> dict[str, Any]:
        return self._settings["sankhya"]

    @property
    def auth(self) -> dict[str, Any]:
        return self._settings["auth"]

    @property
    def orders(self) -> dict[str, Any]:
        return self._settings["orders"]

    @property
    def replenishment(self) -> dict[str, Any]:
        return self._settings["replenishment"]

    @property
    def divergences(self) -> dict[str, Any]:
        return self._settings["divergences"]

    @property
    def dataset(self) -> dict[str, Any]:
        return self._settings["dataset"]

    @property
    def token_ttl_seconds(self) -> int:
        return int(float(self.auth["token_ttl_hours"]) * 3600)

    def is_entity_allowed(self, entity: str) -> bool:
        """Check whether the generic dataset save may touch an entity.

        Args:
            entity: Sankhya entity name (e.g. CabecalhoNota).

        Returns:
            True if the entity is in the configured allowlist.
        """
        return entity in self.dataset.get("allowed_entities", [])


# Global config instance
_config: Config | None = None


def get_config() -> Config:
    """Get the global configuration instance.

    Returns:
        The Config singleton instance.
    """
    global _config
    if _config is None:
        _config = Config()
    return _config


def reload_config() -> Config:
    """Reload configuration from files.

    Returns:
        Fresh Config instance.
    """
    global _config
    _config = Config()
    return _config
