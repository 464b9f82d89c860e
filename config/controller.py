"""Configuration controller for YAML-based settings."""

from __future__ import annotations

import copy
from dataclasses import dataclass
import os
from pathlib import Path
from typing import Any

import yaml

from core.errors import ConfigurationError


DEFAULT_SERVICES: list[dict[str, Any]] = [
    {
        "name": "vrag-search",
        "port": 8002,
        "health_path": "/health",
        "depends_on": [],
        "poll_interval_s": 5.0,
        "max_wait_s": 300.0,
        "volumes": ["corpus", "models", "data"],
    },
    {
        "name": "vrag-vlm",
        "port": 8001,
        "health_path": "/health",
        "depends_on": ["vrag-search"],
        "poll_interval_s": 10.0,
        "max_wait_s": 300.0,
        "volumes": ["models", "data"],
    },
    {
        "name": "vrag-demo",
        "port": 8501,
        "health_path": "/_stcore/health",
        "depends_on": ["vrag-search", "vrag-vlm"],
        "poll_interval_s": 5.0,
        "max_wait_s": 120.0,
        "volumes": ["corpus", "models", "data"],
    },
]

_LEGACY_PORT_KEYS = {
    "search_port": "vrag-search",
    "vlm_port": "vrag-vlm",
    "streamlit_port": "vrag-demo",
}


def _coerce(value: Any, kind: type, key: str) -> Any:
    try:
        return kind(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{key} must be {kind.__name__}, got {value!r}") from None


def _section(config: dict[str, Any], key: str) -> dict[str, Any]:
    value = config.get(key) or {}
    if not isinstance(value, dict):
        raise ConfigurationError(f"{key} must be a mapping, got {value!r}")
    return dict(value)


@dataclass(frozen=True)
class ConfigPaths:
    """Filesystem paths for configuration files."""

    config_dir: Path
    config_file: Path
    override_file: Path


class ConfigController:
    """Singleton controller for loading and updating configuration."""

    _instance: "ConfigController | None" = None

    def __init__(self, config_file: str = "default.yaml", config_dir: Path | None = None) -> None:
        if ConfigController._instance is not None:
            raise RuntimeError("You cannot create another ConfigController class")

        if config_dir is None:
            config_dir = Path(os.getenv("VRAGCTL_CONFIG_DIR", "config"))
        self.paths = ConfigPaths(
            config_dir=config_dir,
            config_file=config_dir / config_file,
            override_file=config_dir / "override.yaml",
        )
        self.config: dict[str, Any] = {}
        self.load_config()

    @classmethod
    def get_instance(cls) -> "ConfigController":
        """Return the singleton instance of the controller."""

        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    def load_config(self) -> None:
        """Load configuration from default and override YAML files."""

        config = self._read_yaml(self.paths.config_file)

        if self.paths.override_file.exists():
            override_config = self._read_yaml(self.paths.override_file)
            if override_config:
                config = self._deep_merge(config, override_config)

        self.config = self._normalize_config(config)

    def get_config(self) -> dict[str, Any]:
        """Return the currently loaded configuration."""

        return copy.deepcopy(self.config)

    def _read_yaml(self, path: Path) -> dict[str, Any]:
        if not path.exists():
            return {}
        with path.open("r", encoding="utf-8") as file:
            data = yaml.safe_load(file) or {}
        if not isinstance(data, dict):
            raise ConfigurationError(f"{path.name} must contain a mapping at top level")
        return data

    def _deep_merge(self, base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
        """Deep merge dictionaries, overriding base values with override values."""

        merged = dict(base)
        for key, value in override.items():
            if (
                key in merged
                and isinstance(merged[key], dict)
                and isinstance(value, dict)
            ):
                merged[key] = self._deep_merge(merged[key], value)
            else:
                merged[key] = value
        return merged

    def _normalize_config(self, config: dict[str, Any]) -> dict[str, Any]:
        """Fill section defaults and fold legacy flat keys into service blocks."""

        normalized = dict(config)
        normalized["logging_level"] = str(normalized.get("logging_level", "INFO"))
        normalized["file_logging_enabled"] = bool(normalized.get("file_logging_enabled", True))

        compose_cfg = _section(normalized, "compose")
        compose_cfg["command"] = str(compose_cfg.get("command", "docker compose"))
        compose_cfg["file"] = str(compose_cfg.get("file", "docker-compose.yml"))
        compose_cfg["project_name"] = str(compose_cfg.get("project_name", "vrag"))
        normalized["compose"] = compose_cfg

        storage_cfg = _section(normalized, "storage")
        storage_cfg["var_dir"] = str(storage_cfg.get("var_dir", normalized.get("var_dir", "./var/")))
        storage_cfg["log_dir"] = str(storage_cfg.get("log_dir", normalized.get("log_dir", "./log/")))
        normalized["storage"] = storage_cfg

        snapshots_cfg = _section(normalized, "snapshots")
        snapshots_cfg["store_dir"] = str(
            snapshots_cfg.get("store_dir", normalized.get("backup_dir", "./backups/"))
        )
        snapshots_cfg["directories"] = _section(snapshots_cfg, "directories") or {
            "corpus": "search_engine/corpus",
            "models": "models",
            "data": "data",
        }
        normalized["snapshots"] = snapshots_cfg

        corpus_cfg = _section(normalized, "corpus")
        corpus_cfg["pdf_dir"] = str(corpus_cfg.get("pdf_dir", "search_engine/corpus/pdf"))
        corpus_cfg["img_dir"] = str(corpus_cfg.get("img_dir", "search_engine/corpus/img"))
        corpus_cfg["setup_service"] = str(corpus_cfg.get("setup_service", "vrag-setup"))
        corpus_cfg["setup_profile"] = str(corpus_cfg.get("setup_profile", "setup"))
        normalized["corpus"] = corpus_cfg

        health_cfg = _section(normalized, "health")
        health_cfg["host"] = str(health_cfg.get("host", "localhost"))
        health_cfg["probe_timeout_s"] = _coerce(
            health_cfg.get("probe_timeout_s", normalized.get("probe_timeout_s", 10.0)),
            float,
            "health.probe_timeout_s",
        )
        normalized["health"] = health_cfg

        status_cfg = _section(normalized, "status")
        status_cfg["log_tail"] = _coerce(status_cfg.get("log_tail", 20), int, "status.log_tail")
        normalized["status"] = status_cfg

        services = normalized.get("services")
        if services is None:
            services = copy.deepcopy(DEFAULT_SERVICES)
        elif isinstance(services, list):
            services = [dict(entry) if isinstance(entry, dict) else entry for entry in services]

        if isinstance(services, list):
            legacy_timeout = normalized.get("timeout_s")
            for entry in services:
                if not isinstance(entry, dict):
                    continue
                for legacy_key, service_name in _LEGACY_PORT_KEYS.items():
                    if legacy_key in normalized and entry.get("name") == service_name:
                        entry["port"] = _coerce(normalized[legacy_key], int, legacy_key)
                if legacy_timeout is not None and "max_wait_s" not in entry:
                    entry["max_wait_s"] = _coerce(legacy_timeout, float, "timeout_s")
        normalized["services"] = services
        return normalized
