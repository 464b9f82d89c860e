"""Tests for config loading, overrides and legacy key mapping."""

from __future__ import annotations

from pathlib import Path

import pytest

from config.controller import DEFAULT_SERVICES, ConfigController
from core.errors import ConfigurationError


def _reset_singletons() -> None:
    ConfigController._instance = None


def _write_config(tmp_path: Path, name: str, lines: list[str]) -> Path:
    config_dir = tmp_path / "config"
    config_dir.mkdir(parents=True, exist_ok=True)
    path = config_dir / name
    path.write_text("\n".join(lines), encoding="utf-8")
    return path


def test_defaults_without_config_files(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("VRAGCTL_CONFIG_DIR", raising=False)
    _reset_singletons()

    cfg = ConfigController.get_instance().get_config()

    assert cfg["logging_level"] == "INFO"
    assert cfg["compose"] == {
        "command": "docker compose",
        "file": "docker-compose.yml",
        "project_name": "vrag",
    }
    assert cfg["snapshots"]["directories"] == {
        "corpus": "search_engine/corpus",
        "models": "models",
        "data": "data",
    }
    assert [entry["name"] for entry in cfg["services"]] == [
        entry["name"] for entry in DEFAULT_SERVICES
    ]
    assert cfg["health"]["probe_timeout_s"] == 10.0
    _reset_singletons()


def test_override_is_deep_merged(tmp_path: Path, monkeypatch) -> None:
    _write_config(
        tmp_path,
        "default.yaml",
        ["compose:", "  file: stack.yml", "  project_name: base", "status:", "  log_tail: 5"],
    )
    _write_config(tmp_path, "override.yaml", ["compose:", "  project_name: staging"])
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("VRAGCTL_CONFIG_DIR", raising=False)
    _reset_singletons()

    cfg = ConfigController.get_instance().get_config()

    assert cfg["compose"]["file"] == "stack.yml"
    assert cfg["compose"]["project_name"] == "staging"
    assert cfg["status"]["log_tail"] == 5
    _reset_singletons()


def test_legacy_port_and_timeout_keys(tmp_path: Path, monkeypatch) -> None:
    _write_config(
        tmp_path,
        "default.yaml",
        ["search_port: 9002", "vlm_port: 9001", "streamlit_port: 9501", "timeout_s: 60"],
    )
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("VRAGCTL_CONFIG_DIR", raising=False)
    _reset_singletons()

    services = {
        entry["name"]: entry for entry in ConfigController.get_instance().get_config()["services"]
    }

    assert services["vrag-search"]["port"] == 9002
    assert services["vrag-vlm"]["port"] == 9001
    assert services["vrag-demo"]["port"] == 9501
    # Explicit per-service budgets win over the flat timeout.
    assert services["vrag-demo"]["max_wait_s"] == 120.0
    _reset_singletons()


def test_legacy_timeout_fills_missing_budgets(tmp_path: Path, monkeypatch) -> None:
    _write_config(
        tmp_path,
        "default.yaml",
        ["timeout_s: 45", "services:", "  - {name: api, port: 8080}"],
    )
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("VRAGCTL_CONFIG_DIR", raising=False)
    _reset_singletons()

    services = ConfigController.get_instance().get_config()["services"]

    assert services == [{"name": "api", "port": 8080, "max_wait_s": 45.0}]
    _reset_singletons()


def test_config_dir_from_environment(tmp_path: Path, monkeypatch) -> None:
    other = tmp_path / "elsewhere"
    other.mkdir()
    (other / "default.yaml").write_text("logging_level: DEBUG\n", encoding="utf-8")
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("VRAGCTL_CONFIG_DIR", str(other))
    _reset_singletons()

    assert ConfigController.get_instance().get_config()["logging_level"] == "DEBUG"
    _reset_singletons()


def test_get_config_returns_copy(tmp_path: Path) -> None:
    _reset_singletons()
    controller = ConfigController(config_dir=tmp_path / "config")

    controller.get_config()["services"].clear()

    assert controller.get_config()["services"]
    _reset_singletons()


@pytest.mark.parametrize(
    ("lines", "key"),
    [
        (["status:", "  log_tail: lots"], "status.log_tail"),
        (["health:", "  probe_timeout_s: soon"], "health.probe_timeout_s"),
        (["search_port: http"], "search_port"),
        (["timeout_s: [1, 2]", "services:", "  - {name: api, port: 1}"], "timeout_s"),
        (["compose: docker"], "compose"),
    ],
)
def test_bad_values_raise_configuration_error(tmp_path: Path, lines: list[str], key: str) -> None:
    _write_config(tmp_path, "default.yaml", lines)
    _reset_singletons()

    with pytest.raises(ConfigurationError, match=key):
        ConfigController(config_dir=tmp_path / "config")


def test_non_mapping_document_is_rejected(tmp_path: Path) -> None:
    _write_config(tmp_path, "override.yaml", ["- just", "- a list"])
    _reset_singletons()

    with pytest.raises(ConfigurationError, match="override.yaml"):
        ConfigController(config_dir=tmp_path / "config")
