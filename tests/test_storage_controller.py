"""Tests for run-history persistence."""

from __future__ import annotations

from pathlib import Path

from config.controller import ConfigController
from core.models import OrchestrationRun, RunKind, ServiceOutcome
from storage.controller import StorageController


def _reset_singletons() -> None:
    if StorageController._instance is not None:
        StorageController._instance.close()
    ConfigController._instance = None
    StorageController._instance = None


def _configure(tmp_path: Path, monkeypatch) -> None:
    config_dir = tmp_path / "config"
    config_dir.mkdir(parents=True, exist_ok=True)
    (config_dir / "default.yaml").write_text(
        "\n".join(["storage:", "  var_dir: ./state/", "  log_dir: ./logs/"]),
        encoding="utf-8",
    )
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("VRAGCTL_CONFIG_DIR", raising=False)
    _reset_singletons()


def test_run_ids_increment_across_instances(tmp_path: Path, monkeypatch) -> None:
    _configure(tmp_path, monkeypatch)

    first = StorageController.get_instance().get_current_run_number()
    _reset_singletons()
    second = StorageController.get_instance()

    assert first == 0
    assert second.get_current_run_number() == 1
    info = second.get_storage_info()
    assert info.db_path == Path("logs") / "vragctl_1.db"
    assert info.log_file == Path("logs") / "run_1.log"
    assert (tmp_path / "state" / "current_run").read_text(encoding="utf-8") == "1"
    _reset_singletons()


def test_record_and_fetch_runs(tmp_path: Path, monkeypatch) -> None:
    _configure(tmp_path, monkeypatch)
    storage = StorageController.get_instance()

    start = OrchestrationRun(kind=RunKind.START, order=["a", "b"])
    start.record("a", ServiceOutcome.STARTED)
    start.record("b", ServiceOutcome.FAILED_UNHEALTHY, "timed out")
    stop = OrchestrationRun(kind=RunKind.STOP, order=["a"])
    stop.record("a", ServiceOutcome.STOPPED)
    storage.record_run(start.finish())
    storage.record_run(stop.finish())

    runs = storage.fetch_runs()
    assert [run["kind"] for run in runs] == ["start", "stop"]
    assert runs[0]["success"] is False
    assert runs[0]["results"]["b"] == {
        "outcome": "failed-to-become-healthy",
        "message": "timed out",
        "elapsed_s": 0.0,
    }
    assert [run["kind"] for run in storage.fetch_runs("stop")] == ["stop"]
    _reset_singletons()


def test_events_and_logs(tmp_path: Path, monkeypatch) -> None:
    _configure(tmp_path, monkeypatch)
    storage = StorageController.get_instance()

    storage.add_event("backup", {"id": "backup_20240101_000000", "directories": {}})
    storage.add_log("INFO", "hello")

    assert storage.fetch_events("backup") == [{"id": "backup_20240101_000000", "directories": {}}]
    assert storage.fetch_events("restore") == []
    rows = storage.conn.execute("SELECT log_level, message FROM logs").fetchall()
    assert rows == [("INFO", "hello")]
    _reset_singletons()


def test_log_exception_is_stored(tmp_path: Path, monkeypatch) -> None:
    _configure(tmp_path, monkeypatch)
    storage = StorageController.get_instance()

    try:
        raise RuntimeError("disk full")
    except RuntimeError as exc:
        storage.log_exception(exc)

    rows = storage.conn.execute("SELECT log_level, message FROM logs").fetchall()
    assert len(rows) == 1
    assert rows[0][0] == "ERROR"
    assert "RuntimeError: disk full" in rows[0][1]
    _reset_singletons()
