"""SQLite-backed storage controller for orchestration run history."""

from __future__ import annotations

from dataclasses import dataclass
import json
import logging
from pathlib import Path
import sqlite3
import threading
import time
import traceback
from typing import Any

from config import ConfigController
from core.models import OrchestrationRun


LOGGER = logging.getLogger("vragctl.storage")


def millis() -> int:
    """Return current time in milliseconds."""

    return int(time.time() * 1000)


@dataclass(frozen=True)
class StorageInfo:
    """Metadata about the current storage run."""

    run_id: int
    run_id_file: Path
    log_dir: Path
    log_file: Path
    db_path: Path


class StorageController:
    """Singleton controller for persistent run history."""

    _instance: "StorageController | None" = None
    _lock = threading.RLock()

    def __init__(self) -> None:
        if StorageController._instance is not None:
            raise RuntimeError("You cannot create another StorageController class")

        self.config_controller = ConfigController.get_instance()
        self.config = self.config_controller.get_config()

        var_dir, log_dir = self._resolve_storage_dirs()
        self.log_dir = log_dir

        self.run_id_file = var_dir / "current_run"
        self.run_id = self.get_next_run_number(var_dir)

        self.db_filename = f"vragctl_{self.run_id}.db"
        self.db_full_file_path = log_dir / self.db_filename

        self.conn = self.connect(log_dir)
        self.initialize_db()
        StorageController._instance = self

    @classmethod
    def get_instance(cls) -> "StorageController":
        """Return the singleton instance of the controller."""

        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    def connect(self, log_dir: Path) -> sqlite3.Connection:
        """Connect to the SQLite database for the current run."""

        log_dir.mkdir(parents=True, exist_ok=True)
        return sqlite3.connect(self.db_full_file_path, check_same_thread=False)

    def initialize_db(self) -> None:
        """Initialize tables for logs, orchestration runs and events."""

        cursor = self.conn.cursor()

        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS logs (
                record_id INTEGER PRIMARY KEY AUTOINCREMENT,
                run_millis INTEGER,
                timestamp DATETIME DEFAULT CURRENT_TIMESTAMP,
                log_level TEXT,
                message TEXT
            )
            """
        )

        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS runs (
                record_id INTEGER PRIMARY KEY AUTOINCREMENT,
                run_millis INTEGER,
                timestamp DATETIME DEFAULT CURRENT_TIMESTAMP,
                kind TEXT,
                success INTEGER,
                data JSON
            )
            """
        )

        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS events (
                record_id INTEGER PRIMARY KEY AUTOINCREMENT,
                run_millis INTEGER,
                timestamp DATETIME DEFAULT CURRENT_TIMESTAMP,
                type TEXT,
                data JSON
            )
            """
        )

        self.conn.commit()

    def close(self) -> None:
        """Close the storage connection."""

        if self.conn:
            self.conn.close()

    def add_log(self, log_level: str, message: str) -> None:
        """Insert a log record into the database."""

        with self._lock:
            with self.conn:
                self.conn.execute(
                    """
                    INSERT INTO logs (run_millis, log_level, message)
                    VALUES (?, ?, ?)
                    """,
                    (millis(), log_level, message),
                )

    def get_next_run_number(self, var_dir: Path) -> int:
        """Return the next run number, persisting to the run-id file."""

        var_dir.mkdir(parents=True, exist_ok=True)

        next_run_number = 0
        if self.run_id_file.is_file():
            current_run_number = self.run_id_file.read_text(encoding="utf-8").strip()
            if current_run_number:
                next_run_number = int(current_run_number) + 1
        self.run_id_file.write_text(str(next_run_number), encoding="utf-8")
        return next_run_number

    def get_current_run_number(self) -> int:
        """Return the current run id."""

        return int(self.run_id)

    def get_log_file_path(self) -> Path:
        """Return the log file path for the current run."""

        return self.log_dir / f"run_{self.run_id}.log"

    def record_run(self, run: OrchestrationRun) -> None:
        """Persist a finished orchestration run."""

        with self._lock:
            try:
                with self.conn:
                    self.conn.execute(
                        """
                        INSERT INTO runs (run_millis, kind, success, data)
                        VALUES (?, ?, ?, ?)
                        """,
                        (millis(), run.kind.value, int(run.success), json.dumps(run.to_dict())),
                    )
            except sqlite3.OperationalError as exc:
                self.log_exception(exc)

    def add_event(self, event_type: str, data: Any) -> None:
        """Persist a structured event such as a snapshot creation."""

        with self._lock:
            try:
                with self.conn:
                    self.conn.execute(
                        """
                        INSERT INTO events (run_millis, type, data)
                        VALUES (?, ?, ?)
                        """,
                        (millis(), event_type, json.dumps(data)),
                    )
            except sqlite3.OperationalError as exc:
                self.log_exception(exc)

    def fetch_runs(self, kind: str | None = None) -> list[dict[str, Any]]:
        """Fetch persisted runs, optionally filtered by kind."""

        cursor = self.conn.cursor()
        if kind is None:
            cursor.execute("SELECT data FROM runs ORDER BY record_id")
        else:
            cursor.execute("SELECT data FROM runs WHERE kind = ? ORDER BY record_id", (kind,))
        return [json.loads(row[0]) for row in cursor.fetchall()]

    def fetch_events(self, event_type: str) -> list[dict[str, Any]]:
        cursor = self.conn.cursor()
        cursor.execute(
            "SELECT data FROM events WHERE type = ? ORDER BY record_id",
            (event_type,),
        )
        return [json.loads(row[0]) for row in cursor.fetchall()]

    def log_exception(self, exc: BaseException) -> None:
        """Log an exception to stderr and the database."""

        LOGGER.exception("Found error (%s)", exc)
        self.add_log("ERROR", traceback.format_exc())

    def get_storage_info(self) -> StorageInfo:
        """Return metadata about the current run storage."""

        return StorageInfo(
            run_id=self.run_id,
            run_id_file=self.run_id_file,
            log_dir=self.log_dir,
            log_file=self.get_log_file_path(),
            db_path=self.db_full_file_path,
        )

    def _resolve_storage_dirs(self) -> tuple[Path, Path]:
        """Resolve storage directories from configuration."""

        storage_config = self.config.get("storage", {})
        var_dir = storage_config.get("var_dir", self.config.get("var_dir", "./var/"))
        log_dir = storage_config.get("log_dir", self.config.get("log_dir", "./log/"))

        return Path(var_dir).expanduser(), Path(log_dir).expanduser()
