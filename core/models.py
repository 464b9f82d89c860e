"""Models for service orchestration, health tracking and snapshots."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
import time
from typing import Any, Mapping


class ProbeStatus(str, Enum):
    """Classification of a single readiness check."""

    READY = "ready"
    NOT_READY = "not-ready"
    ERROR = "error"


class PollState(str, Enum):
    """Terminal state of a health polling loop."""

    HEALTHY = "healthy"
    TIMED_OUT = "timed-out"
    ABORTED = "aborted"


class ServiceOutcome(str, Enum):
    """Per-service outcome recorded in an orchestration run."""

    STARTED = "started"
    FAILED_UNHEALTHY = "failed-to-become-healthy"
    FAILED_TO_START = "failed-to-start"
    SKIPPED = "skipped-due-to-dependency-failure"
    ABORTED = "aborted"
    STOPPED = "stopped"
    STOP_FAILED = "stop-failed"
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


class RunKind(str, Enum):
    """Operator command an orchestration run belongs to."""

    START = "start"
    STOP = "stop"
    RESTART = "restart"
    TEST = "test"


_TARGET_OUTCOMES = {
    RunKind.START: ServiceOutcome.STARTED,
    RunKind.RESTART: ServiceOutcome.STARTED,
    RunKind.STOP: ServiceOutcome.STOPPED,
    RunKind.TEST: ServiceOutcome.HEALTHY,
}


@dataclass(frozen=True)
class ServiceSpec:
    """Immutable declaration of one orchestrated service."""

    name: str
    health_url: str
    depends_on: tuple[str, ...] = ()
    poll_interval_s: float = 5.0
    max_wait_s: float = 300.0
    port: int | None = None
    expected_status: frozenset[int] = frozenset({200})
    runner_name: str | None = None
    volumes: tuple[str, ...] = ()

    @property
    def handle(self) -> str:
        """Name the service runner knows this service by."""

        return self.runner_name or self.name


@dataclass(frozen=True)
class HealthCheckResult:
    """Outcome of one probe attempt."""

    service: str
    status: ProbeStatus
    message: str = ""
    latency_ms: int = 0

    @property
    def ready(self) -> bool:
        return self.status is ProbeStatus.READY


@dataclass(frozen=True)
class PollOutcome:
    """Result of waiting for a service to become healthy."""

    service: str
    state: PollState
    attempts: int
    elapsed_s: float
    last_result: HealthCheckResult | None = None

    @property
    def healthy(self) -> bool:
        return self.state is PollState.HEALTHY


@dataclass(frozen=True)
class ServiceResult:
    """Recorded outcome for a single service within a run."""

    name: str
    outcome: ServiceOutcome
    message: str = ""
    elapsed_s: float = 0.0


@dataclass
class OrchestrationRun:
    """One start/stop/test pass over the service graph."""

    kind: RunKind
    order: list[str]
    results: dict[str, ServiceResult] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)
    aborted: bool = False
    started_at: float = field(default_factory=time.time)
    finished_at: float | None = None

    def record(
        self,
        name: str,
        outcome: ServiceOutcome,
        message: str = "",
        elapsed_s: float = 0.0,
    ) -> ServiceResult:
        result = ServiceResult(
            name=name,
            outcome=outcome,
            message=message,
            elapsed_s=elapsed_s,
        )
        self.results[name] = result
        return result

    def outcome_of(self, name: str) -> ServiceOutcome | None:
        result = self.results.get(name)
        return result.outcome if result else None

    def finish(self) -> "OrchestrationRun":
        self.finished_at = time.time()
        return self

    @property
    def target_outcome(self) -> ServiceOutcome:
        return _TARGET_OUTCOMES[self.kind]

    @property
    def success(self) -> bool:
        if self.aborted or self.errors:
            return False
        return all(
            self.outcome_of(name) is self.target_outcome for name in self.order
        )

    def failed_services(self) -> list[str]:
        """Return services that did not reach the run's target outcome."""

        return [
            name for name in self.order if self.outcome_of(name) is not self.target_outcome
        ]

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "order": list(self.order),
            "success": self.success,
            "aborted": self.aborted,
            "errors": list(self.errors),
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "results": {
                name: {
                    "outcome": result.outcome.value,
                    "message": result.message,
                    "elapsed_s": round(result.elapsed_s, 3),
                }
                for name, result in self.results.items()
            },
        }


@dataclass(frozen=True)
class Snapshot:
    """Immutable, timestamp-named copy of persisted directories."""

    snapshot_id: str
    created_at: datetime
    path: Path
    directories: Mapping[str, str] = field(default_factory=dict)

    def to_manifest(self) -> dict[str, Any]:
        return {
            "id": self.snapshot_id,
            "created_at": self.created_at.isoformat(timespec="seconds"),
            "directories": dict(self.directories),
        }

    @classmethod
    def from_manifest(cls, path: Path, manifest: Mapping[str, Any]) -> "Snapshot":
        return cls(
            snapshot_id=str(manifest.get("id") or path.name),
            created_at=datetime.fromisoformat(str(manifest["created_at"])),
            path=path,
            directories={
                str(key): str(value)
                for key, value in (manifest.get("directories") or {}).items()
            },
        )
