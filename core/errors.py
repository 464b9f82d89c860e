"""Error taxonomy for service orchestration."""

from __future__ import annotations

from typing import Sequence


class OrchestratorError(Exception):
    """Base class for all orchestration failures."""


class ConfigurationError(OrchestratorError):
    """Invalid service declarations, detected before anything starts."""

    def __init__(self, message: str, *, service: str | None = None) -> None:
        super().__init__(message)
        self.service = service


class CyclicDependencyError(ConfigurationError):
    """The dependency graph contains a cycle."""

    def __init__(self, cycle: Sequence[str]) -> None:
        self.cycle = list(cycle)
        super().__init__(
            f"Cyclic dependency detected: {' -> '.join(self.cycle)}",
            service=self.cycle[0] if self.cycle else None,
        )


class ProbeError(OrchestratorError):
    """A single health probe attempt failed at the protocol level."""

    def __init__(self, message: str, *, service: str | None = None) -> None:
        super().__init__(message)
        self.service = service


class ServiceTimeoutError(OrchestratorError):
    """A service did not become healthy within its wait budget."""

    def __init__(self, service: str, max_wait_s: float, attempts: int) -> None:
        super().__init__(
            f"{service} did not become healthy within {max_wait_s:.0f}s ({attempts} probes)"
        )
        self.service = service
        self.max_wait_s = max_wait_s
        self.attempts = attempts


class RunnerError(OrchestratorError):
    """Invoking a service's start/stop capability failed."""

    def __init__(self, message: str, *, service: str | None = None) -> None:
        super().__init__(message)
        self.service = service


class PreconditionViolated(OrchestratorError):
    """An operation was attempted while its precondition does not hold."""

    def __init__(self, message: str, *, services: Sequence[str] = ()) -> None:
        super().__init__(message)
        self.services = list(services)


class PartialStopFailure(OrchestratorError):
    """One or more services failed to stop; siblings were still stopped."""

    def __init__(self, failures: dict[str, str]) -> None:
        self.failures = dict(failures)
        names = ", ".join(sorted(self.failures))
        super().__init__(f"Failed to stop: {names}")

    @property
    def services(self) -> list[str]:
        return sorted(self.failures)


class SnapshotError(OrchestratorError):
    """A snapshot could not be created or restored."""


class SnapshotNotFound(SnapshotError):
    """The requested snapshot id does not exist in the store."""

    def __init__(self, snapshot_id: str) -> None:
        super().__init__(f"Snapshot not found: {snapshot_id}")
        self.snapshot_id = snapshot_id
