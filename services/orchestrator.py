"""Dependency-ordered service orchestrator with health-check gating."""

from __future__ import annotations

from collections.abc import Callable, Iterable
from pathlib import Path
import threading
import time
from typing import Any, Mapping

from core.errors import PartialStopFailure, PreconditionViolated, RunnerError, ServiceTimeoutError
from core.logging import log_outcome, logger as LOGGER
from core.models import (
    OrchestrationRun,
    PollState,
    RunKind,
    ServiceOutcome,
    ServiceSpec,
    Snapshot,
)
from services.compose_runner import ComposeRunner, ServiceRunner
from services.health_poller import HealthPoller, HealthProbe
from services.health_probes import HttpHealthProbe
from services.service_graph import ServiceGraph
from services.service_loader import load_service_graph
from storage.layout import data_directories
from storage.snapshots import SnapshotManager


RunRecorder = Callable[[OrchestrationRun], None]


class Orchestrator:
    """Walk the service graph, start or stop services, and gate on health.

    Each public operation builds its own :class:`OrchestrationRun`; the
    orchestrator keeps no per-service state between calls. The only shared
    state is the cancellation event, which an operator abort sets.
    """

    def __init__(
        self,
        graph: ServiceGraph,
        runner: ServiceRunner,
        probe: HealthProbe,
        *,
        snapshots: SnapshotManager | None = None,
        data_dirs: Mapping[str, Path] | None = None,
        recorder: RunRecorder | None = None,
        cancel_event: threading.Event | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.graph = graph
        self._runner = runner
        self._probe = probe
        self._cancel_event = cancel_event or threading.Event()
        self._poller = HealthPoller(probe, cancel_event=self._cancel_event, clock=clock)
        self._snapshots = snapshots
        self._data_dirs = dict(data_dirs or {})
        self._recorder = recorder
        self._clock = clock

    @classmethod
    def from_config(
        cls,
        config: Mapping[str, Any],
        *,
        runner: ServiceRunner | None = None,
        probe: HealthProbe | None = None,
        recorder: RunRecorder | None = None,
    ) -> "Orchestrator":
        health_cfg = config.get("health") or {}
        snapshots_cfg = config.get("snapshots") or {}
        return cls(
            load_service_graph(config),
            runner or ComposeRunner.from_config(config),
            probe or HttpHealthProbe(timeout_s=float(health_cfg.get("probe_timeout_s", 10.0))),
            snapshots=SnapshotManager(Path(str(snapshots_cfg.get("store_dir", "./backups/")))),
            data_dirs=data_directories(config),
            recorder=recorder,
        )

    @property
    def runner(self) -> ServiceRunner:
        return self._runner

    @property
    def snapshots(self) -> SnapshotManager:
        if self._snapshots is None:
            raise RuntimeError("Orchestrator was created without a snapshot store")
        return self._snapshots

    def cancel(self) -> None:
        """Abort the in-progress run at the next poll boundary."""

        LOGGER.warning("[Orchestrator] Abort requested")
        self._cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def start(self, graph: ServiceGraph | None = None) -> OrchestrationRun:
        """Start services in dependency order, gating each on health."""

        return self._finish(self._start(graph or self.graph, RunKind.START))

    def stop(self, graph: ServiceGraph | None = None) -> OrchestrationRun:
        """Stop services dependents-first; keeps going past failures."""

        return self._finish(self._stop(graph or self.graph))

    def restart(self, graph: ServiceGraph | None = None) -> OrchestrationRun:
        graph = graph or self.graph
        stop_run = self._stop(graph)
        run = self._start(graph, RunKind.RESTART)
        run.errors.extend(stop_run.errors)
        return self._finish(run)

    def verify(self, graph: ServiceGraph | None = None) -> OrchestrationRun:
        """Probe every service once without starting anything."""

        graph = graph or self.graph
        order = graph.topological_order()
        run = OrchestrationRun(kind=RunKind.TEST, order=[service.name for service in order])
        for service in order:
            result = self._probe.check(service)
            outcome = ServiceOutcome.HEALTHY if result.ready else ServiceOutcome.UNHEALTHY
            message = result.message if result.ready else f"{result.status.value}: {result.message}"
            run.record(service.name, outcome, message, result.latency_ms / 1000.0)
            log_outcome(service.name, outcome.value, message)
        return self._finish(run)

    def backup(self) -> Snapshot:
        """Best-effort backup; services may keep writing while it runs."""

        running = self._running_services(self.graph)
        if running:
            LOGGER.warning(
                "[Orchestrator] Backing up while %s running; snapshot may be inconsistent",
                ", ".join(running),
            )
        return self.snapshots.backup(self._data_dirs)

    def safe_backup(self) -> tuple[Snapshot, OrchestrationRun | None]:
        """Stop services, back up, then start the ones that were running."""

        was_running = self._running_services(self.graph)
        stop_run = self.stop()
        if not stop_run.success:
            raise PreconditionViolated(
                "Services did not stop cleanly; backup not taken",
                services=stop_run.failed_services(),
            )
        try:
            snapshot = self.snapshots.backup(self._data_dirs)
        finally:
            start_run = self.start(self.graph.subgraph(was_running)) if was_running else None
        return snapshot, start_run

    def restore(self, snapshot_id: str) -> Snapshot:
        """Stop every service, then replace data directories from a snapshot."""

        snapshot = self.snapshots.get(snapshot_id)
        stop_run = self.stop()
        still_running = self._running_services(self.graph)
        blocked = sorted(set(still_running) | set(stop_run.failed_services()))
        if blocked:
            raise PreconditionViolated(
                f"Refusing to restore while services are active: {', '.join(blocked)}",
                services=blocked,
            )

        targets = {
            key: path
            for key, path in self._data_dirs.items()
            if (snapshot.path / key).is_dir()
        }
        LOGGER.info("[Orchestrator] Restoring %s (%s)", snapshot.snapshot_id, ", ".join(targets))
        return self.snapshots.restore(snapshot, targets, in_use=self._directory_in_use)

    def _start(self, graph: ServiceGraph, kind: RunKind) -> OrchestrationRun:
        order = graph.topological_order()
        run = OrchestrationRun(kind=kind, order=[service.name for service in order])
        LOGGER.info("[Orchestrator] Start order: %s", " -> ".join(run.order))

        for service in order:
            if run.aborted or self._cancel_event.is_set():
                run.aborted = True
                self._record(run, service, ServiceOutcome.ABORTED, "run aborted before start")
                continue

            blocked = [
                dependency
                for dependency in service.depends_on
                if run.outcome_of(dependency) is not ServiceOutcome.STARTED
            ]
            if blocked:
                self._record(
                    run,
                    service,
                    ServiceOutcome.SKIPPED,
                    f"dependency not started: {', '.join(blocked)}",
                )
                continue

            self._start_service(service, run)
        return run

    def _start_service(self, service: ServiceSpec, run: OrchestrationRun) -> None:
        begin = self._clock()
        current = self._probe.check(service)
        if current.ready:
            self._record(run, service, ServiceOutcome.STARTED, "already healthy", 0.0)
            return

        try:
            self._runner.start(service)
        except RunnerError as exc:
            self._record(run, service, ServiceOutcome.FAILED_TO_START, str(exc), self._clock() - begin)
            return

        outcome = self._poller.wait_until_healthy(service)
        elapsed = self._clock() - begin
        if outcome.state is PollState.HEALTHY:
            self._record(run, service, ServiceOutcome.STARTED, f"healthy after {outcome.attempts} probe(s)", elapsed)
        elif outcome.state is PollState.TIMED_OUT:
            error = ServiceTimeoutError(service.name, service.max_wait_s, outcome.attempts)
            self._record(run, service, ServiceOutcome.FAILED_UNHEALTHY, str(error), elapsed)
        else:
            run.aborted = True
            self._record(run, service, ServiceOutcome.ABORTED, "cancelled while waiting for health", elapsed)

    def _stop(self, graph: ServiceGraph) -> OrchestrationRun:
        order = graph.reverse_order()
        run = OrchestrationRun(kind=RunKind.STOP, order=[service.name for service in order])
        LOGGER.info("[Orchestrator] Stop order: %s", " -> ".join(run.order))
        failures: dict[str, str] = {}
        for service in order:
            begin = self._clock()
            try:
                self._runner.stop(service)
            except Exception as exc:  # noqa: BLE001 - stop is best-effort per service
                failures[service.name] = str(exc)
                self._record(run, service, ServiceOutcome.STOP_FAILED, str(exc), self._clock() - begin)
                continue
            self._record(run, service, ServiceOutcome.STOPPED, "", self._clock() - begin)

        if failures:
            error = PartialStopFailure(failures)
            LOGGER.error("[Orchestrator] %s", error)
            run.errors.append(str(error))
        return run

    def _running_services(self, services: Iterable[ServiceSpec]) -> list[str]:
        running = []
        for service in services:
            try:
                if self._runner.is_running(service):
                    running.append(service.name)
            except RunnerError as exc:
                LOGGER.warning("[Orchestrator] Cannot query %s, assuming running: %s", service.name, exc)
                running.append(service.name)
        return running

    def _directory_in_use(self, key: str, path: Path) -> bool:
        users = [service for service in self.graph if key in service.volumes]
        return bool(self._running_services(users))

    def _record(
        self,
        run: OrchestrationRun,
        service: ServiceSpec,
        outcome: ServiceOutcome,
        message: str = "",
        elapsed_s: float = 0.0,
    ) -> None:
        run.record(service.name, outcome, message, elapsed_s)
        log_outcome(service.name, outcome.value, message)

    def _finish(self, run: OrchestrationRun) -> OrchestrationRun:
        run.finish()
        if run.success:
            LOGGER.info("[Orchestrator] %s finished: all %d service(s) ok", run.kind.value, len(run.order))
        else:
            LOGGER.error(
                "[Orchestrator] %s failed: %s",
                run.kind.value,
                ", ".join(run.failed_services()) or "; ".join(run.errors) or "aborted",
            )
        if self._recorder is not None:
            self._recorder(run)
        return run
