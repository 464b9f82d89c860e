"""Fixed-interval health polling with a bounded wait budget."""

from __future__ import annotations

from collections.abc import Callable
import threading
import time
from typing import Protocol

from core.logging import logger as LOGGER
from core.models import HealthCheckResult, PollOutcome, PollState, ServiceSpec


class HealthProbe(Protocol):
    def check(self, service: ServiceSpec, timeout_s: float | None = None) -> HealthCheckResult: ...


class HealthPoller:
    """Repeat a probe until the service is ready, the budget runs out, or abort.

    Sleeping happens on ``cancel_event`` so an operator abort interrupts the
    wait immediately instead of after the full interval.
    """

    def __init__(
        self,
        probe: HealthProbe,
        *,
        cancel_event: threading.Event | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._probe = probe
        self._cancel_event = cancel_event or threading.Event()
        self._clock = clock

    def cancel(self) -> None:
        self._cancel_event.set()

    def wait_until_healthy(
        self,
        service: ServiceSpec,
        max_wait_s: float | None = None,
        poll_interval_s: float | None = None,
    ) -> PollOutcome:
        max_wait = float(max_wait_s if max_wait_s is not None else service.max_wait_s)
        interval = max(0.0, float(
            poll_interval_s if poll_interval_s is not None else service.poll_interval_s
        ))
        start = self._clock()
        attempts = 0
        last_result: HealthCheckResult | None = None

        LOGGER.info(
            "[Poller] Waiting for %s (max %.0fs, every %.1fs)",
            service.name,
            max_wait,
            interval,
        )
        while True:
            if self._cancel_event.is_set():
                return self._outcome(service, PollState.ABORTED, attempts, start, last_result)

            attempts += 1
            # An attempt may not outlive the remaining budget.
            remaining = max(0.0, max_wait - (self._clock() - start))
            last_result = self._probe.check(service, timeout_s=remaining)
            if last_result.ready:
                return self._outcome(service, PollState.HEALTHY, attempts, start, last_result)

            elapsed = self._clock() - start
            if elapsed >= max_wait:
                return self._outcome(service, PollState.TIMED_OUT, attempts, start, last_result)

            LOGGER.debug(
                "[Poller] %s not ready (%s: %s), retrying",
                service.name,
                last_result.status.value,
                last_result.message,
            )
            if self._cancel_event.wait(timeout=min(interval, max_wait - elapsed)):
                return self._outcome(service, PollState.ABORTED, attempts, start, last_result)

    def _outcome(
        self,
        service: ServiceSpec,
        state: PollState,
        attempts: int,
        start: float,
        last_result: HealthCheckResult | None,
    ) -> PollOutcome:
        elapsed = self._clock() - start
        if state is PollState.HEALTHY:
            LOGGER.info("[Poller] %s healthy after %d probe(s), %.1fs", service.name, attempts, elapsed)
        elif state is PollState.TIMED_OUT:
            LOGGER.warning(
                "[Poller] %s not healthy after %.1fs (last: %s)",
                service.name,
                elapsed,
                last_result.message if last_result else "no probe",
            )
        else:
            LOGGER.warning("[Poller] Wait for %s aborted after %.1fs", service.name, elapsed)
        return PollOutcome(
            service=service.name,
            state=state,
            attempts=attempts,
            elapsed_s=elapsed,
            last_result=last_result,
        )
