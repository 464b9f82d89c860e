"""Tests for fixed-interval health polling."""

from __future__ import annotations

import socket
import threading
import time

from core.models import PollState, ProbeStatus, ServiceSpec
from services.health_poller import HealthPoller
from services.health_probes import HttpHealthProbe
from tests.fakes import FakeProbe, make_service


def test_returns_healthy_on_first_ready_without_waiting() -> None:
    service = make_service("search", poll_interval_s=5.0, max_wait_s=60.0)
    poller = HealthPoller(FakeProbe({"search": [ProbeStatus.READY]}))

    began = time.monotonic()
    outcome = poller.wait_until_healthy(service)

    assert outcome.state is PollState.HEALTHY
    assert outcome.attempts == 1
    assert time.monotonic() - began < 1.0


def test_retries_through_errors_until_ready() -> None:
    probe = FakeProbe(
        {"search": [ProbeStatus.NOT_READY, ProbeStatus.ERROR, ProbeStatus.NOT_READY, ProbeStatus.READY]}
    )
    poller = HealthPoller(probe)

    outcome = poller.wait_until_healthy(make_service("search"), max_wait_s=5.0, poll_interval_s=0.01)

    assert outcome.healthy
    assert outcome.attempts == 4
    assert probe.calls == ["search"] * 4


def test_times_out_within_one_interval_of_budget() -> None:
    probe = FakeProbe({"search": [ProbeStatus.NOT_READY, ProbeStatus.ERROR]})
    poller = HealthPoller(probe)
    max_wait, interval = 0.3, 0.05

    began = time.monotonic()
    outcome = poller.wait_until_healthy(make_service("search"), max_wait, interval)
    elapsed = time.monotonic() - began

    assert outcome.state is PollState.TIMED_OUT
    assert outcome.attempts >= 2
    assert max_wait <= elapsed <= max_wait + interval + 0.2
    assert outcome.last_result is not None
    assert outcome.last_result.status is ProbeStatus.ERROR


def test_uses_service_budget_by_default() -> None:
    service = make_service("search", poll_interval_s=0.01, max_wait_s=0.05)
    outcome = HealthPoller(FakeProbe()).wait_until_healthy(service)

    assert outcome.state is PollState.TIMED_OUT
    assert outcome.elapsed_s >= 0.05


def test_cancellation_interrupts_wait_promptly() -> None:
    cancel = threading.Event()
    poller = HealthPoller(FakeProbe(), cancel_event=cancel)
    timer = threading.Timer(0.1, cancel.set)
    timer.start()

    began = time.monotonic()
    try:
        outcome = poller.wait_until_healthy(make_service("vlm"), max_wait_s=30.0, poll_interval_s=1.0)
    finally:
        timer.cancel()
    elapsed = time.monotonic() - began

    assert outcome.state is PollState.ABORTED
    assert elapsed < 1.0


def test_already_cancelled_does_not_probe() -> None:
    probe = FakeProbe({"vlm": [ProbeStatus.READY]})
    poller = HealthPoller(probe)
    poller.cancel()

    outcome = poller.wait_until_healthy(make_service("vlm"))

    assert outcome.state is PollState.ABORTED
    assert outcome.attempts == 0
    assert probe.calls == []


def test_fake_clock_budget() -> None:
    now = [0.0]

    def clock() -> float:
        return now[0]

    class _SlowProbe(FakeProbe):
        # Each attempt hangs for 10s unless cut short by its timeout.
        def check(self, service, timeout_s=None):
            now[0] += min(10.0, timeout_s) if timeout_s is not None else 10.0
            return super().check(service, timeout_s)

    probe = _SlowProbe()
    poller = HealthPoller(probe, clock=clock)

    outcome = poller.wait_until_healthy(make_service("vlm"), max_wait_s=25.0, poll_interval_s=0.0)

    assert outcome.state is PollState.TIMED_OUT
    assert outcome.attempts == 3
    assert outcome.elapsed_s == 25.0
    assert probe.timeouts == [25.0, 15.0, 5.0]


def test_hanging_endpoint_times_out_within_budget() -> None:
    # Accepts connections (kernel backlog) but never answers.
    listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    listener.bind(("127.0.0.1", 0))
    listener.listen(8)
    port = listener.getsockname()[1]
    service = ServiceSpec(name="search", health_url=f"http://127.0.0.1:{port}/health")
    poller = HealthPoller(HttpHealthProbe(timeout_s=2.0))
    max_wait, interval = 0.5, 0.1

    began = time.monotonic()
    try:
        outcome = poller.wait_until_healthy(service, max_wait_s=max_wait, poll_interval_s=interval)
    finally:
        listener.close()
    elapsed = time.monotonic() - began

    assert outcome.state is PollState.TIMED_OUT
    assert elapsed <= max_wait + interval + 0.2
