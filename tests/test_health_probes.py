"""Tests for single-attempt HTTP health probes."""

from __future__ import annotations

import http.client
from http.server import BaseHTTPRequestHandler, HTTPServer
import socket
import threading
from urllib import error

import pytest

from core.models import ProbeStatus, ServiceSpec
from services.health_probes import HttpHealthProbe


def _service(url: str = "http://localhost:8002/health", expected=frozenset({200})) -> ServiceSpec:
    return ServiceSpec(name="vrag-search", health_url=url, expected_status=expected)


class _FakeResponse:
    def __init__(self, status: int) -> None:
        self.status = status

    def __enter__(self) -> "_FakeResponse":
        return self

    def __exit__(self, *exc_info) -> None:
        return None


def _opener_returning(status: int):
    seen = {}

    def _open(req, timeout):
        seen["url"] = req.full_url
        seen["timeout"] = timeout
        return _FakeResponse(status)

    return _open, seen


def _opener_raising(exc: BaseException):
    def _open(req, timeout):
        raise exc

    return _open


def test_probe_ready_on_expected_status() -> None:
    opener, seen = _opener_returning(200)
    probe = HttpHealthProbe(timeout_s=3.0, opener=opener)

    result = probe.check(_service())

    assert result.status is ProbeStatus.READY
    assert result.ready
    assert seen["url"] == "http://localhost:8002/health"
    assert seen["timeout"] == 3.0


def test_attempt_timeout_is_capped_not_extended() -> None:
    opener, seen = _opener_returning(200)
    probe = HttpHealthProbe(timeout_s=3.0, opener=opener)

    probe.check(_service(), timeout_s=0.4)
    assert seen["timeout"] == 0.4

    probe.check(_service(), timeout_s=30.0)
    assert seen["timeout"] == 3.0

    probe.check(_service(), timeout_s=0.0)
    assert seen["timeout"] == 0.05


def test_probe_honours_custom_expected_status() -> None:
    opener, _ = _opener_returning(204)
    probe = HttpHealthProbe(opener=opener)

    assert probe.check(_service(expected=frozenset({204}))).status is ProbeStatus.READY
    assert probe.check(_service()).status is ProbeStatus.NOT_READY


def test_probe_not_ready_on_http_error_status() -> None:
    exc = error.HTTPError("http://localhost:8002/health", 503, "Service Unavailable", {}, None)
    probe = HttpHealthProbe(opener=_opener_raising(exc))

    result = probe.check(_service())

    assert result.status is ProbeStatus.NOT_READY
    assert "503" in result.message


@pytest.mark.parametrize(
    "exc",
    [
        error.URLError(ConnectionRefusedError(111, "Connection refused")),
        error.URLError(socket.timeout("timed out")),
        error.URLError(socket.gaierror(-2, "Name or service not known")),
        TimeoutError("read timed out"),
        http.client.RemoteDisconnected("Remote end closed connection"),
    ],
)
def test_probe_not_ready_when_unreachable(exc: BaseException) -> None:
    probe = HttpHealthProbe(opener=_opener_raising(exc))

    assert probe.check(_service()).status is ProbeStatus.NOT_READY


@pytest.mark.parametrize(
    "exc",
    [
        http.client.BadStatusLine("garbage"),
        error.URLError("unknown url type: gopher"),
        ValueError("unknown url type"),
    ],
)
def test_probe_error_on_protocol_failure(exc: BaseException) -> None:
    probe = HttpHealthProbe(opener=_opener_raising(exc))

    result = probe.check(_service())

    assert result.status is ProbeStatus.ERROR
    assert result.message


class _HealthHandler(BaseHTTPRequestHandler):
    ready = False

    def do_GET(self) -> None:  # noqa: N802 - http.server naming
        if self.path == "/health" and type(self).ready:
            self.send_response(200)
        else:
            self.send_response(503)
        self.end_headers()

    def log_message(self, *args) -> None:
        return None


def test_probe_against_live_server() -> None:
    server = HTTPServer(("127.0.0.1", 0), _HealthHandler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        url = f"http://127.0.0.1:{server.server_address[1]}/health"
        probe = HttpHealthProbe(timeout_s=2.0)

        _HealthHandler.ready = False
        assert probe.check(_service(url)).status is ProbeStatus.NOT_READY

        _HealthHandler.ready = True
        assert probe.check(_service(url)).status is ProbeStatus.READY
    finally:
        server.shutdown()
        server.server_close()
        _HealthHandler.ready = False


def test_probe_connection_refused_on_closed_port() -> None:
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        port = sock.getsockname()[1]

    probe = HttpHealthProbe(timeout_s=1.0)
    result = probe.check(_service(f"http://127.0.0.1:{port}/health"))

    assert result.status is ProbeStatus.NOT_READY
