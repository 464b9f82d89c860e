"""Health probes for orchestrated services."""

from __future__ import annotations

from collections.abc import Callable
import http.client
import time
from typing import Any
from urllib import error, request

from core.errors import ProbeError
from core.logging import logger as LOGGER
from core.models import HealthCheckResult, ProbeStatus, ServiceSpec


DEFAULT_PROBE_TIMEOUT_S = 10.0
MIN_ATTEMPT_TIMEOUT_S = 0.05

Opener = Callable[..., Any]


class HttpHealthProbe:
    """Single-attempt HTTP readiness check against a service health locator."""

    def __init__(
        self,
        *,
        timeout_s: float = DEFAULT_PROBE_TIMEOUT_S,
        opener: Opener | None = None,
    ) -> None:
        self._timeout_s = max(0.1, float(timeout_s))
        self._opener = opener or request.urlopen

    @property
    def timeout_s(self) -> float:
        return self._timeout_s

    def check(self, service: ServiceSpec, timeout_s: float | None = None) -> HealthCheckResult:
        """Probe ``service`` once and classify the response.

        ``timeout_s`` can only shorten the configured per-attempt timeout.
        """

        timeout = self._timeout_s
        if timeout_s is not None:
            timeout = max(MIN_ATTEMPT_TIMEOUT_S, min(timeout, timeout_s))
        start = time.monotonic()
        try:
            status_code = self._request_status(service, timeout)
        except ProbeError as exc:
            return self._result(service, ProbeStatus.ERROR, str(exc), start)
        except (ConnectionError, TimeoutError) as exc:
            return self._result(
                service,
                ProbeStatus.NOT_READY,
                f"unreachable: {exc.__class__.__name__}",
                start,
            )
        except OSError as exc:
            return self._result(service, ProbeStatus.ERROR, f"probe failed: {exc}", start)

        if status_code in service.expected_status:
            return self._result(service, ProbeStatus.READY, f"HTTP {status_code}", start)
        return self._result(service, ProbeStatus.NOT_READY, f"HTTP {status_code}", start)

    def _request_status(self, service: ServiceSpec, timeout: float) -> int:
        req = request.Request(service.health_url, method="GET")
        try:
            with self._opener(req, timeout=timeout) as response:
                return int(getattr(response, "status", None) or response.getcode())
        except error.HTTPError as exc:
            return int(exc.code)
        except error.URLError as exc:
            reason = exc.reason
            if isinstance(reason, (ConnectionError, TimeoutError)):
                raise reason from exc
            if isinstance(reason, OSError):
                raise ConnectionError(str(reason)) from exc
            raise ProbeError(f"invalid locator: {reason}", service=service.name) from exc
        except (ConnectionError, TimeoutError):
            raise
        except http.client.HTTPException as exc:
            raise ProbeError(
                f"malformed response: {exc.__class__.__name__}",
                service=service.name,
            ) from exc
        except ValueError as exc:
            raise ProbeError(f"invalid locator: {exc}", service=service.name) from exc

    def _result(
        self,
        service: ServiceSpec,
        status: ProbeStatus,
        message: str,
        start: float,
    ) -> HealthCheckResult:
        latency_ms = int((time.monotonic() - start) * 1000)
        LOGGER.debug(
            "[Probe] %s %s -> %s (%s, %sms)",
            service.name,
            service.health_url,
            status.value,
            message,
            latency_ms,
        )
        return HealthCheckResult(
            service=service.name,
            status=status,
            message=message,
            latency_ms=latency_ms,
        )
