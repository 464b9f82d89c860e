"""Build validated service declarations from configuration."""

from __future__ import annotations

from typing import Any, Mapping

from core.errors import ConfigurationError
from core.models import ServiceSpec
from services.service_graph import ServiceGraph


def _as_positive_float(entry: Mapping[str, Any], key: str, default: float, name: str) -> float:
    raw = entry.get(key, default)
    try:
        value = float(raw)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{name}: {key} must be a number, got {raw!r}", service=name) from None
    if value <= 0:
        raise ConfigurationError(f"{name}: {key} must be positive, got {value}", service=name)
    return value


def _as_name_tuple(entry: Mapping[str, Any], key: str, name: str) -> tuple[str, ...]:
    raw = entry.get(key) or []
    if isinstance(raw, str):
        raw = [raw]
    if not isinstance(raw, (list, tuple)):
        raise ConfigurationError(f"{name}: {key} must be a list", service=name)
    return tuple(str(item) for item in raw)


def build_service_spec(entry: Mapping[str, Any], *, host: str = "localhost") -> ServiceSpec:
    """Convert one ``services`` entry into a :class:`ServiceSpec`."""

    if not isinstance(entry, Mapping):
        raise ConfigurationError(f"Service entry must be a mapping, got {entry!r}")
    name = str(entry.get("name") or "").strip()
    if not name:
        raise ConfigurationError("Service entry is missing a name")

    port = entry.get("port")
    if port is not None:
        try:
            port = int(port)
        except (TypeError, ValueError):
            raise ConfigurationError(f"{name}: port must be an integer, got {port!r}", service=name) from None

    health_url = entry.get("health_url")
    if not health_url:
        if port is None:
            raise ConfigurationError(f"{name}: health_url or port is required", service=name)
        path = str(entry.get("health_path", "/health"))
        if not path.startswith("/"):
            path = f"/{path}"
        health_url = f"http://{host}:{port}{path}"

    expected = entry.get("expected_status", [200])
    if isinstance(expected, int):
        expected = [expected]
    try:
        expected_status = frozenset(int(code) for code in expected)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{name}: expected_status must list HTTP codes", service=name) from None
    if not expected_status:
        raise ConfigurationError(f"{name}: expected_status must not be empty", service=name)

    return ServiceSpec(
        name=name,
        health_url=str(health_url),
        depends_on=_as_name_tuple(entry, "depends_on", name),
        poll_interval_s=_as_positive_float(entry, "poll_interval_s", 5.0, name),
        max_wait_s=_as_positive_float(entry, "max_wait_s", 300.0, name),
        port=port,
        expected_status=expected_status,
        runner_name=str(entry["compose_service"]) if entry.get("compose_service") else None,
        volumes=_as_name_tuple(entry, "volumes", name),
    )


def load_service_graph(config: Mapping[str, Any]) -> ServiceGraph:
    """Return the validated service graph declared in ``config``."""

    entries = config.get("services")
    if not isinstance(entries, list) or not entries:
        raise ConfigurationError("Configuration declares no services")
    host = str((config.get("health") or {}).get("host", "localhost"))
    return ServiceGraph(build_service_spec(entry, host=host) for entry in entries)
