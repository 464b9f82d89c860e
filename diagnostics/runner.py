"""Runner and report formatting for environment checks."""

from __future__ import annotations

from collections import Counter
from collections.abc import Callable, Iterable

from core.logging import logger as LOGGER
from diagnostics.models import DiagnosticResult, DiagnosticStatus


def format_results(results: Iterable[DiagnosticResult]) -> str:
    """Return a human-friendly requirements report."""

    results = list(results)
    counts = Counter(result.status for result in results)
    lines = ["Requirements check", "-" * 60]
    for result in results:
        lines.append(f"[{result.status.value}] {result.name}: {result.details}")
    lines.append("-" * 60)
    lines.append(
        " ".join(f"{status.value}={counts.get(status, 0)}" for status in DiagnosticStatus)
    )
    return "\n".join(lines)


def run_diagnostics(probes: Iterable[Callable[[], DiagnosticResult]]) -> list[DiagnosticResult]:
    """Run every check, turning a crashing check into a FAIL result."""

    results: list[DiagnosticResult] = []
    for probe in probes:
        try:
            result = probe()
        except Exception as exc:  # noqa: BLE001 - remaining checks must still run
            LOGGER.exception("Check failed: %s", getattr(probe, "__name__", probe))
            result = DiagnosticResult(
                name=getattr(probe, "__name__", "unknown_probe"),
                status=DiagnosticStatus.FAIL,
                details=f"Check raised exception: {exc}",
            )
        results.append(result)
    return results


def exit_code(results: Iterable[DiagnosticResult]) -> int:
    return 1 if any(result.failed for result in results) else 0
