"""Tests for the environment check runner."""

from __future__ import annotations

from diagnostics.models import DiagnosticResult, DiagnosticStatus
from diagnostics.run import run_checks
from diagnostics.runner import exit_code, format_results, run_diagnostics


def _passing() -> DiagnosticResult:
    return DiagnosticResult(name="ok", status=DiagnosticStatus.PASS, details="fine")


def _warning() -> DiagnosticResult:
    return DiagnosticResult(name="meh", status=DiagnosticStatus.WARN, details="degraded")


def _crashing() -> DiagnosticResult:
    raise RuntimeError("boom")


def test_crashing_check_becomes_failure() -> None:
    results = run_diagnostics([_passing, _crashing, _warning])

    assert [result.status for result in results] == [
        DiagnosticStatus.PASS,
        DiagnosticStatus.FAIL,
        DiagnosticStatus.WARN,
    ]
    assert results[1].name == "_crashing"
    assert "boom" in results[1].details
    assert exit_code(results) == 1


def test_warnings_do_not_fail() -> None:
    results = run_diagnostics([_passing, _warning])

    assert exit_code(results) == 0
    report = format_results(results)
    assert "[WARN] meh: degraded" in report
    assert report.splitlines()[-1] == "PASS=1 WARN=1 FAIL=0"


def test_offline_checks_pass() -> None:
    results = run_checks(offline=True)

    assert [result.name for result in results] == ["config", "core", "services", "gpu", "storage"]
    assert exit_code(results) == 0
