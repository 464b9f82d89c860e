"""Diagnostics routines for the container runtime the services run on."""

from __future__ import annotations

from collections.abc import Callable
import shlex
import shutil
import subprocess

from diagnostics.models import DiagnosticResult, DiagnosticStatus


def probe(
    compose_command: str = "docker compose",
    *,
    which: Callable[[str], str | None] = shutil.which,
    run: Callable[..., subprocess.CompletedProcess] = subprocess.run,
) -> DiagnosticResult:
    """Run a services probe to validate docker and compose availability.

    Args:
        compose_command: Compose invocation used to drive services.
        which: Executable lookup, replaceable for offline testing.
        run: Subprocess runner, replaceable for offline testing.

    Returns:
        Diagnostic result indicating container runtime readiness.
    """

    name = "services"
    argv = shlex.split(compose_command)
    if not argv or which(argv[0]) is None:
        return DiagnosticResult(
            name=name,
            status=DiagnosticStatus.FAIL,
            details=f"{argv[0] if argv else compose_command!r} is not installed",
        )

    try:
        completed = run(argv + ["version"], check=False, capture_output=True, text=True, timeout=15)
    except (OSError, subprocess.TimeoutExpired) as exc:
        return DiagnosticResult(
            name=name,
            status=DiagnosticStatus.FAIL,
            details=f"Compose unavailable: {exc}",
        )
    if completed.returncode != 0:
        return DiagnosticResult(
            name=name,
            status=DiagnosticStatus.FAIL,
            details=f"Compose unavailable ({compose_command} version exited {completed.returncode})",
        )

    version = (completed.stdout or "").strip().splitlines()
    return DiagnosticResult(
        name=name,
        status=DiagnosticStatus.PASS,
        details=version[0] if version else f"{compose_command} available",
    )
