"""Diagnostics routines for GPU availability."""

from __future__ import annotations

from collections.abc import Callable
import shutil
import subprocess

from diagnostics.models import DiagnosticResult, DiagnosticStatus


MIN_GPU_MEMORY_MIB = 16384


def probe(
    *,
    min_memory_mib: int = MIN_GPU_MEMORY_MIB,
    which: Callable[[str], str | None] = shutil.which,
    run: Callable[..., subprocess.CompletedProcess] = subprocess.run,
) -> DiagnosticResult:
    """Check that an NVIDIA GPU with enough memory is visible."""

    name = "gpu"
    if which("nvidia-smi") is None:
        return DiagnosticResult(
            name=name,
            status=DiagnosticStatus.FAIL,
            details="nvidia-smi not found; NVIDIA drivers or container toolkit missing",
        )

    try:
        completed = run(
            ["nvidia-smi", "--query-gpu=memory.total", "--format=csv,noheader,nounits"],
            check=False,
            capture_output=True,
            text=True,
            timeout=15,
        )
    except (OSError, subprocess.TimeoutExpired) as exc:
        return DiagnosticResult(name=name, status=DiagnosticStatus.FAIL, details=f"nvidia-smi failed: {exc}")

    lines = [line.strip() for line in (completed.stdout or "").splitlines() if line.strip()]
    if completed.returncode != 0 or not lines:
        return DiagnosticResult(
            name=name,
            status=DiagnosticStatus.FAIL,
            details=f"nvidia-smi exited {completed.returncode}",
        )

    try:
        memory_mib = int(float(lines[0]))
    except ValueError:
        return DiagnosticResult(
            name=name,
            status=DiagnosticStatus.WARN,
            details=f"Unrecognized nvidia-smi output: {lines[0]}",
        )

    if memory_mib < min_memory_mib:
        return DiagnosticResult(
            name=name,
            status=DiagnosticStatus.WARN,
            details=f"GPU memory {memory_mib} MiB is below {min_memory_mib} MiB; models may not fit",
        )
    return DiagnosticResult(
        name=name,
        status=DiagnosticStatus.PASS,
        details=f"{len(lines)} GPU(s), {memory_mib} MiB on GPU 0",
    )
