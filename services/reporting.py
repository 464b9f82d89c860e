"""Operator-facing reports for orchestration runs and snapshots."""

from __future__ import annotations

from collections.abc import Iterable

from core.models import OrchestrationRun, Snapshot


def format_run(run: OrchestrationRun) -> str:
    """Return a human-friendly report naming every service outcome."""

    lines = [f"{run.kind.value.capitalize()} report", "-" * 60]
    for name in run.order:
        result = run.results.get(name)
        if result is None:
            lines.append(f"[pending] {name}")
            continue
        line = f"[{result.outcome.value}] {name}"
        if result.message:
            line += f": {result.message}"
        lines.append(line)
    for error in run.errors:
        lines.append(f"[error] {error}")
    lines.append("-" * 60)
    if run.aborted:
        lines.append("Result: ABORTED by operator")
    elif run.success:
        lines.append("Result: OK")
    else:
        lines.append(f"Result: FAILED ({', '.join(run.failed_services()) or 'see errors'})")
    return "\n".join(lines)


def format_snapshot(snapshot: Snapshot) -> str:
    keys = ", ".join(snapshot.directories) or "no directories"
    created = snapshot.created_at.strftime("%Y-%m-%d %H:%M:%S")
    return f"{snapshot.snapshot_id}  {created}  [{keys}]  {snapshot.path}"


def format_snapshots(snapshots: Iterable[Snapshot]) -> str:
    lines = [format_snapshot(snapshot) for snapshot in snapshots]
    return "\n".join(lines) if lines else "No snapshots found"
