"""Environment diagnostics for the orchestrator."""

from diagnostics.models import DiagnosticResult, DiagnosticStatus
from diagnostics.runner import exit_code, format_results, run_diagnostics

__all__ = [
    "DiagnosticResult",
    "DiagnosticStatus",
    "exit_code",
    "format_results",
    "run_diagnostics",
]
