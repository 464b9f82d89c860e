"""Command-line entry point for running environment checks."""

from __future__ import annotations

import argparse
from collections.abc import Callable
from pathlib import Path
import subprocess
import tempfile

import yaml

from config.diagnostics import probe as config_probe
from config.controller import DEFAULT_SERVICES
from core.diagnostics import probe as core_probe
from diagnostics.models import DiagnosticResult
from diagnostics.runner import exit_code, format_results, run_diagnostics
from services.diagnostics import probe as services_probe
from services.gpu_diagnostics import probe as gpu_probe
from storage.diagnostics import probe as storage_probe


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""

    parser = argparse.ArgumentParser(description="Check requirements for running the VRAG stack.")
    parser.add_argument(
        "--offline",
        action="store_true",
        help="Run probes against a temporary directory with no docker or GPU.",
    )
    parser.add_argument(
        "--base-dir",
        type=Path,
        default=None,
        help="Optional base directory holding config/ for the checks.",
    )
    return parser.parse_args(argv)


def _offline_which(executable: str) -> str | None:
    return f"/offline/{executable}"


def _offline_run(argv: list[str], **_: object) -> subprocess.CompletedProcess:
    if argv and argv[0] == "nvidia-smi":
        return subprocess.CompletedProcess(argv, 0, stdout="24576\n", stderr="")
    return subprocess.CompletedProcess(argv, 0, stdout="offline compose\n", stderr="")


def live_probes(base_dir: Path | None, compose_command: str = "docker compose") -> list[Callable[[], DiagnosticResult]]:
    """Return the probes run by the ``check`` command."""

    def config_probe_with_base():
        return config_probe(base_dir=base_dir)

    def core_probe_live():
        return core_probe()

    def services_probe_live():
        return services_probe(compose_command)

    def gpu_probe_live():
        return gpu_probe()

    def storage_probe_with_base():
        return storage_probe(base_dir=base_dir)

    return [
        config_probe_with_base,
        core_probe_live,
        services_probe_live,
        gpu_probe_live,
        storage_probe_with_base,
    ]


def offline_probes(tmp_base: Path) -> list[Callable[[], DiagnosticResult]]:
    config_dir = tmp_base / "config"
    config_dir.mkdir(parents=True, exist_ok=True)
    (config_dir / "default.yaml").write_text(
        yaml.safe_dump({"services": DEFAULT_SERVICES}),
        encoding="utf-8",
    )

    def config_probe_offline():
        return config_probe(base_dir=tmp_base)

    def core_probe_offline():
        return core_probe()

    def services_probe_offline():
        return services_probe(which=_offline_which, run=_offline_run)

    def gpu_probe_offline():
        return gpu_probe(which=_offline_which, run=_offline_run)

    def storage_probe_offline():
        return storage_probe(base_dir=tmp_base)

    return [
        config_probe_offline,
        core_probe_offline,
        services_probe_offline,
        gpu_probe_offline,
        storage_probe_offline,
    ]


def run_checks(
    *,
    offline: bool = False,
    base_dir: Path | None = None,
    compose_command: str = "docker compose",
) -> list[DiagnosticResult]:
    if offline and base_dir is None:
        with tempfile.TemporaryDirectory() as tmp_dir:
            return run_diagnostics(offline_probes(Path(tmp_dir)))
    return run_diagnostics(live_probes(base_dir, compose_command))


def main(argv: list[str] | None = None) -> int:
    """Run checks and return an exit code."""

    args = parse_args(argv)
    results = run_checks(offline=args.offline, base_dir=args.base_dir)
    print(format_results(results))
    return exit_code(results)


if __name__ == "__main__":
    raise SystemExit(main())
