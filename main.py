"""Command-line entry point for the VRAG stack lifecycle controller."""

from __future__ import annotations

import argparse
from collections.abc import Callable, Iterator
import contextlib
import logging
from pathlib import Path
import signal
import sys

import yaml

from config import ConfigController
from core.errors import ConfigurationError, OrchestratorError, PreconditionViolated, RunnerError
from core.logging import enable_file_logging, log_error, log_info, log_warning, logger, set_level
from core.models import OrchestrationRun
from services.compose_runner import ComposeRunner
from services.corpus import run_corpus_setup
from services.orchestrator import Orchestrator
from services.reporting import format_run, format_snapshot, format_snapshots
from storage.controller import StorageController
from storage.layout import ensure_layout, write_default_env


EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFIG = 2
EXIT_ABORTED = 130


def configure_logging(level_name: str) -> None:
    """Configure application logging."""

    level = set_level(level_name)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="vragctl",
        description="Start, stop, check and back up the VRAG services in dependency order.",
    )
    parser.add_argument("--log-level", type=str, default=None, help="Override the configured log level.")
    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")

    check = subparsers.add_parser("check", help="Check system requirements")
    check.add_argument("--offline", action="store_true", help="Skip docker and GPU probes.")
    subparsers.add_parser("setup", help="Create data directories and a default .env")

    start = subparsers.add_parser("start", help="Start services in dependency order")
    start.add_argument("services", nargs="*", help="Only these services (plus their dependencies).")
    stop = subparsers.add_parser("stop", help="Stop services, dependents first")
    stop.add_argument("services", nargs="*", help="Only these services (plus their dependents).")
    subparsers.add_parser("restart", help="Stop then start all services")
    subparsers.add_parser("status", help="Show service status and health")

    logs = subparsers.add_parser("logs", help="Show service logs")
    logs.add_argument("service", nargs="?", default=None)
    logs.add_argument("--tail", type=int, default=None, help="Number of lines to show.")
    logs.add_argument("--no-follow", action="store_true", help="Print logs and exit.")

    subparsers.add_parser("corpus", help="Run corpus setup (requires documents)")
    subparsers.add_parser("cleanup", help="Remove containers, volumes and orphans")

    backup = subparsers.add_parser("backup", help="Snapshot corpus, models and data")
    backup.add_argument(
        "--safe",
        action="store_true",
        help="Stop services during the copy and start them again afterwards.",
    )
    restore = subparsers.add_parser("restore", help="Restore data from a snapshot")
    restore.add_argument("snapshot_id")
    subparsers.add_parser("snapshots", help="List snapshots")

    subparsers.add_parser("test", help="Run a health check against every service")
    subparsers.add_parser("help", help="Show this help message")
    return parser


@contextlib.contextmanager
def abort_on_signal(orchestrator: Orchestrator) -> Iterator[None]:
    """Route SIGINT/SIGTERM to the orchestrator's cancellation event."""

    def _handler(signum, _frame) -> None:
        logger.warning("Received %s, aborting", signal.Signals(signum).name)
        orchestrator.cancel()

    previous = {
        signum: signal.signal(signum, _handler)
        for signum in (signal.SIGINT, signal.SIGTERM)
    }
    try:
        yield
    finally:
        for signum, handler in previous.items():
            signal.signal(signum, handler)


def run_exit_code(run: OrchestrationRun) -> int:
    if run.aborted:
        return EXIT_ABORTED
    return EXIT_OK if run.success else EXIT_FAILURE


def report_run(run: OrchestrationRun) -> int:
    print(format_run(run))
    code = run_exit_code(run)
    if code == EXIT_FAILURE:
        log_error(f"{run.kind.value} failed for: {', '.join(run.failed_services()) or 'see errors'}")
    return code


def cmd_check(args: argparse.Namespace, config: dict) -> int:
    from diagnostics.run import run_checks
    from diagnostics.runner import exit_code, format_results

    results = run_checks(
        offline=args.offline,
        compose_command=str(config["compose"]["command"]),
    )
    print(format_results(results))
    return exit_code(results)


def cmd_setup(config: dict) -> int:
    for directory in ensure_layout(config):
        log_info(f"Created {directory}")
    if write_default_env(Path(".env"), config):
        log_info("Created .env file with default configuration.")
    log_info("Environment setup complete.", style="bold green")
    return EXIT_OK


def cmd_start(args: argparse.Namespace, orchestrator: Orchestrator) -> int:
    graph = orchestrator.graph.subgraph(args.services) if args.services else None
    with abort_on_signal(orchestrator):
        run = orchestrator.start(graph)
    return report_run(run)


def cmd_stop(args: argparse.Namespace, orchestrator: Orchestrator) -> int:
    graph = orchestrator.graph.with_dependents(args.services) if args.services else None
    return report_run(orchestrator.stop(graph))


def cmd_restart(orchestrator: Orchestrator) -> int:
    with abort_on_signal(orchestrator):
        run = orchestrator.restart()
    return report_run(run)


def cmd_status(orchestrator: Orchestrator, config: dict) -> int:
    runner = orchestrator.runner
    if isinstance(runner, ComposeRunner):
        print(runner.status_table())
    code = report_run(orchestrator.verify())
    if isinstance(runner, ComposeRunner):
        tail = int(config["status"]["log_tail"])
        print(f"Service logs (last {tail} lines):")
        print(runner.logs_tail(tail))
    return code


def cmd_logs(args: argparse.Namespace, runner: ComposeRunner) -> int:
    try:
        return runner.logs(args.service, follow=not args.no_follow, tail=args.tail)
    except KeyboardInterrupt:
        return EXIT_OK


def cmd_backup(args: argparse.Namespace, orchestrator: Orchestrator, storage: StorageController) -> int:
    if args.safe:
        with abort_on_signal(orchestrator):
            snapshot, start_run = orchestrator.safe_backup()
    else:
        snapshot, start_run = orchestrator.backup(), None
    storage.add_event("backup", snapshot.to_manifest())
    log_info(f"Backup created: {format_snapshot(snapshot)}", style="bold green")
    if start_run is not None:
        return report_run(start_run)
    return EXIT_OK


def cmd_restore(args: argparse.Namespace, orchestrator: Orchestrator, storage: StorageController) -> int:
    snapshot = orchestrator.restore(args.snapshot_id)
    storage.add_event("restore", snapshot.to_manifest())
    log_info(f"Data restored from {snapshot.snapshot_id}. Run 'start' to bring services back.", style="bold green")
    return EXIT_OK


def dispatch(args: argparse.Namespace, config: dict) -> int:
    storage = StorageController.get_instance()
    if config.get("file_logging_enabled", True):
        log_file_path = storage.get_log_file_path()
        enable_file_logging(log_file_path)
        logger.debug("Writing logs to %s", log_file_path)

    runner = ComposeRunner.from_config(config)
    orchestrator = Orchestrator.from_config(config, runner=runner, recorder=storage.record_run)
    handlers: dict[str, Callable[[], int]] = {
        "start": lambda: cmd_start(args, orchestrator),
        "stop": lambda: cmd_stop(args, orchestrator),
        "restart": lambda: cmd_restart(orchestrator),
        "status": lambda: cmd_status(orchestrator, config),
        "logs": lambda: cmd_logs(args, runner),
        "corpus": lambda: _run_corpus(config, runner),
        "cleanup": lambda: _cleanup(runner),
        "backup": lambda: cmd_backup(args, orchestrator, storage),
        "restore": lambda: cmd_restore(args, orchestrator, storage),
        "snapshots": lambda: _print(format_snapshots(orchestrator.snapshots.list_snapshots())),
        "test": lambda: report_run(orchestrator.verify()),
    }
    return handlers[args.command]()


def _run_corpus(config: dict, runner: ComposeRunner) -> int:
    run_corpus_setup(config, runner)
    return EXIT_OK


def _cleanup(runner: ComposeRunner) -> int:
    log_info("Cleaning up Docker resources...")
    runner.down(volumes=True, remove_orphans=True)
    log_info("Cleanup complete.", style="bold green")
    return EXIT_OK


def _print(text: str) -> int:
    print(text)
    return EXIT_OK


def main(argv: list[str] | None = None) -> int:
    """Application entry point.

    Args:
        argv: Optional list of command-line arguments.

    Returns:
        Process exit code.
    """

    if argv is None:
        argv = sys.argv[1:]

    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command in (None, "help"):
        parser.print_help()
        return EXIT_OK

    try:
        config = ConfigController.get_instance().get_config()
    except (OSError, yaml.YAMLError, ConfigurationError) as exc:
        log_error(f"Unable to load configuration: {exc}")
        return EXIT_CONFIG
    configure_logging(args.log_level or config.get("logging_level", "INFO"))

    try:
        if args.command == "check":
            return cmd_check(args, config)
        if args.command == "setup":
            return cmd_setup(config)
        return dispatch(args, config)
    except ConfigurationError as exc:
        log_error(f"Configuration error: {exc}")
        return EXIT_CONFIG
    except PreconditionViolated as exc:
        log_error(str(exc))
        if exc.services:
            log_warning(f"Affected: {', '.join(exc.services)}")
        return EXIT_FAILURE
    except RunnerError as exc:
        service = f" ({exc.service})" if exc.service else ""
        log_error(f"{exc}{service}")
        return EXIT_FAILURE
    except OrchestratorError as exc:
        log_error(str(exc))
        return EXIT_FAILURE
    except KeyboardInterrupt:
        logger.info("Interrupted by operator")
        return EXIT_ABORTED


if __name__ == "__main__":
    raise SystemExit(main())
