"""Start/stop capability backed by ``docker compose``."""

from __future__ import annotations

from collections.abc import Callable, Sequence
import shlex
import subprocess
from typing import Any, Mapping, Protocol

from core.errors import RunnerError
from core.logging import logger as LOGGER
from core.models import ServiceSpec


class ServiceRunner(Protocol):
    """Opaque capability the orchestrator uses to start and stop services."""

    def start(self, service: ServiceSpec) -> None: ...

    def stop(self, service: ServiceSpec) -> None: ...

    def is_running(self, service: ServiceSpec) -> bool: ...


class ComposeRunner:
    """Drive services defined in a compose file through the compose CLI."""

    def __init__(
        self,
        *,
        command: str = "docker compose",
        compose_file: str = "docker-compose.yml",
        project_name: str = "vrag",
        run: Callable[..., subprocess.CompletedProcess] = subprocess.run,
    ) -> None:
        self._command = shlex.split(command)
        self._compose_file = compose_file
        self._project_name = project_name
        self._run = run

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "ComposeRunner":
        compose_cfg = config.get("compose") or {}
        return cls(
            command=str(compose_cfg.get("command", "docker compose")),
            compose_file=str(compose_cfg.get("file", "docker-compose.yml")),
            project_name=str(compose_cfg.get("project_name", "vrag")),
        )

    @property
    def executable(self) -> str:
        return self._command[0]

    def start(self, service: ServiceSpec) -> None:
        LOGGER.info("[Compose] Starting %s", service.handle)
        self._invoke(["up", "-d", service.handle], service=service.name)

    def stop(self, service: ServiceSpec) -> None:
        LOGGER.info("[Compose] Stopping %s", service.handle)
        self._invoke(["stop", service.handle], service=service.name)

    def is_running(self, service: ServiceSpec) -> bool:
        return service.handle in self.running_services()

    def running_services(self) -> set[str]:
        completed = self._invoke(["ps", "--status", "running", "--services"])
        return {line.strip() for line in (completed.stdout or "").splitlines() if line.strip()}

    def status_table(self) -> str:
        return self._invoke(["ps"]).stdout or ""

    def logs(self, service: str | None = None, *, follow: bool = True, tail: int | None = None) -> int:
        """Stream compose logs to the terminal and return the exit code."""

        args = ["logs"]
        if follow:
            args.append("-f")
        if tail is not None:
            args.append(f"--tail={int(tail)}")
        if service:
            args.append(service)
        try:
            completed = self._run(self._base() + args, check=False)
        except OSError as exc:
            raise RunnerError(f"Unable to run {self.executable}: {exc}", service=service) from exc
        return int(completed.returncode)

    def logs_tail(self, tail: int) -> str:
        return self._invoke(["logs", f"--tail={int(tail)}"]).stdout or ""

    def down(self, *, volumes: bool = False, remove_orphans: bool = False) -> None:
        args = ["down"]
        if volumes:
            args.append("--volumes")
        if remove_orphans:
            args.append("--remove-orphans")
        self._invoke(args)

    def run_job(self, service: str, *, profile: str | None = None) -> None:
        """Run a one-shot service to completion and remove its container."""

        args: list[str] = []
        if profile:
            args.extend(["--profile", profile])
        args.extend(["run", "--rm", service])
        LOGGER.info("[Compose] Running job %s", service)
        try:
            completed = self._run(self._base() + args, check=False)
        except OSError as exc:
            raise RunnerError(f"Unable to run {self.executable}: {exc}", service=service) from exc
        if completed.returncode != 0:
            raise RunnerError(f"Job {service} exited with status {completed.returncode}", service=service)

    def _base(self) -> list[str]:
        return self._command + ["-f", self._compose_file, "-p", self._project_name]

    def _invoke(
        self,
        args: Sequence[str],
        *,
        service: str | None = None,
    ) -> subprocess.CompletedProcess:
        argv = self._base() + list(args)
        LOGGER.debug("[Compose] %s", " ".join(argv))
        try:
            completed = self._run(argv, check=False, capture_output=True, text=True)
        except OSError as exc:
            raise RunnerError(f"Unable to run {self.executable}: {exc}", service=service) from exc
        if completed.returncode != 0:
            stderr = (completed.stderr or "").strip().splitlines()
            detail = stderr[-1] if stderr else f"exit status {completed.returncode}"
            raise RunnerError(f"{' '.join(args[:1])} failed: {detail}", service=service)
        return completed
