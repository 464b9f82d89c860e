"""Tests for the compose-backed service runner."""

from __future__ import annotations

import subprocess

import pytest

from core.errors import RunnerError
from core.models import ServiceSpec
from services.compose_runner import ComposeRunner


class _FakeRun:
    def __init__(self, *, returncode: int = 0, stdout: str = "", stderr: str = "", error: Exception | None = None) -> None:
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        self.error = error
        self.calls: list[tuple[list[str], dict]] = []

    def __call__(self, argv, **kwargs):
        self.calls.append((list(argv), kwargs))
        if self.error is not None:
            raise self.error
        return subprocess.CompletedProcess(argv, self.returncode, stdout=self.stdout, stderr=self.stderr)


BASE = ["docker", "compose", "-f", "stack.yml", "-p", "vrag"]


def _runner(fake: _FakeRun) -> ComposeRunner:
    return ComposeRunner(compose_file="stack.yml", project_name="vrag", run=fake)


def _service(name: str = "vrag-search", runner_name: str | None = None) -> ServiceSpec:
    return ServiceSpec(name=name, health_url="http://localhost:8002/health", runner_name=runner_name)


def test_start_and_stop_commands() -> None:
    fake = _FakeRun()
    runner = _runner(fake)

    runner.start(_service())
    runner.stop(_service())

    assert [argv for argv, _ in fake.calls] == [
        BASE + ["up", "-d", "vrag-search"],
        BASE + ["stop", "vrag-search"],
    ]
    assert fake.calls[0][1]["capture_output"] is True


def test_runner_name_overrides_service_name() -> None:
    fake = _FakeRun()

    _runner(fake).start(_service("search", runner_name="vrag-search"))

    assert fake.calls[0][0][-1] == "vrag-search"


def test_is_running_reads_running_services() -> None:
    fake = _FakeRun(stdout="vrag-search\nvrag-vlm\n")
    runner = _runner(fake)

    assert runner.is_running(_service("vrag-vlm"))
    assert not runner.is_running(_service("vrag-demo"))
    assert fake.calls[0][0] == BASE + ["ps", "--status", "running", "--services"]


def test_nonzero_exit_raises_runner_error() -> None:
    fake = _FakeRun(returncode=1, stderr="pulling...\nno such service: vrag-search\n")

    with pytest.raises(RunnerError) as excinfo:
        _runner(fake).start(_service())

    assert excinfo.value.service == "vrag-search"
    assert "no such service" in str(excinfo.value)


def test_missing_executable_raises_runner_error() -> None:
    fake = _FakeRun(error=FileNotFoundError("docker"))

    with pytest.raises(RunnerError):
        _runner(fake).stop(_service())


def test_down_with_cleanup_flags() -> None:
    fake = _FakeRun()

    _runner(fake).down(volumes=True, remove_orphans=True)

    assert fake.calls[0][0] == BASE + ["down", "--volumes", "--remove-orphans"]


def test_run_job_uses_profile() -> None:
    fake = _FakeRun()

    _runner(fake).run_job("vrag-setup", profile="setup")

    argv, kwargs = fake.calls[0]
    assert argv == BASE + ["--profile", "setup", "run", "--rm", "vrag-setup"]
    assert "capture_output" not in kwargs


def test_run_job_failure() -> None:
    with pytest.raises(RunnerError):
        _runner(_FakeRun(returncode=2)).run_job("vrag-setup")


def test_logs_streams_without_capture() -> None:
    fake = _FakeRun(returncode=0)

    code = _runner(fake).logs("vrag-vlm", follow=False, tail=50)

    assert code == 0
    assert fake.calls[0][0] == BASE + ["logs", "--tail=50", "vrag-vlm"]


def test_from_config_splits_command() -> None:
    fake_config = {"compose": {"command": "docker-compose", "file": "a.yml", "project_name": "p"}}

    runner = ComposeRunner.from_config(fake_config)

    assert runner.executable == "docker-compose"
