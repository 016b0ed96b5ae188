from __future__ import annotations

from pathlib import Path

import pytest

from stackdeploy.common.errors import ServiceStartError
from stackdeploy.common.process import ProcessResult
from stackdeploy.launch.compose_backend import DockerComposeBackend, parse_ps_output


class RecordingRunner:
    def __init__(self, stdout: str = "", returncode: int = 0):
        self.stdout = stdout
        self.returncode = returncode
        self.calls = []

    def __call__(self, args, **kwargs):
        self.calls.append((list(args), kwargs))
        return ProcessResult(args=tuple(args), returncode=self.returncode, stdout=self.stdout, stderr="")


def _backend(runner) -> DockerComposeBackend:
    return DockerComposeBackend(Path("docker-compose.yaml"), "airflow", env={"AIRFLOW_IMAGE_NAME": "custom:1"}, runner=runner)


def test_parse_ps_output_accepts_array_and_lines():
    assert parse_ps_output('[{"Service": "db", "State": "running"}]') == [{"Service": "db", "State": "running"}]
    assert parse_ps_output('{"Service": "db"}\n{"Service": "db2"}\n') == [{"Service": "db"}, {"Service": "db2"}]
    assert parse_ps_output("") == []


def test_start_runs_compose_up_without_dependencies():
    runner = RecordingRunner()
    _backend(runner).start("postgres")

    args, kwargs = runner.calls[0]
    assert args[:2] == ["docker", "compose"]
    assert args[-4:] == ["up", "--detach", "--no-deps", "postgres"]
    assert kwargs["env"] == {"AIRFLOW_IMAGE_NAME": "custom:1"}


def test_start_failure_raises_service_start_error():
    with pytest.raises(ServiceStartError):
        _backend(RecordingRunner(returncode=1)).start("postgres")


def test_status_prefers_health_over_state():
    runner = RecordingRunner('{"Service": "postgres", "State": "running", "Health": "starting"}')
    assert _backend(runner).status("postgres") == "starting"

    runner = RecordingRunner('{"Service": "redis", "State": "running", "Health": ""}')
    assert _backend(runner).status("redis") == "running"

    assert _backend(RecordingRunner("")).status("redis") == "missing"


def test_exec_reports_exit_status():
    assert _backend(RecordingRunner(returncode=0)).exec("redis", ("redis-cli", "ping")) is True
    runner = RecordingRunner(returncode=1)
    assert _backend(runner).exec("redis", ("redis-cli", "ping")) is False
    assert runner.calls[0][0][-4:] == ["-T", "redis", "redis-cli", "ping"]
