"""Stack backend driven through ``docker compose``."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Mapping

from stackdeploy.common.errors import CommandError, ServiceStartError
from stackdeploy.common.process import CommandRunner, run_process

MISSING_STATE = "missing"


def parse_ps_output(stdout: str) -> list[dict]:
    """Accept both the JSON array and the one-object-per-line forms of ``ps --format json``."""
    text = stdout.strip()
    if not text:
        return []
    if text.startswith("["):
        return json.loads(text)
    return [json.loads(line) for line in text.splitlines() if line.strip()]


class DockerComposeBackend:
    def __init__(
        self,
        compose_file: Path,
        project: str,
        *,
        env: Mapping[str, str] | None = None,
        docker_binary: str = "docker",
        runner: CommandRunner = run_process,
        command_timeout: float = 300.0,
    ) -> None:
        self.compose_file = compose_file
        self.project = project
        self.env = dict(env or {})
        self.docker_binary = docker_binary
        self.runner = runner
        self.command_timeout = command_timeout

    def _compose(self, *args: str) -> list[str]:
        return [self.docker_binary, "compose", "--file", str(self.compose_file), "--project-name", self.project, *args]

    def start(self, service: str) -> None:
        result = self.runner(
            self._compose("up", "--detach", "--no-deps", service),
            env=self.env,
            timeout=self.command_timeout,
        )
        if not result.ok:
            raise ServiceStartError(f"docker compose up {service} exited with status {result.returncode}")

    def status(self, service: str) -> str:
        result = self.runner(
            self._compose("ps", "--all", "--format", "json", service),
            env=self.env,
            timeout=self.command_timeout,
            check=True,
        )
        try:
            containers = parse_ps_output(result.stdout)
        except ValueError as exc:
            raise CommandError(f"Unparseable compose ps output for {service}") from exc
        if not containers:
            return MISSING_STATE
        container = containers[0]
        return (container.get("Health") or container.get("State") or MISSING_STATE).lower()

    def stop(self, service: str) -> None:
        self.runner(self._compose("stop", service), env=self.env, timeout=self.command_timeout, check=True)

    def exec(self, service: str, command: tuple[str, ...]) -> bool:
        result = self.runner(
            self._compose("exec", "-T", service, *command),
            env=self.env,
            timeout=self.command_timeout,
        )
        return result.ok
