"""BuildKit image build backend driven through the docker CLI."""

from __future__ import annotations

from pathlib import Path
from typing import Mapping

from stackdeploy.common.cancellation import CancellationToken
from stackdeploy.common.errors import CommandError
from stackdeploy.common.models import BuildRequest
from stackdeploy.common.process import CommandRunner, run_process


def build_command(docker_binary: str, request: BuildRequest, mounts: Mapping[str, Path]) -> list[str]:
    args = [
        docker_binary,
        "buildx",
        "build",
        "--load",
        "--file",
        str(request.dockerfile),
        "--tag",
        request.target,
    ]
    # Secret mounts are exposed under /run/secrets/<id> for the RUN step only.
    for secret_id in request.secret_ids:
        args.extend(["--secret", f"id={secret_id},src={mounts[secret_id]}"])
    for key, value in request.build_args:
        args.extend(["--build-arg", f"{key}={value}"])
    args.append(str(request.context))
    return args


class DockerBuildBackend:
    def __init__(self, *, docker_binary: str = "docker", runner: CommandRunner = run_process) -> None:
        self.docker_binary = docker_binary
        self.runner = runner

    def build(
        self,
        request: BuildRequest,
        mounts: Mapping[str, Path],
        *,
        timeout: float | None = None,
        cancel: CancellationToken | None = None,
    ) -> str:
        self.runner(
            build_command(self.docker_binary, request, mounts),
            env={"DOCKER_BUILDKIT": "1"},
            timeout=timeout,
            cancel=cancel,
            check=True,
        )
        return self.image_id(request.target)

    def image_id(self, tag: str) -> str:
        result = self.runner(
            [self.docker_binary, "image", "inspect", "--format", "{{.Id}}", tag],
            check=True,
        )
        image_id = result.stdout.strip()
        if not image_id:
            raise CommandError(f"docker image inspect returned no id for {tag}")
        return image_id

    def inspect(self, tag: str) -> str:
        """Image config plus full layer history, as text."""
        config = self.runner([self.docker_binary, "image", "inspect", tag], check=True)
        history = self.runner(
            [self.docker_binary, "history", "--no-trunc", "--format", "{{.CreatedBy}}", tag],
            check=True,
        )
        return f"{config.stdout}\n{history.stdout}"
