"""Image build with build-time-only secret inputs."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Mapping, Protocol, Sequence

from stackdeploy.common.cancellation import CancellationToken
from stackdeploy.common.errors import BuildError, CommandError
from stackdeploy.common.logging import log_event
from stackdeploy.common.models import BuildRequest, ImageReference, SecretHandle
from stackdeploy.common.time_utils import elapsed_ms, monotonic_ms


class BuildBackend(Protocol):
    def build(
        self,
        request: BuildRequest,
        mounts: Mapping[str, Path],
        *,
        timeout: float | None = None,
        cancel: CancellationToken | None = None,
    ) -> str: ...

    def inspect(self, tag: str) -> str: ...


class ScopedImageBuilder:
    """Runs one build per call. Failures raise ``BuildError`` and are never retried here."""

    def __init__(
        self,
        backend: BuildBackend,
        logger: logging.Logger,
        *,
        timeout_seconds: float | None = None,
        cancel: CancellationToken | None = None,
        run_id: str | None = None,
    ) -> None:
        self.backend = backend
        self.logger = logger
        self.timeout_seconds = timeout_seconds
        self.cancel = cancel
        self.run_id = run_id

    def _collect_mounts(self, request: BuildRequest, handles: Sequence[SecretHandle]) -> dict[str, Path]:
        mounts: dict[str, Path] = {}
        for handle in handles:
            mounts.update(handle.mounts)
        missing = [secret_id for secret_id in request.secret_ids if secret_id not in mounts]
        if missing:
            raise BuildError(f"No secret handle provides: {', '.join(missing)}", stage="prepare")
        return {secret_id: mounts[secret_id] for secret_id in request.secret_ids}

    def _sensitive_values(self, handles: Sequence[SecretHandle]) -> list[str]:
        values = []
        for handle in handles:
            for secret_id in sorted(handle.sensitive_ids):
                try:
                    value = handle.mounts[secret_id].read_text(encoding="utf-8")
                except OSError as exc:
                    raise BuildError(f"Secret {secret_id} is not readable", stage="prepare", cause=exc) from exc
                if value:
                    values.append(value)
        return values

    def _check_build_args(self, request: BuildRequest, secrets: list[str]) -> None:
        # Build args persist in image metadata, so a secret there is a leak.
        for key, value in request.build_args:
            if any(secret in value for secret in secrets):
                raise BuildError(f"Build argument {key} contains secret material", stage="prepare")

    def build(self, request: BuildRequest, handles: Sequence[SecretHandle]) -> ImageReference:
        mounts = self._collect_mounts(request, handles)
        secrets = self._sensitive_values(handles)
        self._check_build_args(request, secrets)

        started = monotonic_ms()
        log_event(
            self.logger,
            f"building {request.target}",
            run_id=self.run_id,
            stage="build",
            event="BUILD_START",
            status="ok",
        )
        try:
            image_id = self.backend.build(request, mounts, timeout=self.timeout_seconds, cancel=self.cancel)
        except CommandError as exc:
            raise BuildError(f"Image build failed: {exc}", stage="build", cause=exc) from exc

        try:
            metadata = self.backend.inspect(request.target)
        except CommandError as exc:
            raise BuildError(f"Unable to inspect {request.target}: {exc}", stage="verify", cause=exc) from exc
        if any(secret in metadata for secret in secrets):
            raise BuildError(f"Secret material found in {request.target} metadata", stage="verify")

        log_event(
            self.logger,
            f"built {request.target}",
            run_id=self.run_id,
            stage="build",
            event="BUILD_END",
            status="ok",
            duration_ms=elapsed_ms(started),
        )
        return ImageReference(tag=request.target, image_id=image_id)
