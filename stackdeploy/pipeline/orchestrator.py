"""Prepare -> Build -> Launch -> Cleanup state machine.

Stages run strictly in order. Cleanup always runs, whatever happened before
it, and its own problems are logged as warnings and never change the run's
outcome. The first stage failure becomes the run's terminal error.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Callable, Mapping

from stackdeploy.build.builder import ScopedImageBuilder
from stackdeploy.build.secret_store import EphemeralSecretStore
from stackdeploy.common.cancellation import CancellationToken
from stackdeploy.common.config_loader import PipelineConfig
from stackdeploy.common.constants import BUILT_IMAGE_PLACEHOLDER, STAGES
from stackdeploy.common.errors import (
    CleanupWarning,
    ConfigError,
    PipelineCancelled,
    PipelineError,
    StageError,
    UnexpectedError,
)
from stackdeploy.common.fs import erase_path
from stackdeploy.common.logging import log_event, log_warning
from stackdeploy.common.models import (
    BuildRequest,
    CredentialPair,
    ImageReference,
    PipelineRun,
    RunStatus,
    StageOutcome,
)
from stackdeploy.common.time_utils import elapsed_ms, monotonic_ms
from stackdeploy.credentials.resolver import CredentialSource, build_sources, resolve
from stackdeploy.launch.graph import topological_levels
from stackdeploy.launch.launcher import StackLauncher

LauncherFactory = Callable[[ImageReference], StackLauncher]


def build_request_from_config(config: PipelineConfig) -> BuildRequest:
    build = config.build
    return BuildRequest(
        context=build.context,
        dockerfile=build.dockerfile,
        target=build.target,
        secret_ids=build.secret_ids,
        build_args=(*build.build_args, (build.index_url_arg, config.index_url)),
    )


class PipelineOrchestrator:
    def __init__(
        self,
        config: PipelineConfig,
        *,
        run_id: str,
        logger: logging.Logger,
        secret_store: EphemeralSecretStore,
        builder: ScopedImageBuilder,
        launcher_factory: LauncherFactory,
        sources: list[CredentialSource] | None = None,
        environ: Mapping[str, str] | None = None,
        cancel: CancellationToken | None = None,
    ) -> None:
        self.config = config
        self.run_id = run_id
        self.logger = logger
        self.secret_store = secret_store
        self.builder = builder
        self.launcher_factory = launcher_factory
        self.sources = sources
        self.environ = environ
        self.cancel = cancel or CancellationToken()
        self.launcher: StackLauncher | None = None
        self._credentials: CredentialPair | None = None
        self._request: BuildRequest | None = None

    def run(self) -> PipelineRun:
        run = PipelineRun(run_id=self.run_id, stages=STAGES)
        log_event(self.logger, "run start", run_id=self.run_id, event="RUN_START", status="ok")
        try:
            self._run_stage(run, "prepare", self._prepare)
            self._run_stage(run, "build", self._build)
            self._run_stage(run, "launch", self._launch)
        except PipelineError:
            pass
        finally:
            self._cleanup(run)

        run.current_stage = None
        run.status = RunStatus.FAILED if run.error is not None else RunStatus.SUCCEEDED
        log_event(
            self.logger,
            f"run finished: {run.status.value}",
            run_id=self.run_id,
            stage=run.failed_stage,
            event="RUN_END",
            status="ok" if run.status is RunStatus.SUCCEEDED else "error",
            error_code=getattr(run.error, "error_code", None),
        )
        return run

    def _run_stage(self, run: PipelineRun, stage: str, action: Callable[[PipelineRun], None]) -> None:
        run.current_stage = stage
        started = monotonic_ms()
        log_event(self.logger, "stage start", run_id=self.run_id, stage=stage, event="STAGE_START", status="ok")
        try:
            self.cancel.raise_if_cancelled()
            action(run)
        except PipelineError as exc:
            self._fail(run, stage, exc, started)
            raise
        except Exception as exc:
            error = UnexpectedError(f"Unexpected failure in {stage}: {exc}")
            self._fail(run, stage, error, started)
            raise error from exc
        run.outcomes[stage] = StageOutcome(stage=stage, status="succeeded", duration_ms=elapsed_ms(started))
        log_event(
            self.logger,
            "stage end",
            run_id=self.run_id,
            stage=stage,
            event="STAGE_END",
            status="ok",
            duration_ms=run.outcomes[stage].duration_ms,
        )

    def _fail(self, run: PipelineRun, stage: str, error: PipelineError, started: int) -> None:
        status = "cancelled" if isinstance(error, PipelineCancelled) else "failed"
        run.outcomes[stage] = StageOutcome(
            stage=stage,
            status=status,
            duration_ms=elapsed_ms(started),
            error_code=error.error_code,
            message=str(error),
        )
        if run.error is None:
            run.error = error
            run.failed_stage = stage
        self.logger.error(
            f"stage {status}: {error}",
            extra={
                "run_id": self.run_id,
                "stage": stage,
                "event": "STAGE_FAIL",
                "status": "error",
                "error_code": error.error_code,
                "duration_ms": run.outcomes[stage].duration_ms,
            },
        )

    def _prepare(self, run: PipelineRun) -> None:
        if not self.config.staging_dir.is_dir():
            raise ConfigError(f"Staging directory does not exist: {self.config.staging_dir}")
        sources = self.sources
        if sources is None:
            sources = build_sources(self.config.credentials, environ=self.environ)
        self._credentials = resolve(sources)
        self._request = build_request_from_config(self.config)
        topological_levels(self.config.stack.services)

    def _build(self, run: PipelineRun) -> None:
        if self._credentials is None or self._request is None:
            raise StageError("Build requires resolved credentials from prepare")
        try:
            with self.secret_store.scoped(self._credentials, self.config.build.secret_ids) as handle:
                run.image = self.builder.build(self._request, [handle])
        finally:
            self._credentials = None

    def _launch(self, run: PipelineRun) -> None:
        if run.image is None:
            raise StageError("Launch requires a built image")
        services = [
            replace(service, image=run.image.tag) if service.image == BUILT_IMAGE_PLACEHOLDER else service
            for service in self.config.stack.services
        ]
        self.launcher = self.launcher_factory(run.image)
        try:
            state = self.launcher.launch(services)
        finally:
            run.stack = self.launcher.state
        if not state.is_ready:
            error = state.first_error
            if isinstance(error, PipelineError):
                raise error
            raise StageError("Stack did not reach Ready")

    def _cleanup(self, run: PipelineRun) -> None:
        run.current_stage = "cleanup"
        started = monotonic_ms()
        warnings = 0
        log_event(self.logger, "stage start", run_id=self.run_id, stage="cleanup", event="STAGE_START", status="ok")
        self._credentials = None
        try:
            released = self.secret_store.release_all()
            if released:
                log_event(
                    self.logger,
                    f"released {released} outstanding secret handle(s)",
                    run_id=self.run_id,
                    stage="cleanup",
                    event="SECRETS_RELEASED",
                    status="ok",
                )
            for path in self.config.cleanup_paths:
                if not path.exists() and not path.is_symlink():
                    continue
                try:
                    erase_path(path)
                except OSError as exc:
                    warnings += 1
                    self._warn(CleanupWarning(f"Unable to erase {path}: {exc}"))
        except Exception as exc:
            warnings += 1
            self._warn(CleanupWarning(f"Cleanup failed: {exc}"))

        run.outcomes["cleanup"] = StageOutcome(
            stage="cleanup",
            status="warning" if warnings else "succeeded",
            duration_ms=elapsed_ms(started),
            error_code=CleanupWarning.error_code if warnings else None,
        )
        log_event(
            self.logger,
            "stage end",
            run_id=self.run_id,
            stage="cleanup",
            event="STAGE_END",
            status="warning" if warnings else "ok",
            duration_ms=run.outcomes["cleanup"].duration_ms,
        )

    def _warn(self, warning: CleanupWarning) -> None:
        log_warning(
            self.logger,
            str(warning),
            run_id=self.run_id,
            stage="cleanup",
            event="CLEANUP_WARNING",
            status="warning",
            error_code=warning.error_code,
        )
