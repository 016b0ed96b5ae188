"""CLI entrypoint for the build-and-launch deployment pipeline."""

from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

from stackdeploy.build.builder import ScopedImageBuilder
from stackdeploy.build.docker_backend import DockerBuildBackend
from stackdeploy.build.secret_store import EphemeralSecretStore
from stackdeploy.common.cancellation import CancellationToken, install_signal_handlers
from stackdeploy.common.config_loader import PipelineConfig, load_pipeline_config
from stackdeploy.common.constants import COMMANDS, EXIT_PREPARE_FAIL, EXIT_SUCCESS
from stackdeploy.common.errors import PipelineError
from stackdeploy.common.http import HttpClient
from stackdeploy.common.ids import generate_run_id
from stackdeploy.common.logging import SecretRedactionFilter, build_logger, log_event
from stackdeploy.common.models import ImageReference
from stackdeploy.launch.compose_backend import DockerComposeBackend
from stackdeploy.launch.graph import topological_levels
from stackdeploy.launch.launcher import StackLauncher
from stackdeploy.pipeline.orchestrator import PipelineOrchestrator
from stackdeploy.pipeline.reports import exit_code_for, render_summary, write_run_summary


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("command", choices=COMMANDS)
    parser.add_argument("--private-index-url", default=None)
    parser.add_argument("--credentials-source", default=None, help="ordered list, e.g. explicit,env:nexus,file:nexus")
    parser.add_argument("--staging-dir", default=None)
    parser.add_argument("--config", default="./config/pipeline.yml")
    parser.add_argument("--overlay-config", default=None)
    parser.add_argument("--username", default=None)
    parser.add_argument("--password-env", default=None, help="environment variable holding the explicit secret")
    parser.add_argument("--run-id", default=None)
    parser.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    parser.add_argument("--log-dir", default=None)
    parser.add_argument("--summary-path", default=None)
    return parser.parse_args(argv)


def load_config(args: argparse.Namespace) -> PipelineConfig:
    return load_pipeline_config(
        Path(args.config),
        overlay_path=Path(args.overlay_config) if args.overlay_config else None,
        index_url=args.private_index_url,
        credentials_source=args.credentials_source,
        staging_dir=args.staging_dir,
        username=args.username,
        password_env=args.password_env,
    )


def build_orchestrator(
    config: PipelineConfig,
    *,
    run_id: str,
    logger,
    redactor: SecretRedactionFilter,
    cancel: CancellationToken,
    http: HttpClient,
) -> PipelineOrchestrator:
    secret_store = EphemeralSecretStore(logger, redactor=redactor, run_id=run_id)
    builder = ScopedImageBuilder(
        DockerBuildBackend(docker_binary=config.build.docker_binary),
        logger,
        timeout_seconds=config.build.timeout_seconds,
        cancel=cancel,
        run_id=run_id,
    )
    stack = config.stack

    def launcher_factory(image: ImageReference) -> StackLauncher:
        backend = DockerComposeBackend(
            stack.compose_file,
            stack.project,
            env={stack.image_variable: image.tag},
            docker_binary=stack.docker_binary,
        )
        return StackLauncher(
            backend,
            logger,
            http=http,
            on_dependency_failure=stack.on_dependency_failure,
            max_start_attempts=stack.max_start_attempts,
            cancel=cancel,
            run_id=run_id,
        )

    return PipelineOrchestrator(
        config,
        run_id=run_id,
        logger=logger,
        secret_store=secret_store,
        builder=builder,
        launcher_factory=launcher_factory,
        environ=os.environ,
        cancel=cancel,
    )


def validate_command(config: PipelineConfig, logger, run_id: str) -> int:
    levels = topological_levels(config.stack.services)
    for depth, level in enumerate(levels):
        log_event(
            logger,
            f"level {depth}: {', '.join(service.name for service in level)}",
            run_id=run_id,
            stage="prepare",
            event="GRAPH_LEVEL",
            status="ok",
        )
    return EXIT_SUCCESS


def run_command(args: argparse.Namespace, cancel: CancellationToken | None = None) -> int:
    run_id = args.run_id or generate_run_id()
    redactor = SecretRedactionFilter()
    logger = build_logger(
        run_id,
        log_dir=Path(args.log_dir) if args.log_dir else None,
        level=args.log_level,
        redactor=redactor,
    )
    try:
        config = load_config(args)
        if args.command == "validate":
            return validate_command(config, logger, run_id)
    except PipelineError as exc:
        logger.error(
            f"configuration rejected: {exc}",
            extra={"run_id": run_id, "stage": "prepare", "event": "CONFIG_FAIL", "status": "error", "error_code": exc.error_code},
        )
        return EXIT_PREPARE_FAIL

    cancel = cancel or CancellationToken()
    with HttpClient() as http:
        orchestrator = build_orchestrator(config, run_id=run_id, logger=logger, redactor=redactor, cancel=cancel, http=http)
        run = orchestrator.run()

    if args.summary_path:
        write_run_summary(Path(args.summary_path), run)
    print(redactor.redact(render_summary(run)))
    return exit_code_for(run)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv if argv is not None else sys.argv[1:])
    cancel = CancellationToken()
    install_signal_handlers(cancel)
    try:
        return run_command(args, cancel=cancel)
    except PipelineError:
        return EXIT_PREPARE_FAIL


if __name__ == "__main__":
    raise SystemExit(main())
