"""Domain errors and failure typing."""

from __future__ import annotations


class PipelineError(Exception):
    """Base class for pipeline failures."""

    error_code = "PIPELINE_ERROR"


class ConfigError(PipelineError):
    """Raised for invalid or missing configuration."""

    error_code = "CONFIG_ERROR"


class StageError(PipelineError):
    """Raised for stage failures that halt the run."""

    error_code = "STAGE_ERROR"


class MissingCredentialError(PipelineError):
    """Raised when no credential source yields both identifier and secret."""

    error_code = "MISSING_CREDENTIAL"


class CommandError(StageError):
    """Raised when an external command exits non-zero or times out."""

    error_code = "COMMAND_ERROR"

    def __init__(self, message: str, *, returncode: int | None = None, stderr: str = "") -> None:
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr


class BuildError(StageError):
    """Raised for any image build failure. Never retried automatically."""

    error_code = "BUILD_ERROR"

    def __init__(self, message: str, *, stage: str, cause: BaseException | None = None) -> None:
        super().__init__(f"[{stage}] {message}")
        self.stage = stage
        self.cause = cause


class DependencyCycleError(ConfigError):
    """Raised when the service graph has no valid topological order."""

    error_code = "DEPENDENCY_CYCLE"

    def __init__(self, message: str, *, services: tuple[str, ...] = ()) -> None:
        super().__init__(message)
        self.services = services


class ServiceStartError(StageError):
    error_code = "SERVICE_START_ERROR"


class HealthCheckTimeoutError(StageError):
    """Raised when a started service never passes its health check."""

    error_code = "HEALTH_CHECK_TIMEOUT"


class DependencyTimeoutError(StageError):
    """Recorded for a service whose dependencies never became ready."""

    error_code = "DEPENDENCY_TIMEOUT"

    def __init__(self, service: str, dependencies: tuple[str, ...]) -> None:
        super().__init__(f"Service {service} aborted; dependencies not ready: {', '.join(dependencies)}")
        self.service = service
        self.dependencies = dependencies


class PipelineCancelled(PipelineError):
    """Raised when the external cancellation signal interrupts a stage."""

    error_code = "CANCELLED"


class CleanupWarning(PipelineError):
    """Non-fatal cleanup failure. Logged, never raised."""

    error_code = "CLEANUP_WARNING"


class UnexpectedError(StageError):
    error_code = "UNEXPECTED_ERROR"
