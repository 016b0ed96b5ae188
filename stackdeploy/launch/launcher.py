"""Dependency-ordered, health-gated stack launch."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, Iterable, Protocol

from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_fixed

from stackdeploy.common.cancellation import CancellationToken
from stackdeploy.common.errors import (
    CommandError,
    DependencyTimeoutError,
    HealthCheckTimeoutError,
    PipelineCancelled,
    PipelineError,
    ServiceStartError,
    UnexpectedError,
)
from stackdeploy.common.http import HttpClient
from stackdeploy.common.logging import log_event, log_warning
from stackdeploy.common.models import ServiceSpec, ServiceStatus, StackState
from stackdeploy.common.time_utils import elapsed_ms, monotonic_ms
from stackdeploy.launch.graph import topological_levels
from stackdeploy.launch.health import HealthPredicate, build_predicate, wait_until_healthy


class StackBackend(Protocol):
    def start(self, service: str) -> None: ...

    def stop(self, service: str) -> None: ...

    def status(self, service: str) -> str: ...

    def exec(self, service: str, command: tuple[str, ...]) -> bool: ...


class StackLauncher:
    """Starts services level by level in dependency order.

    Services of one level run concurrently on a thread pool. A service is only
    started once every dependency is Ready; otherwise it stays Pending with a
    ``DependencyTimeoutError`` and its own dependents are skipped in turn.
    """

    def __init__(
        self,
        backend: StackBackend,
        logger: logging.Logger,
        *,
        http: HttpClient | None = None,
        on_dependency_failure: str = "leave_running",
        max_start_attempts: int = 3,
        start_retry_wait_seconds: float = 2.0,
        cancel: CancellationToken | None = None,
        run_id: str | None = None,
        predicate_factory: Callable[[ServiceSpec], HealthPredicate] | None = None,
    ) -> None:
        self.backend = backend
        self.logger = logger
        self.http = http or HttpClient()
        self.on_dependency_failure = on_dependency_failure
        self.max_start_attempts = max_start_attempts
        self.start_retry_wait_seconds = start_retry_wait_seconds
        self.cancel = cancel or CancellationToken()
        self.run_id = run_id
        self.predicate_factory = predicate_factory or (
            lambda service: build_predicate(service, self.backend, self.http)
        )
        self.state: StackState | None = None

    def _log(self, message: str, service: str, event: str, status: str, **fields) -> None:
        log_event(self.logger, message, run_id=self.run_id, stage="launch", service=service, event=event, status=status, **fields)

    def launch(self, services: Iterable[ServiceSpec]) -> StackState:
        services = list(services)
        levels = topological_levels(services)
        state = StackState(services)
        self.state = state

        for level in levels:
            self.cancel.raise_if_cancelled()
            runnable = []
            for service in level:
                blocked = tuple(sorted(dep for dep in service.depends_on if state.get(dep) is not ServiceStatus.READY))
                if blocked:
                    error = DependencyTimeoutError(service.name, blocked)
                    state.record_error(service.name, error)
                    self._log(str(error), service.name, "SERVICE_SKIPPED", "error", error_code=error.error_code)
                    continue
                runnable.append(service)
            if runnable:
                self._run_level(runnable, state)

        if not state.is_ready and self.on_dependency_failure == "tear_down":
            self._tear_down(levels, state)
        return state

    def _run_level(self, level: list[ServiceSpec], state: StackState) -> None:
        cancelled: PipelineCancelled | None = None
        with ThreadPoolExecutor(max_workers=len(level), thread_name_prefix="launch") as pool:
            futures = [pool.submit(self._bring_up, service, state) for service in level]
            for future in as_completed(futures):
                try:
                    future.result()
                except PipelineCancelled as exc:
                    cancelled = cancelled or exc
        if cancelled is not None:
            raise cancelled

    def _start(self, service: ServiceSpec) -> None:
        attempts = 1 if service.restart_policy == "no" else self.max_start_attempts
        retrying = Retrying(
            stop=stop_after_attempt(attempts),
            wait=wait_fixed(self.start_retry_wait_seconds),
            retry=retry_if_exception_type((ServiceStartError, CommandError)),
            sleep=self.cancel.sleep,
            reraise=True,
        )
        try:
            for attempt in retrying:
                with attempt:
                    self.cancel.raise_if_cancelled()
                    self.backend.start(service.name)
        except CommandError as exc:
            raise ServiceStartError(f"Service {service.name} failed to start: {exc}") from exc

    def _bring_up(self, service: ServiceSpec, state: StackState) -> None:
        started = monotonic_ms()
        state.transition(service.name, ServiceStatus.STARTING)
        self._log(f"starting {service.name}", service.name, "SERVICE_START", "ok")
        check = service.health_check
        try:
            self._start(service)
            state.transition(service.name, ServiceStatus.HEALTH_CHECK_PENDING)
            attempts = wait_until_healthy(
                service.name,
                self.predicate_factory(service),
                interval_seconds=check.interval_seconds,
                timeout_seconds=check.timeout_seconds,
                cancel=self.cancel,
            )
        except PipelineCancelled as exc:
            state.record_error(service.name, exc)
            raise
        except (ServiceStartError, HealthCheckTimeoutError) as exc:
            self._fail(service, state, exc)
            return
        except Exception as exc:
            error = UnexpectedError(f"Service {service.name} failed: {exc!r}")
            error.__cause__ = exc
            self._fail(service, state, error)
            return

        state.transition(service.name, ServiceStatus.READY)
        self._log(
            f"{service.name} ready",
            service.name,
            "SERVICE_READY",
            "ok",
            attempt=attempts,
            duration_ms=elapsed_ms(started),
        )

    def _fail(self, service: ServiceSpec, state: StackState, error: PipelineError) -> None:
        state.transition(service.name, ServiceStatus.FAILED)
        state.record_error(service.name, error)
        self._log(str(error), service.name, "SERVICE_FAIL", "error", error_code=error.error_code)

    def _tear_down(self, levels: list[list[ServiceSpec]], state: StackState) -> None:
        for level in reversed(levels):
            for service in level:
                if state.get(service.name) is ServiceStatus.PENDING:
                    continue
                try:
                    self.backend.stop(service.name)
                except CommandError as exc:
                    log_warning(
                        self.logger,
                        f"unable to stop {service.name}: {exc}",
                        run_id=self.run_id,
                        stage="launch",
                        service=service.name,
                        event="SERVICE_STOP_FAIL",
                        status="warning",
                        error_code=exc.error_code,
                    )
                    continue
                self._log(f"stopped {service.name}", service.name, "SERVICE_STOP", "ok")
