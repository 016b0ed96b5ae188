"""Health-check predicates and fixed-interval readiness polling."""

from __future__ import annotations

from typing import Callable, Protocol

from tenacity import (
    RetryError,
    Retrying,
    retry_if_exception_type,
    retry_if_result,
    stop_after_delay,
    stop_when_event_set,
    wait_fixed,
)

from stackdeploy.common.cancellation import CancellationToken
from stackdeploy.common.errors import CommandError, HealthCheckTimeoutError, PipelineCancelled, ServiceStartError
from stackdeploy.common.http import HttpClient
from stackdeploy.common.models import ServiceSpec

HealthPredicate = Callable[[], bool]

HEALTHY_STATES = {"healthy"}
RUNNING_STATES = {"running"}
STOPPED_STATES = {"exited", "dead"}


class HealthBackend(Protocol):
    def status(self, service: str) -> str: ...

    def exec(self, service: str, command: tuple[str, ...]) -> bool: ...


def backend_predicate(backend: HealthBackend, service: str) -> HealthPredicate:
    # Containers without a HEALTHCHECK report "running" once up.
    def _check() -> bool:
        state = backend.status(service)
        if state in STOPPED_STATES:
            raise ServiceStartError(f"Service {service} is {state}")
        return state in HEALTHY_STATES or state in RUNNING_STATES

    return _check


def http_predicate(http: HttpClient, url: str) -> HealthPredicate:
    return lambda: http.probe(url)


def command_predicate(backend: HealthBackend, service: str, command: tuple[str, ...]) -> HealthPredicate:
    return lambda: backend.exec(service, command)


def build_predicate(service: ServiceSpec, backend: HealthBackend, http: HttpClient) -> HealthPredicate:
    check = service.health_check
    if check.type == "http":
        return http_predicate(http, check.url or "")
    if check.type == "command":
        return command_predicate(backend, service.name, check.command)
    return backend_predicate(backend, service.name)


def wait_until_healthy(
    service: str,
    predicate: HealthPredicate,
    *,
    interval_seconds: float,
    timeout_seconds: float,
    cancel: CancellationToken | None = None,
    on_attempt: Callable[[int], None] | None = None,
) -> int:
    """Poll ``predicate`` every ``interval_seconds`` until it returns True.

    Returns the number of attempts taken. Raises ``HealthCheckTimeoutError``
    when ``timeout_seconds`` elapses and ``PipelineCancelled`` when the
    cancellation token fires mid-wait. Any predicate exception other than
    ``CommandError`` ends the wait at once.
    """
    cancel = cancel or CancellationToken()
    attempts = 0

    def _attempt() -> bool:
        nonlocal attempts
        attempts += 1
        if on_attempt is not None:
            on_attempt(attempts)
        return bool(predicate())

    retrying = Retrying(
        stop=stop_after_delay(timeout_seconds) | stop_when_event_set(cancel.event),
        wait=wait_fixed(interval_seconds),
        retry=retry_if_result(lambda healthy: healthy is False) | retry_if_exception_type(CommandError),
        sleep=cancel.sleep,
    )
    try:
        retrying(_attempt)
    except RetryError as exc:
        if cancel.is_set():
            raise PipelineCancelled(f"Health wait for {service} abandoned: {cancel.reason}") from exc
        raise HealthCheckTimeoutError(
            f"Service {service} not healthy after {timeout_seconds}s ({attempts} checks)"
        ) from exc
    return attempts
