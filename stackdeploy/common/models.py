"""Data models used across the pipeline."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Mapping


@dataclass(frozen=True)
class CredentialPair:
    identifier: str
    secret: str = field(repr=False)

    def is_complete(self) -> bool:
        return bool(self.identifier) and bool(self.secret)


@dataclass(frozen=True)
class SecretHandle:
    """Opaque reference to materialized secret files. Only the builder reads ``mounts``."""

    handle_id: str
    directory: Path
    mounts: Mapping[str, Path] = field(repr=False)
    sensitive_ids: frozenset[str] = frozenset()


@dataclass(frozen=True)
class BuildRequest:
    context: Path
    dockerfile: Path
    target: str
    secret_ids: tuple[str, ...]
    build_args: tuple[tuple[str, str], ...] = ()


@dataclass(frozen=True)
class ImageReference:
    tag: str
    image_id: str

    def __str__(self) -> str:
        return self.tag


@dataclass(frozen=True)
class HealthCheckSpec:
    type: str = "backend"
    url: str | None = None
    command: tuple[str, ...] = ()
    interval_seconds: float = 2.0
    timeout_seconds: float = 120.0


@dataclass(frozen=True)
class ServiceSpec:
    name: str
    image: str
    depends_on: frozenset[str] = frozenset()
    health_check: HealthCheckSpec = field(default_factory=HealthCheckSpec)
    restart_policy: str = "no"


class ServiceStatus(str, Enum):
    PENDING = "Pending"
    STARTING = "Starting"
    HEALTH_CHECK_PENDING = "HealthCheckPending"
    READY = "Ready"
    FAILED = "Failed"


class StackState:
    """Per-service lifecycle status. Mutated only by the stack launcher."""

    def __init__(self, services: list[ServiceSpec]) -> None:
        self.services = {service.name: service for service in services}
        self.status = {name: ServiceStatus.PENDING for name in self.services}
        self.errors: dict[str, Exception] = {}
        self._order: list[str] = []
        self._lock = threading.Lock()

    def transition(self, name: str, status: ServiceStatus) -> None:
        with self._lock:
            self.status[name] = status

    def record_error(self, name: str, error: Exception) -> None:
        with self._lock:
            if name in self.errors:
                return
            self.errors[name] = error
            self._order.append(name)

    def get(self, name: str) -> ServiceStatus:
        with self._lock:
            return self.status[name]

    @property
    def is_ready(self) -> bool:
        with self._lock:
            return all(value is ServiceStatus.READY for value in self.status.values())

    @property
    def first_error(self) -> Exception | None:
        with self._lock:
            if not self._order:
                return None
            return self.errors[self._order[0]]

    def to_dict(self) -> list[dict[str, Any]]:
        with self._lock:
            rows = []
            for name in sorted(self.services):
                error = self.errors.get(name)
                rows.append(
                    {
                        "service": name,
                        "status": self.status[name].value,
                        "error_code": getattr(error, "error_code", None),
                        "error": str(error) if error is not None else None,
                    }
                )
            return rows


class RunStatus(str, Enum):
    RUNNING = "Running"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"


@dataclass
class StageOutcome:
    stage: str
    status: str
    duration_ms: int | None = None
    error_code: str | None = None
    message: str | None = None


@dataclass
class PipelineRun:
    run_id: str
    stages: tuple[str, ...]
    current_stage: str | None = None
    outcomes: dict[str, StageOutcome] = field(default_factory=dict)
    status: RunStatus = RunStatus.RUNNING
    failed_stage: str | None = None
    error: Exception | None = None
    image: ImageReference | None = None
    stack: StackState | None = None

    @property
    def cancelled(self) -> bool:
        return getattr(self.error, "error_code", None) == "CANCELLED"

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "status": self.status.value,
            "failed_stage": self.failed_stage,
            "error_code": getattr(self.error, "error_code", None),
            "error": str(self.error) if self.error is not None else None,
            "image": {"tag": self.image.tag, "image_id": self.image.image_id} if self.image else None,
            "stages": [
                {
                    "stage": stage,
                    "status": self.outcomes[stage].status if stage in self.outcomes else "skipped",
                    "duration_ms": self.outcomes[stage].duration_ms if stage in self.outcomes else None,
                    "error_code": self.outcomes[stage].error_code if stage in self.outcomes else None,
                }
                for stage in self.stages
            ],
            "services": self.stack.to_dict() if self.stack is not None else [],
        }
