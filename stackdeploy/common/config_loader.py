"""Configuration loading, validation, and CLI overrides."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from stackdeploy.common.constants import DEFAULT_SECRET_IDS
from stackdeploy.common.errors import ConfigError
from stackdeploy.common.fs import read_yaml
from stackdeploy.common.models import HealthCheckSpec, ServiceSpec
from stackdeploy.common.schema import validate_pipeline_config

DEFAULT_CREDENTIAL_SOURCES = ("explicit",)
DEFAULT_PASSWORD_ENV = "STACKDEPLOY_PASSWORD"


@dataclass(frozen=True)
class CredentialConfig:
    sources: tuple[str, ...] = DEFAULT_CREDENTIAL_SOURCES
    username: str | None = None
    password_env: str = DEFAULT_PASSWORD_ENV
    store_file: Path | None = None


@dataclass(frozen=True)
class BuildConfig:
    context: Path
    dockerfile: Path
    target: str
    identifier_secret_id: str = DEFAULT_SECRET_IDS[0]
    secret_secret_id: str = DEFAULT_SECRET_IDS[1]
    index_url_arg: str = "INDEX_URL"
    build_args: tuple[tuple[str, str], ...] = ()
    timeout_seconds: float = 1800.0
    docker_binary: str = "docker"

    @property
    def secret_ids(self) -> tuple[str, str]:
        return (self.identifier_secret_id, self.secret_secret_id)


@dataclass(frozen=True)
class StackConfig:
    compose_file: Path
    project: str
    metadata_service: str
    broker_service: str
    services: tuple[ServiceSpec, ...]
    image_variable: str = "STACK_IMAGE"
    on_dependency_failure: str = "leave_running"
    max_start_attempts: int = 3
    docker_binary: str = "docker"


@dataclass(frozen=True)
class PipelineConfig:
    """Immutable parameter set handed to the orchestrator at construction."""

    index_url: str
    staging_dir: Path
    credentials: CredentialConfig
    build: BuildConfig
    stack: StackConfig
    cleanup_paths: tuple[Path, ...] = field(default_factory=tuple)


def _deep_merge(base: Any, overlay: Any) -> Any:
    if isinstance(base, dict) and isinstance(overlay, dict):
        merged = dict(base)
        for key, value in overlay.items():
            if key in merged:
                merged[key] = _deep_merge(merged[key], value)
            else:
                merged[key] = value
        return merged
    return overlay


def load_raw_config(path: Path, overlay_path: Path | None = None) -> dict:
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")
    base = read_yaml(path)
    if overlay_path is None or not overlay_path.exists():
        return base
    overlay = read_yaml(overlay_path)
    if overlay is None:
        return base
    if not isinstance(overlay, dict):
        raise ConfigError(f"Overlay config must be a mapping: {overlay_path}")
    return _deep_merge(base, overlay)


def parse_source_list(value: str | list[str] | tuple[str, ...]) -> tuple[str, ...]:
    if isinstance(value, str):
        items = [item.strip() for item in value.split(",")]
    else:
        items = [str(item).strip() for item in value]
    sources = tuple(item for item in items if item)
    if not sources:
        raise ConfigError("At least one credential source is required")
    return sources


def _health_spec(raw: dict | None, defaults: dict) -> HealthCheckSpec:
    merged = {**defaults, **(raw or {})}
    return HealthCheckSpec(
        type=merged.get("type", "backend"),
        url=merged.get("url"),
        command=tuple(merged.get("command") or ()),
        interval_seconds=float(merged.get("interval_seconds", 2.0)),
        timeout_seconds=float(merged.get("timeout_seconds", 120.0)),
    )


def build_service_specs(services: dict, health_defaults: dict | None = None) -> tuple[ServiceSpec, ...]:
    defaults = dict(health_defaults or {})
    specs = []
    for name in sorted(services):
        svc = services[name]
        specs.append(
            ServiceSpec(
                name=name,
                image=svc["image"],
                depends_on=frozenset(svc.get("depends_on") or ()),
                health_check=_health_spec(svc.get("health"), defaults),
                restart_policy=svc.get("restart", "no"),
            )
        )
    return tuple(specs)


def build_pipeline_config(
    raw: dict,
    *,
    index_url: str | None = None,
    credentials_source: str | None = None,
    staging_dir: str | Path | None = None,
    username: str | None = None,
    password_env: str | None = None,
    allow_unknown: bool = False,
) -> PipelineConfig:
    cfg = validate_pipeline_config(raw, allow_unknown=allow_unknown)

    resolved_index_url = index_url or cfg.get("index_url")
    if not resolved_index_url:
        raise ConfigError("A private index URL is required (index_url or --private-index-url)")
    staging = Path(staging_dir or cfg.get("staging_dir") or ".")

    cred_raw = cfg.get("credentials") or {}
    store_file = cred_raw.get("store_file")
    credentials = CredentialConfig(
        sources=parse_source_list(credentials_source or cred_raw.get("sources") or DEFAULT_CREDENTIAL_SOURCES),
        username=username,
        password_env=password_env or cred_raw.get("password_env") or DEFAULT_PASSWORD_ENV,
        store_file=Path(store_file) if store_file else None,
    )

    build_raw = cfg["build"]
    build = BuildConfig(
        context=staging / build_raw["context"],
        dockerfile=staging / build_raw["dockerfile"],
        target=build_raw["target"],
        identifier_secret_id=build_raw["secret_ids"]["identifier"],
        secret_secret_id=build_raw["secret_ids"]["secret"],
        index_url_arg=build_raw.get("index_url_arg", "INDEX_URL"),
        build_args=tuple(sorted((str(k), str(v)) for k, v in (build_raw.get("build_args") or {}).items())),
        timeout_seconds=float(build_raw.get("timeout_seconds", 1800.0)),
        docker_binary=build_raw.get("docker_binary", "docker"),
    )

    stack_raw = cfg["stack"]
    stack = StackConfig(
        compose_file=staging / stack_raw["compose_file"],
        project=stack_raw["project"],
        metadata_service=stack_raw["metadata_service"],
        broker_service=stack_raw["broker_service"],
        services=build_service_specs(stack_raw["services"], stack_raw.get("health_defaults")),
        image_variable=stack_raw.get("image_variable", "STACK_IMAGE"),
        on_dependency_failure=stack_raw.get("on_dependency_failure", "leave_running"),
        max_start_attempts=int(stack_raw.get("max_start_attempts", 3)),
        docker_binary=stack_raw.get("docker_binary", "docker"),
    )

    cleanup_raw = cfg.get("cleanup") or {}
    cleanup_paths = tuple(staging / p for p in cleanup_raw.get("paths", []))

    return PipelineConfig(
        index_url=resolved_index_url,
        staging_dir=staging,
        credentials=credentials,
        build=build,
        stack=stack,
        cleanup_paths=cleanup_paths,
    )


def load_pipeline_config(
    path: Path,
    *,
    overlay_path: Path | None = None,
    **overrides: Any,
) -> PipelineConfig:
    return build_pipeline_config(load_raw_config(path, overlay_path), **overrides)
