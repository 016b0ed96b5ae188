"""Minimal strict schemas for YAML config validation."""

from __future__ import annotations

from stackdeploy.common.constants import (
    DEPENDENCY_FAILURE_POLICIES,
    HEALTH_CHECK_TYPES,
    RESTART_POLICIES,
)
from stackdeploy.common.errors import ConfigError

TOP_KEYS = {"index_url", "staging_dir", "credentials", "build", "stack", "cleanup"}
CREDENTIAL_KEYS = {"sources", "password_env", "store_file"}
BUILD_REQUIRED = {"context", "dockerfile", "target", "secret_ids"}
BUILD_KNOWN = BUILD_REQUIRED | {"index_url_arg", "build_args", "timeout_seconds", "docker_binary"}
STACK_REQUIRED = {"compose_file", "project", "metadata_service", "broker_service", "services"}
STACK_KNOWN = STACK_REQUIRED | {
    "image_variable",
    "on_dependency_failure",
    "max_start_attempts",
    "health_defaults",
    "docker_binary",
}
SERVICE_KNOWN = {"image", "depends_on", "health", "restart"}
HEALTH_KNOWN = {"type", "url", "command", "interval_seconds", "timeout_seconds"}


def _assert_mapping(obj, ctx: str) -> dict:
    if not isinstance(obj, dict):
        raise ConfigError(f"{ctx} must be a mapping")
    return obj


def _assert_required_keys(obj: dict, required: set[str], ctx: str) -> None:
    missing = required - set(obj)
    if missing:
        missing_str = ", ".join(sorted(missing))
        raise ConfigError(f"Missing keys in {ctx}: {missing_str}")


def _assert_no_unknown_keys(obj: dict, known: set[str], ctx: str, allow_unknown: bool) -> None:
    if allow_unknown:
        return
    unknown = set(obj) - known
    if unknown:
        unknown_str = ", ".join(sorted(unknown))
        raise ConfigError(f"Unknown keys in {ctx}: {unknown_str}")


def _assert_choice(value, choices: tuple[str, ...], ctx: str) -> None:
    if value not in choices:
        raise ConfigError(f"{ctx} must be one of {', '.join(choices)}; got {value!r}")


def _assert_positive(value, ctx: str) -> None:
    if not isinstance(value, (int, float)) or isinstance(value, bool) or value <= 0:
        raise ConfigError(f"{ctx} must be a positive number")


def validate_health_config(cfg: dict, ctx: str, *, allow_unknown: bool = False) -> dict:
    _assert_mapping(cfg, ctx)
    _assert_no_unknown_keys(cfg, HEALTH_KNOWN, ctx, allow_unknown)
    check_type = cfg.get("type", "backend")
    _assert_choice(check_type, HEALTH_CHECK_TYPES, f"{ctx}.type")
    if check_type == "http" and not cfg.get("url"):
        raise ConfigError(f"{ctx}.url is required for http health checks")
    if check_type == "command":
        command = cfg.get("command")
        if not isinstance(command, list) or not command:
            raise ConfigError(f"{ctx}.command must be a non-empty list for command health checks")
    for key in ("interval_seconds", "timeout_seconds"):
        if key in cfg:
            _assert_positive(cfg[key], f"{ctx}.{key}")
    return cfg


def validate_services_config(services: dict, *, allow_unknown: bool = False) -> dict:
    if not isinstance(services, dict) or not services:
        raise ConfigError("stack.services must be a non-empty mapping")
    for name, svc in services.items():
        ctx = f"stack.services.{name}"
        _assert_mapping(svc, ctx)
        _assert_required_keys(svc, {"image"}, ctx)
        _assert_no_unknown_keys(svc, SERVICE_KNOWN, ctx, allow_unknown)
        depends_on = svc.get("depends_on", [])
        if not isinstance(depends_on, list):
            raise ConfigError(f"{ctx}.depends_on must be a list")
        unknown = sorted(set(depends_on) - set(services))
        if unknown:
            raise ConfigError(f"{ctx}.depends_on references unknown services: {', '.join(unknown)}")
        _assert_choice(svc.get("restart", "no"), RESTART_POLICIES, f"{ctx}.restart")
        if "health" in svc:
            validate_health_config(svc["health"], f"{ctx}.health", allow_unknown=allow_unknown)
    return services


def validate_pipeline_config(cfg: dict, *, allow_unknown: bool = False) -> dict:
    _assert_mapping(cfg, "pipeline config")
    _assert_required_keys(cfg, {"build", "stack"}, "pipeline config")
    _assert_no_unknown_keys(cfg, TOP_KEYS, "pipeline config", allow_unknown)

    credentials = _assert_mapping(cfg.get("credentials") or {}, "credentials")
    _assert_no_unknown_keys(credentials, CREDENTIAL_KEYS, "credentials", allow_unknown)
    if "sources" in credentials and not isinstance(credentials["sources"], list):
        raise ConfigError("credentials.sources must be a list")

    build = _assert_mapping(cfg["build"], "build")
    _assert_required_keys(build, BUILD_REQUIRED, "build")
    _assert_no_unknown_keys(build, BUILD_KNOWN, "build", allow_unknown)
    secret_ids = _assert_mapping(build["secret_ids"], "build.secret_ids")
    _assert_required_keys(secret_ids, {"identifier", "secret"}, "build.secret_ids")
    if secret_ids["identifier"] == secret_ids["secret"]:
        raise ConfigError("build.secret_ids.identifier and build.secret_ids.secret must differ")
    _assert_mapping(build.get("build_args") or {}, "build.build_args")
    if "timeout_seconds" in build:
        _assert_positive(build["timeout_seconds"], "build.timeout_seconds")

    stack = _assert_mapping(cfg["stack"], "stack")
    _assert_required_keys(stack, STACK_REQUIRED, "stack")
    _assert_no_unknown_keys(stack, STACK_KNOWN, "stack", allow_unknown)
    _assert_choice(
        stack.get("on_dependency_failure", "leave_running"),
        DEPENDENCY_FAILURE_POLICIES,
        "stack.on_dependency_failure",
    )
    if "max_start_attempts" in stack:
        attempts = stack["max_start_attempts"]
        if not isinstance(attempts, int) or isinstance(attempts, bool) or attempts < 1:
            raise ConfigError("stack.max_start_attempts must be an integer >= 1")
    if "health_defaults" in stack:
        validate_health_config(stack["health_defaults"], "stack.health_defaults", allow_unknown=allow_unknown)
    services = validate_services_config(stack["services"], allow_unknown=allow_unknown)

    for role in ("metadata_service", "broker_service"):
        name = stack[role]
        if name not in services:
            raise ConfigError(f"stack.{role} {name!r} is not a declared service")
        if services[name].get("depends_on"):
            raise ConfigError(f"stack.{role} {name!r} must not declare dependencies")

    cleanup = _assert_mapping(cfg.get("cleanup") or {}, "cleanup")
    _assert_no_unknown_keys(cleanup, {"paths"}, "cleanup", allow_unknown)
    if not isinstance(cleanup.get("paths", []), list):
        raise ConfigError("cleanup.paths must be a list")

    return cfg
