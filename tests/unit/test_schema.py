import copy

import pytest

from stackdeploy.common.errors import ConfigError
from stackdeploy.common.schema import validate_pipeline_config

BASE_CONFIG = {
    "index_url": "https://pypi.org/simple",
    "build": {
        "context": ".",
        "dockerfile": "Dockerfile",
        "target": "app:latest",
        "secret_ids": {"identifier": "nexus_user", "secret": "nexus_pass"},
    },
    "stack": {
        "compose_file": "docker-compose.yaml",
        "project": "app",
        "metadata_service": "db",
        "broker_service": "broker",
        "services": {
            "db": {"image": "postgres:16"},
            "broker": {"image": "redis:7"},
            "worker": {"image": "@built", "depends_on": ["db", "broker"]},
        },
    },
}


def _config():
    return copy.deepcopy(BASE_CONFIG)


def test_validate_pipeline_config_accepts_valid_shape():
    assert validate_pipeline_config(_config())["stack"]["project"] == "app"


def test_unknown_key_rejected_unless_allowed():
    cfg = _config()
    cfg["unexpected"] = True
    with pytest.raises(ConfigError):
        validate_pipeline_config(cfg)
    validate_pipeline_config(cfg, allow_unknown=True)


def test_leaf_services_must_exist_and_have_no_dependencies():
    cfg = _config()
    cfg["stack"]["services"]["db"]["depends_on"] = ["broker"]
    with pytest.raises(ConfigError):
        validate_pipeline_config(cfg)

    cfg = _config()
    cfg["stack"]["broker_service"] = "rabbit"
    with pytest.raises(ConfigError):
        validate_pipeline_config(cfg)


def test_unknown_dependency_rejected():
    cfg = _config()
    cfg["stack"]["services"]["worker"]["depends_on"] = ["db", "ghost"]
    with pytest.raises(ConfigError):
        validate_pipeline_config(cfg)


@pytest.mark.parametrize(
    "health",
    [
        {"type": "http"},
        {"type": "command", "command": []},
        {"type": "carrier-pigeon"},
        {"type": "backend", "timeout_seconds": 0},
    ],
)
def test_invalid_health_checks_rejected(health):
    cfg = _config()
    cfg["stack"]["services"]["worker"]["health"] = health
    with pytest.raises(ConfigError):
        validate_pipeline_config(cfg)


def test_secret_ids_must_differ():
    cfg = _config()
    cfg["build"]["secret_ids"]["secret"] = "nexus_user"
    with pytest.raises(ConfigError):
        validate_pipeline_config(cfg)


def test_restart_and_failure_policies_are_checked():
    cfg = _config()
    cfg["stack"]["services"]["db"]["restart"] = "sometimes"
    with pytest.raises(ConfigError):
        validate_pipeline_config(cfg)

    cfg = _config()
    cfg["stack"]["on_dependency_failure"] = "panic"
    with pytest.raises(ConfigError):
        validate_pipeline_config(cfg)
