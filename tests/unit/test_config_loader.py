from pathlib import Path

import pytest

from stackdeploy.common.config_loader import build_pipeline_config, load_pipeline_config, load_raw_config
from stackdeploy.common.errors import ConfigError


def test_load_pipeline_config_from_repo_config_dir():
    config = load_pipeline_config(Path("config/pipeline.yml"))

    names = {service.name for service in config.stack.services}
    assert {"postgres", "redis", "airflow-worker"} <= names
    assert config.build.secret_ids == ("nexus_user", "nexus_pass")
    assert config.stack.metadata_service == "postgres"
    assert config.stack.broker_service == "redis"
    assert config.credentials.sources == ("explicit", "env:nexus")


def test_cli_overrides_take_precedence(tmp_path: Path):
    config = load_pipeline_config(
        Path("config/pipeline.yml"),
        index_url="https://nexus.internal/repository/pypi/simple",
        credentials_source="file:nexus, env:nexus",
        staging_dir=tmp_path,
        username="deployer",
        password_env="NEXUS_PASS",
    )

    assert config.index_url == "https://nexus.internal/repository/pypi/simple"
    assert config.credentials.sources == ("file:nexus", "env:nexus")
    assert config.credentials.username == "deployer"
    assert config.credentials.password_env == "NEXUS_PASS"
    assert config.staging_dir == tmp_path
    assert config.build.dockerfile == tmp_path / "Dockerfile"
    assert tmp_path / ".netrc" in config.cleanup_paths


def test_health_defaults_merge_under_service_health():
    config = load_pipeline_config(Path("config/pipeline.yml"))
    by_name = {service.name: service for service in config.stack.services}

    assert by_name["postgres"].health_check.type == "command"
    assert by_name["postgres"].health_check.timeout_seconds == 180
    assert by_name["airflow-scheduler"].health_check.type == "backend"
    assert by_name["postgres"].depends_on == frozenset()


def test_overlay_is_deep_merged(tmp_path: Path):
    overlay = tmp_path / "overlay.yml"
    overlay.write_text(
        """stack:
  on_dependency_failure: tear_down
  services:
    redis:
      restart: "no"
""",
        encoding="utf-8",
    )
    raw = load_raw_config(Path("config/pipeline.yml"), overlay)
    config = build_pipeline_config(raw)

    redis = next(service for service in config.stack.services if service.name == "redis")
    assert config.stack.on_dependency_failure == "tear_down"
    assert redis.restart_policy == "no"
    assert redis.image == "redis:7.2-bookworm"


def test_empty_overlay_is_ignored_and_non_mapping_rejected(tmp_path: Path):
    empty = tmp_path / "empty.yml"
    empty.write_text("", encoding="utf-8")
    assert load_raw_config(Path("config/pipeline.yml"), empty)["stack"]["project"] == "airflow"

    bad = tmp_path / "bad.yml"
    bad.write_text("- not\n- a\n- mapping\n", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_raw_config(Path("config/pipeline.yml"), bad)


def test_missing_config_file_is_config_error(tmp_path: Path):
    with pytest.raises(ConfigError):
        load_raw_config(tmp_path / "nope.yml")


def test_index_url_is_required():
    raw = load_raw_config(Path("config/pipeline.yml"))
    raw.pop("index_url")
    with pytest.raises(ConfigError):
        build_pipeline_config(raw)
