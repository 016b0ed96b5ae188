"""Run summary rendering."""

from __future__ import annotations

import json
from pathlib import Path

from stackdeploy.common.constants import EXIT_CANCELLED, EXIT_CODE_BY_STAGE, EXIT_SUCCESS
from stackdeploy.common.fs import write_json
from stackdeploy.common.models import PipelineRun, RunStatus


def exit_code_for(run: PipelineRun) -> int:
    if run.status is RunStatus.SUCCEEDED:
        return EXIT_SUCCESS
    if run.cancelled:
        return EXIT_CANCELLED
    return EXIT_CODE_BY_STAGE.get(run.failed_stage or "prepare", EXIT_CODE_BY_STAGE["prepare"])


def render_summary(run: PipelineRun) -> str:
    return json.dumps(run.to_dict(), ensure_ascii=False, indent=2, sort_keys=True)


def write_run_summary(path: Path, run: PipelineRun) -> Path:
    write_json(path, run.to_dict())
    return path
