import json
import logging
import sys
import threading
from pathlib import Path

import pytest

from stackdeploy.common.cancellation import CancellationToken
from stackdeploy.common.errors import CommandError, PipelineCancelled
from stackdeploy.common.fs import erase_path, is_private, write_private_file
from stackdeploy.common.ids import generate_handle_id, generate_run_id
from stackdeploy.common.logging import JsonLineFormatter, SecretRedactionFilter
from stackdeploy.common.process import run_process


def test_generate_ids():
    assert generate_run_id().startswith("deploy-")
    assert generate_handle_id() != generate_handle_id()


def test_json_formatter_emits_stable_schema():
    record = logging.LogRecord("x", logging.INFO, __file__, 1, "stage start", None, None)
    record.stage = "build"
    payload = json.loads(JsonLineFormatter().format(record))

    assert payload["stage"] == "build"
    assert payload["message"] == "stage start"
    assert payload["service"] is None


def test_redaction_filter_masks_registered_secrets():
    redactor = SecretRedactionFilter()
    redactor.register("hunter2", "")
    record = logging.LogRecord("x", logging.INFO, __file__, 1, "login with %s failed", ("hunter2",), None)

    assert redactor.filter(record) is True
    assert record.getMessage() == "login with *** failed"


def test_private_file_and_erase(tmp_path: Path):
    path = tmp_path / "secret"
    write_private_file(path, "value")
    assert is_private(path)
    with pytest.raises(FileExistsError):
        write_private_file(path, "again")

    folder = tmp_path / "dir"
    folder.mkdir()
    (folder / "a").write_text("x", encoding="utf-8")
    erase_path(folder)
    erase_path(path)
    assert not folder.exists()
    assert not path.exists()


def test_erase_path_removes_symlink_but_not_target(tmp_path: Path):
    target = tmp_path / "target"
    target.write_text("keep", encoding="utf-8")
    link = tmp_path / "link"
    link.symlink_to(target)

    erase_path(link)

    assert not link.exists()
    assert target.read_text(encoding="utf-8") == "keep"


def test_run_process_captures_output_and_checks_status():
    result = run_process([sys.executable, "-c", "print('ok')"])
    assert result.ok
    assert result.stdout.strip() == "ok"

    with pytest.raises(CommandError) as excinfo:
        run_process([sys.executable, "-c", "import sys; sys.exit(3)"], check=True)
    assert excinfo.value.returncode == 3


def test_run_process_timeout_and_cancellation():
    with pytest.raises(CommandError):
        run_process([sys.executable, "-c", "import time; time.sleep(30)"], timeout=0.5)

    token = CancellationToken()
    timer = threading.Timer(0.3, token.cancel)
    timer.start()
    try:
        with pytest.raises(PipelineCancelled):
            run_process([sys.executable, "-c", "import time; time.sleep(30)"], cancel=token)
    finally:
        timer.cancel()
