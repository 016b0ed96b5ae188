"""Build-scoped secret materialization with guaranteed release."""

from __future__ import annotations

import logging
import tempfile
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from stackdeploy.common.errors import CleanupWarning
from stackdeploy.common.fs import erase_path, write_private_file
from stackdeploy.common.ids import generate_handle_id
from stackdeploy.common.logging import SecretRedactionFilter, log_event, log_warning
from stackdeploy.common.models import CredentialPair, SecretHandle


class EphemeralSecretStore:
    """Owns every materialized secret until it is released.

    Each handle is a private temporary directory (0700) with one owner-only
    file per secret id. ``release`` is idempotent and never raises.
    """

    def __init__(
        self,
        logger: logging.Logger,
        *,
        base_dir: Path | None = None,
        redactor: SecretRedactionFilter | None = None,
        run_id: str | None = None,
    ) -> None:
        self.logger = logger
        self.base_dir = base_dir
        self.redactor = redactor
        self.run_id = run_id
        self.release_count = 0
        self._handles: dict[str, SecretHandle] = {}
        self._released: set[str] = set()
        self._lock = threading.Lock()

    @property
    def outstanding(self) -> int:
        with self._lock:
            return len(self._handles)

    def materialize(self, pair: CredentialPair, secret_ids: tuple[str, str]) -> SecretHandle:
        identifier_id, secret_id = secret_ids
        directory = Path(tempfile.mkdtemp(prefix="stackdeploy-", dir=self.base_dir))
        handle = SecretHandle(
            handle_id=generate_handle_id(),
            directory=directory,
            mounts={identifier_id: directory / identifier_id, secret_id: directory / secret_id},
            sensitive_ids=frozenset({secret_id}),
        )
        with self._lock:
            self._handles[handle.handle_id] = handle
        if self.redactor is not None:
            self.redactor.register(pair.secret)

        try:
            write_private_file(handle.mounts[identifier_id], pair.identifier)
            write_private_file(handle.mounts[secret_id], pair.secret)
        except OSError:
            self.release(handle)
            raise

        log_event(
            self.logger,
            f"materialized secret handle {handle.handle_id}",
            run_id=self.run_id,
            stage="build",
            event="SECRET_MATERIALIZED",
            status="ok",
        )
        return handle

    def release(self, handle: SecretHandle) -> None:
        with self._lock:
            if handle.handle_id in self._released:
                return
            self._released.add(handle.handle_id)
            self._handles.pop(handle.handle_id, None)
            self.release_count += 1

        try:
            erase_path(handle.directory)
        except FileNotFoundError:
            self._warn(handle, CleanupWarning(f"Secret handle {handle.handle_id} was already removed"))
        except OSError as exc:
            self._warn(handle, CleanupWarning(f"Secret handle {handle.handle_id} could not be removed: {exc}"))
        else:
            log_event(
                self.logger,
                f"released secret handle {handle.handle_id}",
                run_id=self.run_id,
                stage="cleanup",
                event="SECRET_RELEASED",
                status="ok",
            )

    def release_all(self) -> int:
        with self._lock:
            handles = list(self._handles.values())
        for handle in handles:
            self.release(handle)
        return len(handles)

    @contextmanager
    def scoped(self, pair: CredentialPair, secret_ids: tuple[str, str]) -> Iterator[SecretHandle]:
        handle = self.materialize(pair, secret_ids)
        try:
            yield handle
        finally:
            self.release(handle)

    def _warn(self, handle: SecretHandle, warning: CleanupWarning) -> None:
        log_warning(
            self.logger,
            str(warning),
            run_id=self.run_id,
            stage="cleanup",
            event="SECRET_RELEASE_WARNING",
            status="warning",
            error_code=warning.error_code,
        )
