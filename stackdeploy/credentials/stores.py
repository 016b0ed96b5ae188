"""Named credential stores."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Mapping, Protocol

from stackdeploy.common.errors import ConfigError
from stackdeploy.common.fs import is_private, read_yaml
from stackdeploy.common.models import CredentialPair

_ENV_NAME_RE = re.compile(r"[^A-Z0-9]+")


class CredentialStore(Protocol):
    kind: str

    def lookup(self, name: str) -> CredentialPair | None: ...


def env_prefix(name: str) -> str:
    return _ENV_NAME_RE.sub("_", name.upper()).strip("_")


class EnvironmentCredentialStore:
    """Entry ``nexus`` maps to ``NEXUS_USERNAME`` and ``NEXUS_PASSWORD``."""

    kind = "env"

    def __init__(self, environ: Mapping[str, str] | None = None) -> None:
        self.environ = environ if environ is not None else os.environ

    def lookup(self, name: str) -> CredentialPair | None:
        prefix = env_prefix(name)
        identifier = self.environ.get(f"{prefix}_USERNAME", "")
        secret = self.environ.get(f"{prefix}_PASSWORD", "")
        if not identifier and not secret:
            return None
        return CredentialPair(identifier=identifier, secret=secret)


class FileCredentialStore:
    """YAML file of ``name: {username, password}`` entries, owner-readable only."""

    kind = "file"

    def __init__(self, path: Path) -> None:
        self.path = path
        self._entries: dict | None = None

    def _load(self) -> dict:
        if self._entries is None:
            if not self.path.exists():
                raise ConfigError(f"Credential store file not found: {self.path}")
            if not is_private(self.path):
                raise ConfigError(f"Credential store file must not be group/other accessible: {self.path}")
            entries = read_yaml(self.path) or {}
            if not isinstance(entries, dict):
                raise ConfigError(f"Credential store file must be a mapping: {self.path}")
            self._entries = entries
        return self._entries

    def lookup(self, name: str) -> CredentialPair | None:
        entry = self._load().get(name)
        if entry is None:
            return None
        if not isinstance(entry, dict):
            raise ConfigError(f"Credential entry {name!r} must be a mapping")
        return CredentialPair(
            identifier=str(entry.get("username") or ""),
            secret=str(entry.get("password") or ""),
        )
