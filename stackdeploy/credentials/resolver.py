"""Credential resolution with ordered source precedence."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Mapping, Sequence, Union

from stackdeploy.common.config_loader import CredentialConfig
from stackdeploy.common.errors import ConfigError, MissingCredentialError
from stackdeploy.common.models import CredentialPair
from stackdeploy.credentials.stores import (
    CredentialStore,
    EnvironmentCredentialStore,
    FileCredentialStore,
)


@dataclass(frozen=True)
class ExplicitSource:
    identifier: str | None
    secret: str | None = field(repr=False)

    def describe(self) -> str:
        return "explicit"


@dataclass(frozen=True)
class StoreReference:
    store: CredentialStore
    name: str

    def describe(self) -> str:
        return f"{self.store.kind}:{self.name}"


CredentialSource = Union[ExplicitSource, StoreReference]


def _pair_from(source: CredentialSource) -> CredentialPair | None:
    if isinstance(source, ExplicitSource):
        return CredentialPair(identifier=source.identifier or "", secret=source.secret or "")
    return source.store.lookup(source.name)


def resolve(sources: Sequence[CredentialSource]) -> CredentialPair:
    """Return the pair from the first fully-populated source.

    Later sources are not consulted once one yields both identifier and
    secret. Nothing is logged or written.
    """
    for source in sources:
        pair = _pair_from(source)
        if pair is not None and pair.is_complete():
            return pair
    tried = ", ".join(source.describe() for source in sources) or "none"
    raise MissingCredentialError(f"No credential source yielded an identifier and secret (tried: {tried})")


def build_sources(
    config: CredentialConfig,
    *,
    environ: Mapping[str, str] | None = None,
) -> list[CredentialSource]:
    """Turn source strings (``explicit``, ``env:<name>``, ``file:<name>``) into sources."""
    env = environ if environ is not None else os.environ
    env_store = EnvironmentCredentialStore(env)
    file_store = FileCredentialStore(config.store_file) if config.store_file is not None else None

    sources: list[CredentialSource] = []
    for spec in config.sources:
        kind, _, name = spec.partition(":")
        if kind == "explicit":
            sources.append(ExplicitSource(identifier=config.username, secret=env.get(config.password_env)))
        elif kind == "env" and name:
            sources.append(StoreReference(store=env_store, name=name))
        elif kind == "file" and name:
            if file_store is None:
                raise ConfigError("credentials.store_file is required for file: credential sources")
            sources.append(StoreReference(store=file_store, name=name))
        else:
            raise ConfigError(f"Unknown credential source: {spec!r}")
    return sources
