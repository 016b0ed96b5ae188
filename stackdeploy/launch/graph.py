"""Service dependency graph ordering."""

from __future__ import annotations

from typing import Iterable

from stackdeploy.common.errors import ConfigError, DependencyCycleError
from stackdeploy.common.models import ServiceSpec


def topological_levels(services: Iterable[ServiceSpec]) -> list[list[ServiceSpec]]:
    """Group services into depth levels (Kahn's algorithm).

    Every service lands in a level after all of its dependencies. Services in
    the same level have no dependency relation and may start concurrently.
    Levels are sorted by name for stable output.
    """
    by_name = {service.name: service for service in services}
    for service in by_name.values():
        unknown = sorted(service.depends_on - set(by_name))
        if unknown:
            raise ConfigError(f"Service {service.name} depends on unknown services: {', '.join(unknown)}")

    remaining = {name: set(service.depends_on) for name, service in by_name.items()}
    levels: list[list[ServiceSpec]] = []
    while remaining:
        ready = sorted(name for name, deps in remaining.items() if not deps)
        if not ready:
            cycle = tuple(sorted(remaining))
            raise DependencyCycleError(
                f"Dependency cycle among services: {', '.join(cycle)}",
                services=cycle,
            )
        levels.append([by_name[name] for name in ready])
        for name in ready:
            del remaining[name]
        for deps in remaining.values():
            deps.difference_update(ready)
    return levels
