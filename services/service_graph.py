"""Static dependency graph between orchestrated services."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import replace
import heapq

from core.errors import ConfigurationError, CyclicDependencyError
from core.models import ServiceSpec


class ServiceGraph:
    """Validated, acyclic set of service declarations.

    Validation runs at construction so configuration mistakes surface before
    any service is started. Independent services keep their declaration order
    in :meth:`topological_order` so orchestration logs are reproducible.
    """

    def __init__(self, services: Iterable[ServiceSpec]) -> None:
        self._services: dict[str, ServiceSpec] = {}
        for service in services:
            if service.name in self._services:
                raise ConfigurationError(
                    f"Duplicate service name: {service.name}",
                    service=service.name,
                )
            self._services[service.name] = service
        self._index = {name: index for index, name in enumerate(self._services)}
        self._validate_dependencies()
        self._order = self._compute_order()

    def __len__(self) -> int:
        return len(self._services)

    def __contains__(self, name: object) -> bool:
        return name in self._services

    def __iter__(self):
        return iter(self._services.values())

    @property
    def names(self) -> list[str]:
        return list(self._services)

    def get(self, name: str) -> ServiceSpec:
        try:
            return self._services[name]
        except KeyError:
            raise ConfigurationError(f"Unknown service: {name}", service=name) from None

    def topological_order(self) -> list[ServiceSpec]:
        """Return services so that each follows all of its dependencies."""

        return [self._services[name] for name in self._order]

    def reverse_order(self) -> list[ServiceSpec]:
        """Return services so that dependents precede their dependencies."""

        return list(reversed(self.topological_order()))

    def dependencies_of(self, name: str) -> set[str]:
        """Return the transitive dependencies of a service."""

        seen: set[str] = set()
        pending = list(self.get(name).depends_on)
        while pending:
            current = pending.pop()
            if current in seen:
                continue
            seen.add(current)
            pending.extend(self._services[current].depends_on)
        return seen

    def dependents_of(self, name: str) -> set[str]:
        """Return every service that transitively depends on ``name``."""

        self.get(name)
        return {
            other for other in self._services if name in self.dependencies_of(other)
        }

    def subgraph(self, names: Sequence[str]) -> "ServiceGraph":
        """Return a graph of the named services plus their dependencies."""

        wanted: set[str] = set()
        for name in names:
            wanted.add(self.get(name).name)
            wanted |= self.dependencies_of(name)
        return ServiceGraph(
            service for service in self._services.values() if service.name in wanted
        )

    def with_dependents(self, names: Sequence[str]) -> "ServiceGraph":
        """Return a graph of the named services plus everything depending on them.

        Edges to services outside the selection are dropped, so the result
        can be stopped on its own in reverse order.
        """

        wanted: set[str] = set()
        for name in names:
            wanted.add(self.get(name).name)
            wanted |= self.dependents_of(name)
        return ServiceGraph(
            replace(
                service,
                depends_on=tuple(dep for dep in service.depends_on if dep in wanted),
            )
            for service in self._services.values()
            if service.name in wanted
        )

    def _validate_dependencies(self) -> None:
        for service in self._services.values():
            for dependency in service.depends_on:
                if dependency == service.name:
                    raise CyclicDependencyError([service.name, service.name])
                if dependency not in self._services:
                    raise ConfigurationError(
                        f"{service.name} depends on undeclared service {dependency}",
                        service=service.name,
                    )

    def _compute_order(self) -> list[str]:
        remaining = {
            name: len(set(service.depends_on)) for name, service in self._services.items()
        }
        dependents: dict[str, list[str]] = {name: [] for name in self._services}
        for name, service in self._services.items():
            for dependency in set(service.depends_on):
                dependents[dependency].append(name)

        ready = [self._index[name] for name, count in remaining.items() if count == 0]
        heapq.heapify(ready)
        names = list(self._services)
        order: list[str] = []
        while ready:
            name = names[heapq.heappop(ready)]
            order.append(name)
            for dependent in dependents[name]:
                remaining[dependent] -= 1
                if remaining[dependent] == 0:
                    heapq.heappush(ready, self._index[dependent])

        if len(order) != len(self._services):
            unresolved = [name for name in names if name not in set(order)]
            raise CyclicDependencyError(self._find_cycle(unresolved))
        return order

    def _find_cycle(self, candidates: list[str]) -> list[str]:
        """Return one dependency cycle among unresolved services."""

        candidate_set = set(candidates)
        for start in candidates:
            path: list[str] = []
            position: dict[str, int] = {}
            current = start
            while current not in position:
                position[current] = len(path)
                path.append(current)
                next_hop = next(
                    (dep for dep in self._services[current].depends_on if dep in candidate_set),
                    None,
                )
                if next_hop is None:
                    break
                current = next_hop
            else:
                cycle = path[position[current]:]
                return cycle + [current]
        return candidates
