"""Dependency graph of deployable resources.

Resources are grouped into tiers: every resource in tier *i* depends only on
resources in tiers ``< i``. Within a tier, resources keep their declaration
order so identical input always yields identical output.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator

from loguru import logger

from .errors import (
    CyclicDependencyError,
    DuplicateResourceError,
    InvalidGraphError,
    MissingDependencyError,
)
from .models import ResourceKind, ResourceSpec

_VISITING = 1
_DONE = 2


class ResourceGraph:
    """Declared resources and their dependency edges.

    Example:
        graph = ResourceGraph.from_specs(specs)
        for tier in graph.topological_order():
            engine.apply(tier)
    """

    def __init__(self) -> None:
        self._resources: dict[str, ResourceSpec] = {}

    @classmethod
    def from_specs(cls, specs: Iterable[ResourceSpec]) -> ResourceGraph:
        """Build a graph from specs, in declaration order."""
        graph = cls()
        for spec in specs:
            graph.add_resource(spec)
        return graph

    def add_resource(self, spec: ResourceSpec) -> None:
        """Declare a resource.

        Raises:
            DuplicateResourceError: If a resource with the same name exists
            InvalidGraphError: If a Namespace declares dependencies
        """
        if spec.name in self._resources:
            raise DuplicateResourceError(spec.name)
        if spec.kind is ResourceKind.NAMESPACE and spec.depends_on:
            raise InvalidGraphError(
                f"Namespace '{spec.name}' cannot depend on other resources",
                details=f"Declared dependencies: {', '.join(spec.depends_on)}",
            )
        self._resources[spec.name] = spec

    def get(self, name: str) -> ResourceSpec:
        return self._resources[name]

    def __contains__(self, name: object) -> bool:
        return name in self._resources

    def __len__(self) -> int:
        return len(self._resources)

    def __iter__(self) -> Iterator[ResourceSpec]:
        return iter(self._resources.values())

    @property
    def has_namespaces(self) -> bool:
        return any(r.kind is ResourceKind.NAMESPACE for r in self)

    def dependencies_of(self, name: str) -> list[str]:
        """Explicit plus implicit dependencies of a resource.

        A non-namespace resource implicitly depends on the Namespace resource
        named after its namespace, when the graph declares one.

        Raises:
            MissingDependencyError: If an explicit dependency is undeclared
        """
        spec = self._resources[name]
        deps: list[str] = []
        for dep in spec.depends_on:
            if dep not in self._resources:
                raise MissingDependencyError(spec.name, dep)
            if dep not in deps:
                deps.append(dep)

        if spec.kind is not ResourceKind.NAMESPACE:
            owner = self._resources.get(spec.namespace)
            if (
                owner is not None
                and owner.kind is ResourceKind.NAMESPACE
                and owner.name not in deps
            ):
                deps.append(owner.name)
        return deps

    def topological_order(self) -> list[list[ResourceSpec]]:
        """Partition resources into dependency-ordered tiers.

        Returns:
            Tiers in apply order; each tier in declaration order

        Raises:
            CyclicDependencyError: If the dependencies contain a cycle
            MissingDependencyError: If a dependency is undeclared
        """
        depths: dict[str, int] = {}
        state: dict[str, int] = {}
        floor = 1 if self.has_namespaces else 0

        def visit(name: str, path: list[str]) -> int:
            if state.get(name) == _DONE:
                return depths[name]
            if state.get(name) == _VISITING:
                start = path.index(name)
                raise CyclicDependencyError([*path[start:], name])

            state[name] = _VISITING
            path.append(name)
            deps = self.dependencies_of(name)
            depth = max((visit(dep, path) + 1 for dep in deps), default=0)
            if self._resources[name].kind is not ResourceKind.NAMESPACE:
                depth = max(depth, floor)
            path.pop()
            state[name] = _DONE
            depths[name] = depth
            return depth

        for name in self._resources:
            visit(name, [])

        tiers: list[list[ResourceSpec]] = [
            [] for _ in range(max(depths.values(), default=-1) + 1)
        ]
        for name, spec in self._resources.items():
            tiers[depths[name]].append(spec)

        logger.debug(
            "Resolved {} resources into {} tiers: {}",
            len(self),
            len(tiers),
            [[spec.name for spec in tier] for tier in tiers],
        )
        return tiers
