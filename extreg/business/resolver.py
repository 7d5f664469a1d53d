"""Dependency resolution between extensions.

Pure functions of the descriptor set, nothing here reads or writes the registry.
"""

import dataclasses
import heapq
import typing
from typing import Optional as Opt
from extreg.errors import CyclicDependency, MissingDependency
from extreg.schemas.extension import ExtensionID, RawDescriptor


@dataclasses.dataclass(frozen=True)
class Resolution:
    order: tuple[ExtensionID, ...]
    """Activation sequence, every dependency before its dependents."""
    unsatisfiable: dict[ExtensionID, str] = dataclasses.field(default_factory=dict)
    """Requested ids that cannot be resolved, with the reason."""


class DependencyGraph:
    """Dependency graph over a descriptor set.

    Edges go from a dependency to its dependent.
    """

    def __init__(self, descriptors: typing.Mapping[ExtensionID, RawDescriptor]) -> None:
        self._descriptors = descriptors
        self._dependents: dict[ExtensionID, set[ExtensionID]] = {}
        for ext_id, descriptor in descriptors.items():
            for dep in descriptor.dependencies:
                self._dependents.setdefault(dep, set()).add(ext_id)

    def __contains__(self, ext_id: object) -> bool:
        return ext_id in self._descriptors

    def dependencies_of(self, ext_id: ExtensionID) -> tuple[ExtensionID, ...]:
        descriptor = self._descriptors.get(ext_id)
        return descriptor.dependencies if descriptor else ()

    def requires(self, ext_id: ExtensionID) -> set[ExtensionID]:
        """Transitive dependencies of an extension, unknown ones included."""
        return self._walk(ext_id, self.dependencies_of)

    def required_by(self, ext_id: ExtensionID) -> set[ExtensionID]:
        """Transitive dependents of an extension."""
        return self._walk(ext_id, lambda i: tuple(self._dependents.get(i, ())))

    def closure(self, ext_ids: typing.Iterable[ExtensionID]) -> set[ExtensionID]:
        """Given extensions plus their transitive dependencies.

        :raise MissingDependency: A dependency has no descriptor.
        """
        result: set[ExtensionID] = set()
        stack = list(ext_ids)
        while stack:
            ext_id = stack.pop()
            if ext_id in result:
                continue
            result.add(ext_id)
            for dep in self.dependencies_of(ext_id):
                if dep not in self._descriptors:
                    raise MissingDependency(ext_id, dep)
                stack.append(dep)
        return result

    def order(
        self,
        ext_ids: typing.Iterable[ExtensionID],
        weights: Opt[typing.Mapping[ExtensionID, int]] = None,
    ) -> list[ExtensionID]:
        """Topologically sort a subset of the graph.

        Among ready nodes the lowest weight goes first, then the lowest id.
        Edges to nodes outside the subset are ignored.

        :raise CyclicDependency: The subset contains a cycle.
        """
        nodes = set(ext_ids)

        def weight(ext_id: ExtensionID) -> int:
            if weights is not None and ext_id in weights:
                return weights[ext_id]
            descriptor = self._descriptors.get(ext_id)
            return descriptor.weight if descriptor else 0

        pending = {
            ext_id: {dep for dep in self.dependencies_of(ext_id) if dep in nodes}
            for ext_id in nodes
        }
        ready = [(weight(i), i) for i, deps in pending.items() if not deps]
        heapq.heapify(ready)
        for _, ext_id in ready:
            del pending[ext_id]

        ordered: list[ExtensionID] = []
        while ready:
            _, ext_id = heapq.heappop(ready)
            ordered.append(ext_id)
            for dependent in sorted(self._dependents.get(ext_id, ())):
                deps = pending.get(dependent)
                if deps is None:
                    continue
                deps.discard(ext_id)
                if not deps:
                    del pending[dependent]
                    heapq.heappush(ready, (weight(dependent), dependent))

        if pending:
            raise CyclicDependency(self._find_cycle(pending))
        return ordered

    def _find_cycle(self, pending: dict[ExtensionID, set[ExtensionID]]) -> list[ExtensionID]:
        # every pending node still waits on another pending node
        path: list[ExtensionID] = []
        seen: dict[ExtensionID, int] = {}
        node = min(pending)
        while node not in seen:
            seen[node] = len(path)
            path.append(node)
            node = min(pending[node])
        return path[seen[node]:] + [node]

    @staticmethod
    def _walk(
        start: ExtensionID,
        neighbours: typing.Callable[[ExtensionID], typing.Iterable[ExtensionID]],
    ) -> set[ExtensionID]:
        found: set[ExtensionID] = set()
        stack = list(neighbours(start))
        while stack:
            ext_id = stack.pop()
            if ext_id in found or ext_id == start:
                continue
            found.add(ext_id)
            stack.extend(neighbours(ext_id))
        return found


def resolve(
    descriptors: typing.Mapping[ExtensionID, RawDescriptor],
    requested: typing.Iterable[ExtensionID],
    enabled: typing.Collection[ExtensionID] = (),
    weights: Opt[typing.Mapping[ExtensionID, int]] = None,
) -> Resolution:
    """Expand a request with its dependencies and order it for activation.

    :param enabled: Already enabled extensions, left out of the resulting order.
    :param weights: Weight per extension, defaults to the declared one.
    :raise MissingDependency: A dependency has no descriptor.
    :raise CyclicDependency: The request and its dependencies contain a cycle.
    """
    graph = DependencyGraph(descriptors)
    unsatisfiable: dict[ExtensionID, str] = {}
    known: list[ExtensionID] = []
    for ext_id in requested:
        if ext_id in graph:
            known.append(ext_id)
        else:
            unsatisfiable[ext_id] = "unknown extension"

    order = graph.order(graph.closure(known), weights=weights)
    return Resolution(
        order=tuple(i for i in order if i not in enabled),
        unsatisfiable=unsatisfiable,
    )
