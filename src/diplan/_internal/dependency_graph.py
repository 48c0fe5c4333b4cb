from __future__ import annotations

from collections.abc import Iterator, Mapping
from types import MappingProxyType

from diplan._internal.descriptors import ServiceType
from diplan.exceptions import CircularDependencyError


class DependencyGraph:
    """Directed "depends-on" graph between service types.

    Edges are added by the compiler while registrations are turned into call
    sites. ``detect_cycles`` runs once at build time; afterwards the graph is
    kept only as a read-only snapshot for tooling.
    """

    def __init__(self) -> None:
        self._adjacency: dict[ServiceType, set[ServiceType]] = {}

    def add_node(self, service_type: ServiceType) -> None:
        """Register a node without edges."""
        self._adjacency.setdefault(service_type, set())

    def add_edge(self, source: ServiceType, target: ServiceType) -> None:
        """Record that ``source`` depends on ``target``."""
        self._adjacency.setdefault(source, set()).add(target)
        self._adjacency.setdefault(target, set())

    def dependencies_of(self, service_type: ServiceType) -> frozenset[ServiceType]:
        """Return the direct dependencies of a node."""
        return frozenset(self._adjacency.get(service_type, ()))

    @property
    def nodes(self) -> tuple[ServiceType, ...]:
        return tuple(self._adjacency)

    def adjacency(self) -> Mapping[ServiceType, frozenset[ServiceType]]:
        """Return a read-only snapshot of the adjacency map."""
        return MappingProxyType(
            {node: frozenset(targets) for node, targets in self._adjacency.items()},
        )

    def detect_cycles(self) -> None:
        """Raise ``CircularDependencyError`` if the graph contains a cycle.

        The traversal is an iterative depth-first search with an explicit stack
        of ``(node, neighbour iterator)`` frames so deep graphs never exhaust the
        interpreter's recursion limit. Every disconnected component is visited.

        Raises:
            CircularDependencyError: With the cycle members in traversal order
                and the repeated type at both ends.

        """
        visited: set[ServiceType] = set()
        on_stack: set[ServiceType] = set()
        parent: dict[ServiceType, ServiceType] = {}

        for root in self._adjacency:
            if root in visited:
                continue

            visited.add(root)
            on_stack.add(root)
            stack: list[tuple[ServiceType, Iterator[ServiceType]]] = [
                (root, self._neighbours(root)),
            ]

            while stack:
                node, neighbours = stack[-1]
                advanced = False
                for neighbour in neighbours:
                    if neighbour in on_stack:
                        raise CircularDependencyError(
                            self._reconstruct(parent, node, neighbour),
                        )
                    if neighbour in visited:
                        continue
                    visited.add(neighbour)
                    on_stack.add(neighbour)
                    parent[neighbour] = node
                    stack.append((neighbour, self._neighbours(neighbour)))
                    advanced = True
                    break

                if not advanced:
                    stack.pop()
                    on_stack.discard(node)

    def _neighbours(self, node: ServiceType) -> Iterator[ServiceType]:
        # Sorting by name keeps error chains stable across runs.
        return iter(sorted(self._adjacency.get(node, ()), key=_sort_key))

    @staticmethod
    def _reconstruct(
        parent: Mapping[ServiceType, ServiceType],
        current: ServiceType,
        repeated: ServiceType,
    ) -> list[ServiceType]:
        path = [current]
        while current != repeated:
            current = parent[current]
            path.append(current)
        path.reverse()
        path.append(repeated)
        return path

    def __len__(self) -> int:
        return len(self._adjacency)


def _sort_key(service_type: ServiceType) -> str:
    module = getattr(service_type, "__module__", "")
    name = getattr(service_type, "__qualname__", repr(service_type))
    return f"{module}.{name}"
