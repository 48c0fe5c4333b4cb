from __future__ import annotations

import sys

import pytest

from diplan import CircularDependencyError, DependencyGraph


class _A:
    pass


class _B:
    pass


class _C:
    pass


class _D:
    pass


def test_acyclic_graph_passes_cycle_detection() -> None:
    graph = DependencyGraph()
    graph.add_edge(_A, _B)
    graph.add_edge(_B, _C)
    graph.add_edge(_A, _C)

    graph.detect_cycles()


def test_three_node_cycle_reports_members_with_repeated_start() -> None:
    graph = DependencyGraph()
    graph.add_edge(_A, _B)
    graph.add_edge(_B, _C)
    graph.add_edge(_C, _A)

    with pytest.raises(CircularDependencyError) as exc_info:
        graph.detect_cycles()

    chain = exc_info.value.chain
    assert len(chain) == 4
    assert chain[0] is chain[-1]
    assert set(chain) == {_A, _B, _C}
    assert chain == [_A, _B, _C, _A]


def test_self_loop_is_a_cycle_of_length_one() -> None:
    graph = DependencyGraph()
    graph.add_edge(_A, _A)

    with pytest.raises(CircularDependencyError) as exc_info:
        graph.detect_cycles()

    assert exc_info.value.chain == [_A, _A]


def test_cycle_in_disconnected_component_is_found() -> None:
    graph = DependencyGraph()
    graph.add_edge(_A, _B)
    graph.add_node(_D)
    graph.add_edge(_C, _D)
    graph.add_edge(_D, _C)

    with pytest.raises(CircularDependencyError) as exc_info:
        graph.detect_cycles()

    assert set(exc_info.value.chain) == {_C, _D}
    assert len(exc_info.value.chain) == 3


def test_cycle_chain_excludes_nodes_leading_into_the_cycle() -> None:
    graph = DependencyGraph()
    graph.add_edge(_A, _B)
    graph.add_edge(_B, _C)
    graph.add_edge(_C, _B)

    with pytest.raises(CircularDependencyError) as exc_info:
        graph.detect_cycles()

    assert exc_info.value.chain == [_B, _C, _B]


def test_deep_chain_does_not_hit_recursion_limit() -> None:
    depth = sys.getrecursionlimit() * 3
    graph = DependencyGraph()
    for index in range(depth):
        graph.add_edge(f"node-{index:06d}", f"node-{index + 1:06d}")

    graph.detect_cycles()

    graph.add_edge(f"node-{depth:06d}", "node-000000")
    with pytest.raises(CircularDependencyError) as exc_info:
        graph.detect_cycles()
    assert len(exc_info.value.chain) == depth + 2


def test_adjacency_snapshot_is_read_only_and_detached() -> None:
    graph = DependencyGraph()
    graph.add_edge(_A, _B)

    snapshot = graph.adjacency()
    graph.add_edge(_A, _C)

    assert snapshot[_A] == frozenset({_B})
    assert snapshot[_B] == frozenset()
    assert graph.dependencies_of(_A) == frozenset({_B, _C})
    with pytest.raises(TypeError):
        snapshot[_C] = frozenset()  # type: ignore[index]


def test_nodes_include_edge_targets() -> None:
    graph = DependencyGraph()
    graph.add_edge(_A, _B)
    graph.add_node(_C)

    assert set(graph.nodes) == {_A, _B, _C}
    assert len(graph) == 3
