"""Tests for tsconsole.nodes -- cursor rotation and failover hints."""

from __future__ import annotations

import pytest

from tsconsole.config import Node
from tsconsole.models import ConfigurationError
from tsconsole.nodes import NodePool

A = Node("a", 8108)
B = Node("b", 8108)
C = Node("c", 8108)


def test_empty_pool_is_a_configuration_error() -> None:
    with pytest.raises(ConfigurationError):
        NodePool([])


def test_current_does_not_move() -> None:
    pool = NodePool([A, B])
    assert pool.current() == A
    assert pool.current() == A
    assert pool.index == 0


def test_advance_returns_new_current() -> None:
    pool = NodePool([A, B, C])
    assert pool.advance() == B
    assert pool.current() == B
    assert pool.advance() == C
    assert pool.advance() == A


@pytest.mark.parametrize("size", [1, 2, 3, 5])
def test_advancing_len_times_returns_to_start(size: int) -> None:
    pool = NodePool([Node(f"n{i}", 8108) for i in range(size)])
    pool.advance()
    start = pool.index
    for _ in range(size):
        pool.advance()
        assert 0 <= pool.index < size
    assert pool.index == start


def test_single_node_pool_retargets_same_node() -> None:
    pool = NodePool([A])
    assert pool.advance() == A
    assert pool.index == 0


def test_expected_index_moves_once() -> None:
    pool = NodePool([A, B, C])
    # two requests both failed on node 0
    pool.advance(expected=0)
    pool.advance(expected=0)
    assert pool.current() == B


def test_node_at_wraps() -> None:
    pool = NodePool([A, B])
    assert pool.node_at(3) == B
    assert len(pool) == 2
