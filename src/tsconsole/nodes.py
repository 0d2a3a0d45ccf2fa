"""
Round-robin node pool with a shared failover cursor.

Health is never probed proactively: a node is only skipped after a request
against it fails. The shared cursor is a hint for where the *next* request
should start; each request walks its own local cursor during retries (see
:class:`~tsconsole.executor.RequestExecutor`) and reports failures back with
:meth:`NodePool.advance`.
"""

from __future__ import annotations

import logging
import threading
from typing import Sequence

from tsconsole.config import Node
from tsconsole.models import ConfigurationError

logger = logging.getLogger(__name__)


class NodePool:
    """Ordered nodes plus a cursor that always satisfies ``0 <= index < len``."""

    def __init__(self, nodes: Sequence[Node]) -> None:
        if not nodes:
            raise ConfigurationError("Node pool requires at least one node")
        self._nodes: tuple[Node, ...] = tuple(nodes)
        self._index = 0
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._nodes)

    @property
    def nodes(self) -> tuple[Node, ...]:
        return self._nodes

    @property
    def index(self) -> int:
        return self._index

    def node_at(self, index: int) -> Node:
        return self._nodes[index % len(self._nodes)]

    def current(self) -> Node:
        """Return the active node without moving the cursor."""
        return self._nodes[self._index]

    def advance(self, expected: int | None = None) -> Node:
        """Move the cursor to the next node and return it.

        With *expected*, the move only happens if the cursor still points at
        that index. Two requests that failed on the same node then rotate the
        shared cursor once instead of skipping a node neither has tried.
        """
        with self._lock:
            if expected is None or expected == self._index:
                previous = self._nodes[self._index]
                self._index = (self._index + 1) % len(self._nodes)
                logger.debug(
                    "Node pool advanced %s -> %s",
                    previous.base_url,
                    self._nodes[self._index].base_url,
                )
            return self._nodes[self._index]
