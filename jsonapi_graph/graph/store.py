"""
jsonapi_graph/graph/store.py — In-memory graph store.

GraphStore owns every committed Node, keyed by id. Forward edges are mirrored
into a NetworkX DiGraph (edge attribute ``fields``) so that integrity checks
and summaries can use graph queries instead of walking relationship dicts.

Writers take ``store.lock`` (a coarse, re-entrant whole-graph lock) for the
duration of a read-diff-commit cycle. StagingArea hands out working copies so
that nothing the sync engine mutates is visible until commit().
"""

import logging
import threading
from typing import Any, Iterable, Iterator, Optional

import networkx as nx

from jsonapi_graph.graph.nodes import Node
from jsonapi_graph.graph.resolver import CardinalityRegistry

logger = logging.getLogger(__name__)


class GraphStore:
    """Arena of committed nodes plus per-store sync bookkeeping."""

    def __init__(self) -> None:
        self._nodes: dict[str, Node] = {}
        self.graph = nx.DiGraph()
        self.lock = threading.RLock()
        self.cardinality = CardinalityRegistry()
        self.known_types: set[str] = set()
        # (node id, file content key) -> handle of the materialized file
        self.materialized_files: dict[tuple[str, str], Any] = {}

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def __iter__(self) -> Iterator[Node]:
        return iter(list(self._nodes.values()))

    def get(self, node_id: str) -> Optional[Node]:
        return self._nodes.get(node_id)

    def nodes(self, internal_type: Optional[str] = None) -> list[Node]:
        return [
            n for n in self._nodes.values()
            if internal_type is None or n.internal_type == internal_type
        ]

    def commit(self, nodes: Iterable[Node]) -> int:
        """Insert or replace ``nodes`` and refresh their outgoing edge mirror."""
        count = 0
        with self.lock:
            for node in nodes:
                self._nodes[node.id] = node
                self.known_types.add(node.internal_type)
                self._mirror_edges(node)
                count += 1
        logger.debug("Committed %d nodes (store size %d)", count, len(self._nodes))
        return count

    def _mirror_edges(self, node: Node) -> None:
        G = self.graph
        G.add_node(node.id, internal_type=node.internal_type)
        G.remove_edges_from(list(G.out_edges(node.id)))
        fields_by_target: dict[str, list[str]] = {}
        for key, ref in node.forward.items():
            for target_id in ref.target_ids:
                fields_by_target.setdefault(target_id, []).append(key)
        for target_id, fields in fields_by_target.items():
            G.add_edge(node.id, target_id, fields=sorted(fields))

    def clear(self) -> None:
        with self.lock:
            self._nodes.clear()
            self.graph.clear()
            self.known_types.clear()
            self.materialized_files.clear()
            self.cardinality = CardinalityRegistry()


class StagingArea:
    """
    Working set for one sync batch.

    get() returns a staged node, or a copy of the committed node taken on
    first access. Mutations stay here until the engine commits ``nodes()``.

    Args:
        store: Committed store to copy from, or None for a batch that must
               see only the nodes explicitly added (full import).
    """

    def __init__(self, store: Optional[GraphStore] = None) -> None:
        self._store = store
        self._nodes: dict[str, Node] = {}

    def __contains__(self, node_id: object) -> bool:
        if node_id in self._nodes:
            return True
        return self._store is not None and node_id in self._store

    def __len__(self) -> int:
        return len(self._nodes)

    def add(self, node: Node) -> None:
        self._nodes[node.id] = node

    def get(self, node_id: str) -> Optional[Node]:
        node = self._nodes.get(node_id)
        if node is None and self._store is not None:
            committed = self._store.get(node_id)
            if committed is not None:
                node = committed.copy()
                self._nodes[node_id] = node
        return node

    def nodes(self, ids: Optional[Iterable[str]] = None) -> list[Node]:
        if ids is None:
            return list(self._nodes.values())
        return [self._nodes[i] for i in ids if i in self._nodes]
