"""
jsonapi_graph/graph/integrity.py — Back-reference symmetry checks.

Uses the store's NetworkX edge mirror to verify, in both directions, that

    A --field--> B   ⇔   B.back_references[backref_key(A.type)] ∋ A.id

Intended for tests, the CLI ``--verify`` flag and post-mortems; the sync engine
never calls it on the hot path.
"""

import logging
from dataclasses import dataclass

from jsonapi_graph.graph.nodes import backref_key
from jsonapi_graph.graph.store import GraphStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Violation:
    source: str
    target: str
    key: str
    problem: str  # missing_backref | stale_backref | duplicate_backref | dangling


def dangling_references(store: GraphStore) -> list[tuple[str, str]]:
    """(source, target) pairs whose target is not a committed node."""
    return sorted(
        (u, v) for u, v in store.graph.edges() if v not in store
    )


def find_asymmetric_edges(store: GraphStore) -> list[Violation]:
    """
    Every violation of back-reference symmetry in the store.

    Returns:
        Sorted list of Violation; empty when the graph is consistent.
    """
    G = store.graph
    violations: list[Violation] = []

    for source_id, target_id in G.edges():
        source = store.get(source_id)
        target = store.get(target_id)
        key = backref_key(source.internal_type) if source else ""
        if target is None:
            violations.append(Violation(source_id, target_id, key, "dangling"))
        elif source_id not in target.back_references.get(key, []):
            violations.append(Violation(source_id, target_id, key, "missing_backref"))

    for target in store:
        for key, ids in target.back_references.items():
            if len(ids) != len(set(ids)):
                violations.append(Violation("", target.id, key, "duplicate_backref"))
            for source_id in set(ids):
                source = store.get(source_id)
                if (
                    source is None
                    or backref_key(source.internal_type) != key
                    or not G.has_edge(source_id, target.id)
                ):
                    violations.append(Violation(source_id, target.id, key, "stale_backref"))

    if violations:
        logger.warning("Graph integrity: %d back-reference violations", len(violations))
    return sorted(violations, key=lambda v: (v.problem, v.source, v.target, v.key))


def referencing_nodes(store: GraphStore, node_id: str) -> list[str]:
    """Ids of every node with a forward edge into ``node_id``."""
    if node_id not in store.graph:
        return []
    return sorted(store.graph.predecessors(node_id))
