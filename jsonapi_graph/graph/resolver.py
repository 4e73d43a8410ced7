"""
jsonapi_graph/graph/resolver.py — Raw relationship blocks → resolved node links.

resolve_relationships() turns an entity's ``relationships`` into
{field___NODE: Single | Many}. A field whose references all fail to resolve is
omitted, never present-but-empty: downstream code treats "absent" as the only
way of saying "no links".
"""

import logging
from typing import Callable, Iterable, Optional

from jsonapi_graph.errors import CardinalityWarning, SyncWarning, UnresolvedReferenceWarning
from jsonapi_graph.graph.nodes import (
    Cardinality,
    Many,
    RawEntity,
    RawRelationship,
    Reference,
    Single,
    field_key,
)
from jsonapi_graph.ingestion.link_filter import is_reference_allowed

logger = logging.getLogger(__name__)

# remote id -> node id when the target is resolvable, else None
Lookup = Callable[[str], Optional[str]]


class CardinalityRegistry:
    """
    First-seen relationship shape per (entity type, field).

    A graph store owns one registry so the shape of a field cannot flip
    between a full import and a later incremental update.
    """

    def __init__(self) -> None:
        self._shapes: dict[tuple[str, str], Cardinality] = {}

    def __len__(self) -> int:
        return len(self._shapes)

    def get(self, entity_type: str, field_name: str) -> Optional[Cardinality]:
        return self._shapes.get((entity_type, field_name))

    def copy(self) -> "CardinalityRegistry":
        clone = CardinalityRegistry()
        clone._shapes = dict(self._shapes)
        return clone

    def merge(self, other: "CardinalityRegistry") -> None:
        """Adopt shapes from ``other``; shapes already recorded here are kept."""
        for key, shape in other._shapes.items():
            self._shapes.setdefault(key, shape)

    def reconcile(
        self,
        entity_type: str,
        field_name: str,
        relationship: RawRelationship,
    ) -> tuple[RawRelationship, Optional[CardinalityWarning]]:
        key = (entity_type, field_name)
        expected = self._shapes.setdefault(key, relationship.cardinality)
        if expected == relationship.cardinality:
            return relationship, None

        warning = CardinalityWarning(
            entity_type, field_name, expected.value, relationship.cardinality.value
        )
        logger.warning("%s", warning)
        refs = relationship.references
        if expected == Cardinality.SINGLE:
            refs = refs[:1]
        return RawRelationship(expected, refs), warning


def resolve_relationships(
    raw: RawEntity,
    lookup: Lookup,
    disallowed: Iterable[str] = (),
    cardinality: Optional[CardinalityRegistry] = None,
    warnings: Optional[list[SyncWarning]] = None,
) -> dict[str, Reference]:
    """
    Resolve every relationship field of ``raw``.

    Args:
        raw:         The entity whose relationships are resolved.
        lookup:      remote id -> node id, or None when the target is not in
                     the current fetch set / graph store.
        disallowed:  Link relations and entity types to drop.
        cardinality: Registry enforcing a stable shape per field.
        warnings:    Collects an UnresolvedReferenceWarning per dropped
                     reference (and CardinalityWarnings).

    Returns:
        {"<field>___NODE": Single | Many}; fields with nothing resolved are absent.

    Notes:
        - Deterministic: the output depends only on ``raw`` and ``lookup``.
        - Within a to-many field, a reference repeated in the source is kept
          at its first position only.
    """
    excluded = frozenset(disallowed)
    resolved: dict[str, Reference] = {}

    for name, relationship in raw.relationships.items():
        if cardinality is not None:
            relationship, shape_warning = cardinality.reconcile(raw.type, name, relationship)
            if shape_warning is not None and warnings is not None:
                warnings.append(shape_warning)

        targets: list[str] = []
        for ref in relationship.references:
            reason = None
            target_id = None
            if not is_reference_allowed(ref, excluded):
                reason = "disallowed"
            else:
                target_id = lookup(ref.remote_id)
                if target_id is None:
                    reason = "unresolvable"
            if reason is not None:
                logger.debug(
                    "Dropping %s.%s -> %s/%s (%s)",
                    raw.remote_id, name, ref.type, ref.remote_id, reason,
                )
                if warnings is not None:
                    warnings.append(
                        UnresolvedReferenceWarning(raw.remote_id, name, ref.remote_id, reason)
                    )
                continue
            if target_id not in targets:
                targets.append(target_id)

        if not targets:
            continue
        if relationship.cardinality == Cardinality.SINGLE:
            resolved[field_key(name)] = Single(targets[0])
        else:
            resolved[field_key(name)] = Many(tuple(targets))

    return resolved
