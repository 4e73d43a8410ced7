"""
jsonapi_graph/graph/backrefs.py — Back-reference maintenance.

For every forward edge A --field--> B, node B carries an entry
``<A's type>___NODE`` listing every node of A's type that points at it. This
module is the only place those entries are written.

Both entry points are idempotent: adding an id already present and removing an
id that is absent are no-ops, so an interrupted incremental update can simply
be retried. An entry that loses its last id is deleted, never left empty.
"""

import logging
from typing import Callable, Mapping, Optional

from jsonapi_graph.errors import DanglingReferenceError
from jsonapi_graph.graph.nodes import Node, Reference, backref_key, referenced_ids

logger = logging.getLogger(__name__)

NodeLookup = Callable[[str], Optional[Node]]


class BackReferenceMaintainer:
    """
    Applies forward-edge changes to the back-reference entries of their targets.

    Args:
        lookup: node id -> the (mutable, staged) Node, or None. The maintainer
                mutates whatever objects the lookup hands out; callers decide
                whether those are committed nodes or working copies.
    """

    def __init__(self, lookup: NodeLookup) -> None:
        self._lookup = lookup

    def _target(self, source: Node, target_id: str) -> Optional[Node]:
        # A node may point at itself; the source object is the live one.
        if target_id == source.id:
            return source
        return self._lookup(target_id)

    def apply_forward(
        self,
        source: Node,
        previous: Mapping[str, Reference],
        new: Mapping[str, Reference],
    ) -> set[str]:
        """
        Move ``source``'s back-references from its old targets to its new ones.

        Targets present under both mappings (through any field) are untouched.
        Every lookup happens before the first mutation: if a new target cannot
        be found, DanglingReferenceError is raised and no entry has changed.

        Returns:
            Ids of nodes whose back-reference entries changed.
        """
        key = backref_key(source.internal_type)
        old_targets = referenced_ids(previous)
        new_targets = referenced_ids(new)

        removals: list[Node] = []
        for target_id in sorted(old_targets - new_targets):
            target = self._target(source, target_id)
            if target is None:
                logger.debug("Old target %s of %s is gone; nothing to unlink", target_id, source.id)
                continue
            removals.append(target)

        additions: list[Node] = []
        for target_id in sorted(new_targets - old_targets):
            target = self._target(source, target_id)
            if target is None:
                raise DanglingReferenceError(source.id, target_id)
            additions.append(target)

        changed: set[str] = set()
        for target in removals:
            if _discard(target, key, source.id):
                changed.add(target.id)
        for target in additions:
            if _add(target, key, source.id):
                changed.add(target.id)

        if changed:
            logger.debug(
                "%s: -%d/+%d back-references under %s",
                source.id, len(removals), len(additions), key,
            )
        return changed

    def remove_all_from(
        self,
        source: Node,
        previous: Optional[Mapping[str, Reference]] = None,
    ) -> set[str]:
        """
        Strip ``source`` from every back-reference entry it created.

        Only the targets named in ``previous`` (default: source.forward) are
        visited; there is no full graph scan.

        Returns:
            Ids of nodes whose back-reference entries changed.
        """
        if previous is None:
            previous = source.forward
        key = backref_key(source.internal_type)
        changed: set[str] = set()
        for target_id in sorted(referenced_ids(previous)):
            target = self._target(source, target_id)
            if target is not None and _discard(target, key, source.id):
                changed.add(target.id)
        return changed


def _add(target: Node, key: str, source_id: str) -> bool:
    entry = target.back_references.setdefault(key, [])
    if source_id in entry:
        return False
    entry.append(source_id)
    return True


def _discard(target: Node, key: str, source_id: str) -> bool:
    entry = target.back_references.get(key)
    if not entry or source_id not in entry:
        return False
    entry.remove(source_id)
    if not entry:
        del target.back_references[key]
    return True
