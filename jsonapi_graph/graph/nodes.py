"""
jsonapi_graph/graph/nodes.py — Raw JSON:API records and local graph nodes.

A RawEntity is one JSON:API resource object exactly as the remote returned it.
A Node is its local, addressable counterpart: stable id, flattened attributes,
forward relationships and the back-references other nodes hold on it.

Relationship values are a tagged union:
    Single(target)      — a to-one field
    Many(targets)       — a to-many field, non-empty, source order preserved
Cardinality comes from the field's JSON shape once, at parse time, and is
carried by the type from then on.
"""

import copy
import hashlib
import json
import logging
import re
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Iterable, Mapping, Optional, Union

logger = logging.getLogger(__name__)

NODE_LINK_SUFFIX = "___NODE"
PRESERVED_ID_KEY = "_attributes_id"

# Namespace for uuid5 node ids; any fixed value works as long as it never changes.
NODE_ID_NAMESPACE = uuid.UUID("2f0a4f2e-7f0c-5d0e-9a43-6b1f3c1c8a11")

_UNSAFE_TYPE_CHARS = re.compile(r"-|__|:|\.|\s")


class Cardinality(str, Enum):
    SINGLE = "single"
    MANY = "many"


@dataclass(frozen=True)
class RawReference:
    """One resource identifier inside a relationship's ``data``."""

    type: str
    remote_id: str
    relations: frozenset[str] = frozenset()
    # Keys of the identifier's own ``links`` object, if it declared one.

    @classmethod
    def from_json(cls, entry: Mapping[str, Any]) -> Optional["RawReference"]:
        if not isinstance(entry, Mapping):
            return None
        remote_id = entry.get("id")
        ref_type = entry.get("type")
        if not remote_id or not ref_type:
            return None
        links = entry.get("links") or {}
        return cls(
            type=str(ref_type),
            remote_id=str(remote_id),
            relations=frozenset(links.keys()) if isinstance(links, Mapping) else frozenset(),
        )


@dataclass(frozen=True)
class RawRelationship:
    """A relationship field: its shape plus the references it carries (possibly none)."""

    cardinality: Cardinality
    references: tuple[RawReference, ...] = ()


@dataclass
class RawEntity:
    """One JSON:API resource object."""

    type: str
    remote_id: str
    attributes: dict[str, Any] = field(default_factory=dict)
    relationships: dict[str, RawRelationship] = field(default_factory=dict)
    links: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_json(cls, datum: Mapping[str, Any]) -> Optional["RawEntity"]:
        """
        Parse a resource object. Returns None when it lacks a type or an id.

        A relationship without a ``data`` member (links-only) is ignored. A
        ``data: null`` to-one field is kept as an empty SINGLE relationship so
        its cardinality is still known.
        """
        if not isinstance(datum, Mapping):
            return None
        entity_type = datum.get("type")
        remote_id = datum.get("id")
        if not entity_type or not remote_id:
            logger.debug("Skipping resource without type/id: %r", datum)
            return None

        relationships: dict[str, RawRelationship] = {}
        for name, value in (datum.get("relationships") or {}).items():
            if not isinstance(value, Mapping) or "data" not in value:
                continue
            data = value["data"]
            if isinstance(data, list):
                refs = tuple(r for r in (RawReference.from_json(e) for e in data) if r)
                relationships[name] = RawRelationship(Cardinality.MANY, refs)
            else:
                ref = RawReference.from_json(data) if data else None
                relationships[name] = RawRelationship(
                    Cardinality.SINGLE, (ref,) if ref else ()
                )

        return cls(
            type=str(entity_type),
            remote_id=str(remote_id),
            attributes=dict(datum.get("attributes") or {}),
            relationships=relationships,
            links=dict(datum.get("links") or {}),
        )


@dataclass(frozen=True)
class Single:
    target: str

    @property
    def target_ids(self) -> tuple[str, ...]:
        return (self.target,)

    @property
    def value(self) -> str:
        return self.target


@dataclass(frozen=True)
class Many:
    targets: tuple[str, ...]

    def __post_init__(self) -> None:
        if not self.targets:
            raise ValueError("Many() needs at least one target; omit the field instead")

    @property
    def target_ids(self) -> tuple[str, ...]:
        return self.targets

    @property
    def value(self) -> list[str]:
        return list(self.targets)


Reference = Union[Single, Many]


def safe_type_name(entity_type: str) -> str:
    """``node--article`` → ``node__article``."""
    return _UNSAFE_TYPE_CHARS.sub("_", entity_type)


def field_key(field_name: str) -> str:
    return f"{field_name}{NODE_LINK_SUFFIX}"


def backref_key(entity_type: str) -> str:
    """Name of the back-reference entry that nodes of ``entity_type`` create on their targets."""
    return f"{safe_type_name(entity_type)}{NODE_LINK_SUFFIX}"


def referenced_ids(relationships: Mapping[str, Reference]) -> set[str]:
    """Every node id reachable through a forward relationship mapping."""
    ids: set[str] = set()
    for ref in relationships.values():
        ids.update(ref.target_ids)
    return ids


@dataclass
class Node:
    """A local graph vertex."""

    id: str
    remote_id: str
    internal_type: str
    attributes: dict[str, Any] = field(default_factory=dict)
    forward: dict[str, Reference] = field(default_factory=dict)
    back_references: dict[str, list[str]] = field(default_factory=dict)
    links: dict[str, Any] = field(default_factory=dict)
    digest: str = ""
    local_file: Optional[str] = None

    @property
    def relationships(self) -> dict[str, Any]:
        """Forward relationships and back-references as plain ids / id lists."""
        merged: dict[str, Any] = {key: ref.value for key, ref in self.forward.items()}
        for key, ids in self.back_references.items():
            merged.setdefault(key, list(ids))
        return merged

    def copy(self) -> "Node":
        return Node(
            id=self.id,
            remote_id=self.remote_id,
            internal_type=self.internal_type,
            attributes=copy.deepcopy(self.attributes),
            forward=dict(self.forward),
            back_references={k: list(v) for k, v in self.back_references.items()},
            links=copy.deepcopy(self.links),
            digest=self.digest,
            local_file=self.local_file,
        )

    def content(self) -> dict[str, Any]:
        """
        The fields the digest covers.

        Back-reference lists are sorted: their insertion order depends on the
        order sources were processed in and carries no meaning.
        """
        return {
            "id": self.id,
            "remote_id": self.remote_id,
            "internal_type": self.internal_type,
            "attributes": self.attributes,
            "forward": {key: ref.value for key, ref in sorted(self.forward.items())},
            "back_references": {
                key: sorted(ids) for key, ids in sorted(self.back_references.items())
            },
        }

    def to_dict(self) -> dict[str, Any]:
        """Flattened view: attributes spread at the top level next to id/relationships."""
        out: dict[str, Any] = {"id": self.id, "remote_id": self.remote_id}
        out.update(self.attributes)
        relationships = self.relationships
        if relationships:
            out["relationships"] = relationships
        if self.local_file is not None:
            out[field_key("localFile")] = self.local_file
        out["internal"] = {"type": safe_type_name(self.internal_type), "content_digest": self.digest}
        return out


def default_node_id(remote_id: str) -> str:
    """Deterministic uuid5 of the remote id; identical across runs and processes."""
    return str(uuid.uuid5(NODE_ID_NAMESPACE, remote_id))


def stable_digest(payload: Any) -> str:
    """md5 over the canonical JSON form of ``payload``."""
    encoded = json.dumps(payload, sort_keys=True, default=str, separators=(",", ":"))
    return hashlib.md5(encoded.encode("utf-8")).hexdigest()


def default_content_digest(node: Node) -> str:
    return stable_digest(node.content())


def build_node(raw: RawEntity, create_node_id: Callable[[str], str] = default_node_id) -> Node:
    """
    Convert one raw entity into a node without relationships.

    Attributes are copied verbatim except the remote ``id`` attribute, which
    moves to ``_attributes_id`` so it cannot shadow the node id.
    """
    attributes = copy.deepcopy(raw.attributes)
    if "id" in attributes:
        attributes[PRESERVED_ID_KEY] = attributes.pop("id")
    return Node(
        id=create_node_id(raw.remote_id),
        remote_id=raw.remote_id,
        internal_type=raw.type,
        attributes=attributes,
        links=copy.deepcopy(raw.links),
    )


def stamp_digests(nodes: Iterable[Node], content_digest: Callable[[Node], str]) -> None:
    for node in nodes:
        node.digest = content_digest(node)
