"""
jsonapi_graph/errors.py — Exception and warning taxonomy.

Errors abort the operation that raised them. Warnings are never raised: the
sync engine records them on SyncReport.warnings, logs them, and carries on.
"""

from typing import Optional


class JsonApiGraphError(Exception):
    """Base class for every error raised by this package."""


class ConfigError(JsonApiGraphError):
    """Invalid SyncConfig value."""


class FetchError(JsonApiGraphError):
    """
    Transport or pagination failure while fetching a collection.

    Pages already yielded before the failure are not replayed; callers must
    treat the whole collection as incomplete.
    """

    def __init__(
        self,
        url: str,
        entity_type: Optional[str] = None,
        cause: Optional[BaseException] = None,
        status: Optional[int] = None,
    ) -> None:
        self.url = url
        self.entity_type = entity_type
        self.cause = cause
        self.status = status
        detail = f": {cause}" if cause is not None else ""
        where = f" ({entity_type})" if entity_type else ""
        super().__init__(f"Failed to fetch {url}{where}{detail}")


class InvalidPayloadError(JsonApiGraphError):
    """An incremental payload is not a JSON:API resource with a type and an id."""


class MaterializationError(JsonApiGraphError):
    """Remote file download failed. The node is committed without a local file."""

    def __init__(self, node_id: str, url: str, cause: Optional[BaseException] = None) -> None:
        self.node_id = node_id
        self.url = url
        self.cause = cause
        super().__init__(f"Could not materialize {url} for node {node_id}: {cause}")


class DanglingReferenceError(JsonApiGraphError):
    """A forward edge points at a node the lookup cannot produce."""

    def __init__(self, source_id: str, target_id: str) -> None:
        self.source_id = source_id
        self.target_id = target_id
        super().__init__(f"Node {source_id} references missing node {target_id}")


class SyncCancelled(JsonApiGraphError):
    """The cancel event was set between phases. Nothing was committed."""


class SyncWarning(UserWarning):
    """Base class for non-fatal conditions recorded during a sync."""


class UnresolvedReferenceWarning(SyncWarning):
    """A relationship reference was dropped (excluded, filtered or unknown target)."""

    def __init__(self, source_id: str, field_name: str, target_remote_id: str, reason: str) -> None:
        self.source_id = source_id
        self.field_name = field_name
        self.target_remote_id = target_remote_id
        self.reason = reason
        super().__init__(
            f"{source_id}.{field_name} -> {target_remote_id} dropped ({reason})"
        )


class UnknownEntityTypeWarning(SyncWarning):
    """An incremental payload carried an entity type the graph has never seen."""

    def __init__(self, entity_type: str, remote_id: str) -> None:
        self.entity_type = entity_type
        self.remote_id = remote_id
        super().__init__(
            f"Entity {remote_id} has unseen type {entity_type!r}; "
            "its relationships may be incomplete until the next full import"
        )


class CardinalityWarning(SyncWarning):
    """A field arrived with a different shape than the one first recorded for it."""

    def __init__(self, entity_type: str, field_name: str, expected: str, got: str) -> None:
        self.entity_type = entity_type
        self.field_name = field_name
        self.expected = expected
        self.got = got
        super().__init__(
            f"{entity_type}.{field_name} is {expected} but arrived as {got}; coerced"
        )
