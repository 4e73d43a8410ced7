"""
jsonapi_graph/graph/sync.py — Full import and incremental (webhook) updates.

SyncEngine drives the whole pipeline:

    JsonApiClient  →  link filter  →  build_node  →  resolve_relationships
                   →  BackReferenceMaintainer  →  FileAttachmentOrchestrator
                   →  GraphStore.commit

Full import:   IDLE → FETCHING → RESOLVING → COMMITTING → IDLE
Incremental:   IDLE → DIFFING → COMMITTING → IDLE

Nothing reaches the store before COMMITTING. Full import stages a fresh node
set (relationships resolved in a second pass so references to types fetched
later still resolve) and commits it in one call; a fetch failure or a
cancellation leaves the previous graph untouched. An incremental update works
on copies of the nodes it touches and commits the changed node plus every node
whose back-reference entry changed.
"""

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Mapping, Optional

from jsonapi_graph.config import DEFAULT_CONFIG, SyncConfig
from jsonapi_graph.errors import (
    FetchError,
    InvalidPayloadError,
    MaterializationError,
    SyncCancelled,
    SyncWarning,
    UnknownEntityTypeWarning,
    UnresolvedReferenceWarning,
)
from jsonapi_graph.graph.backrefs import BackReferenceMaintainer
from jsonapi_graph.graph.files import FileAttachmentOrchestrator, Materializer
from jsonapi_graph.graph.nodes import (
    Node,
    RawEntity,
    build_node,
    default_content_digest,
    default_node_id,
    referenced_ids,
    stamp_digests,
)
from jsonapi_graph.graph.resolver import CardinalityRegistry, resolve_relationships
from jsonapi_graph.graph.store import GraphStore, StagingArea
from jsonapi_graph.ingestion.jsonapi_client import FetchPage, JsonApiClient
from jsonapi_graph.ingestion.link_filter import is_type_allowed
from jsonapi_graph.reports.activity import ActivityReporter

logger = logging.getLogger(__name__)


class SyncState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    RESOLVING = "resolving"
    DIFFING = "diffing"
    COMMITTING = "committing"


@dataclass
class SyncReport:
    """Outcome of one full import or incremental update."""

    mode: str
    fetched: dict[str, int] = field(default_factory=dict)
    failed_types: dict[str, str] = field(default_factory=dict)
    created: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)
    detached: list[str] = field(default_factory=list)
    committed: int = 0
    materialized: int = 0
    materialization_errors: list[MaterializationError] = field(default_factory=list)
    warnings: list[SyncWarning] = field(default_factory=list)
    duration_s: float = 0.0

    @property
    def unresolved_references(self) -> list[UnresolvedReferenceWarning]:
        return [w for w in self.warnings if isinstance(w, UnresolvedReferenceWarning)]

    def summary(self) -> str:
        return (
            f"{self.mode}: {len(self.created)} created, {len(self.updated)} updated, "
            f"{len(self.unchanged)} unchanged, {len(self.detached)} detached, "
            f"{self.committed} committed, {self.materialized} files, "
            f"{len(self.unresolved_references)} dropped references, "
            f"{len(self.failed_types)} failed types in {self.duration_s:.2f}s"
        )


class SyncEngine:
    """
    Orchestrates full imports and incremental updates against one GraphStore.

    Args:
        config:                  Default SyncConfig; each call may pass its own.
        store:                   Graph store (a fresh one if omitted).
        fetch_page:              Transport for JsonApiClient (urllib by default).
        create_node_id:          remote id -> node id (uuid5 by default).
        content_digest:          Node -> digest (md5 of Node.content() by default).
        materialize_remote_file: File materializer, or None to skip downloads.
        reporter:                Activity sink (logging by default).
    """

    def __init__(
        self,
        config: SyncConfig = DEFAULT_CONFIG,
        store: Optional[GraphStore] = None,
        fetch_page: Optional[FetchPage] = None,
        create_node_id: Callable[[str], str] = default_node_id,
        content_digest: Callable[[Node], str] = default_content_digest,
        materialize_remote_file: Optional[Materializer] = None,
        reporter: Optional[ActivityReporter] = None,
    ) -> None:
        self.config = config
        self.store = store if store is not None else GraphStore()
        self._fetch_page = fetch_page
        self._create_node_id = create_node_id
        self._content_digest = content_digest
        self._materialize = materialize_remote_file
        self.reporter = reporter or ActivityReporter()
        self._state = SyncState.IDLE

    @property
    def state(self) -> SyncState:
        return self._state

    def _enter(self, state: SyncState) -> None:
        logger.debug("Sync state %s -> %s", self._state.value, state.value)
        self._state = state

    @staticmethod
    def _check_cancelled(cancel_event: Optional[threading.Event]) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise SyncCancelled("Sync cancelled before commit; graph unchanged")

    # ── Full import ───────────────────────────────────────────────────────────

    def run_full_import(
        self,
        config: Optional[SyncConfig] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> SyncReport:
        """
        Fetch every allowed collection and rebuild the graph from it.

        Args:
            config:       Overrides the engine's default config for this run.
            cancel_event: Checked before each collection fetch and before
                          commit; when set, SyncCancelled is raised and the
                          store is left as it was.

        Returns:
            SyncReport for the run.

        Raises:
            FetchError:    index failure, or a collection failure under
                           on_fetch_error="abort".
            SyncCancelled: cancel_event was set.
        """
        config = config or self.config
        config.validate()
        report = SyncReport(mode="full")
        t0 = time.monotonic()
        logger.info("Full import from %s", config.index_url)

        try:
            self._enter(SyncState.FETCHING)
            with self.reporter.activity("Fetch JSON:API collections"):
                collections = self._fetch_collections(config, cancel_event, report)
            self._check_cancelled(cancel_event)

            self._enter(SyncState.RESOLVING)
            with self.store.lock:
                cardinality = self.store.cardinality.copy()
            with self.reporter.activity("Build nodes and resolve relationships"):
                staging = self._stage_full_import(collections, config, report, cardinality)
            self._check_cancelled(cancel_event)

            self._enter(SyncState.COMMITTING)
            with self.store.lock:
                self.store.cardinality.merge(cardinality)
                fresh = staging.nodes()
                stamp_digests(fresh, self._content_digest)
                self._classify(fresh, report)
                for stale in self._detach_out_of_scope(staging):
                    report.detached.append(stale.id)
                    staging.add(stale)

                nodes = staging.nodes()
                stamp_digests(nodes, self._content_digest)
                with self.reporter.activity("Remote file download"):
                    files = FileAttachmentOrchestrator(config, self.store, self._materialize)
                    report.materialized, report.materialization_errors = files.attach(nodes)
                report.committed = self.store.commit(nodes)
        finally:
            self._enter(SyncState.IDLE)
            report.duration_s = time.monotonic() - t0

        logger.info("%s", report.summary())
        return report

    def _fetch_collections(
        self,
        config: SyncConfig,
        cancel_event: Optional[threading.Event],
        report: SyncReport,
    ) -> dict[str, list[RawEntity]]:
        """Fetch every collection concurrently; return {type: entities} in index order."""
        client = JsonApiClient(config, self._fetch_page)
        plan = client.fetch_index()

        def fetch(entity_type: str, url: str) -> list[RawEntity]:
            self._check_cancelled(cancel_event)
            return list(
                client.fetch_collection(entity_type, url, filter_query=config.filters.get(entity_type))
            )

        results: dict[str, list[RawEntity]] = {}
        if not plan:
            logger.warning("JSON:API index at %s lists no allowed collections", config.index_url)
            return results

        with ThreadPoolExecutor(max_workers=min(config.fetch_workers, len(plan))) as executor:
            futures: dict[Future, str] = {
                executor.submit(fetch, entity_type, url): entity_type
                for entity_type, url in plan.items()
            }
            for future in as_completed(futures):
                entity_type = futures[future]
                try:
                    results[entity_type] = future.result()
                except FetchError as exc:
                    if config.on_fetch_error == "abort":
                        _cancel_pending(futures)
                        logger.error("Aborting full import: %s", exc)
                        raise
                    logger.warning("Skipping %s for this import: %s", entity_type, exc)
                    report.failed_types[entity_type] = str(exc)
                except SyncCancelled:
                    _cancel_pending(futures)
                    raise
                else:
                    logger.info("Fetched %d %s entities", len(results[entity_type]), entity_type)

        ordered = {t: results[t] for t in plan if t in results}
        for entity_type, entities in ordered.items():
            report.fetched[entity_type] = len(entities)
        return ordered

    def _stage_full_import(
        self,
        collections: Mapping[str, list[RawEntity]],
        config: SyncConfig,
        report: SyncReport,
        cardinality: CardinalityRegistry,
    ) -> StagingArea:
        excluded = config.disallowed_link_types
        failed = set(report.failed_types)
        staging = StagingArea()
        raw_by_id: dict[str, RawEntity] = {}
        own_collection: dict[str, bool] = {}

        for collection_type, entities in collections.items():
            for raw in entities:
                if not is_type_allowed(raw.type, excluded):
                    logger.debug("Dropping included %s/%s (type disallowed)", raw.type, raw.remote_id)
                    continue
                if raw.type in failed:
                    logger.debug("Dropping included %s/%s (its collection failed)", raw.type, raw.remote_id)
                    continue
                node = build_node(raw, self._create_node_id)
                from_own = raw.type == collection_type
                # A resource may arrive in its own collection and as an
                # ``included`` member of others; the own-collection copy wins.
                if node.id in raw_by_id and (own_collection[node.id] or not from_own):
                    continue
                staging.add(node)
                raw_by_id[node.id] = raw
                own_collection[node.id] = from_own

        def lookup(remote_id: str) -> Optional[str]:
            node_id = self._create_node_id(remote_id)
            return node_id if node_id in raw_by_id else None

        for node_id, raw in raw_by_id.items():
            staging.get(node_id).forward = resolve_relationships(
                raw, lookup, excluded, cardinality, report.warnings
            )

        maintainer = BackReferenceMaintainer(staging.get)
        for node_id in raw_by_id:
            node = staging.get(node_id)
            maintainer.apply_forward(node, {}, node.forward)

        dropped = len(report.unresolved_references)
        logger.info(
            "Staged %d nodes, %d forward relationships, %d references dropped",
            len(raw_by_id),
            sum(len(staging.get(i).forward) for i in raw_by_id),
            dropped,
        )
        return staging

    def _classify(self, fresh: list[Node], report: SyncReport) -> None:
        for node in fresh:
            existing = self.store.get(node.id)
            if existing is None:
                report.created.append(node.id)
            elif existing.digest == node.digest:
                node.local_file = existing.local_file
                report.unchanged.append(node.id)
            else:
                report.updated.append(node.id)

    def _detach_out_of_scope(self, staging: StagingArea) -> list[Node]:
        """
        Isolate committed nodes the new import no longer contains.

        Their outgoing edges are dropped, and every back-reference entry they
        hold is stripped through the maintainer by replaying remove_all_from
        for each committed source that pointed at them. Returns working copies
        of the nodes that actually changed.
        """
        stale_ids = {n.id for n in self.store if n.id not in staging}
        if not stale_ids:
            return []

        working = StagingArea(self.store)
        copies = {node_id: working.get(node_id) for node_id in stale_ids}
        before = {node_id: (dict(n.forward), {k: list(v) for k, v in n.back_references.items()})
                  for node_id, n in copies.items()}
        maintainer = BackReferenceMaintainer(copies.get)

        for committed in self.store:
            if not referenced_ids(committed.forward) & stale_ids:
                continue
            source = copies.get(committed.id) or committed.copy()
            maintainer.remove_all_from(source, committed.forward)

        changed: list[Node] = []
        for node_id in sorted(stale_ids):
            node = copies[node_id]
            node.forward = {}
            if (node.forward, node.back_references) != before[node_id]:
                changed.append(node)
        if changed:
            logger.info("Detached %d nodes no longer in scope", len(changed))
        return changed

    # ── Incremental update ────────────────────────────────────────────────────

    def apply_incremental_update(
        self,
        payload: Mapping[str, Any],
        config: Optional[SyncConfig] = None,
    ) -> SyncReport:
        """
        Apply one inserted or updated entity (a webhook body) to the populated store.

        Args:
            payload: A JSON:API document ``{"data": {...}}`` or a bare resource object.
            config:  Overrides the engine's default config for this call.

        Returns:
            SyncReport; ``created``/``updated``/``unchanged`` name the entity's node.

        Raises:
            InvalidPayloadError: the payload has no resource type/id.
        """
        config = config or self.config
        report = SyncReport(mode="incremental")
        t0 = time.monotonic()

        datum = payload.get("data", payload) if isinstance(payload, Mapping) else None
        raw = RawEntity.from_json(datum) if datum is not None else None
        if raw is None:
            raise InvalidPayloadError("Webhook payload has no resource with a type and an id")

        excluded = config.disallowed_link_types
        with self.store.lock:
            try:
                self._enter(SyncState.DIFFING)
                staging = StagingArea(self.store)
                maintainer = BackReferenceMaintainer(staging.get)
                node_id = self._create_node_id(raw.remote_id)
                node = staging.get(node_id)
                touched: set[str] = set()

                if not is_type_allowed(raw.type, excluded):
                    logger.info("Ignoring update for disallowed type %s (%s)", raw.type, raw.remote_id)
                    if node is None or not node.forward:
                        return report
                    touched |= maintainer.remove_all_from(node)
                    node.forward = {}
                    report.detached.append(node.id)
                    self._enter(SyncState.COMMITTING)
                    self._commit_incremental(node, touched, staging, config, report)
                    return report

                if raw.type not in self.store.known_types:
                    warning = UnknownEntityTypeWarning(raw.type, raw.remote_id)
                    logger.warning("%s", warning)
                    report.warnings.append(warning)

                def lookup(remote_id: str) -> Optional[str]:
                    target_id = self._create_node_id(remote_id)
                    return target_id if target_id in self.store else None

                fresh = build_node(raw, self._create_node_id)
                new_forward = resolve_relationships(
                    raw, lookup, excluded, self.store.cardinality, report.warnings
                )

                if node is None:
                    node = fresh
                    node.forward = new_forward
                    staging.add(node)
                    previous: dict = {}
                    report.created.append(node.id)
                else:
                    previous = dict(node.forward)
                    type_changed = node.internal_type != raw.type
                    attrs_changed = node.attributes != fresh.attributes or node.links != fresh.links
                    if not (type_changed or attrs_changed or previous != new_forward):
                        logger.info("Node %s unchanged by update", node.id)
                        report.unchanged.append(node.id)
                        return report
                    if type_changed:
                        logger.warning(
                            "Node %s changed type %s -> %s", node.id, node.internal_type, raw.type
                        )
                        touched |= maintainer.remove_all_from(node, previous)
                        node.internal_type = raw.type
                        previous = {}
                    if attrs_changed:
                        node.attributes = fresh.attributes
                        node.links = fresh.links
                    node.forward = new_forward
                    report.updated.append(node.id)

                touched |= maintainer.apply_forward(node, previous, new_forward)

                self._enter(SyncState.COMMITTING)
                self._commit_incremental(node, touched, staging, config, report)
            finally:
                self._enter(SyncState.IDLE)
                report.duration_s = time.monotonic() - t0

        logger.info("%s", report.summary())
        return report

    def _commit_incremental(
        self,
        node: Node,
        touched: set[str],
        staging: StagingArea,
        config: SyncConfig,
        report: SyncReport,
    ) -> None:
        nodes = [node] + staging.nodes(sorted(touched - {node.id}))
        stamp_digests(nodes, self._content_digest)
        files = FileAttachmentOrchestrator(config, self.store, self._materialize)
        report.materialized, report.materialization_errors = files.attach([node])
        report.committed = self.store.commit(nodes)
        for changed in nodes[1:]:
            self.reporter.log(f"Updated node: {changed.id}")
        self.reporter.log(f"Updated node: {node.id}")


def _cancel_pending(futures: Mapping[Future, str]) -> None:
    for future in futures:
        future.cancel()
