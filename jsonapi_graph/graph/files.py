"""
jsonapi_graph/graph/files.py — Remote file materialization for file nodes.

A node whose type is one of config.file_types gets its binary fetched once
through the injected materializer, and the returned handle is stored as
node.local_file. The (node id, content key) pairs already materialized are
remembered on the GraphStore, so a rebuild over unchanged files re-attaches the
previous handle instead of downloading again.

Credential selection:
    1. Find the file's mount: the scheme of ``uri.value`` (``private://…`` →
       "private"), else the first configured FileMount whose url_prefix the
       absolute URL starts with.
    2. Use that mount's credentials from config.mount_credentials().
    3. No mount, or a mount without credentials → empty auth ``{}``.
"""

import logging
import re
import threading
import urllib.parse
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any, Callable, Iterable, Mapping, Optional

from jsonapi_graph.config import SyncConfig
from jsonapi_graph.errors import MaterializationError
from jsonapi_graph.graph.nodes import Node, stable_digest
from jsonapi_graph.graph.store import GraphStore
from jsonapi_graph.ingestion.link_filter import link_href

logger = logging.getLogger(__name__)

_URI_SCHEME = re.compile(r"^(\w+)://")

# materialize(url=..., auth=..., parent_node_id=...) -> handle
Materializer = Callable[..., Any]


class FileAttachmentOrchestrator:
    """
    Triggers remote-file materialization for file nodes.

    Args:
        config:      SyncConfig (base_url, file_types, mounts, skip flag, pool size).
        store:       GraphStore holding the materialized-file registry.
        materialize: Materializer callable, or None to never download.
    """

    def __init__(
        self,
        config: SyncConfig,
        store: GraphStore,
        materialize: Optional[Materializer] = None,
    ) -> None:
        self.config = config
        self.store = store
        self._materialize = materialize
        self._in_flight: set[tuple[str, str]] = set()
        self._lock = threading.Lock()

    def is_file_node(self, node: Node) -> bool:
        return node.internal_type in self.config.file_types

    def file_url(self, node: Node) -> Optional[str]:
        """Absolute URL of the file: uri.url, then url, then the entity's self link."""
        uri = node.attributes.get("uri")
        raw_url = None
        if isinstance(uri, Mapping):
            raw_url = uri.get("url")
        if not raw_url:
            raw_url = node.attributes.get("url")
        if not raw_url:
            raw_url = link_href(node.links.get("self"))
        if not raw_url:
            return None
        base = self.config.base_url
        return urllib.parse.urljoin(base.rstrip("/") + "/", str(raw_url)) if base else str(raw_url)

    def mount_for(self, node: Node, url: str) -> Optional[str]:
        uri = node.attributes.get("uri")
        if isinstance(uri, Mapping) and isinstance(uri.get("value"), str):
            match = _URI_SCHEME.match(uri["value"])
            if match:
                return match.group(1)
        for name, mount in self.config.file_mounts.items():
            if not mount.url_prefix:
                continue
            prefix = urllib.parse.urljoin(self.config.base_url.rstrip("/") + "/", mount.url_prefix)
            if url.startswith(prefix):
                return name
        return None

    def credentials_for(self, node: Node, url: str) -> dict[str, str]:
        mount = self.mount_for(node, url)
        if mount is None:
            return {}
        auth = self.config.mount_credentials().get(mount)
        return auth.as_htaccess() if auth is not None else {}

    @staticmethod
    def content_key(node: Node, url: str) -> str:
        return stable_digest({"url": url, "attributes": node.attributes})

    def attach(self, nodes: Iterable[Node]) -> tuple[int, list[MaterializationError]]:
        """
        Materialize every file node in ``nodes`` that needs it.

        Sets node.local_file in place. Failures are logged and returned; the
        affected nodes keep local_file=None and are still committed.

        Returns:
            (number of files newly materialized, errors)
        """
        file_nodes = [n for n in nodes if self.is_file_node(n)]
        if not file_nodes:
            return 0, []
        if self.config.skip_file_downloads:
            logger.info("Skipping %d file downloads (skip_file_downloads set)", len(file_nodes))
            return 0, []
        if self._materialize is None:
            logger.info("No file materializer configured; %d file nodes left as-is", len(file_nodes))
            return 0, []

        pending: list[tuple[Node, str, tuple[str, str]]] = []
        for node in file_nodes:
            url = self.file_url(node)
            if url is None:
                logger.warning("File node %s has no URL; not materialized", node.id)
                continue
            key = (node.id, self.content_key(node, url))
            if key in self.store.materialized_files:
                node.local_file = self.store.materialized_files[key]
                continue
            with self._lock:
                if key in self._in_flight:
                    continue
                self._in_flight.add(key)
            pending.append((node, url, key))

        if not pending:
            return 0, []

        errors: list[MaterializationError] = []
        done = 0
        workers = min(self.config.concurrent_file_requests, len(pending))
        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = {
                executor.submit(self._materialize_one, node, url): (node, key)
                for node, url, key in pending
            }
            for future in as_completed(futures):
                node, key = futures[future]
                try:
                    handle = future.result()
                except MaterializationError as exc:
                    logger.warning("%s", exc)
                    errors.append(exc)
                else:
                    node.local_file = handle
                    self._remember(key, handle)
                    done += 1
                finally:
                    with self._lock:
                        self._in_flight.discard(key)

        logger.info("Materialized %d/%d remote files", done, len(pending))
        return done, errors

    def _remember(self, key: tuple[str, str], handle: Any) -> None:
        # one entry per node: a new content key replaces the previous one
        registry = self.store.materialized_files
        for stale in [k for k in registry if k[0] == key[0] and k != key]:
            del registry[stale]
        registry[key] = handle

    def _materialize_one(self, node: Node, url: str) -> Any:
        auth = self.credentials_for(node, url)
        try:
            return self._materialize(url=url, auth=auth, parent_node_id=node.id)
        except Exception as exc:  # noqa: BLE001
            raise MaterializationError(node.id, url, exc) from exc
