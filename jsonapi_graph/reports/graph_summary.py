"""
jsonapi_graph/reports/graph_summary.py — Tabular views of the synced graph.

nodes_frame()     one row per node
type_summary()    one row per entity type (node / edge / back-reference counts)
export_nodes_csv  nodes_frame() written to CSV
"""

import logging
import os

import pandas as pd

from jsonapi_graph.graph.nodes import referenced_ids
from jsonapi_graph.graph.store import GraphStore

logger = logging.getLogger(__name__)

NODE_COLUMNS = [
    "id",
    "remote_id",
    "internal_type",
    "forward_fields",
    "forward_edges",
    "back_references",
    "has_local_file",
    "digest",
]


def nodes_frame(store: GraphStore) -> pd.DataFrame:
    rows = []
    for node in store:
        rows.append({
            "id": node.id,
            "remote_id": node.remote_id,
            "internal_type": node.internal_type,
            "forward_fields": len(node.forward),
            "forward_edges": len(referenced_ids(node.forward)),
            "back_references": sum(len(ids) for ids in node.back_references.values()),
            "has_local_file": node.local_file is not None,
            "digest": node.digest,
        })
    df = pd.DataFrame(rows, columns=NODE_COLUMNS)
    return df.sort_values(["internal_type", "remote_id"]).reset_index(drop=True)


def type_summary(store: GraphStore) -> pd.DataFrame:
    """Per-type counts, sorted by node count (descending)."""
    df = nodes_frame(store)
    if df.empty:
        return pd.DataFrame(columns=["internal_type", "nodes", "forward_edges", "back_references", "local_files"])
    summary = (
        df.groupby("internal_type")
        .agg(
            nodes=("id", "count"),
            forward_edges=("forward_edges", "sum"),
            back_references=("back_references", "sum"),
            local_files=("has_local_file", "sum"),
        )
        .reset_index()
        .sort_values(["nodes", "internal_type"], ascending=[False, True])
        .reset_index(drop=True)
    )
    return summary


def export_nodes_csv(store: GraphStore, path: str) -> str:
    """Write nodes_frame() to ``path`` atomically (write .tmp, rename)."""
    directory = os.path.dirname(os.path.abspath(path))
    os.makedirs(directory, exist_ok=True)
    tmp = path + ".tmp"
    nodes_frame(store).to_csv(tmp, index=False)
    os.replace(tmp, path)
    logger.info("Exported %d nodes to %s", len(store), path)
    return path
