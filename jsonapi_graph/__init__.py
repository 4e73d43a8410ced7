"""
jsonapi_graph — Incremental graph synchronization for JSON:API content repositories.

Builds a local node graph from every collection a JSON:API server exposes,
mirrors each relationship with a back-reference on its target, and applies
single-entity webhook updates without a full resync.

Entry points:
    jsonapi_graph.graph.sync.SyncEngine   run_full_import / apply_incremental_update
    jsonapi_graph.config.SyncConfig       explicit configuration for both
"""

__version__ = "0.1.0"
