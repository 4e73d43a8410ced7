"""
jsonapi_graph.graph — Node model, relationship resolution and sync engine.

Modules:
    nodes      — RawEntity / Node, Single | Many references, build_node.
    resolver   — Raw relationship blocks → resolved node links.
    backrefs   — Back-reference maintenance (apply_forward / remove_all_from).
    store      — GraphStore (NetworkX edge mirror) and StagingArea.
    files      — Remote file materialization with per-mount credentials.
    integrity  — Back-reference symmetry checks.
    sync       — SyncEngine: full import and incremental updates.
"""
