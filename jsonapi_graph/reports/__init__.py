"""
jsonapi_graph.reports — Progress reporting and tabular summaries.

Modules:
    activity       — ActivityReporter: timed start/end logging around phases.
    graph_summary  — pandas node table and per-type summary, CSV export.
"""
