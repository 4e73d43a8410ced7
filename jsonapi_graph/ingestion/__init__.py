"""
jsonapi_graph.ingestion — Remote data access.

Modules:
    jsonapi_client   — Index discovery and paginated collection fetching.
    link_filter      — Disallowed link-relation / entity-type filtering.
    file_downloader  — Default urllib materializer for remote files.
"""
