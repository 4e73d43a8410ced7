"""
jsonapi_graph/ingestion/link_filter.py — Disallowed link-relation filtering.

One exclusion set governs both levels:
    - the JSON:API index: a link key in the set ("self", "describedby",
      "taxonomy_term--tags") is never fetched;
    - individual references: a reference whose target type, or any relation
      declared in its own ``links`` object, is in the set is dropped.

Pure functions; fetch order plays no part.
"""

from typing import Any, Iterable, Mapping, Optional

from jsonapi_graph.graph.nodes import RawReference


def is_type_allowed(entity_type: str, disallowed: Iterable[str]) -> bool:
    return bool(entity_type) and entity_type not in set(disallowed)


def is_reference_allowed(reference: RawReference, disallowed: Iterable[str]) -> bool:
    """True when the reference survives the exclusion set."""
    excluded = set(disallowed)
    if reference.type in excluded:
        return False
    return not (reference.relations & excluded)


def link_href(link: Any) -> Optional[str]:
    """Index/pagination links are either a bare URL or ``{"href": url}``."""
    if isinstance(link, str):
        return link or None
    if isinstance(link, Mapping):
        href = link.get("href")
        return str(href) if href else None
    return None


def filter_index(links: Mapping[str, Any], disallowed: Iterable[str]) -> dict[str, str]:
    """
    Reduce an index ``links`` object to the collections that should be fetched.

    Returns:
        {entity_type: collection_url} in index order.
    """
    excluded = set(disallowed)
    plan: dict[str, str] = {}
    for entity_type, link in links.items():
        if not is_type_allowed(entity_type, excluded):
            continue
        url = link_href(link)
        if url:
            plan[entity_type] = url
    return plan
