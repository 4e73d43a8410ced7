"""
JSON:API Client — Paginated collection fetcher for the remote content repository.

Discovers the collection URLs from the API index, then walks each collection
page by page following ``links.next``. Resources in a page's ``included`` array
are yielded right after that page's ``data``.

Errors are not swallowed here: a failure on any page raises FetchError carrying
the failing URL, and whatever was yielded before it must be treated as an
incomplete collection by the caller.

Uses only Python stdlib (urllib.request) for the default transport; any other
transport with the same call signature can be injected.
"""
import base64
import json
import logging
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from typing import Any, Callable, Iterator, Mapping, Optional

from jsonapi_graph.config import DEFAULT_CONFIG, BasicAuth, SyncConfig
from jsonapi_graph.errors import FetchError
from jsonapi_graph.graph.nodes import RawEntity
from jsonapi_graph.ingestion.link_filter import filter_index, link_href

logger = logging.getLogger(__name__)

JSONAPI_ACCEPT = "application/vnd.api+json"


@dataclass(frozen=True)
class Credentials:
    """Credentials attached to every API request."""

    basic_auth: Optional[BasicAuth] = None
    bearer_token: Optional[str] = None

    @classmethod
    def from_config(cls, config: SyncConfig) -> "Credentials":
        return cls(basic_auth=config.basic_auth, bearer_token=config.bearer_token)

    def authorization_header(self) -> Optional[str]:
        if self.basic_auth is not None:
            raw = f"{self.basic_auth.username}:{self.basic_auth.password}".encode("utf-8")
            return "Basic " + base64.b64encode(raw).decode("ascii")
        if self.bearer_token:
            return f"Bearer {self.bearer_token}"
        return None


# fetch_page(url, credentials, headers=..., params=..., timeout=...) -> parsed JSON body
FetchPage = Callable[..., dict]


def with_query(url: str, query: Optional[str]) -> str:
    """Append a raw query string (``filter[x]=1&include=y``) to ``url``."""
    if not query:
        return url
    query = query.lstrip("?&")
    return f"{url}{'&' if '?' in url else '?'}{query}"


def _with_params(url: str, params: Optional[Mapping[str, Any]]) -> str:
    """Add ``params`` whose keys the URL does not already carry (next links usually do)."""
    if not params:
        return url
    parts = urllib.parse.urlsplit(url)
    present = {k for k, _ in urllib.parse.parse_qsl(parts.query, keep_blank_values=True)}
    missing = {k: v for k, v in params.items() if k not in present}
    if not missing:
        return url
    return with_query(url, urllib.parse.urlencode(missing))


def urllib_fetch_page(
    url: str,
    credentials: Optional[Credentials] = None,
    headers: Optional[Mapping[str, str]] = None,
    params: Optional[Mapping[str, Any]] = None,
    timeout: float = 30.0,
) -> dict:
    """GET one JSON:API document.

    Args:
        url: Absolute page URL.
        credentials: Optional basic/bearer credentials.
        headers: Extra request headers.
        params: Query params added unless the URL already carries them.
        timeout: Socket timeout in seconds.

    Returns:
        The parsed JSON body.

    Raises:
        FetchError: on any HTTP, network or decoding failure (``status`` set
        for HTTP errors).
    """
    full_url = _with_params(url, params)
    request_headers = {"Accept": JSONAPI_ACCEPT}
    request_headers.update(headers or {})
    auth = credentials.authorization_header() if credentials else None
    if auth:
        request_headers["Authorization"] = auth

    try:
        req = urllib.request.Request(full_url, headers=request_headers)
        with urllib.request.urlopen(req, timeout=timeout) as resp:
            body = resp.read()
            return json.loads(body)
    except urllib.error.HTTPError as exc:
        logger.warning("JSON:API HTTP %d error: %s", exc.code, full_url)
        raise FetchError(full_url, cause=exc, status=exc.code) from exc
    except urllib.error.URLError as exc:
        logger.warning("JSON:API network error: %s — %s", exc.reason, full_url)
        raise FetchError(full_url, cause=exc) from exc
    except (ValueError, OSError) as exc:
        logger.warning("JSON:API unreadable response for %s: %s", full_url, exc)
        raise FetchError(full_url, cause=exc) from exc


class JsonApiClient:
    """Client for one JSON:API site.

    Args:
        config: SyncConfig supplying base URL, credentials, headers, params,
            timeout and the disallowed link set.
        fetch_page: Transport; defaults to urllib_fetch_page.
    """

    def __init__(
        self,
        config: SyncConfig = DEFAULT_CONFIG,
        fetch_page: Optional[FetchPage] = None,
    ) -> None:
        self.config = config
        self._fetch_page = fetch_page or urllib_fetch_page
        self._credentials = Credentials.from_config(config)

    def _get(self, url: str, entity_type: Optional[str] = None) -> dict:
        """Fetch one page, normalising every transport failure to FetchError."""
        try:
            body = self._fetch_page(
                url,
                self._credentials,
                headers=dict(self.config.headers),
                params=dict(self.config.params),
                timeout=self.config.request_timeout,
            )
        except FetchError as exc:
            if exc.entity_type is None:
                exc.entity_type = entity_type
            raise
        except Exception as exc:  # noqa: BLE001
            raise FetchError(url, entity_type, cause=exc) from exc
        if not isinstance(body, Mapping):
            raise FetchError(url, entity_type, cause=ValueError("response is not a JSON object"))
        return dict(body)

    def fetch_index(self) -> dict[str, str]:
        """Read the API index and return {entity_type: collection_url} for allowed types.

        Raises:
            FetchError: if the index itself cannot be fetched.
        """
        url = self.config.index_url
        logger.info("Fetching JSON:API index: %s", url)
        body = self._get(url)
        links = body.get("links") or {}
        plan = filter_index(links, self.config.disallowed_link_types)
        logger.info(
            "JSON:API index lists %d links, %d collections allowed", len(links), len(plan)
        )
        return plan

    def fetch_collection(
        self,
        entity_type: str,
        url: str,
        filter_query: Optional[str] = None,
        include_query: Optional[str] = None,
    ) -> Iterator[RawEntity]:
        """Lazily yield every resource of one collection.

        The filter and include query strings apply to the first page only;
        ``links.next`` already carries them afterwards. A fresh call starts
        again from page one.

        Args:
            entity_type: Collection type, used for logging and errors.
            url: First page URL (from the index).
            filter_query: Raw query string, e.g. ``filter[status]=1``.
            include_query: Relationship paths to include, e.g. ``field_tags``
                or a full ``include=field_tags``.

        Yields:
            RawEntity for each resource in ``data`` and ``included``.

        Raises:
            FetchError: on the first page that fails (HTTP 405 excepted — the
            collection does not support GET and yields nothing).
        """
        page_url: Optional[str] = with_query(url, filter_query)
        if include_query:
            include = include_query if include_query.startswith("include=") else f"include={include_query}"
            page_url = with_query(page_url, include)

        seen: set[str] = set()
        pages = 0
        while page_url:
            if page_url in seen:
                logger.warning("%s: pagination loops back to %s — stopping", entity_type, page_url)
                return
            seen.add(page_url)
            try:
                body = self._get(page_url, entity_type)
            except FetchError as exc:
                if exc.status == 405:
                    logger.info("%s: endpoint does not support GET (405), skipping", entity_type)
                    return
                logger.error("%s: failed on page %d (%s)", entity_type, pages + 1, page_url)
                raise
            pages += 1

            data = body.get("data") or []
            if isinstance(data, Mapping):
                data = [data]
            for datum in list(data) + list(body.get("included") or []):
                entity = RawEntity.from_json(datum)
                if entity is not None:
                    yield entity

            page_url = link_href((body.get("links") or {}).get("next"))

        logger.debug("%s: %d pages fetched", entity_type, pages)
