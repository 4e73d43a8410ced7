"""
jsonapi_graph/tests/conftest.py — Shared pytest fixtures.

All tests are offline: FixtureServer stands in for the HTTP transport and
serves a small JSON:API site (articles, tags, files) from in-memory documents.

Fixtures:
    fixture_pages   — {url: JSON:API document} for the fixture site.
    fixture_server  — FixtureServer over fixture_pages (records every request).
    materializer    — RecordingMaterializer (records every file request).
    engine          — SyncEngine wired to the two above, empty store.
    imported_engine — engine after one full import.
"""

import copy

import pytest

from jsonapi_graph.config import SyncConfig
from jsonapi_graph.errors import FetchError
from jsonapi_graph.graph.sync import SyncEngine

BASE_URL = "http://fixture"


def node_id(remote_id: str) -> str:
    return f"generated-id-{remote_id}"


# ── Pytest configuration hooks ────────────────────────────────────────────────

def pytest_configure(config):
    """Register the integration marker."""
    config.addinivalue_line(
        "markers",
        "integration: marks tests that call a real JSON:API server (deselected by default, "
        "pass --run-integration or -m integration to enable)",
    )


def pytest_addoption(parser):
    parser.addoption(
        "--run-integration",
        action="store_true",
        default=False,
        help="Run integration tests that call a real JSON:API server.",
    )


def pytest_collection_modifyitems(config, items):
    """Skip integration tests unless --run-integration is passed or -m integration is used."""
    markexpr = config.getoption("-m", default="")
    if "integration" in markexpr:
        return
    if config.getoption("--run-integration"):
        return
    skip_integration = pytest.mark.skip(
        reason="Integration test -- pass --run-integration or -m integration to run"
    )
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip_integration)


# ── Fixture documents ─────────────────────────────────────────────────────────

def ref(entity_type: str, remote_id: str) -> dict:
    return {"type": entity_type, "id": remote_id}


def article(remote_id, title, main_image=None, tags=None, attr_id=None):
    relationships = {
        "field_main_image": {"data": ref("file--file", main_image) if main_image else None},
        "field_tags": {"data": [ref("taxonomy_term--tags", t) for t in (tags or [])]},
        "uid": {"data": ref("user--user", "user-1")},
    }
    attributes = {"title": title, "langcode": "en"}
    if attr_id is not None:
        attributes["id"] = attr_id
    return {
        "type": "node--article",
        "id": remote_id,
        "attributes": attributes,
        "relationships": relationships,
        "links": {"self": {"href": f"{BASE_URL}/jsonapi/node/article/{remote_id}"}},
    }


def tag(remote_id, name):
    return {
        "type": "taxonomy_term--tags",
        "id": remote_id,
        "attributes": {"name": name, "langcode": "en"},
        "relationships": {"parent": {"data": []}},
    }


def file_entity(remote_id, filename, uri=None, url=None):
    attributes = {"filename": filename}
    if uri is not None:
        attributes["uri"] = uri
    if url is not None:
        attributes["url"] = url
    return {"type": "file--file", "id": remote_id, "attributes": attributes}


def build_fixture_pages() -> dict:
    jsonapi = f"{BASE_URL}/jsonapi"
    return {
        jsonapi: {
            "links": {
                "self": {"href": jsonapi},
                "describedby": {"href": f"{jsonapi}/schema"},
                "node--article": {"href": f"{jsonapi}/node/article"},
                "file--file": f"{jsonapi}/file/file",
                "taxonomy_term--tags": {"href": f"{jsonapi}/taxonomy_term/tags"},
            }
        },
        f"{jsonapi}/node/article": {
            "data": [
                article("article-1", "Article #1", tags=["tag-1", "tag-2"], attr_id=21),
                article("article-2", "Article #2", main_image="file-1", attr_id=22),
            ],
            "links": {"next": {"href": f"{jsonapi}/node/article?page[offset]=2"}},
        },
        f"{jsonapi}/node/article?page[offset]=2": {
            "data": [
                article("article-3", "Article #3", main_image="file-1", tags=["tag-1"], attr_id=23),
            ],
            "links": {},
        },
        f"{jsonapi}/taxonomy_term/tags": {
            "data": [tag("tag-1", "Tag #1"), tag("tag-2", "Tag #2")],
            "links": {},
        },
        f"{jsonapi}/file/file": {
            "data": [
                file_entity(
                    "file-1", "main-image.png",
                    uri={"value": "public://main-image.png", "url": "/sites/default/files/main-image.png"},
                ),
                file_entity(
                    "file-2", "secondary-image.png",
                    uri={"value": "private://secondary-image.png", "url": "/system/files/secondary-image.png"},
                ),
                file_entity(
                    "file-3", "third-image.png",
                    uri={
                        "value": "s3://2020-05/third-image.png",
                        "url": "https://files.s3.eu-central-1.amazonaws.com/2020-05/third-image.png",
                    },
                ),
                file_entity("file-4", "forth-image.png", url="/sites/default/files/forth-image.png"),
            ],
            "links": {},
        },
        # A second API base whose article collection includes its tags.
        f"{BASE_URL}/jsonapi-includes": {
            "links": {
                "self": {"href": f"{BASE_URL}/jsonapi-includes"},
                "node--article": {"href": f"{BASE_URL}/jsonapi-includes/node/article"},
            }
        },
        f"{BASE_URL}/jsonapi-includes/node/article": {
            "data": [article("article-5", "Article #5", main_image="file-5", tags=["tag-3"])],
            "included": [
                tag("tag-3", "Tag #3"),
                file_entity("file-5", "fifth.png", url="/sites/default/files/fifth.png"),
            ],
            "links": {},
        },
    }


WEBHOOK_UPDATE = {
    "data": {
        "type": "node--article",
        "id": "article-3",
        "attributes": {"title": "Article #3 - Updated", "langcode": "en", "id": 23},
        "relationships": {
            "field_main_image": {"data": None},
            "field_tags": {"data": [ref("taxonomy_term--tags", "tag-2")]},
        },
    }
}

WEBHOOK_INSERT = {
    "data": {
        "type": "node--article",
        "id": "article-4",
        "attributes": {"title": "Article #4", "langcode": "en", "id": 24},
        "relationships": {
            "field_main_image": {"data": None},
            "field_tags": {"data": [ref("taxonomy_term--tags", "tag-1")]},
        },
    }
}

WEBHOOK_FILE_UPDATE = {
    "data": file_entity(
        "file-1", "main-image-v2.png",
        uri={"value": "public://main-image-v2.png", "url": "/sites/default/files/main-image-v2.png"},
    )
}


# ── Test doubles ──────────────────────────────────────────────────────────────

class FixtureServer:
    """
    fetch_page stand-in. Exact URL match first, then the URL without its query
    string (so filtered first pages still resolve). Unknown URLs raise a 404
    FetchError; URLs in ``failures`` raise the mapped status.
    """

    def __init__(self, pages: dict) -> None:
        self.pages = pages
        self.requests: list[tuple[str, object]] = []
        self.failures: dict[str, int] = {}

    def __call__(self, url, credentials=None, headers=None, params=None, timeout=30.0):
        self.requests.append((url, credentials))
        if url in self.failures:
            raise FetchError(url, status=self.failures[url])
        if url in self.pages:
            return copy.deepcopy(self.pages[url])
        base = url.split("?", 1)[0]
        if base in self.pages:
            return copy.deepcopy(self.pages[base])
        raise FetchError(url, status=404)

    def requested_urls(self) -> list[str]:
        return [url for url, _ in self.requests]


class RecordingMaterializer:
    """Materializer stand-in returning ``local-<node id>``; URLs in ``failing`` raise."""

    def __init__(self) -> None:
        self.calls: list[dict] = []
        self.failing: set[str] = set()

    def __call__(self, url, auth=None, parent_node_id=None):
        self.calls.append({"url": url, "auth": auth, "parent_node_id": parent_node_id})
        if url in self.failing:
            raise OSError(f"connection reset fetching {url}")
        return f"local-{parent_node_id}"

    def auth_for(self, url: str):
        return [c["auth"] for c in self.calls if c["url"] == url]


# ── Fixtures ──────────────────────────────────────────────────────────────────

@pytest.fixture
def fixture_pages():
    return build_fixture_pages()


@pytest.fixture
def fixture_server(fixture_pages):
    return FixtureServer(fixture_pages)


@pytest.fixture
def materializer():
    return RecordingMaterializer()


@pytest.fixture
def config():
    return SyncConfig(base_url=BASE_URL, fetch_workers=2, concurrent_file_requests=2)


@pytest.fixture
def engine(config, fixture_server, materializer):
    return SyncEngine(
        config=config,
        fetch_page=fixture_server,
        create_node_id=node_id,
        materialize_remote_file=materializer,
    )


@pytest.fixture
def imported_engine(engine):
    engine.run_full_import()
    return engine
