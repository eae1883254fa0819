"""Shared fixtures: a fake upstream web and canned source payloads."""

import asyncio
from collections.abc import Callable

import httpx
import pytest

from audiobook_relay.config import RelayConfig

# Env vars that pydantic-settings reads -- must be cleaned so tests see defaults
_CONFIG_ENV_VARS = [
    "HOST", "PORT", "PUBLIC_BASE_URL", "LOG_LEVEL", "LOG_FILE",
    "CATALOG_BASE_URL", "ENRICHMENT_BASE_URL", "COVERS_BASE_URL",
    "ARCHIVE_BASE_URL", "USER_AGENT", "LIST_TIMEOUT", "FETCH_TIMEOUT",
    "RELAY_TIMEOUT", "CATALOG_PAGE_DEFAULT", "CATALOG_PAGE_MAX",
    "ENRICHMENT_CANDIDATES", "SCRAPE_MAX_DEPTH", "ALLOW_SCRAPED_SITE_MEDIA",
    "COVER_PRIORITY", "INDEX_MAX_ENTRIES", "INDEX_TTL_SECONDS",
]

Handler = Callable[[httpx.Request], httpx.Response] | httpx.Response


class FakeUpstream:
    """Routes requests by ``host + path`` to canned responses.

    Unrouted requests get a 404. Every request is recorded.
    """

    def __init__(self) -> None:
        self.routes: dict[str, Handler] = {}
        self.requests: list[httpx.Request] = []

    def add(self, host_path: str, handler: Handler) -> None:
        self.routes[host_path] = handler

    def json(self, host_path: str, payload, status: int = 200) -> None:
        self.add(host_path, lambda request: httpx.Response(status, json=payload))

    def text(self, host_path: str, body: str, status: int = 200, content_type: str = "text/html") -> None:
        self.add(
            host_path,
            lambda request: httpx.Response(
                status, text=body, headers={"Content-Type": content_type},
            ),
        )

    def fail(self, host_path: str, exc: type[httpx.HTTPError] = httpx.ConnectError) -> None:
        def _raise(request: httpx.Request) -> httpx.Response:
            raise exc("simulated failure", request=request)

        self.add(host_path, _raise)

    def calls_to(self, host_path: str) -> list[httpx.Request]:
        return [r for r in self.requests if f"{r.url.host}{r.url.path}" == host_path]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self.routes.get(f"{request.url.host}{request.url.path}")
        if handler is None:
            return httpx.Response(404)
        if isinstance(handler, httpx.Response):
            return handler
        return handler(request)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    """Remove relay env vars so tests see actual defaults."""
    for var in _CONFIG_ENV_VARS:
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
def http_client(upstream):
    client = httpx.AsyncClient(transport=upstream.transport, follow_redirects=True)
    yield client
    asyncio.run(client.aclose())


@pytest.fixture
def config() -> RelayConfig:
    return RelayConfig(_env_file=None, public_base_url="http://relay.test")


# -- Canned payloads --


def librivox_book(**overrides) -> dict:
    """A LibriVox extended record shaped like the real API."""
    book = {
        "id": "47",
        "title": "Pride and Prejudice",
        "description": "Catalog description.",
        "url_iarchive": "http://www.archive.org/details/pride_prejudice_librivox",
        "url_librivox": "https://librivox.org/pride-and-prejudice-by-jane-austen/",
        "url_rss": "https://librivox.org/rss/47",
        "url_zip_file": "http://www.archive.org/download/pride_prejudice_librivox/pp_64kb.zip",
        "totaltimesecs": 1200,
        "authors": [{"first_name": "Jane", "last_name": "Austen"}],
        "sections": [
            {
                "section_number": "2",
                "title": "Chapter 2",
                "listen_url": "http://www.archive.org/download/pride_prejudice_librivox/pp_02.mp3",
                "playtime": "600",
            },
            {
                "section_number": "1",
                "title": "Chapter 1",
                "listen_url": "http://www.archive.org/download/pride_prejudice_librivox/pp_01.mp3",
                "playtime": "10:00",
            },
        ],
    }
    book.update(overrides)
    return book


def rss_feed(*items: dict) -> str:
    """RSS 2.0 document; items are given newest-first like LibriVox feeds."""
    parts = []
    for item in items:
        children = [f"<title><![CDATA[{item.get('title', '')}]]></title>"]
        if "enclosure" in item:
            children.append(f'<enclosure url="{item["enclosure"]}" type="audio/mpeg" length="1"/>')
        if "guid" in item:
            children.append(f"<guid>{item['guid']}</guid>")
        if "link" in item:
            children.append(f"<link>{item['link']}</link>")
        if "duration" in item:
            children.append(f"<itunes:duration>{item['duration']}</itunes:duration>")
        parts.append("<item>" + "".join(children) + "</item>")
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        '<rss version="2.0" xmlns:itunes="http://www.itunes.com/dtds/podcast-1.0.dtd">'
        "<channel><title>Feed</title>" + "".join(parts) + "</channel></rss>"
    )


def ol_doc(**overrides) -> dict:
    doc = {
        "key": "/works/OL66554W",
        "title": "Pride and Prejudice",
        "author_name": ["Jane Austen"],
        "cover_i": 14348537,
        "isbn": ["9780141439518"],
        "first_sentence": ["It is a truth universally acknowledged, that a single man..."],
        "first_publish_year": 1813,
    }
    doc.update(overrides)
    return doc


@pytest.fixture
def make_book():
    return librivox_book


@pytest.fixture
def make_feed():
    return rss_feed


@pytest.fixture
def make_doc():
    return ol_doc
