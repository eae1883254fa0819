"""Tests for server.py -- add-on routes through FastAPI's TestClient."""

import httpx
import pytest
from fastapi.testclient import TestClient

from audiobook_relay.server import MANIFEST, create_app

CATALOG = "librivox.org/api/feed/audiobooks"
SEARCH = "openlibrary.org/search.json"
FEED = "librivox.org/rss/47"
DL = "http://www.archive.org/download/pride_prejudice_librivox"
AUDIO = "ia601234.us.archive.org/12/items/pp/01.mp3"
BOOK_ID = "audiobook:pride-and-prejudice-jane-austen"


async def _chunks(data: bytes):
    yield data


@pytest.fixture
def client(config, upstream):
    with TestClient(create_app(config, transport=upstream.transport)) as test_client:
        yield test_client


@pytest.fixture
def sources(upstream, make_book, make_doc, make_feed):
    upstream.json(CATALOG, {"books": [make_book()]})
    upstream.json(SEARCH, {"docs": [make_doc()]})
    upstream.text(
        FEED,
        make_feed(
            {"title": "Chapter 3", "enclosure": f"{DL}/pp_03.mp3"},
            {"title": "Chapter 1", "enclosure": f"{DL}/pp_01.mp3"},
        ),
        content_type="application/rss+xml",
    )
    return upstream


class TestManifest:
    def test_health(self, client):
        resp = client.get("/")
        assert resp.status_code == 200
        assert "running" in resp.text

    def test_cors_on_addon_routes(self, client):
        resp = client.get("/manifest.json", headers={"Origin": "https://app.example"})
        assert resp.headers["access-control-allow-origin"] == "*"

    def test_manifest(self, client):
        data = client.get("/manifest.json").json()
        assert data == MANIFEST
        assert data["types"] == ["other"]
        assert data["idPrefixes"] == ["audiobook:"]
        assert data["catalogs"][0]["id"] == "audiobook.popular"


class TestCatalogRoute:
    def test_lists(self, sources, client):
        data = client.get("/catalog/other/audiobook.popular.json").json()
        assert [m["id"] for m in data["metas"]] == [BOOK_ID]
        meta = data["metas"][0]
        assert meta["type"] == "other"
        assert meta["poster"].startswith("http://relay.test/img?u=")

    def test_paging_params(self, sources, client):
        client.get("/catalog/other/audiobook.popular.json?limit=500&offset=100")
        params = sources.calls_to(CATALOG)[0].url.params
        assert params["limit"] == "100"
        assert params["offset"] == "100"

    def test_unparseable_paging_uses_defaults(self, sources, client):
        client.get("/catalog/other/audiobook.popular.json?limit=abc")
        assert sources.calls_to(CATALOG)[0].url.params["limit"] == "50"

    def test_other_catalog_is_empty(self, sources, client):
        assert client.get("/catalog/movie/audiobook.popular.json").json() == {"metas": []}
        assert client.get("/catalog/other/top.json").json() == {"metas": []}
        assert sources.requests == []

    def test_upstream_down_is_empty(self, upstream, client):
        upstream.fail(CATALOG)
        resp = client.get("/catalog/other/audiobook.popular.json")
        assert resp.status_code == 200
        assert resp.json() == {"metas": []}


class TestMetaRoute:
    def test_after_listing(self, sources, client):
        client.get("/catalog/other/audiobook.popular.json")
        resp = client.get(f"/meta/other/{BOOK_ID}.json")
        assert resp.status_code == 200

        meta = resp.json()["meta"]
        assert meta["id"] == BOOK_ID
        assert meta["type"] == "other"
        assert meta["name"] == "Pride and Prejudice"
        assert meta["poster"].startswith("http://relay.test/img?u=")
        assert meta["audiobook"]["author"] == "Jane Austen"
        assert meta["audiobook"]["duration"] == 1200.0
        assert len(meta["audiobook"]["chapters"]) == 2
        assert sources.calls_to(CATALOG)[-1].url.params["id"] == "47"

    def test_unknown_id_uses_slug(self, upstream, client, make_doc):
        upstream.json(SEARCH, {"docs": [make_doc()]})
        resp = client.get("/meta/other/audiobook:pride-and-prejudice.json")
        assert resp.json()["meta"]["name"] == "Pride and Prejudice"
        assert upstream.calls_to(SEARCH)[0].url.params["title"] == "pride and prejudice"

    def test_wrong_type(self, client):
        assert client.get(f"/meta/movie/{BOOK_ID}.json").status_code == 404

    def test_nothing_resolvable(self, client):
        assert client.get("/meta/other/audiobook:.json").status_code == 404


class TestStreamRoute:
    def test_streams_relayed(self, sources, client):
        client.get("/catalog/other/audiobook.popular.json")
        streams = client.get(f"/stream/other/{BOOK_ID}.json").json()["streams"]

        assert [s["title"] for s in streams] == [
            "Track 1: Chapter 1",
            "Track 2: Chapter 2",
            "Track 3: Chapter 3",
            "LibriVox ZIP (all tracks)",
            "LibriVox RSS",
        ]
        assert all(s["url"].startswith("http://relay.test/proxy?u=https%3A%2F%2F") for s in streams)
        assert streams[0]["mime"] == "audio/mpeg"
        assert streams[0]["duration"] == 600.0

    def test_expand_disabled(self, sources, client):
        client.get("/catalog/other/audiobook.popular.json")
        streams = client.get(f"/stream/other/{BOOK_ID}.json?expandRss=0").json()["streams"]
        assert len(streams) == 4
        assert sources.calls_to(FEED) == []

    def test_unknown_id_is_empty(self, upstream, client):
        data = client.get("/stream/other/audiobook:nothing-here.json").json()
        assert data == {"streams": []}

    def test_wrong_type(self, client):
        assert client.get(f"/stream/movie/{BOOK_ID}.json").status_code == 404

    def test_deeply_nested_page_data_still_answers(self, upstream, client):
        depth = 100_000
        upstream.text(
            "audioaz.com/en/audiobook/some-book",
            f'<html><body><script id="__NEXT_DATA__">{"[" * depth}{"]" * depth}</script>'
            '<a href="https://cdn.audioaz.com/some-book/01.mp3">play</a></body></html>',
        )
        resp = client.get(
            "/stream/other/audiobook:x.json",
            params={"audioaz": "https://audioaz.com/en/audiobook/some-book"},
        )
        assert resp.status_code == 200
        assert [s["name"] for s in resp.json()["streams"]] == ["AudioAZ"]


class TestSearchRoute:
    def test_search(self, sources, client):
        metas = client.get("/search.json", params={"q": "Pride and Prejudice"}).json()["metas"]
        assert [m["id"] for m in metas] == [BOOK_ID]

    def test_empty_query(self, client):
        assert client.get("/search.json").json() == {"metas": []}


class TestHelperRoutes:
    def test_rss_expand(self, sources, client):
        items = client.get("/librivox/rss.json", params={"url": "https://librivox.org/rss/47"}).json()["items"]
        assert [i["title"] for i in items] == ["Chapter 1", "Chapter 3"]
        assert [i["sequence_index"] for i in items] == [1, 2]
        assert "ordinal" not in items[0]

    def test_rss_missing_url(self, client):
        resp = client.get("/librivox/rss.json")
        assert resp.status_code == 400
        assert resp.json() == {"error": "missing url"}

    def test_audioaz_resolve(self, upstream, client):
        upstream.text(
            "audioaz.com/en/audiobook/emma",
            '<html><body><a href="https://cdn.audioaz.com/emma/01.mp3">x</a></body></html>',
        )
        data = client.get(
            "/audioaz/resolve.json", params={"url": "https://audioaz.com/en/audiobook/emma"}
        ).json()
        assert data["streams"][0]["name"] == "AudioAZ"
        assert data["streams"][0]["url"] == "https://cdn.audioaz.com/emma/01.mp3"

    def test_audioaz_rejects_foreign_url(self, upstream, client):
        resp = client.get("/audioaz/resolve.json", params={"url": "https://example.com/x"})
        assert resp.status_code == 400
        assert "error" in resp.json()
        assert upstream.requests == []


class TestProxyRoute:
    def test_preflight(self, client):
        resp = client.options("/proxy")
        assert resp.status_code == 204
        assert resp.headers["access-control-allow-origin"] == "*"
        assert "Range" in resp.headers["access-control-allow-headers"]

    @pytest.mark.parametrize("requested", ["range", "x-foo"])
    def test_browser_preflight_answered_by_relay(self, client, requested):
        resp = client.options(
            "/proxy",
            headers={
                "Origin": "https://app.example",
                "Access-Control-Request-Method": "GET",
                "Access-Control-Request-Headers": requested,
            },
        )
        assert resp.status_code == 204
        assert resp.content == b""
        assert resp.headers["access-control-allow-methods"] == "GET,HEAD,OPTIONS"
        assert resp.headers["access-control-allow-headers"] == "Range, Content-Type"

    def test_head(self, upstream, client):
        upstream.add(
            AUDIO,
            lambda request: httpx.Response(
                200,
                content=_chunks(b""),
                headers={"Content-Type": "audio/mpeg", "Content-Length": "10", "Accept-Ranges": "bytes"},
            ),
        )
        resp = client.head("/proxy", params={"u": f"https://{AUDIO}"})
        assert resp.status_code == 200
        assert resp.headers["accept-ranges"] == "bytes"
        assert upstream.requests[0].method == "HEAD"

    def test_range_request(self, upstream, client):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.headers["range"] == "bytes=0-4"
            return httpx.Response(
                206,
                content=_chunks(b"01234"),
                headers={
                    "Content-Type": "audio/mpeg",
                    "Content-Range": "bytes 0-4/10",
                    "Accept-Ranges": "bytes",
                    "Content-Length": "5",
                },
            )

        upstream.add(AUDIO, handler)
        resp = client.get("/proxy", params={"u": f"https://{AUDIO}"}, headers={"Range": "bytes=0-4"})
        assert resp.status_code == 206
        assert resp.content == b"01234"
        assert resp.headers["content-range"] == "bytes 0-4/10"
        assert resp.headers["accept-ranges"] == "bytes"
        assert resp.headers["content-length"] == "5"
        assert resp.headers["access-control-allow-origin"] == "*"

    def test_full_request(self, upstream, client):
        upstream.add(
            AUDIO,
            lambda request: httpx.Response(
                200, content=_chunks(b"0123456789"), headers={"Content-Type": "audio/mpeg"},
            ),
        )
        resp = client.get("/proxy", params={"u": f"https://{AUDIO}"})
        assert resp.status_code == 200
        assert resp.content == b"0123456789"

    def test_missing_target(self, client):
        assert client.get("/proxy").status_code == 400

    def test_disallowed_host(self, upstream, client):
        resp = client.get("/proxy", params={"u": "https://evil.example.com/x.mp3"})
        assert resp.status_code == 403
        assert upstream.requests == []

    def test_upstream_status_mirrored(self, upstream, client):
        upstream.add(AUDIO, httpx.Response(404, text="gone"))
        resp = client.get("/proxy", params={"u": f"https://{AUDIO}"})
        assert resp.status_code == 404
        assert resp.content == b""

    def test_transport_failure_is_502(self, upstream, client):
        upstream.fail(AUDIO)
        resp = client.get("/proxy", params={"u": f"https://{AUDIO}"})
        assert resp.status_code == 502
        assert resp.json() == {"error": "proxy failed"}


class TestImageRoute:
    def test_image(self, upstream, client):
        upstream.add(
            "archive.org/services/img/pp",
            lambda request: httpx.Response(
                200, content=_chunks(b"\x89PNG"), headers={"Content-Type": "image/png"},
            ),
        )
        resp = client.get("/img", params={"u": "https://archive.org/services/img/pp"})
        assert resp.status_code == 200
        assert resp.headers["content-type"] == "image/png"
        assert resp.content == b"\x89PNG"

    def test_non_image(self, upstream, client):
        upstream.add(
            "archive.org/services/img/pp",
            httpx.Response(200, text="<html></html>", headers={"Content-Type": "text/html"}),
        )
        assert client.get("/img", params={"u": "https://archive.org/services/img/pp"}).status_code == 415

    def test_disallowed_host(self, client):
        assert client.get("/img", params={"u": "https://evil.example.com/a.jpg"}).status_code == 403
