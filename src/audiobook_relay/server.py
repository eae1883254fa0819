"""FastAPI add-on routes.

Catalog, meta, stream, and search routes always answer with a well-formed
(possibly empty) payload when an upstream fails. Only the relay routes and
strict input validation answer with error statuses.
"""

from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, Response, StreamingResponse
from loguru import logger
from starlette.background import BackgroundTask
from starlette.types import Receive, Scope, Send

from . import __version__
from .api.http import build_client
from .catalog_index import CatalogIndex
from .config import RelayConfig
from .errors import InputValidationError, SourceUnavailable, UpstreamRejection
from .models import CATALOG_ID, CONTENT_TYPE, ID_PREFIX, CanonicalMeta, Stream, Track
from .relay import PREFLIGHT_HEADERS, HostAllowlist, RelayResponse, StreamingRelay
from .resolver import AudiobookResolver
from .sanitize import relay_url

log = logger.bind(stage="server")

MANIFEST = {
    "id": "org.librivox.audiobook-relay",
    "version": __version__,
    "name": "Audiobooks (LibriVox + AudioAZ + RSS)",
    "description": (
        "LibriVox catalog with Open Library enrichment, AudioAZ streams, "
        "and LibriVox RSS expansion"
    ),
    "types": [CONTENT_TYPE],
    "idPrefixes": [ID_PREFIX],
    "catalogs": [{"type": CONTENT_TYPE, "id": CATALOG_ID, "name": "Popular Audiobooks"}],
    "resources": ["catalog", "meta", "stream", "search"],
}


def _int_param(value: str | None) -> int | None:
    try:
        return int(value) if value is not None else None
    except ValueError:
        return None


def meta_payload(meta: CanonicalMeta) -> dict:
    """Add-on wire shape for a resolved meta."""
    return {
        "id": meta.id,
        "type": CONTENT_TYPE,
        "name": meta.name,
        "description": meta.description,
        "poster": meta.poster_url,
        "audiobook": {
            "author": meta.author,
            "duration": meta.duration_seconds,
            "chapters": [c.model_dump() for c in meta.chapters],
        },
    }


def track_stream(track: Track) -> Stream:
    return Stream(
        name=track.source_name,
        title=track.title,
        url=track.url,
        mime=track.mime_type,
        duration=track.duration_seconds,
    )


class AddonCORSMiddleware(CORSMiddleware):
    """CORS for the add-on routes. Preflights to ``/proxy`` reach the relay's own handler."""

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] == "http" and scope["method"] == "OPTIONS" and scope["path"] == "/proxy":
            await self.app(scope, receive, send)
            return
        await super().__call__(scope, receive, send)


def _relay_stream(upstream: RelayResponse) -> StreamingResponse:
    return StreamingResponse(
        upstream.body,
        status_code=upstream.status_code,
        headers=upstream.headers,
        background=BackgroundTask(upstream.close),
    )


def create_app(
    config: RelayConfig | None = None,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
    index: CatalogIndex | None = None,
) -> FastAPI:
    """Build the app. ``transport`` replaces the network (tests use MockTransport)."""
    config = config or RelayConfig()
    client = build_client(config.user_agent, transport=transport)
    resolver = AudiobookResolver.from_config(config, client, index=index)
    relay = StreamingRelay(
        client,
        HostAllowlist.default(config.allow_scraped_site_media),
        timeout=config.relay_timeout,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        log.info(f"Audiobook relay {__version__} starting")
        yield
        await client.aclose()
        log.info("HTTP client closed")

    app = FastAPI(title="Audiobook Relay", version=__version__, lifespan=lifespan)
    app.add_middleware(
        AddonCORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "HEAD", "OPTIONS"],
        allow_headers=["Range", "Content-Type"],
        expose_headers=["Content-Length", "Content-Range", "Accept-Ranges"],
    )
    app.state.config = config
    app.state.resolver = resolver
    app.state.relay = relay

    def base_url(request: Request) -> str:
        return config.public_base_url.rstrip("/") or str(request.base_url).rstrip("/")

    @app.exception_handler(InputValidationError)
    async def _invalid_input(request: Request, exc: InputValidationError) -> JSONResponse:
        return JSONResponse({"error": str(exc)}, status_code=exc.status_code)

    @app.exception_handler(UpstreamRejection)
    async def _upstream_rejected(request: Request, exc: UpstreamRejection) -> Response:
        return Response(status_code=exc.status_code)

    @app.exception_handler(SourceUnavailable)
    async def _upstream_failed(request: Request, exc: SourceUnavailable) -> JSONResponse:
        return JSONResponse({"error": "proxy failed"}, status_code=502)

    @app.get("/", response_class=PlainTextResponse)
    def health() -> str:
        return "Audiobook relay (LibriVox + AudioAZ + RSS) running. See /manifest.json"

    @app.get("/manifest.json")
    def manifest() -> dict:
        return MANIFEST

    @app.get("/catalog/{content_type}/{catalog_id}.json")
    async def catalog(
        request: Request,
        content_type: str,
        catalog_id: str,
        limit: str | None = None,
        offset: str | None = None,
    ) -> dict:
        if content_type != CONTENT_TYPE or catalog_id != CATALOG_ID:
            return {"metas": []}
        metas = await resolver.list_catalog(
            _int_param(limit), _int_param(offset), relay_base_url=base_url(request),
        )
        return {"metas": [m.model_dump() for m in metas]}

    @app.get("/meta/{content_type}/{item_id}.json")
    async def meta(request: Request, content_type: str, item_id: str):
        if content_type != CONTENT_TYPE:
            return JSONResponse({"error": "wrong type"}, status_code=404)

        resolution = await resolver.resolve(
            resolver.request_for(item_id, relay_base_url=base_url(request)),
        )
        if not resolution.meta.name:
            return JSONResponse({"error": "not found"}, status_code=404)
        return {"meta": meta_payload(resolution.meta)}

    @app.get("/stream/{content_type}/{item_id}.json")
    async def stream(
        request: Request,
        content_type: str,
        item_id: str,
        expand_rss: str = Query("1", alias="expandRss"),
        audioaz: str | None = None,
    ):
        if content_type != CONTENT_TYPE:
            return JSONResponse({"error": "wrong type"}, status_code=404)

        base = base_url(request)
        resolution = await resolver.resolve(
            resolver.request_for(
                item_id,
                relay_base_url=base,
                expand_secondary=expand_rss != "0",
                site_url=audioaz or None,
            ),
        )
        streams = [track_stream(t) for t in resolution.tracks] + resolution.extras
        return {
            "streams": [
                s.model_copy(update={"url": relay_url(base, "proxy", s.url)}).model_dump()
                for s in streams
            ]
        }

    @app.get("/search.json")
    async def search(request: Request, q: str = "") -> dict:
        metas = await resolver.search(q, relay_base_url=base_url(request))
        return {"metas": [m.model_dump() for m in metas]}

    @app.get("/audioaz/resolve.json")
    async def audioaz_resolve(url: str = "") -> dict:
        result = await resolver.site.resolve(url)
        return {
            "title": result.title,
            "author": result.author,
            "streams": [track_stream(t).model_dump() for t in result.tracks],
        }

    @app.get("/librivox/rss.json")
    async def rss_expand(url: str = "") -> dict:
        if not url:
            raise InputValidationError("missing url")
        tracks = await resolver.feeds.expand(url)
        return {"items": [t.model_dump() for t in tracks]}

    @app.options("/proxy")
    def proxy_preflight() -> Response:
        return Response(status_code=204, headers=PREFLIGHT_HEADERS)

    @app.get("/proxy")
    async def proxy(request: Request, u: str = "") -> StreamingResponse:
        upstream = await relay.open(u, request.headers.get("range"))
        return _relay_stream(upstream)

    @app.head("/proxy")
    async def proxy_head(request: Request, u: str = "") -> StreamingResponse:
        upstream = await relay.open(u, request.headers.get("range"), method="HEAD")
        return _relay_stream(upstream)

    @app.get("/img")
    async def image(u: str = "") -> StreamingResponse:
        upstream = await relay.open_image(u)
        return _relay_stream(upstream)

    return app
