"""Audiobook resolution: one canonical meta and stream list per request.

Sources, each optional:
    catalog    -- LibriVox record by id (title, author, sections, feed URL)
    enrichment -- Open Library best match (title, author, cover, description)
    feed       -- LibriVox RSS expansion, when asked for and available
    site       -- AudioAZ page tracks, when the caller passes a page URL

Any source may fail or come back empty; the resolver returns whatever
composite the remaining sources support. No retries: each upstream call
runs once under the client's timeout.

Field priority: enrichment > catalog > caller hint (trimmed).
Cover priority: configurable rules (default archive > enrichment > site),
then the catalog record's own cover.
"""

from collections.abc import Sequence
from functools import partial

import httpx
from loguru import logger

from .api.catalog import CatalogClient
from .api.enrichment import EnrichmentClient
from .api.feed import FeedExpansionClient
from .api.scrape import ScrapedSiteClient
from .catalog_index import CatalogIndex
from .config import RelayConfig
from .covers import DEFAULT_COVER_RULES, resolve_cover
from .dedupe import dedupe_metas
from .errors import InputValidationError
from .models import (
    CanonicalMeta,
    CatalogIndexEntry,
    CatalogMeta,
    CoverRule,
    Resolution,
    ResolveRequest,
    ScrapeResult,
    SourceRecord,
    Stream,
    Track,
)
from .sanitize import relay_url
from .tracks import combine_tracks, merge_tracks

log = logger.bind(stage="resolver")


def _first(*values: str | None) -> str:
    """First non-blank value, trimmed; '' if none."""
    for v in values:
        if v and v.strip():
            return v.strip()
    return ""


def _total_duration(record: SourceRecord | None, tracks: list[Track]) -> float | None:
    if record is not None and record.duration_seconds:
        return record.duration_seconds
    if tracks and all(t.duration_seconds is not None for t in tracks):
        return sum(t.duration_seconds for t in tracks)
    return None


def _extras(record: SourceRecord | None) -> list[Stream]:
    if record is None:
        return []
    extras = []
    if record.zip_url:
        extras.append(
            Stream(
                name="LibriVox",
                title="LibriVox ZIP (all tracks)",
                url=record.zip_url,
                mime="application/zip",
            )
        )
    if record.feed_url:
        extras.append(
            Stream(
                name="LibriVox RSS",
                title="LibriVox RSS",
                url=record.feed_url,
                mime="application/rss+xml",
            )
        )
    return extras


class AudiobookResolver:
    """Composes the source clients into catalog, search, and resolution."""

    def __init__(
        self,
        catalog: CatalogClient,
        enrichment: EnrichmentClient,
        feeds: FeedExpansionClient,
        site: ScrapedSiteClient,
        index: CatalogIndex,
        cover_rules: Sequence[CoverRule] = DEFAULT_COVER_RULES,
        page_default: int = 50,
        page_max: int = 100,
    ) -> None:
        self.catalog = catalog
        self.enrichment = enrichment
        self.feeds = feeds
        self.site = site
        self.index = index
        self.cover_rules = tuple(cover_rules)
        self.page_default = page_default
        self.page_max = page_max

    @classmethod
    def from_config(
        cls,
        config: RelayConfig,
        client: httpx.AsyncClient,
        index: CatalogIndex | None = None,
    ) -> "AudiobookResolver":
        """Wire every source client to one shared HTTP client."""
        rules = config.cover_rules
        return cls(
            catalog=CatalogClient(
                client,
                base_url=config.catalog_base_url,
                list_timeout=config.list_timeout,
                fetch_timeout=config.fetch_timeout,
                cover_rules=rules,
            ),
            enrichment=EnrichmentClient(
                client,
                base_url=config.enrichment_base_url,
                covers_base_url=config.covers_base_url,
                timeout=config.fetch_timeout,
                candidates=config.enrichment_candidates,
            ),
            feeds=FeedExpansionClient(client, timeout=config.fetch_timeout),
            site=ScrapedSiteClient(
                client, timeout=config.fetch_timeout, max_depth=config.scrape_max_depth,
            ),
            index=index if index is not None else CatalogIndex(
                max_entries=config.index_max_entries,
                ttl_seconds=config.index_ttl_seconds,
            ),
            cover_rules=rules,
            page_default=config.catalog_page_default,
            page_max=config.catalog_page_max,
        )

    # -- Lookups --

    def lookup(self, item_id: str) -> CatalogIndexEntry:
        """Index entry for an id, or a title guessed from its slug."""
        return self.index.lookup(item_id)

    def request_for(
        self,
        item_id: str,
        *,
        relay_base_url: str,
        expand_secondary: bool = False,
        site_url: str | None = None,
    ) -> ResolveRequest:
        """Build a ResolveRequest whose hints come from the catalog index."""
        entry = self.lookup(item_id)
        return ResolveRequest(
            id=item_id,
            title_hint=entry.title,
            author_hint=entry.author,
            source_key_hint=entry.source_key,
            expand_secondary=expand_secondary,
            site_url=site_url,
            relay_base_url=relay_base_url,
        )

    # -- Resolution --

    async def resolve(self, request: ResolveRequest) -> Resolution:
        """Resolve one id into CanonicalMeta + ordered, duplicate-free tracks."""
        log.debug(
            f"resolve(id={request.id!r}, title_hint={request.title_hint!r}, "
            f"source_key={request.source_key_hint!r}, expand={request.expand_secondary})"
        )

        record = await self.catalog.fetch_by_id(request.source_key_hint)

        # Catalog values make better search terms than slug-derived hints
        query_title = _first(record.title if record else None, request.title_hint)
        query_author = _first(record.author if record else None, request.author_hint)
        enriched = await self.enrichment.search(query_title, query_author or None)

        poster = resolve_cover(
            archive_url=record.archive_url if record else None,
            enriched_cover=enriched.cover_url if enriched else None,
            site_url=record.site_url if record else None,
            rules=self.cover_rules,
        ) or (record.cover_url if record else None)

        secondary = None
        if request.expand_secondary and record is not None and record.feed_url:
            secondary = partial(self.feeds.expand, record.feed_url)
        tracks = await merge_tracks(record.tracks if record else [], secondary)

        if request.site_url:
            scraped = await self._scrape(request.site_url)
            tracks = combine_tracks(scraped.tracks, tracks)

        meta = CanonicalMeta(
            id=request.id,
            name=_first(
                enriched.title if enriched else None,
                record.title if record else None,
                request.title_hint,
            ),
            author=_first(
                enriched.author if enriched else None,
                record.author if record else None,
                request.author_hint,
            ),
            description=_first(
                enriched.description if enriched else None,
                record.description if record else None,
            ),
            poster_url=relay_url(request.relay_base_url, "img", poster) if poster else None,
            duration_seconds=_total_duration(record, tracks),
            chapters=record.chapters if record else [],
        )

        if record is not None:
            self.index.put(
                request.id,
                CatalogIndexEntry(
                    title=query_title,
                    author=query_author or None,
                    source_key=record.source_key or request.source_key_hint,
                ),
            )

        log.info(
            f"Resolved {request.id}: name={meta.name!r} tracks={len(tracks)} "
            f"catalog={'yes' if record else 'no'} enrichment={'yes' if enriched else 'no'}"
        )
        return Resolution(meta=meta, tracks=tracks, extras=_extras(record))

    async def _scrape(self, page_url: str) -> ScrapeResult:
        try:
            return await self.site.resolve(page_url)
        except InputValidationError as e:
            log.warning(f"Ignoring site hint: {e}")
            return ScrapeResult()

    # -- Listing and search --

    def clamp_page(self, limit: int | None, offset: int | None) -> tuple[int, int]:
        """Clamp listing paging to 1..page_max and offset >= 0."""
        limit = self.page_default if limit is None else limit
        return max(1, min(self.page_max, limit)), max(0, offset or 0)

    async def list_catalog(
        self,
        limit: int | None = None,
        offset: int | None = None,
        relay_base_url: str = "",
    ) -> list[CatalogMeta]:
        """One catalog page as client metas. Indexes every id it mints."""
        limit, offset = self.clamp_page(limit, offset)
        records = await self.catalog.list(limit, offset)

        metas = []
        for record in records:
            title = record.title or "Untitled"
            item_id = self.index.mint(title, record.author or None, record.source_key or None)
            metas.append(
                CatalogMeta(
                    id=item_id,
                    name=title,
                    poster=relay_url(relay_base_url, "img", record.cover_url) if record.cover_url else None,
                    description=record.description,
                    author=record.author or None,
                )
            )
        return dedupe_metas(metas)

    async def search(self, query: str | None, relay_base_url: str = "") -> list[CatalogMeta]:
        """Free-text search; ``"<title> - <author>"`` splits into both fields."""
        q = (query or "").strip()
        if not q:
            return []

        title_guess, _, author_guess = q.partition(" - ")
        enriched = await self.enrichment.search(title_guess.strip() or q, author_guess.strip() or None)
        if enriched is None or not enriched.title:
            return []

        item_id = self.index.mint(enriched.title, enriched.author or None)
        return [
            CatalogMeta(
                id=item_id,
                name=enriched.title,
                poster=relay_url(relay_base_url, "img", enriched.cover_url) if enriched.cover_url else None,
                description=enriched.description,
                author=enriched.author or None,
            )
        ]
