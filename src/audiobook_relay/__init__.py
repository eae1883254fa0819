"""Audiobook Relay -- aggregate audiobook metadata and relay audio streams.

Core modules:
    config        -- Relay configuration via pydantic-settings (.env + env vars)
    cli           -- Click CLI entry point (serve, resolve, expand-feed)
    server        -- FastAPI add-on routes (catalog, meta, stream, search, relay)
    resolver      -- Audiobook resolution: catalog + enrichment + feed + scrape
                     composed into one canonical meta and stream list. Every
                     source is optional; a failing source degrades the result
                     instead of failing it.
    relay         -- Allowlisted, range-aware byte relay for audio and images
    covers        -- Cover URL priority selection
    tracks        -- Track ordering, URL dedup, and relabelling
    dedupe        -- Near-duplicate removal for listing metas
    catalog_index -- Bounded id -> catalog key index (LRU + TTL)
    sanitize      -- Slugs, canonical ids, URL normalization, duration parsing

Subpackages:
    api -- External source clients (LibriVox catalog, Open Library enrichment,
           RSS feed expansion, AudioAZ scraping)
"""

__version__ = "0.3.1"
