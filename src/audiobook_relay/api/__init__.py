"""External source clients.

Submodules:
    http       -- Shared timeout-bounded GET helpers
    catalog    -- LibriVox catalog client (listing + by-id fetch)
    enrichment -- Open Library search with rapidfuzz scoring
    feed       -- RSS feed expansion into chronological tracks
    scrape     -- AudioAZ page scraping (embedded JSON, regex fallback)
"""
