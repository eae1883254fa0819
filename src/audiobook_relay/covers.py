"""Cover URL priority selection.

Candidates, in default priority order:
    archive    -- identifier in an archive.org details URL, mapped to the
                  archive.org per-item thumbnail service
    enrichment -- cover URL derived from Open Library
    site       -- conventional ``cover.jpg`` under the LibriVox project page

The first rule that yields a URL wins; later candidates are not consulted.
"""

from collections.abc import Sequence
from urllib.parse import quote

import httpx
from loguru import logger

from .models import CoverRule

log = logger.bind(stage="covers")

DEFAULT_COVER_RULES: tuple[CoverRule, ...] = (
    CoverRule.ARCHIVE,
    CoverRule.ENRICHMENT,
    CoverRule.SITE,
)

ARCHIVE_IMAGE_URL = "https://archive.org/services/img/{identifier}"


def archive_identifier(archive_url: str | None) -> str | None:
    """Pull the item identifier out of an archive.org URL.

    Usually ``https://archive.org/details/<identifier>``; otherwise the
    last path segment is taken to be the identifier.
    """
    if not archive_url:
        return None
    try:
        path = httpx.URL(archive_url.strip()).path
    except httpx.InvalidURL:
        return None
    parts = [p for p in path.split("/") if p]
    if "details" in parts:
        i = parts.index("details")
        if i + 1 < len(parts):
            return parts[i + 1]
    return parts[-1] if parts else None


def resolve_cover(
    archive_url: str | None = None,
    enriched_cover: str | None = None,
    site_url: str | None = None,
    rules: Sequence[CoverRule] = DEFAULT_COVER_RULES,
) -> str | None:
    """Return the cover URL of the highest-priority applicable rule, or None."""
    for rule in rules:
        if rule == CoverRule.ARCHIVE:
            identifier = archive_identifier(archive_url)
            if identifier:
                return ARCHIVE_IMAGE_URL.format(identifier=quote(identifier, safe=""))
        elif rule == CoverRule.ENRICHMENT:
            if enriched_cover:
                return enriched_cover
        elif rule == CoverRule.SITE:
            if site_url and site_url.strip():
                return f"{site_url.strip().rstrip('/')}/cover.jpg"

    log.debug(
        f"No cover candidate: archive={archive_url!r} "
        f"enriched={enriched_cover!r} site={site_url!r}"
    )
    return None
