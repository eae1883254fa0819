"""Slugs, canonical ids, URL normalization, and duration parsing."""

import re
from pathlib import PurePosixPath
from urllib.parse import quote

import httpx
from loguru import logger

from .models import AUDIO_EXTENSIONS, DEFAULT_MIME, ID_PREFIX, MIME_TYPES

log = logger.bind(stage="sanitize")

_AUDIO_URL_RE = re.compile(
    r"\.(?:" + "|".join(ext[1:] for ext in sorted(AUDIO_EXTENSIONS)) + r")(?:\?|#|$)",
    re.IGNORECASE,
)


def slugify(text: str | None) -> str:
    """Lower-case, collapse non-alphanumeric runs to '-', trim hyphens."""
    slug = re.sub(r"[^a-z0-9]+", "-", (text or "").lower())
    return slug.strip("-")


def canonical_id(title: str, author: str | None = None, disambiguator: str | None = None) -> str:
    """Build ``audiobook:<slug(title-author)>[-<disambiguator>]``."""
    slug = slugify(f"{title}-{author or ''}")
    if disambiguator:
        slug = f"{slug}-{slugify(disambiguator)}" if slug else slugify(disambiguator)
    return f"{ID_PREFIX}{slug}"


def title_from_id(item_id: str) -> str:
    """Lossy title guess from a canonical id: drop prefix, hyphens -> spaces."""
    slug = item_id[len(ID_PREFIX):] if item_id.startswith(ID_PREFIX) else item_id
    return slug.replace("-", " ").strip()


def to_https(url: str | None) -> str | None:
    """Upgrade an http:// URL to https://, leave anything else alone."""
    if not isinstance(url, str):
        return url
    return re.sub(r"^http://", "https://", url.strip(), flags=re.IGNORECASE)


def normalize_url(url: str) -> str:
    """Identity key for a track URL: https, lower-case host, no fragment."""
    upgraded = to_https(url) or ""
    try:
        parsed = httpx.URL(upgraded)
    except httpx.InvalidURL:
        return upgraded
    return str(parsed.copy_with(fragment=None))


def is_audio_url(url: str | None) -> bool:
    """True if the URL path ends in a recognizable audio extension."""
    return bool(url) and _AUDIO_URL_RE.search(url) is not None


def mime_for_url(url: str) -> str:
    """Guess an audio MIME type from the URL's file extension."""
    path = url.split("?", 1)[0].split("#", 1)[0]
    return MIME_TYPES.get(PurePosixPath(path).suffix.lower(), DEFAULT_MIME)


def parse_duration(value: str | int | float | None) -> float | None:
    """Parse seconds, ``m:ss`` or ``h:mm:ss`` into seconds.

    Each colon-separated part is weighted by 60^place from the right.
    Returns None for empty or unparseable input.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)

    text = value.strip()
    if not text:
        return None

    total = 0.0
    for part in text.split(":"):
        try:
            total = total * 60 + float(part)
        except ValueError:
            log.debug(f"Unparseable duration: {value!r}")
            return None
    return total


def relay_url(base_url: str, route: str, target: str) -> str:
    """Absolute relay URL for ``target``, e.g. ``<base>/img?u=<encoded>``."""
    encoded = quote(to_https(target) or "", safe="")
    return f"{base_url.rstrip('/')}/{route.lstrip('/')}?u={encoded}"
