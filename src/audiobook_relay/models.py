"""Core enums, constants, and record types for the audiobook relay.

Enums:
    CoverRule -- Cover candidate kinds, in configurable priority order.

Records:
    Track             -- One playable audio file. Frozen; identity is its
                         normalized URL.
    SourceRecord      -- A single source's view of a work (transient).
    EnrichmentResult  -- Best Open Library match for a title/author.
    ScrapeResult      -- Tracks (and maybe title/author) from a scraped page.
    CatalogIndexEntry -- What the index remembers about a canonical id.
    CanonicalMeta     -- Merged metadata returned to the client.
    Resolution        -- CanonicalMeta plus ordered tracks and extras.
"""

from dataclasses import dataclass
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field


class CoverRule(StrEnum):
    ARCHIVE = "archive"
    ENRICHMENT = "enrichment"
    SITE = "site"


ID_PREFIX = "audiobook:"
CONTENT_TYPE = "other"
CATALOG_ID = "audiobook.popular"

AUDIO_EXTENSIONS: frozenset[str] = frozenset(
    {
        ".mp3",
        ".m4a",
        ".m4b",
        ".flac",
        ".ogg",
        ".opus",
        ".wma",
    }
)

MIME_TYPES: dict[str, str] = {
    ".mp3": "audio/mpeg",
    ".m4a": "audio/mp4",
    ".m4b": "audio/mp4",
    ".flac": "audio/flac",
    ".ogg": "audio/ogg",
    ".opus": "audio/ogg",
    ".wma": "audio/x-ms-wma",
}

DEFAULT_MIME = "audio/mpeg"


class Track(BaseModel):
    """A single playable file.

    ``ordinal`` is the explicit position reported by the source, if any.
    It only drives ordering and is never serialized.
    """

    model_config = ConfigDict(frozen=True)

    sequence_index: int = 0
    title: str = ""
    url: str
    mime_type: str = DEFAULT_MIME
    duration_seconds: float | None = None
    source_name: str = "LibriVox"
    ordinal: float | None = Field(default=None, exclude=True)


class Chapter(BaseModel):
    title: str
    start: int = 0


class SourceRecord(BaseModel):
    source_key: str = ""
    title: str = ""
    author: str = ""
    description: str = ""
    cover_url: str | None = None
    archive_url: str | None = None
    site_url: str | None = None
    feed_url: str | None = None
    zip_url: str | None = None
    duration_seconds: float | None = None
    tracks: list[Track] = Field(default_factory=list)
    chapters: list[Chapter] = Field(default_factory=list)


class EnrichmentResult(BaseModel):
    title: str = ""
    author: str = ""
    cover_url: str | None = None
    description: str = ""
    year: int | None = None


class ScrapeResult(BaseModel):
    title: str | None = None
    author: str | None = None
    tracks: list[Track] = Field(default_factory=list)


class CatalogIndexEntry(BaseModel):
    title: str = ""
    author: str | None = None
    source_key: str | None = None


class CanonicalMeta(BaseModel):
    id: str
    name: str = ""
    author: str = ""
    description: str = ""
    poster_url: str | None = None
    duration_seconds: float | None = None
    chapters: list[Chapter] = Field(default_factory=list)


class Stream(BaseModel):
    """Client-facing stream entry (a track or a bundle such as a ZIP)."""

    name: str
    title: str
    url: str
    mime: str
    duration: float | None = None


class CatalogMeta(BaseModel):
    """Client-facing listing/search entry."""

    id: str
    type: str = CONTENT_TYPE
    name: str
    poster: str | None = None
    description: str = ""
    author: str | None = None


class Resolution(BaseModel):
    meta: CanonicalMeta
    tracks: list[Track] = Field(default_factory=list)
    extras: list[Stream] = Field(default_factory=list)


@dataclass
class ResolveRequest:
    """Inputs for one resolution. Hints come from the catalog index."""

    id: str
    title_hint: str = ""
    author_hint: str | None = None
    source_key_hint: str | None = None
    expand_secondary: bool = False
    site_url: str | None = None
    relay_base_url: str = ""
