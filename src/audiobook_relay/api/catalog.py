"""LibriVox catalog client.

Paginated listing and by-id fetch against the LibriVox audiobook feed API
(``format=json&extended=1``). Responses are decoded through pydantic
schemas so the rest of the relay never pokes at raw dicts. Both calls
fail soft: listing returns [] and by-id fetch returns None.
"""

from collections.abc import Sequence
from typing import Any

import httpx
from loguru import logger
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..covers import DEFAULT_COVER_RULES, resolve_cover
from ..errors import SourceUnavailable
from ..models import Chapter, CoverRule, SourceRecord, Track
from ..sanitize import is_audio_url, mime_for_url, parse_duration, to_https
from .http import fetch_json

log = logger.bind(stage="catalog")

SOURCE = "librivox"


def _blank(value: Any) -> Any:
    return "" if value is None else value


class LibriVoxAuthor(BaseModel):
    model_config = ConfigDict(extra="ignore")

    first_name: str = ""
    last_name: str = ""

    @field_validator("first_name", "last_name", mode="before")
    @classmethod
    def _text(cls, v: Any) -> Any:
        return _blank(v)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class LibriVoxSection(BaseModel):
    model_config = ConfigDict(extra="ignore")

    file_url: str = Field("", validation_alias=AliasChoices("file_url", "listen_url"))
    title: str = Field("", validation_alias=AliasChoices("section_title", "title"))
    number: float | None = Field(
        None, validation_alias=AliasChoices("section_number", "track_number"),
    )
    playtime: str | float | None = None
    playtime_seconds: float | None = None

    @field_validator("file_url", "title", mode="before")
    @classmethod
    def _text(cls, v: Any) -> Any:
        return _blank(v)

    @field_validator("number", "playtime_seconds", mode="before")
    @classmethod
    def _number(cls, v: Any) -> float | None:
        if v is None or isinstance(v, bool):
            return None
        try:
            return float(v)
        except (TypeError, ValueError):
            return None

    @property
    def duration_seconds(self) -> float | None:
        if self.playtime_seconds is not None:
            return self.playtime_seconds
        return parse_duration(self.playtime)


class LibriVoxBook(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    title: str = ""
    description: str = ""
    authors: list[LibriVoxAuthor] = Field(default_factory=list)
    url_iarchive: str = ""
    url_librivox: str = ""
    url_rss: str = ""
    url_zip_file: str = ""
    total_seconds: float | None = Field(
        None, validation_alias=AliasChoices("totaltimesecs", "totaltime_seconds"),
    )
    sections: list[LibriVoxSection] = Field(default_factory=list)

    @field_validator("id", mode="before")
    @classmethod
    def _id(cls, v: Any) -> Any:
        return str(v) if isinstance(v, int) else v

    @field_validator(
        "title", "description", "url_iarchive", "url_librivox", "url_rss", "url_zip_file",
        mode="before",
    )
    @classmethod
    def _text(cls, v: Any) -> Any:
        return _blank(v)

    @field_validator("authors", "sections", mode="before")
    @classmethod
    def _list(cls, v: Any) -> Any:
        return v if isinstance(v, list) else []

    @field_validator("total_seconds", mode="before")
    @classmethod
    def _seconds(cls, v: Any) -> float | None:
        return parse_duration(v) if isinstance(v, (str, int, float)) else None

    @property
    def author(self) -> str:
        return self.authors[0].full_name if self.authors else ""


def decode_books(data: Any) -> list[LibriVoxBook]:
    """Decode the ``books`` array, skipping entries that fail validation."""
    raw_books = data.get("books") if isinstance(data, dict) else None
    if not isinstance(raw_books, list):
        return []

    books = []
    for raw in raw_books:
        try:
            books.append(LibriVoxBook.model_validate(raw))
        except ValidationError as e:
            log.debug(f"Skipping undecodable LibriVox book: {e.error_count()} errors")
    return books


def to_source_record(
    book: LibriVoxBook,
    cover_rules: Sequence[CoverRule] = DEFAULT_COVER_RULES,
) -> SourceRecord:
    """Project a decoded LibriVox book onto the relay's SourceRecord."""
    tracks = []
    for i, section in enumerate(book.sections, 1):
        url = to_https(section.file_url)
        if not is_audio_url(url):
            continue
        tracks.append(
            Track(
                sequence_index=i,
                title=section.title.strip(),
                url=url,
                mime_type=mime_for_url(url),
                duration_seconds=section.duration_seconds,
                ordinal=section.number,
            )
        )

    chapters = [
        Chapter(title=section.title.strip() or f"Track {i}")
        for i, section in enumerate(book.sections, 1)
    ]

    return SourceRecord(
        source_key=book.id,
        title=book.title.strip(),
        author=book.author,
        description=book.description.strip(),
        cover_url=resolve_cover(
            archive_url=book.url_iarchive,
            site_url=book.url_librivox,
            rules=cover_rules,
        ),
        archive_url=book.url_iarchive or None,
        site_url=book.url_librivox or None,
        feed_url=book.url_rss or None,
        zip_url=book.url_zip_file or None,
        duration_seconds=book.total_seconds,
        tracks=tracks,
        chapters=chapters,
    )


class CatalogClient:
    """Read-only LibriVox catalog access."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        base_url: str = "https://librivox.org/api/feed/audiobooks",
        list_timeout: float = 3.0,
        fetch_timeout: float = 8.0,
        cover_rules: Sequence[CoverRule] = DEFAULT_COVER_RULES,
    ) -> None:
        self.client = client
        self.base_url = base_url
        self.list_timeout = list_timeout
        self.fetch_timeout = fetch_timeout
        self.cover_rules = tuple(cover_rules)

    async def list(self, limit: int = 50, offset: int = 0) -> list[SourceRecord]:
        """One page of the catalog. Any failure yields an empty list."""
        params = {
            "format": "json",
            "extended": "1",
            "limit": str(limit),
            "offset": str(offset),
        }
        try:
            data = await fetch_json(
                self.client, self.base_url,
                source=SOURCE, timeout=self.list_timeout, params=params,
            )
        except SourceUnavailable as e:
            log.warning(f"Catalog listing failed (limit={limit} offset={offset}): {e}")
            return []

        records = [to_source_record(b, self.cover_rules) for b in decode_books(data)]
        log.debug(f"Catalog listing: {len(records)} records (limit={limit} offset={offset})")
        return records

    async def fetch_by_id(self, source_key: str | None) -> SourceRecord | None:
        """Full record (with sections) for one LibriVox id, or None."""
        if not source_key:
            return None

        params = {"format": "json", "extended": "1", "id": str(source_key)}
        try:
            data = await fetch_json(
                self.client, self.base_url,
                source=SOURCE, timeout=self.fetch_timeout, params=params,
            )
        except SourceUnavailable as e:
            log.warning(f"Catalog fetch failed for id={source_key}: {e}")
            return None

        books = decode_books(data)
        if not books:
            log.info(f"Catalog has no record for id={source_key}")
            return None
        return to_source_record(books[0], self.cover_rules)
