"""Open Library enrichment client.

Searches Open Library by title/author, scores the candidates with
rapidfuzz, and returns the single best match with a derived cover URL.
A second, optional per-work fetch fills in the long description; if it
fails the search result is still returned.
"""

from typing import Any

import httpx
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from rapidfuzz import fuzz

from ..errors import SourceUnavailable
from ..models import EnrichmentResult
from .http import fetch_json

log = logger.bind(stage="enrich")

SOURCE = "openlibrary"
MIN_DESCRIPTION_LENGTH = 10


class OpenLibraryDoc(BaseModel):
    model_config = ConfigDict(extra="ignore")

    key: str = ""
    title: str = ""
    author_name: list[str] = Field(default_factory=list)
    cover_i: int | None = None
    isbn: list[str] = Field(default_factory=list)
    first_sentence: list[str] = Field(default_factory=list)
    first_publish_year: int | None = None

    @field_validator("key", "title", mode="before")
    @classmethod
    def _text(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator("author_name", "isbn", "first_sentence", mode="before")
    @classmethod
    def _str_list(cls, v: Any) -> list[str]:
        if isinstance(v, str):
            return [v]
        if isinstance(v, list):
            return [str(x) for x in v if isinstance(x, (str, int))]
        return []


class OpenLibraryWork(BaseModel):
    model_config = ConfigDict(extra="ignore")

    description: str = ""

    @field_validator("description", mode="before")
    @classmethod
    def _description(cls, v: Any) -> str:
        # Either a plain string or {"type": "/type/text", "value": "..."}
        if isinstance(v, str):
            return v
        if isinstance(v, dict) and isinstance(v.get("value"), str):
            return v["value"]
        return ""


def score_docs(
    docs: list[OpenLibraryDoc],
    title_hint: str,
    author_hint: str | None,
) -> list[tuple[float, OpenLibraryDoc]]:
    """Score each doc using rapidfuzz. Returns (score, doc) pairs, best first.

    Weights: title 60%, author 30%, rank bonus 10%.
    """
    scored = []
    for idx, doc in enumerate(docs):
        title_score = fuzz.token_sort_ratio(
            (title_hint or "").lower(), doc.title.lower(),
        ) * 0.6

        if author_hint:
            author_scores = [
                fuzz.partial_ratio(author_hint.lower(), a.lower())
                for a in doc.author_name
            ]
            author_score = max(author_scores, default=0) * 0.3
        else:
            author_score = 0.0

        position_score = max(10 - (idx * 2), 0)
        scored.append((round(title_score + author_score + position_score, 1), doc))

    # sorted() is stable, so ties keep Open Library's own ranking
    return sorted(scored, key=lambda pair: pair[0], reverse=True)


def cover_for_doc(doc: OpenLibraryDoc, covers_base_url: str = "https://covers.openlibrary.org") -> str | None:
    """Derive one cover URL: numeric cover id, else ISBN, else work key."""
    base = covers_base_url.rstrip("/")
    if doc.cover_i:
        return f"{base}/b/id/{doc.cover_i}-L.jpg"
    if doc.isbn:
        return f"{base}/b/ISBN/{doc.isbn[0]}-L.jpg"
    if doc.key:
        olid = doc.key.replace("/works/", "")
        return f"{base}/b/olid/{olid}-L.jpg"
    return None


class EnrichmentClient:
    """Cover and description lookups against Open Library."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        base_url: str = "https://openlibrary.org",
        covers_base_url: str = "https://covers.openlibrary.org",
        timeout: float = 8.0,
        candidates: int = 5,
    ) -> None:
        self.client = client
        self.base_url = base_url.rstrip("/")
        self.covers_base_url = covers_base_url
        self.timeout = timeout
        self.candidates = candidates

    async def search(self, title: str | None, author: str | None = None) -> EnrichmentResult | None:
        """Best Open Library match for title/author, or None."""
        if not (title or author):
            return None

        params = {"limit": str(self.candidates)}
        if title:
            params["title"] = title
        if author:
            params["author"] = author

        try:
            data = await fetch_json(
                self.client, f"{self.base_url}/search.json",
                source=SOURCE, timeout=self.timeout, params=params,
            )
        except SourceUnavailable as e:
            log.warning(f"Enrichment search failed for title={title!r}: {e}")
            return None

        docs = self._decode_docs(data)
        if not docs:
            log.debug(f"Enrichment: no match for title={title!r} author={author!r}")
            return None

        score, best = score_docs(docs, title or "", author)[0]
        log.debug(f"Enrichment best match: {best.title!r} score={score:.0f}")

        description = " ".join(best.first_sentence).strip()
        if len(description) < MIN_DESCRIPTION_LENGTH and best.key.startswith("/works/"):
            description = await self._work_description(best.key) or description

        return EnrichmentResult(
            title=best.title,
            author=best.author_name[0] if best.author_name else (author or ""),
            cover_url=cover_for_doc(best, self.covers_base_url),
            description=description,
            year=best.first_publish_year,
        )

    async def _work_description(self, work_key: str) -> str | None:
        try:
            data = await fetch_json(
                self.client, f"{self.base_url}{work_key}.json",
                source=SOURCE, timeout=self.timeout,
            )
            work = OpenLibraryWork.model_validate(data)
        except (SourceUnavailable, ValidationError) as e:
            log.debug(f"Work description unavailable for {work_key}: {e}")
            return None
        return work.description.strip() or None

    @staticmethod
    def _decode_docs(data: Any) -> list[OpenLibraryDoc]:
        raw_docs = data.get("docs") if isinstance(data, dict) else None
        if not isinstance(raw_docs, list):
            return []
        docs = []
        for raw in raw_docs:
            try:
                docs.append(OpenLibraryDoc.model_validate(raw))
            except ValidationError as e:
                log.debug(f"Skipping undecodable Open Library doc: {e.error_count()} errors")
        return docs
