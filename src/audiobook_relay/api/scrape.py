"""AudioAZ page scraping: page URL -> tracks (and maybe title/author).

Two layers:
    structured -- the page's embedded ``__NEXT_DATA__`` JSON is searched
                  (depth-first, depth-bounded) for a node carrying a
                  ``sections`` or ``tracks`` array
    fallback   -- raw audio links pulled out of the HTML by pattern, labelled
                  with ordinal-prefixed section lines where available
"""

import json
import re
from typing import Any

import httpx
from bs4 import BeautifulSoup
from loguru import logger

from ..errors import InputValidationError, SourceUnavailable
from ..models import AUDIO_EXTENSIONS, ScrapeResult, Track
from ..sanitize import is_audio_url, mime_for_url, parse_duration, to_https
from .http import HTML_ACCEPT, fetch_text

log = logger.bind(stage="scrape")

SOURCE = "audioaz"
SOURCE_NAME = "AudioAZ"

PAGE_URL_RE = re.compile(
    r"^https?://(?:www\.)?audioaz\.com/(?:en|vi|es|de|ru|zh)/audiobook/",
    re.IGNORECASE,
)
_EXT_ALTERNATION = "|".join(ext[1:] for ext in sorted(AUDIO_EXTENSIONS))
AUDIO_LINK_RE = re.compile(
    r"https?://[^\s\"'<>]+?\.(?:" + _EXT_ALTERNATION + r")(?:\?[^\s\"'<>]*)?",
    re.IGNORECASE,
)
SECTION_LINE_RE = re.compile(r"^\d+\.\s+(?:Section|Chapter|Track)\b", re.IGNORECASE)
TRACK_ARRAY_KEYS = ("sections", "tracks")


def validate_page_url(page_url: str | None) -> str:
    """Return the URL if it is an AudioAZ audiobook page, else raise."""
    if not page_url:
        raise InputValidationError("missing url")
    if not PAGE_URL_RE.match(page_url.strip()):
        raise InputValidationError(f"Not an AudioAZ audiobook URL: {page_url}")
    return page_url.strip()


def load_embedded_json(soup: BeautifulSoup) -> Any | None:
    """Parsed ``__NEXT_DATA__`` payload, or None if absent/invalid."""
    script = soup.find("script", id="__NEXT_DATA__")
    if script is None:
        return None
    try:
        return json.loads(script.string or "")
    except (ValueError, RecursionError) as e:
        log.warning(f"Parse failure in __NEXT_DATA__: {type(e).__name__}: {e}")
        return None


def _node_tracks(items: list[Any]) -> list[Track]:
    tracks = []
    for i, item in enumerate(items, 1):
        if not isinstance(item, dict):
            continue
        url = item.get("file_url") or item.get("url")
        if not isinstance(url, str) or not is_audio_url(url):
            continue
        url = to_https(url)

        if isinstance(item.get("playtime_seconds"), (int, float)):
            duration = float(item["playtime_seconds"])
        elif isinstance(item.get("playtime"), str):
            duration = parse_duration(item["playtime"])
        else:
            duration = None

        title = item.get("section_title") or item.get("title") or f"Track {i}"
        tracks.append(
            Track(
                sequence_index=len(tracks) + 1,
                title=str(title).strip(),
                url=url,
                mime_type=mime_for_url(url),
                source_name=SOURCE_NAME,
                duration_seconds=duration,
            )
        )
    return tracks


def _first_str(*values: Any) -> str | None:
    for v in values:
        if isinstance(v, str) and v.strip():
            return v.strip()
    return None


def _child(node: dict, key: str) -> dict:
    value = node.get(key)
    return value if isinstance(value, dict) else {}


def find_structured(tree: Any, max_depth: int = 12) -> ScrapeResult | None:
    """Depth-first search for a node with a non-empty track array.

    Nodes deeper than ``max_depth`` are not visited.
    """
    stack: list[tuple[Any, int]] = [(tree, 0)]
    while stack:
        node, depth = stack.pop()

        if isinstance(node, dict):
            for key in TRACK_ARRAY_KEYS:
                if isinstance(node.get(key), list):
                    tracks = _node_tracks(node[key])
                    if tracks:
                        author = node.get("author")
                        return ScrapeResult(
                            title=_first_str(
                                node.get("title"),
                                _child(node, "book").get("title"),
                                _child(node, "meta").get("title"),
                            ),
                            author=_first_str(
                                author.get("name") if isinstance(author, dict) else author,
                                _child(node, "book").get("author"),
                                _child(node, "meta").get("author"),
                            ),
                            tracks=tracks,
                        )
            children = list(node.values())
        elif isinstance(node, list):
            children = node
        else:
            continue

        if depth >= max_depth:
            continue
        # Reversed so the first child is visited first
        for child in reversed(children):
            if isinstance(child, (dict, list)):
                stack.append((child, depth + 1))

    return None


def extract_audio_links(html: str) -> list[str]:
    """Unique audio links in first-seen order."""
    seen: dict[str, None] = {}
    for match in AUDIO_LINK_RE.finditer(html):
        seen.setdefault(match.group(0), None)
    return list(seen)


def extract_section_titles(soup: BeautifulSoup) -> list[str]:
    """Lines like '3. Chapter Three', with the ordinal prefix removed."""
    titles = []
    for line in soup.get_text("\n").splitlines():
        line = line.strip()
        if SECTION_LINE_RE.match(line):
            titles.append(re.sub(r"^\d+\.\s+", "", line).strip())
    return titles


def parse_page(html: str, max_depth: int = 12) -> ScrapeResult:
    """Extract tracks from page HTML, structured data first."""
    soup = BeautifulSoup(html, "html.parser")

    tree = load_embedded_json(soup)
    if tree is not None:
        structured = find_structured(tree, max_depth=max_depth)
        if structured is not None:
            log.debug(f"Structured extraction: {len(structured.tracks)} tracks")
            return structured

    links = extract_audio_links(html)
    if not links:
        return ScrapeResult()

    labels = extract_section_titles(soup)
    tracks = []
    for i, link in enumerate(links, 1):
        url = to_https(link)
        tracks.append(
            Track(
                sequence_index=i,
                title=labels[i - 1] if i - 1 < len(labels) else f"Track {i}",
                url=url,
                mime_type=mime_for_url(url),
                source_name=SOURCE_NAME,
            )
        )
    log.debug(f"Fallback extraction: {len(tracks)} links, {len(labels)} labels")
    return ScrapeResult(tracks=tracks)


class ScrapedSiteClient:
    """Resolves AudioAZ audiobook pages into tracks."""

    def __init__(self, client: httpx.AsyncClient, timeout: float = 8.0, max_depth: int = 12) -> None:
        self.client = client
        self.timeout = timeout
        self.max_depth = max_depth

    async def resolve(self, page_url: str | None) -> ScrapeResult:
        """Scrape one page. Raises InputValidationError for foreign URLs;
        fetch failures yield an empty result.
        """
        url = validate_page_url(page_url)
        try:
            html = await fetch_text(
                self.client, url, source=SOURCE, timeout=self.timeout, accept=HTML_ACCEPT,
            )
        except SourceUnavailable as e:
            log.warning(f"Scrape failed for {url}: {e}")
            return ScrapeResult()

        return parse_page(html, max_depth=self.max_depth)
