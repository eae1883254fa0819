"""RSS feed expansion: feed URL -> chronological audio tracks.

LibriVox RSS feeds list items newest-first. Each item's audio URL is taken
from the enclosure, else the guid, else the link -- whichever first looks
like an audio file. Items with no audio URL are dropped. Output is
reversed to oldest-first and numbered 1..N.
"""

import re
import xml.etree.ElementTree as ET

import httpx
from loguru import logger

from ..errors import ParseFailure, SourceUnavailable
from ..models import Track
from ..sanitize import is_audio_url, mime_for_url, parse_duration, to_https
from .http import FEED_ACCEPT, fetch_text

log = logger.bind(stage="feed")

SOURCE = "rss"

_CDATA_RE = re.compile(r"<!\[CDATA\[(.*?)\]\]>", re.DOTALL)


def _local(tag: str) -> str:
    """Tag name without its namespace: '{ns}duration' -> 'duration'."""
    return tag.rsplit("}", 1)[-1].lower() if isinstance(tag, str) else ""


def _text(elem: ET.Element | None) -> str:
    if elem is None or elem.text is None:
        return ""
    return _CDATA_RE.sub(r"\1", elem.text).strip()


def _item_audio_url(item: ET.Element) -> str | None:
    children = {}
    for child in item:
        children.setdefault(_local(child.tag), child)

    enclosure = children.get("enclosure")
    candidates = [
        enclosure.get("url") if enclosure is not None else None,
        _text(children.get("guid")),
        _text(children.get("link")),
    ]
    for candidate in candidates:
        if candidate and is_audio_url(candidate.strip()):
            return to_https(candidate.strip())
    return None


def parse_feed(xml_text: str) -> list[Track]:
    """Parse RSS text into chronological tracks. Raises ParseFailure."""
    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError as e:
        raise ParseFailure(SOURCE, str(e)) from e

    tracks = []
    for item in root.iter():
        if _local(item.tag) != "item":
            continue

        url = _item_audio_url(item)
        if url is None:
            continue

        title = ""
        duration = None
        for child in item:
            name = _local(child.tag)
            if name == "title" and not title:
                title = _text(child)
            elif name == "duration" and duration is None:
                duration = parse_duration(_text(child))

        tracks.append(
            Track(
                title=title or "Track",
                url=url,
                mime_type=mime_for_url(url),
                duration_seconds=duration,
            )
        )

    # Feed order is newest-first
    tracks.reverse()
    return [t.model_copy(update={"sequence_index": i}) for i, t in enumerate(tracks, 1)]


class FeedExpansionClient:
    """Expands a syndication feed into ordered tracks. Never raises."""

    def __init__(self, client: httpx.AsyncClient, timeout: float = 8.0) -> None:
        self.client = client
        self.timeout = timeout

    async def expand(self, feed_url: str | None) -> list[Track]:
        if not feed_url:
            return []
        url = to_https(feed_url)
        try:
            xml_text = await fetch_text(
                self.client, url, source=SOURCE, timeout=self.timeout, accept=FEED_ACCEPT,
            )
            tracks = parse_feed(xml_text)
        except (SourceUnavailable, ParseFailure) as e:
            log.warning(f"Feed expansion failed for {url}: {e}")
            return []

        log.debug(f"Feed {url}: {len(tracks)} tracks")
        return tracks
