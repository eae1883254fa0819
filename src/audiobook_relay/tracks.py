"""Track ordering, URL dedup, and relabelling.

Ordering policy for a single source's tracks:
    1. explicit ordinal, when every track has one and they are all distinct
    2. leading number in the title ("01 - Chapter One"); unnumbered last
    3. input order

Merging keeps the first occurrence of each normalized URL and finally
renumbers everything as "Track N: <title>".
"""

import math
import re
from collections.abc import Awaitable, Callable, Iterable

from loguru import logger

from .models import Track
from .sanitize import normalize_url

log = logger.bind(stage="tracks")

SecondaryProvider = Callable[[], Awaitable[list[Track]]]

_LEADING_NUMBER_RE = re.compile(r"^\s*(\d{1,3})\b")
_LABEL_PREFIX_RE = re.compile(r"^\s*Track\s+\d+\s*:?\s*", re.IGNORECASE)


def leading_number(title: str) -> int | None:
    match = _LEADING_NUMBER_RE.match(title or "")
    return int(match.group(1)) if match else None


def order_tracks(tracks: list[Track]) -> list[Track]:
    """Apply the ordering policy. Always returns a new list."""
    ordinals = [t.ordinal for t in tracks]
    if tracks and None not in ordinals and len(set(ordinals)) == len(ordinals):
        return sorted(tracks, key=lambda t: t.ordinal)

    numbers = [leading_number(t.title) for t in tracks]
    if any(n is not None for n in numbers):
        ranked = sorted(
            range(len(tracks)),
            key=lambda i: (math.inf if numbers[i] is None else numbers[i], i),
        )
        return [tracks[i] for i in ranked]

    return list(tracks)


def _bare_title(title: str) -> str:
    return _LABEL_PREFIX_RE.sub("", title or "").strip()


def relabel(tracks: Iterable[Track]) -> list[Track]:
    """Number tracks 1..N as "Track N: <title>" (or "Track N")."""
    labelled = []
    for n, track in enumerate(tracks, 1):
        base = _bare_title(track.title)
        title = f"Track {n}: {base}" if base else f"Track {n}"
        labelled.append(track.model_copy(update={"sequence_index": n, "title": title}))
    return labelled


def combine_tracks(*groups: Iterable[Track]) -> list[Track]:
    """Concatenate already-ordered groups, dropping repeat URLs, then relabel."""
    seen: set[str] = set()
    kept = []
    dropped = 0
    for group in groups:
        for track in group:
            key = normalize_url(track.url)
            if key in seen:
                dropped += 1
                continue
            seen.add(key)
            kept.append(track)

    if dropped:
        log.debug(f"Dropped {dropped} duplicate track URLs")
    return relabel(kept)


async def merge_tracks(
    primary: list[Track],
    secondary: SecondaryProvider | None = None,
) -> list[Track]:
    """Order ``primary``, append unseen tracks from ``secondary``, relabel."""
    ordered = order_tracks(primary)
    if secondary is None:
        return combine_tracks(ordered)

    extra = await secondary()
    merged = combine_tracks(ordered, extra)
    log.debug(
        f"Merged {len(ordered)} primary + {len(extra)} secondary "
        f"-> {len(merged)} tracks"
    )
    return merged
