"""Near-duplicate removal for listing and search metas.

Two metas are duplicates when their cleaned (title, author) keys match.
Titles lose any subtitle (after ':', '-', or '('), punctuation, and extra
whitespace. The better of each duplicate group is kept, in first-seen
position.
"""

import re

from loguru import logger

from .models import CatalogMeta

log = logger.bind(stage="dedupe")


def clean_title(title: str | None) -> str:
    s = (title or "").lower()
    s = re.sub(r"[:\-–—(].*$", "", s)
    s = re.sub(r"[’'\".,!?]", "", s)
    return re.sub(r"\s+", " ", s).strip()


def clean_author(author: str | None) -> str:
    s = re.sub(r"[’'\".,!?]", "", (author or "").lower())
    return re.sub(r"\s+", " ", s).strip()


def _richness(meta: CatalogMeta) -> tuple[int, int, int]:
    filled = sum(1 for v in (meta.poster, meta.description, meta.author) if v)
    return (1 if meta.poster else 0, len(meta.description or ""), filled)


def better(a: CatalogMeta, b: CatalogMeta) -> CatalogMeta:
    """Prefer a poster, then a longer description, then more filled fields,
    then the lexically smaller id.
    """
    ra, rb = _richness(a), _richness(b)
    if ra != rb:
        return a if ra > rb else b
    return a if a.id <= b.id else b


def dedupe_metas(metas: list[CatalogMeta]) -> list[CatalogMeta]:
    picked: dict[str, CatalogMeta] = {}
    for meta in metas:
        key = f"{clean_title(meta.name)}•{clean_author(meta.author)}"
        prev = picked.get(key)
        picked[key] = meta if prev is None else better(prev, meta)

    if len(picked) < len(metas):
        log.debug(f"Collapsed {len(metas) - len(picked)} duplicate metas")
    return list(picked.values())
