from __future__ import annotations

from urllib.parse import urlsplit

import feedparser


def parse_index_ids(data: bytes) -> list[int]:
    parsed = feedparser.parse(data)
    if parsed.bozo and not parsed.entries:
        raise ValueError(f"unparseable index feed: {parsed.get('bozo_exception')}")

    ids: list[int] = []
    for entry in parsed.entries:
        link = str(entry.get("link") or entry.get("id") or "").strip()
        segment = urlsplit(link).path.rstrip("/").rsplit("/", 1)[-1]
        if not segment.isdigit():
            raise ValueError(f"index entry without numeric id: {link!r}")
        ids.append(int(segment))
    return ids
