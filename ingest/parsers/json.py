from __future__ import annotations

import json


def parse_event_envelope(data: bytes) -> dict | None:
    doc = json.loads(data)
    if not isinstance(doc, dict):
        raise ValueError("event envelope is not an object")
    value = doc.get("value")
    if value is None:
        return None
    if not isinstance(value, dict):
        raise ValueError("event envelope value is not an object")
    return value


def parse_large_event_groups(data: bytes) -> list[dict]:
    doc = json.loads(data)
    if isinstance(doc, dict):
        doc = doc.get("value")
    if doc is None:
        return []
    if not isinstance(doc, list):
        raise ValueError("bulletin snapshot is not a list")
    return [group for group in doc if isinstance(group, dict)]
