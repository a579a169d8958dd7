from __future__ import annotations

import asyncio
import sqlite3

import httpx
from loguru import logger

from app.settings import Settings
from notify.push import send_push
from store.db import Database


SINGLE_PREFIX = "Nov dogodek v aplikaciji Spinner"
MULTIPLE_PREFIX = "Novi dogodki v aplikaciji Spinner"


def find_matching_subscriptions(
    db: Database, *, municipality_ids: set[int], event_type_ids: set[int]
) -> list[sqlite3.Row]:
    municipality_list = sorted(municipality_ids)
    event_type_list = sorted(event_type_ids)
    where = ["(s.municipality_id IS NULL AND s.event_type_id IS NULL)"]
    params: list[object] = []
    if municipality_list:
        where.append(
            f"s.municipality_id IN ({','.join('?' for _ in municipality_list)})"
        )
        params.extend(municipality_list)
    if event_type_list:
        where.append(f"s.event_type_id IN ({','.join('?' for _ in event_type_list)})")
        params.extend(event_type_list)

    with db.lock:
        return db.conn.execute(
            f"""
            SELECT s.subscription_id, s.gcm_token,
                   s.municipality_id, m.name AS municipality_name,
                   s.event_type_id, et.name AS event_type_name
            FROM subscriptions s
            LEFT JOIN municipalities m ON m.municipality_id = s.municipality_id
            LEFT JOIN event_types et ON et.event_type_id = s.event_type_id
            WHERE {" OR ".join(where)}
            ORDER BY s.subscription_id ASC;
            """,
            params,
        ).fetchall()


def group_by_token(
    rows: list[sqlite3.Row],
    *,
    municipality_ids: set[int],
    event_type_ids: set[int],
) -> dict[str, list[str]]:
    """Matched names per token, deduplicated in first-seen order.

    An empty list means the token only matched through subscribe-to-all rows.
    """
    grouped: dict[str, list[str]] = {}
    for row in rows:
        names = grouped.setdefault(str(row["gcm_token"]), [])
        matched: list[str] = []
        if row["municipality_id"] is not None and int(row["municipality_id"]) in municipality_ids:
            matched.append(str(row["municipality_name"]))
        if row["event_type_id"] is not None and int(row["event_type_id"]) in event_type_ids:
            matched.append(str(row["event_type_name"]))
        for name in matched:
            if name not in names:
                names.append(name)
    return grouped


def compose_body(names: list[str]) -> str:
    if not names:
        return SINGLE_PREFIX
    if len(names) == 1:
        return f"{SINGLE_PREFIX}: {names[0]}"
    return f"{MULTIPLE_PREFIX}: {', '.join(names)}"


def build_messages(
    db: Database, events: list[dict], *, title: str
) -> list[dict]:
    municipality_ids = {int(e["municipality_id"]) for e in events}
    event_type_ids = {int(e["event_type_id"]) for e in events}
    rows = find_matching_subscriptions(
        db, municipality_ids=municipality_ids, event_type_ids=event_type_ids
    )
    grouped = group_by_token(
        rows, municipality_ids=municipality_ids, event_type_ids=event_type_ids
    )
    return [
        {"token": token, "title": title, "body": compose_body(names)}
        for token, names in grouped.items()
    ]


async def send_notifications(
    client: httpx.AsyncClient,
    db: Database,
    settings: Settings,
    events: list[dict],
) -> tuple[int, int]:
    if not events:
        return 0, 0

    messages = build_messages(db, events, title=settings.notification_title)
    if not messages:
        return 0, 0
    if not settings.fcm_url or not settings.fcm_token:
        logger.info(f"Push sink not configured, skipping {len(messages)} notifications")
        return 0, 0

    sem = asyncio.Semaphore(max(1, settings.max_concurrent_fetches))

    async def _one(message: dict) -> bool:
        async with sem:
            return await send_push(
                client,
                url=settings.fcm_url,
                bearer_token=settings.fcm_token,
                token=message["token"],
                title=message["title"],
                body=message["body"],
            )

    results = await asyncio.gather(
        *(_one(m) for m in messages), return_exceptions=True
    )
    fulfilled = sum(1 for r in results if r is True)
    rejected = len(results) - fulfilled
    logger.info(f"Send notifications: {fulfilled} fulfilled, {rejected} rejected")
    return fulfilled, rejected


def register_subscription(
    db: Database,
    *,
    token: str,
    municipality_ids: list[int],
    event_type_ids: list[int],
) -> int:
    rows: list[tuple[str, int | None, int | None]] = [
        (token, municipality_id, None) for municipality_id in dict.fromkeys(municipality_ids)
    ]
    rows.extend(
        (token, None, event_type_id) for event_type_id in dict.fromkeys(event_type_ids)
    )
    if not rows:
        rows.append((token, None, None))

    with db.lock:
        try:
            db.conn.execute("DELETE FROM subscriptions WHERE gcm_token = ?;", (token,))
            db.conn.executemany(
                """
                INSERT INTO subscriptions(gcm_token, municipality_id, event_type_id)
                VALUES(?, ?, ?);
                """,
                rows,
            )
            db.conn.commit()
        except sqlite3.Error:
            db.conn.rollback()
            raise
    return len(rows)
