from __future__ import annotations

import sqlite3

from store.db import Database


_EVENT_COLUMNS = (
    "event_id",
    "municipality_id",
    "event_type_id",
    "lat",
    "lon",
    "create_time",
    "report_time",
    "description",
    "title",
    "on_going",
)


def find_last_inserted_event_id(db: Database) -> int | None:
    with db.lock:
        row = db.conn.execute("SELECT MAX(event_id) AS v FROM events;").fetchone()
    if row is None or row["v"] is None:
        return None
    return int(row["v"])


def insert_events(db: Database, events: list[dict]) -> list[dict]:
    """Insert a mapped batch in one transaction.

    Ids that already exist are skipped; any other failure rolls the whole
    batch back. Returns the rows that were actually inserted.
    """
    if not events:
        return []

    placeholders = ", ".join(f":{c}" for c in _EVENT_COLUMNS)
    sql = f"""
        INSERT OR IGNORE INTO events({", ".join(_EVENT_COLUMNS)})
        VALUES({placeholders});
    """
    inserted: list[dict] = []
    with db.lock:
        try:
            for event in events:
                row = {c: event.get(c) for c in _EVENT_COLUMNS}
                row["on_going"] = 1 if event.get("on_going") else 0
                cur = db.conn.execute(sql, row)
                if cur.rowcount == 1:
                    inserted.append(event)
            db.conn.commit()
        except sqlite3.Error:
            db.conn.rollback()
            raise
    return inserted


def get_ongoing_event_ids(db: Database) -> list[int]:
    with db.lock:
        rows = db.conn.execute(
            "SELECT event_id FROM events WHERE on_going = 1 ORDER BY event_id ASC;"
        ).fetchall()
    return [int(r["event_id"]) for r in rows]


def close_event_with_description(db: Database, event_id: int, description: str) -> bool:
    with db.lock:
        cur = db.conn.execute(
            """
            UPDATE events
            SET description = ?, on_going = 0
            WHERE event_id = ?;
            """,
            (description, event_id),
        )
        db.conn.commit()
    return cur.rowcount > 0


def close_stale_ongoing_events(db: Database, cutoff_iso: str) -> int:
    with db.lock:
        cur = db.conn.execute(
            "UPDATE events SET on_going = 0 WHERE on_going = 1 AND create_time < ?;",
            (cutoff_iso,),
        )
        db.conn.commit()
    return int(cur.rowcount)


def insert_large_events(db: Database, large_events: list[dict]) -> int:
    if not large_events:
        return 0
    inserted = 0
    with db.lock:
        try:
            for large_event in large_events:
                cur = db.conn.execute(
                    """
                    INSERT OR IGNORE INTO large_events(municipality_id, create_time, description)
                    VALUES(:municipality_id, :create_time, :description);
                    """,
                    large_event,
                )
                inserted += int(cur.rowcount)
            db.conn.commit()
        except sqlite3.Error:
            db.conn.rollback()
            raise
    return inserted
