from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum

from store.db import Database


class Change(str, Enum):
    FETCH_LATEST = "FETCH_LATEST"
    UPDATE_ONGOING = "UPDATE_ONGOING"


def _utc_now_iso() -> str:
    return datetime.now(tz=UTC).isoformat().replace("+00:00", "Z")


def record_run(db: Database, *, change: Change, changed_entries: int) -> None:
    with db.lock:
        db.conn.execute(
            """
            INSERT INTO logs(updated, changed_entries, created_at)
            VALUES(?, ?, ?);
            """,
            (change.value, changed_entries, _utc_now_iso()),
        )
        db.conn.commit()


def last_runs(db: Database) -> dict[str, dict]:
    with db.lock:
        rows = db.conn.execute(
            """
            SELECT l.updated, l.changed_entries, l.created_at
            FROM logs l
            JOIN (
              SELECT updated, MAX(log_id) AS log_id
              FROM logs
              GROUP BY updated
            ) latest ON latest.log_id = l.log_id;
            """
        ).fetchall()
    return {
        str(r["updated"]): {
            "changed_entries": int(r["changed_entries"]),
            "created_at": str(r["created_at"]),
        }
        for r in rows
    }


def recent_runs(db: Database, *, limit: int = 50) -> list[dict]:
    with db.lock:
        rows = db.conn.execute(
            """
            SELECT updated, changed_entries, created_at
            FROM logs
            ORDER BY log_id DESC
            LIMIT ?;
            """,
            (limit,),
        ).fetchall()
    return [{k: r[k] for k in r.keys()} for r in rows]
