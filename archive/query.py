from __future__ import annotations

import re
import sqlite3
from datetime import UTC, date, datetime, time, timedelta, tzinfo

from archive.schemas import ArchiveQuery
from geo.proximity import bounding_box, cell_distance_km, decode_coordinate
from store.db import Database


_TOKEN_RE = re.compile(r"\w+", flags=re.UNICODE)

_EVENT_SELECT = """
    SELECT e.event_id, e.municipality_id, m.name AS municipality_name,
           e.event_type_id, et.name AS event_type_name,
           e.lat, e.lon, e.create_time, e.report_time,
           e.description, e.title, e.on_going
    FROM events e
    JOIN municipalities m ON m.municipality_id = e.municipality_id
    JOIN event_types et ON et.event_type_id = e.event_type_id
"""


def _day_start_iso(day: date, tz: tzinfo) -> str:
    return (
        datetime.combine(day, time.min, tzinfo=tz)
        .astimezone(tz=UTC)
        .isoformat(timespec="seconds")
        .replace("+00:00", "Z")
    )


def fts_match_expression(text: str) -> str | None:
    tokens = _TOKEN_RE.findall(text)
    if not tokens:
        return None
    return " ".join(f'"{token}"*' for token in tokens[:20])


def _event_row(r: sqlite3.Row) -> dict:
    return {
        "id": int(r["event_id"]),
        "municipality_id": int(r["municipality_id"]),
        "municipality": str(r["municipality_name"]),
        "event_type_id": int(r["event_type_id"]),
        "event_type": str(r["event_type_name"]),
        "lat": decode_coordinate(r["lat"]),
        "lon": decode_coordinate(r["lon"]),
        "create_time": str(r["create_time"]),
        "report_time": str(r["report_time"]),
        "description": r["description"],
        "title": r["title"],
        "on_going": bool(r["on_going"]),
    }


def query_events(db: Database, query: ArchiveQuery, *, tz: tzinfo = UTC) -> list[dict]:
    """Archive listing.

    Geo filtering is a bounding-box prefilter on the integer-encoded columns
    followed by an exact haversine check against the nearest point of each
    stored 0.001 degree cell, so a point floored into a cell is never lost to
    truncation. When a centre is given the row cap is applied after that
    refinement (and after the distance sort), never as a SQL LIMIT.
    """
    where: list[str] = []
    params: list[object] = []
    joins = ""

    if query.q:
        match = fts_match_expression(query.q)
        if match is not None:
            joins = "JOIN events_fts fts ON fts.rowid = e.event_id"
            where.append("events_fts MATCH ?")
            params.append(match)

    if query.municipalities:
        where.append(
            f"e.municipality_id IN ({','.join('?' for _ in query.municipalities)})"
        )
        params.extend(query.municipalities)

    if query.event_types:
        where.append(f"e.event_type_id IN ({','.join('?' for _ in query.event_types)})")
        params.extend(query.event_types)

    if query.on_going is not None:
        where.append("e.on_going = ?")
        params.append(1 if query.on_going else 0)

    if query.date_from is not None:
        where.append("e.create_time >= ?")
        params.append(_day_start_iso(query.date_from, tz))

    if query.date_to is not None:
        where.append("e.create_time < ?")
        params.append(_day_start_iso(query.date_to + timedelta(days=1), tz))

    if not query.include_without_description:
        where.append("e.description IS NOT NULL")

    geo = query.has_geo
    if geo:
        box = bounding_box(query.lat, query.lon, query.radius_km)
        lat_lo, lat_hi = box.encoded_lat_range()
        where.append("e.lat BETWEEN ? AND ?")
        params.extend([lat_lo, lat_hi])
        lon_clauses = []
        for lon_lo, lon_hi in box.encoded_lon_ranges():
            lon_clauses.append("e.lon BETWEEN ? AND ?")
            params.extend([lon_lo, lon_hi])
        where.append(f"({' OR '.join(lon_clauses)})")

    direction = "ASC" if query.order == "asc" else "DESC"
    sql = f"""
        {_EVENT_SELECT}
        {joins}
        {"WHERE " + " AND ".join(where) if where else ""}
        ORDER BY e.create_time {direction}, e.event_id {direction}
    """
    if not geo:
        sql += " LIMIT ?"
        params.append(query.count)

    with db.lock:
        rows = db.conn.execute(sql, params).fetchall()

    events = [_event_row(r) for r in rows]
    if not geo:
        return events

    within: list[dict] = []
    for row, event in zip(rows, events):
        distance = cell_distance_km(query.lat, query.lon, row["lat"], row["lon"])
        if distance <= query.radius_km:
            event["distance_km"] = round(distance, 3)
            within.append(event)

    if query.order_by == "distance":
        within.sort(key=lambda e: (e["distance_km"], e["id"]))
    return within[: query.count]


def get_event(db: Database, event_id: int) -> dict | None:
    with db.lock:
        row = db.conn.execute(
            f"{_EVENT_SELECT} WHERE e.event_id = ?;", (event_id,)
        ).fetchone()
    if row is None:
        return None
    return _event_row(row)


def list_municipalities(db: Database) -> list[dict]:
    with db.lock:
        rows = db.conn.execute(
            "SELECT municipality_id, name, mid FROM municipalities ORDER BY name ASC;"
        ).fetchall()
    return [
        {"id": int(r["municipality_id"]), "name": str(r["name"]), "mid": r["mid"]}
        for r in rows
    ]


def list_event_types(db: Database) -> list[dict]:
    with db.lock:
        rows = db.conn.execute(
            "SELECT event_type_id, name FROM event_types ORDER BY event_type_id ASC;"
        ).fetchall()
    return [{"id": int(r["event_type_id"]), "name": str(r["name"])} for r in rows]


def list_large_events(
    db: Database,
    *,
    municipalities: list[int],
    date_from: date | None,
    date_to: date | None,
    count: int,
    tz: tzinfo = UTC,
) -> list[dict]:
    where: list[str] = []
    params: list[object] = []
    if municipalities:
        where.append(f"le.municipality_id IN ({','.join('?' for _ in municipalities)})")
        params.extend(municipalities)
    if date_from is not None:
        where.append("le.create_time >= ?")
        params.append(_day_start_iso(date_from, tz))
    if date_to is not None:
        where.append("le.create_time < ?")
        params.append(_day_start_iso(date_to + timedelta(days=1), tz))
    params.append(count)

    with db.lock:
        rows = db.conn.execute(
            f"""
            SELECT le.large_event_id, le.municipality_id, m.name AS municipality_name,
                   le.create_time, le.description
            FROM large_events le
            JOIN municipalities m ON m.municipality_id = le.municipality_id
            {"WHERE " + " AND ".join(where) if where else ""}
            ORDER BY le.create_time DESC, le.large_event_id DESC
            LIMIT ?;
            """,
            params,
        ).fetchall()
    return [
        {
            "id": int(r["large_event_id"]),
            "municipality_id": int(r["municipality_id"]),
            "municipality": str(r["municipality_name"]),
            "create_time": str(r["create_time"]),
            "description": str(r["description"]),
        }
        for r in rows
    ]
