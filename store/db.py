from __future__ import annotations

import sqlite3
import threading
from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class Database:
    conn: sqlite3.Connection
    lock: threading.Lock


_MIGRATIONS: list[tuple[int, str]] = [
    (
        1,
        """
        CREATE TABLE IF NOT EXISTS schema_migrations (
          version INTEGER NOT NULL PRIMARY KEY
        );

        CREATE TABLE IF NOT EXISTS municipalities (
          municipality_id INTEGER NOT NULL PRIMARY KEY,
          name TEXT NOT NULL,
          mid INTEGER NULL
        );

        CREATE UNIQUE INDEX IF NOT EXISTS municipalities_name_uq ON municipalities(name);
        CREATE UNIQUE INDEX IF NOT EXISTS municipalities_mid_uq ON municipalities(mid);

        CREATE TABLE IF NOT EXISTS event_types (
          event_type_id INTEGER NOT NULL PRIMARY KEY,
          name TEXT NOT NULL
        );

        CREATE UNIQUE INDEX IF NOT EXISTS event_types_name_uq ON event_types(name);

        CREATE TABLE IF NOT EXISTS events (
          event_id INTEGER NOT NULL PRIMARY KEY,
          municipality_id INTEGER NOT NULL,
          event_type_id INTEGER NOT NULL,
          lat INTEGER NOT NULL,
          lon INTEGER NOT NULL,
          create_time TEXT NOT NULL,
          report_time TEXT NOT NULL,
          description TEXT NULL,
          title TEXT NULL,
          on_going INTEGER NOT NULL DEFAULT 0,

          FOREIGN KEY (municipality_id) REFERENCES municipalities(municipality_id),
          FOREIGN KEY (event_type_id) REFERENCES event_types(event_type_id)
        );

        CREATE INDEX IF NOT EXISTS events_create_time_idx ON events(create_time);
        CREATE INDEX IF NOT EXISTS events_on_going_idx ON events(on_going);
        CREATE INDEX IF NOT EXISTS events_lat_lon_idx ON events(lat, lon);
        CREATE INDEX IF NOT EXISTS events_municipality_idx ON events(municipality_id);
        CREATE INDEX IF NOT EXISTS events_event_type_idx ON events(event_type_id);

        CREATE TABLE IF NOT EXISTS large_events (
          large_event_id INTEGER NOT NULL PRIMARY KEY AUTOINCREMENT,
          municipality_id INTEGER NOT NULL,
          create_time TEXT NOT NULL,
          description TEXT NOT NULL,

          FOREIGN KEY (municipality_id) REFERENCES municipalities(municipality_id)
        );

        CREATE UNIQUE INDEX IF NOT EXISTS large_events_natural_uq
          ON large_events(municipality_id, create_time, description);
        CREATE INDEX IF NOT EXISTS large_events_create_time_idx ON large_events(create_time);

        CREATE TABLE IF NOT EXISTS subscriptions (
          subscription_id INTEGER NOT NULL PRIMARY KEY AUTOINCREMENT,
          gcm_token TEXT NOT NULL,
          municipality_id INTEGER NULL,
          event_type_id INTEGER NULL,

          FOREIGN KEY (municipality_id) REFERENCES municipalities(municipality_id) ON DELETE CASCADE,
          FOREIGN KEY (event_type_id) REFERENCES event_types(event_type_id) ON DELETE CASCADE
        );

        CREATE INDEX IF NOT EXISTS subscriptions_token_idx ON subscriptions(gcm_token);
        CREATE INDEX IF NOT EXISTS subscriptions_municipality_idx ON subscriptions(municipality_id);
        CREATE INDEX IF NOT EXISTS subscriptions_event_type_idx ON subscriptions(event_type_id);

        CREATE TABLE IF NOT EXISTS logs (
          log_id INTEGER NOT NULL PRIMARY KEY AUTOINCREMENT,
          updated TEXT NOT NULL,
          changed_entries INTEGER NOT NULL,
          created_at TEXT NOT NULL
        );

        CREATE INDEX IF NOT EXISTS logs_updated_idx ON logs(updated, created_at);

        CREATE VIRTUAL TABLE IF NOT EXISTS events_fts
          USING fts5(title, description, content='events', content_rowid='event_id');

        CREATE TRIGGER IF NOT EXISTS events_fts_ai AFTER INSERT ON events BEGIN
          INSERT INTO events_fts(rowid, title, description)
          VALUES (new.event_id, new.title, new.description);
        END;
        CREATE TRIGGER IF NOT EXISTS events_fts_ad AFTER DELETE ON events BEGIN
          INSERT INTO events_fts(events_fts, rowid, title, description)
          VALUES('delete', old.event_id, old.title, old.description);
        END;
        CREATE TRIGGER IF NOT EXISTS events_fts_au AFTER UPDATE ON events BEGIN
          INSERT INTO events_fts(events_fts, rowid, title, description)
          VALUES('delete', old.event_id, old.title, old.description);
          INSERT INTO events_fts(rowid, title, description)
          VALUES (new.event_id, new.title, new.description);
        END;
        """,
    ),
]


def open_database(path: Path) -> Database:
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(path, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    conn.execute("PRAGMA foreign_keys=ON;")
    conn.execute("PRAGMA busy_timeout=5000;")
    _apply_migrations(conn)
    return Database(conn=conn, lock=threading.Lock())


def _apply_migrations(conn: sqlite3.Connection) -> None:
    conn.execute(
        "CREATE TABLE IF NOT EXISTS schema_migrations (version INTEGER NOT NULL PRIMARY KEY);"
    )
    row = conn.execute(
        "SELECT COALESCE(MAX(version), 0) AS v FROM schema_migrations;"
    ).fetchone()
    current_version = int(row["v"])

    for version, sql in _MIGRATIONS:
        if version <= current_version:
            continue
        conn.executescript(sql)
        conn.execute("INSERT INTO schema_migrations(version) VALUES (?);", (version,))
        conn.commit()
