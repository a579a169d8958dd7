from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType

import yaml

from store.db import Database


@dataclass(frozen=True)
class ReferenceSnapshot:
    """Municipality and event-type lookups, loaded once per process.

    Upstream free-text values resolve against these maps; nothing refreshes
    them after startup, so reference data changes need a restart.
    """

    municipality_ids_by_name: Mapping[str, int]
    municipality_ids_by_mid: Mapping[int, int]
    municipality_names: Mapping[int, str]
    event_type_ids_by_name: Mapping[str, int]
    event_type_names: Mapping[int, str]

    def municipality_by_name(self, name: str) -> int | None:
        return self.municipality_ids_by_name.get(name)

    def municipality_by_mid(self, mid: int) -> int | None:
        return self.municipality_ids_by_mid.get(mid)

    def event_type_by_name(self, name: str) -> int | None:
        return self.event_type_ids_by_name.get(name)


def load_reference_snapshot(db: Database) -> ReferenceSnapshot:
    with db.lock:
        municipality_rows = db.conn.execute(
            "SELECT municipality_id, name, mid FROM municipalities;"
        ).fetchall()
        event_type_rows = db.conn.execute(
            "SELECT event_type_id, name FROM event_types;"
        ).fetchall()

    return ReferenceSnapshot(
        municipality_ids_by_name=MappingProxyType(
            {str(r["name"]): int(r["municipality_id"]) for r in municipality_rows}
        ),
        municipality_ids_by_mid=MappingProxyType(
            {
                int(r["mid"]): int(r["municipality_id"])
                for r in municipality_rows
                if r["mid"] is not None
            }
        ),
        municipality_names=MappingProxyType(
            {int(r["municipality_id"]): str(r["name"]) for r in municipality_rows}
        ),
        event_type_ids_by_name=MappingProxyType(
            {str(r["name"]): int(r["event_type_id"]) for r in event_type_rows}
        ),
        event_type_names=MappingProxyType(
            {int(r["event_type_id"]): str(r["name"]) for r in event_type_rows}
        ),
    )


def load_reference_file(path: Path) -> tuple[list[dict], list[dict]]:
    raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    if raw is None:
        return [], []
    if not isinstance(raw, dict):
        raise ValueError(f"invalid reference file: {path}")

    municipalities: list[dict] = []
    for entry in raw.get("municipalities") or []:
        if not isinstance(entry, dict):
            raise ValueError(f"invalid municipality entry in: {path}")
        mid = entry.get("mid")
        municipalities.append(
            {
                "municipality_id": int(entry["id"]),
                "name": str(entry["name"]).strip(),
                "mid": int(mid) if mid is not None else None,
            }
        )

    event_types: list[dict] = []
    for entry in raw.get("event_types") or []:
        if not isinstance(entry, dict):
            raise ValueError(f"invalid event type entry in: {path}")
        event_types.append(
            {"event_type_id": int(entry["id"]), "name": str(entry["name"]).strip()}
        )

    return municipalities, event_types


def seed_reference_tables(db: Database, path: Path) -> tuple[int, int]:
    if not path.exists():
        return 0, 0
    municipalities, event_types = load_reference_file(path)

    with db.lock:
        db.conn.executemany(
            """
            INSERT INTO municipalities(municipality_id, name, mid)
            VALUES(:municipality_id, :name, :mid)
            ON CONFLICT(municipality_id) DO UPDATE SET
              name = excluded.name,
              mid = excluded.mid;
            """,
            municipalities,
        )
        db.conn.executemany(
            """
            INSERT INTO event_types(event_type_id, name)
            VALUES(:event_type_id, :name)
            ON CONFLICT(event_type_id) DO UPDATE SET name = excluded.name;
            """,
            event_types,
        )
        db.conn.commit()

    return len(municipalities), len(event_types)
