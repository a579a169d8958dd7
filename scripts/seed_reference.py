from __future__ import annotations

import argparse
from pathlib import Path

from app.settings import Settings
from store.db import open_database
from store.reference import seed_reference_tables


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Load municipalities and event types from a YAML file."
    )
    parser.add_argument("path", type=Path, nargs="?", default=None)
    parser.add_argument("--db", type=Path, default=None)
    args = parser.parse_args()

    settings = Settings()
    path = args.path or settings.reference_path
    if not path.exists():
        parser.error(f"reference file not found: {path}")

    db = open_database(args.db or settings.db_path)
    try:
        municipalities, event_types = seed_reference_tables(db, path)
    finally:
        with db.lock:
            db.conn.close()

    print(f"{municipalities} municipalities, {event_types} event types")


if __name__ == "__main__":
    main()
