from __future__ import annotations

import argparse
import asyncio
from pathlib import Path

import httpx

from app.log import configure_logging
from app.settings import Settings
from ingest.scheduler import (
    ScrapeContext,
    scrape_from_to_id,
    scrape_large_events,
    scrape_latest,
    update_ongoing_descriptions,
    update_ongoing_status_for_old_events,
)
from store.db import open_database
from store.reference import load_reference_snapshot


async def _run(args: argparse.Namespace, settings: Settings) -> object:
    db = open_database(args.db or settings.db_path)
    reference = load_reference_snapshot(db)
    try:
        async with httpx.AsyncClient(follow_redirects=True) as client:
            ctx = ScrapeContext(settings=settings, db=db, client=client, reference=reference)
            if args.job == "scrape-latest":
                return await scrape_latest(ctx)
            if args.job == "scrape-range":
                inserted = await scrape_from_to_id(ctx, args.start, args.end)
                return len(inserted)
            if args.job == "update-ongoing":
                return await update_ongoing_descriptions(ctx)
            if args.job == "close-stale":
                return await update_ongoing_status_for_old_events(ctx)
            return await scrape_large_events(ctx)
    finally:
        with db.lock:
            db.conn.close()


def main() -> None:
    parser = argparse.ArgumentParser(description="Run one reconciliation job once.")
    parser.add_argument("--db", type=Path, default=None)
    sub = parser.add_subparsers(dest="job", required=True)
    sub.add_parser("scrape-latest")
    scrape_range = sub.add_parser("scrape-range")
    scrape_range.add_argument("--start", type=int, required=True)
    scrape_range.add_argument("--end", type=int, required=True)
    sub.add_parser("update-ongoing")
    sub.add_parser("close-stale")
    sub.add_parser("scrape-large")
    args = parser.parse_args()

    settings = Settings()
    configure_logging(settings.log_level)
    result = asyncio.run(_run(args, settings))
    print(result)


if __name__ == "__main__":
    main()
