from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from contextlib import suppress
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from zoneinfo import ZoneInfo

import httpx
from loguru import logger

from app.settings import Settings
from health.health import Change, record_run
from ingest.errors import NoEventsFound, UnresolvedReference, UpstreamUnavailable
from ingest.fetch import fetch_events, fetch_index_ids, fetch_large_events
from normalize.normalize import clean_text, map_event, map_large_event
from notify.fanout import send_notifications
from store.db import Database
from store.events import (
    close_event_with_description,
    close_stale_ongoing_events,
    find_last_inserted_event_id,
    get_ongoing_event_ids,
    insert_events,
    insert_large_events,
)
from store.reference import ReferenceSnapshot


Job = Callable[[], Awaitable[object]]


@dataclass(frozen=True)
class ScrapeContext:
    settings: Settings
    db: Database
    client: httpx.AsyncClient
    reference: ReferenceSnapshot

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.settings.upstream_timezone)


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


async def scrape_latest(ctx: ScrapeContext) -> int:
    upstream_ids = await fetch_index_ids(ctx.client, ctx.settings)
    upstream_high = max(upstream_ids) if upstream_ids else None
    local_high = find_last_inserted_event_id(ctx.db)

    if upstream_high is None or local_high is None:
        raise NoEventsFound(
            f"No events found (upstream={upstream_high}, local={local_high})"
        )
    if local_high >= upstream_high:
        return 0

    inserted = await scrape_from_to_id(ctx, local_high + 1, upstream_high)
    record_run(ctx.db, change=Change.FETCH_LATEST, changed_entries=len(inserted))
    logger.info(f"Inserted {len(inserted)} events ({local_high + 1}..{upstream_high})")

    if inserted:
        try:
            await send_notifications(ctx.client, ctx.db, ctx.settings, inserted)
        except Exception:
            logger.exception("Sending notifications failed")
    return len(inserted)


async def scrape_from_to_id(ctx: ScrapeContext, start_id: int, end_id: int) -> list[dict]:
    """Fetch, map and insert every upstream id in [start_id, end_id].

    Ids upstream reports as absent are skipped. A transport failure on any id
    or a mapping failure on any record aborts the batch before anything is
    written, because the next run starts after the highest stored id.
    """
    if end_id < start_id:
        return []

    results = await fetch_events(
        ctx.client,
        ctx.settings,
        range(start_id, end_id + 1),
        concurrency=ctx.settings.max_concurrent_fetches,
    )
    failed = [r for r in results if r.status == "error"]
    if failed:
        raise UpstreamUnavailable(
            f"{len(failed)} event fetches failed, first {failed[0].event_id}: {failed[0].error}"
        )

    tz = ctx.tz
    mapped = [
        map_event(r.record, ctx.reference, tz=tz)
        for r in results
        if r.found and r.record is not None
    ]
    return insert_events(ctx.db, mapped)


async def update_ongoing_descriptions(ctx: ScrapeContext) -> int:
    event_ids = get_ongoing_event_ids(ctx.db)
    results = await fetch_events(
        ctx.client,
        ctx.settings,
        event_ids,
        concurrency=ctx.settings.max_concurrent_fetches,
    )

    updated = 0
    for result in results:
        if not result.found or result.record is None:
            continue
        description = clean_text(result.record.get("besedilo"))
        if description is None:
            continue
        if close_event_with_description(ctx.db, result.event_id, description):
            updated += 1

    record_run(ctx.db, change=Change.UPDATE_ONGOING, changed_entries=updated)
    logger.info(f"Updated {updated} event descriptions")
    return updated


async def update_ongoing_status_for_old_events(ctx: ScrapeContext) -> int:
    cutoff = _utc_now() - timedelta(days=ctx.settings.stale_after_days)
    cutoff_iso = cutoff.isoformat(timespec="seconds").replace("+00:00", "Z")
    closed = close_stale_ongoing_events(ctx.db, cutoff_iso)
    logger.info(f"Updated {closed} event onGoing status")
    return closed


async def scrape_large_events(ctx: ScrapeContext) -> int:
    groups = await fetch_large_events(ctx.client, ctx.settings)
    tz = ctx.tz
    mapped = [
        large_event
        for large_event in (map_large_event(g, ctx.reference, tz=tz) for g in groups)
        if large_event is not None
    ]
    inserted = insert_large_events(ctx.db, mapped)
    if inserted:
        logger.info(f"Inserted {inserted} large events")
    return inserted


class PeriodicTask:
    """A self-rescheduling loop around one job.

    The next run is scheduled only after the current one finishes, and every
    run is its own failure boundary.
    """

    def __init__(self, name: str, interval_seconds: float, job: Job) -> None:
        self.name = name
        self.interval_seconds = interval_seconds
        self._job = job
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> bool:
        try:
            await self._job()
        except asyncio.CancelledError:
            raise
        except UnresolvedReference as e:
            logger.error(f"[{self.name}] reference data is stale, batch dropped: {e}")
            return False
        except Exception:
            logger.exception(f"[{self.name}] run failed, retrying in {self.interval_seconds}s")
            return False
        return True

    async def _loop(self, initial_delay: float) -> None:
        if initial_delay > 0:
            await asyncio.sleep(initial_delay)
        while True:
            await self.run_once()
            await asyncio.sleep(self.interval_seconds)

    def start(self, *, initial_delay: float = 0.0) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(initial_delay), name=self.name)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with suppress(asyncio.CancelledError):
            await self._task
        self._task = None


def build_tasks(ctx: ScrapeContext) -> list[PeriodicTask]:
    settings = ctx.settings
    return [
        PeriodicTask(
            "scrape_latest",
            settings.scrape_latest_seconds,
            lambda: scrape_latest(ctx),
        ),
        PeriodicTask(
            "update_ongoing_descriptions",
            settings.update_ongoing_seconds,
            lambda: update_ongoing_descriptions(ctx),
        ),
        PeriodicTask(
            "update_ongoing_status_for_old_events",
            settings.close_stale_seconds,
            lambda: update_ongoing_status_for_old_events(ctx),
        ),
        PeriodicTask(
            "scrape_large_events",
            settings.scrape_large_seconds,
            lambda: scrape_large_events(ctx),
        ),
    ]


async def start_reconciliation(ctx: ScrapeContext) -> list[PeriodicTask]:
    tasks = build_tasks(ctx)
    warmup = tasks[1]
    # one description pass must finish before the fast loop starts inserting
    await warmup.run_once()
    for task in tasks:
        task.start(initial_delay=task.interval_seconds if task is warmup else 0.0)
    logger.info(f"Started {len(tasks)} reconciliation loops")
    return tasks


async def stop_reconciliation(tasks: list[PeriodicTask]) -> None:
    for task in tasks:
        await task.stop()
