from __future__ import annotations

import sqlite3
from contextlib import asynccontextmanager
from datetime import date
from zoneinfo import ZoneInfo

import httpx
from fastapi import FastAPI, Query, Request
from fastapi.responses import JSONResponse
from loguru import logger

from app.log import configure_logging
from app.settings import Settings
from archive.query import (
    get_event,
    list_event_types,
    list_large_events,
    list_municipalities,
    query_events,
)
from archive.schemas import (
    LIST_PARAMS,
    SubscriptionCreate,
    ValidationFailed,
    parse_archive_query,
)
from health.health import last_runs, recent_runs
from ingest.scheduler import ScrapeContext, start_reconciliation, stop_reconciliation
from notify.fanout import register_subscription
from store.db import Database, open_database
from store.reference import ReferenceSnapshot, load_reference_snapshot, seed_reference_tables


def _split_csv(value: str | None) -> list[str]:
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


def _parse_ids(value: str | None, field: str) -> list[int]:
    parts = _split_csv(value)
    if not all(part.lstrip("-").isdigit() for part in parts):
        raise ValidationFailed([{"field": field, "message": "must be a list of integer ids"}])
    return [int(part) for part in parts]


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = Settings()
    configure_logging(settings.log_level)
    db = open_database(settings.db_path)
    seeded = seed_reference_tables(db, settings.reference_path)
    if seeded != (0, 0):
        logger.info(f"Seeded {seeded[0]} municipalities and {seeded[1]} event types")
    reference = load_reference_snapshot(db)

    app.state.settings = settings
    app.state.db = db
    app.state.reference = reference

    tasks = []
    async with httpx.AsyncClient(follow_redirects=True) as client:
        if settings.scheduler_enabled:
            ctx = ScrapeContext(settings=settings, db=db, client=client, reference=reference)
            tasks = await start_reconciliation(ctx)
        try:
            yield
        finally:
            await stop_reconciliation(tasks)
            with db.lock:
                db.conn.close()


app = FastAPI(lifespan=lifespan)


@app.exception_handler(ValidationFailed)
async def validation_failed_handler(request: Request, exc: ValidationFailed) -> JSONResponse:
    return JSONResponse(
        {"error": "validation_failed", "fields": exc.fields}, status_code=422
    )


@app.exception_handler(sqlite3.Error)
async def store_error_handler(request: Request, exc: sqlite3.Error) -> JSONResponse:
    logger.opt(exception=exc).error(f"Store error on {request.method} {request.url.path}")
    return JSONResponse({"error": "internal_error"}, status_code=500)


@app.get("/api/events")
def api_events(request: Request) -> JSONResponse:
    db: Database = request.app.state.db
    settings: Settings = request.app.state.settings
    params: dict[str, object] = dict(request.query_params)
    for key in LIST_PARAMS:
        values = request.query_params.getlist(key)
        if len(values) > 1:
            params[key] = ",".join(values)
    query = parse_archive_query(params)
    events = query_events(db, query, tz=ZoneInfo(settings.upstream_timezone))
    return JSONResponse(events)


@app.get("/api/events/{event_id}")
def api_event(request: Request, event_id: int) -> JSONResponse:
    db: Database = request.app.state.db
    event = get_event(db, event_id)
    if event is None:
        return JSONResponse({"error": "not_found"}, status_code=404)
    return JSONResponse(event)


@app.get("/api/large-events")
def api_large_events(
    request: Request,
    municipalities: str | None = None,
    date_from: date | None = Query(default=None, alias="from"),
    date_to: date | None = Query(default=None, alias="to"),
    count: int = Query(default=100, ge=1, le=1000),
) -> JSONResponse:
    db: Database = request.app.state.db
    settings: Settings = request.app.state.settings
    if date_from is not None and date_to is not None and date_to < date_from:
        raise ValidationFailed([{"field": "to", "message": "must not be before 'from'"}])
    large_events = list_large_events(
        db,
        municipalities=_parse_ids(municipalities, "municipalities"),
        date_from=date_from,
        date_to=date_to,
        count=count,
        tz=ZoneInfo(settings.upstream_timezone),
    )
    return JSONResponse(large_events)


@app.get("/api/municipalities")
def api_municipalities(request: Request) -> JSONResponse:
    db: Database = request.app.state.db
    return JSONResponse(list_municipalities(db))


@app.get("/api/event-types")
def api_event_types(request: Request) -> JSONResponse:
    db: Database = request.app.state.db
    return JSONResponse(list_event_types(db))


@app.post("/api/subscriptions")
def api_subscriptions(request: Request, body: SubscriptionCreate) -> JSONResponse:
    db: Database = request.app.state.db
    reference: ReferenceSnapshot = request.app.state.reference

    fields: list[dict] = []
    unknown_municipalities = [
        i for i in body.municipalities if i not in reference.municipality_names
    ]
    if unknown_municipalities:
        fields.append(
            {
                "field": "municipalities",
                "message": f"unknown ids: {unknown_municipalities}",
            }
        )
    unknown_event_types = [i for i in body.event_types if i not in reference.event_type_names]
    if unknown_event_types:
        fields.append(
            {"field": "eventTypes", "message": f"unknown ids: {unknown_event_types}"}
        )
    if fields:
        raise ValidationFailed(fields)

    created = register_subscription(
        db,
        token=body.token,
        municipality_ids=body.municipalities,
        event_type_ids=body.event_types,
    )
    return JSONResponse({"token": body.token, "subscriptions": created}, status_code=201)


@app.get("/api/health")
def api_health(request: Request) -> JSONResponse:
    db: Database = request.app.state.db
    return JSONResponse(
        {"status": "ok", "last_runs": last_runs(db), "recent_runs": recent_runs(db, limit=20)}
    )
