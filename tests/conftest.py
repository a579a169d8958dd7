from __future__ import annotations

import json
from pathlib import Path

import httpx
import pytest
import pytest_asyncio

from app.settings import Settings
from ingest.scheduler import ScrapeContext
from store.db import open_database
from store.reference import load_reference_snapshot, seed_reference_tables


FIXTURES = Path(__file__).resolve().parent / "fixtures"

PUSH_URL = "https://push.test/v1/messages:send"


def spin_record(**overrides) -> dict:
    record = {
        "barva": 1,
        "ikona": 1,
        "intervencijaVrstaNaziv": "Prometna nesreča",
        "nastanekCas": "2024-03-04T10:15:00",
        "obcinaNaziv": "Ljubljana",
        "prijavaCas": "2024-03-04T10:17:00",
        "wgsLat": 46.0569,
        "wgsLon": 14.5058,
        "besedilo": "Gasilci so nudili pomoč.",
        "dogodekNaziv": "Trčenje dveh vozil",
    }
    record.update(overrides)
    return record


class FakeUpstream:
    def __init__(self) -> None:
        self.index_ids: list[int] = []
        self.events: dict[int, dict] = {}
        self.failing_ids: set[int] = set()
        self.raising_ids: dict[int, Exception] = {}
        self.large_groups: list[dict] = []
        self.index_status = 200
        self.pushes: list[dict] = []
        self.push_failing_tokens: set[str] = set()
        self.event_requests: list[int] = []

    def _index_rss(self) -> bytes:
        items = "".join(
            f"<item><title>Dogodek {i}</title>"
            f"<link>https://spin3.sos112.si/javno/dogodek/{i}</link></item>"
            for i in self.index_ids
        )
        return (
            '<?xml version="1.0" encoding="UTF-8"?><rss version="2.0"><channel>'
            f"<title>SPIN</title>{items}</channel></rss>"
        ).encode("utf-8")

    def handler(self, request: httpx.Request) -> httpx.Response:
        if request.url.host == httpx.URL(PUSH_URL).host:
            payload = json.loads(request.content)
            self.pushes.append(payload)
            if payload["message"]["token"] in self.push_failing_tokens:
                return httpx.Response(500, json={"error": "unavailable"})
            return httpx.Response(200, json={"name": "ok"})

        path = request.url.path
        if path.endswith("/ODRSS/true"):
            return httpx.Response(self.index_status, content=self._index_rss())
        if "/lokacija/" in path:
            event_id = int(path.rsplit("/", 1)[-1])
            self.event_requests.append(event_id)
            if event_id in self.failing_ids:
                raise httpx.ConnectError("connection refused", request=request)
            if event_id in self.raising_ids:
                raise self.raising_ids[event_id]
            value = self.events.get(event_id)
            return httpx.Response(200, json={"statusCode": 200, "value": value})
        if path.endswith("vecjiObseg.json"):
            return httpx.Response(200, json={"statusCode": 200, "value": self.large_groups})
        return httpx.Response(404)


@pytest.fixture
def db(tmp_path):
    database = open_database(tmp_path / "test.db")
    seed_reference_tables(database, FIXTURES / "reference.yaml")
    try:
        yield database
    finally:
        with database.lock:
            database.conn.close()


@pytest.fixture
def reference(db):
    return load_reference_snapshot(db)


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        DB_PATH=str(tmp_path / "test.db"),
        FCM_URL=PUSH_URL,
        FCM_TOKEN="push-secret",
        MAX_CONCURRENT_FETCHES=4,
    )


@pytest.fixture
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest_asyncio.fixture
async def http_client(upstream):
    async with httpx.AsyncClient(transport=httpx.MockTransport(upstream.handler)) as client:
        yield client


@pytest.fixture
def ctx(settings, db, http_client, reference) -> ScrapeContext:
    return ScrapeContext(settings=settings, db=db, client=http_client, reference=reference)


@pytest.fixture
def make_record():
    return spin_record
