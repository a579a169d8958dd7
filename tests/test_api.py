from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from app.main import app
from health.health import Change, record_run
from store.events import insert_events, insert_large_events


FIXTURES = Path(__file__).resolve().parent / "fixtures"


@pytest.fixture
def client(tmp_path, monkeypatch):
    monkeypatch.setenv("DB_PATH", str(tmp_path / "api.db"))
    monkeypatch.setenv("REFERENCE_PATH", str(FIXTURES / "reference.yaml"))
    monkeypatch.setenv("SCHEDULER_ENABLED", "false")
    with TestClient(app) as test_client:
        db = test_client.app.state.db
        insert_events(
            db,
            [
                {
                    "event_id": 1,
                    "municipality_id": 1,
                    "event_type_id": 2,
                    "lat": 46056,
                    "lon": 14505,
                    "create_time": "2024-03-04T09:15:00Z",
                    "report_time": "2024-03-04T09:17:00Z",
                    "description": "Trčenje dveh vozil na obvoznici.",
                    "title": "Prometna nesreča",
                    "on_going": False,
                },
                {
                    "event_id": 2,
                    "municipality_id": 2,
                    "event_type_id": 1,
                    "lat": 46554,
                    "lon": 15645,
                    "create_time": "2024-03-05T13:00:00Z",
                    "report_time": "2024-03-05T13:02:00Z",
                    "description": "Gorela je trava.",
                    "title": "Požar v naravi",
                    "on_going": True,
                },
            ],
        )
        insert_large_events(
            db,
            [{"municipality_id": 1, "create_time": "2024-07-19T15:05:00Z", "description": "Neurje."}],
        )
        record_run(db, change=Change.FETCH_LATEST, changed_entries=2)
        yield test_client


def test_list_events(client) -> None:
    resp = client.get("/api/events")
    assert resp.status_code == 200
    assert [e["id"] for e in resp.json()] == [2, 1]


def test_list_events_repeated_list_params(client) -> None:
    resp = client.get("/api/events", params=[("municipalities", "1"), ("municipalities", "3")])
    assert resp.status_code == 200
    assert [e["id"] for e in resp.json()] == [1]


def test_list_events_geo(client) -> None:
    resp = client.get("/api/events", params={"lat": 46.0569, "lon": 14.5058, "radius": 5})
    assert resp.status_code == 200
    body = resp.json()
    assert [e["id"] for e in body] == [1]
    assert "distance_km" in body[0]


def test_list_events_invalid_query(client) -> None:
    resp = client.get("/api/events", params={"orderBy": "popularity"})
    assert resp.status_code == 422
    body = resp.json()
    assert body["error"] == "validation_failed"
    assert body["fields"][0]["field"] == "orderBy"


def test_get_event(client) -> None:
    resp = client.get("/api/events/2")
    assert resp.status_code == 200
    assert resp.json()["municipality"] == "Maribor"
    assert resp.json()["on_going"] is True

    resp = client.get("/api/events/999")
    assert resp.status_code == 404
    assert resp.json() == {"error": "not_found"}


def test_large_events(client) -> None:
    resp = client.get("/api/large-events", params={"municipalities": "1", "from": "2024-07-19"})
    assert resp.status_code == 200
    assert [r["description"] for r in resp.json()] == ["Neurje."]

    resp = client.get("/api/large-events", params={"municipalities": "x"})
    assert resp.status_code == 422


def test_reference_endpoints(client) -> None:
    assert [m["name"] for m in client.get("/api/municipalities").json()] == [
        "Kranj",
        "Ljubljana",
        "Maribor",
    ]
    assert len(client.get("/api/event-types").json()) == 3


def test_create_subscription(client) -> None:
    resp = client.post(
        "/api/subscriptions",
        json={"token": "device-a", "municipalities": [1, 2], "eventTypes": [3]},
    )
    assert resp.status_code == 201
    assert resp.json() == {"token": "device-a", "subscriptions": 3}

    resp = client.post("/api/subscriptions", json={"token": "device-a", "municipalities": [42]})
    assert resp.status_code == 422
    assert resp.json()["fields"][0]["field"] == "municipalities"


def test_health(client) -> None:
    resp = client.get("/api/health")
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "ok"
    assert body["last_runs"]["FETCH_LATEST"]["changed_entries"] == 2
    assert body["recent_runs"][0]["updated"] == "FETCH_LATEST"
