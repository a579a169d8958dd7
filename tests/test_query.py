from datetime import date
from zoneinfo import ZoneInfo

import pytest

from archive.query import (
    fts_match_expression,
    get_event,
    list_event_types,
    list_large_events,
    list_municipalities,
    query_events,
)
from archive.schemas import ValidationFailed, parse_archive_query
from geo.proximity import encode_coordinate
from store.events import insert_events, insert_large_events


LJUBLJANA = ZoneInfo("Europe/Ljubljana")

CENTRE = (46.0569, 14.5058)


def _event(event_id: int, **overrides) -> dict:
    event = {
        "event_id": event_id,
        "municipality_id": 1,
        "event_type_id": 2,
        "lat": encode_coordinate(CENTRE[0]),
        "lon": encode_coordinate(CENTRE[1]),
        "create_time": f"2024-03-{event_id % 28 + 1:02d}T09:00:00Z",
        "report_time": f"2024-03-{event_id % 28 + 1:02d}T09:05:00Z",
        "description": f"Opis dogodka {event_id}",
        "title": f"Dogodek {event_id}",
        "on_going": False,
    }
    event.update(overrides)
    return event


def test_filters_combine_with_and(db) -> None:
    insert_events(
        db,
        [
            _event(1),
            _event(2, municipality_id=2),
            _event(3, event_type_id=1),
            _event(4, on_going=True),
        ],
    )

    query = parse_archive_query({"municipalities": "1", "eventTypes": "2"})
    assert {e["id"] for e in query_events(db, query)} == {1, 4}

    query = parse_archive_query(
        {"municipalities": "1", "eventTypes": "2", "onGoing": "true"}
    )
    assert [e["id"] for e in query_events(db, query)] == [4]

    query = parse_archive_query({"municipalities": ["1", "2"]})
    assert {e["id"] for e in query_events(db, query)} == {1, 2, 3, 4}


def test_rows_carry_reference_names_and_decoded_coordinates(db) -> None:
    insert_events(db, [_event(7)])
    (event,) = query_events(db, parse_archive_query({}))
    assert event["municipality"] == "Ljubljana"
    assert event["event_type"] == "Prometna nesreča"
    assert event["lat"] == pytest.approx(46.056)
    assert event["lon"] == pytest.approx(14.505)
    assert event["on_going"] is False


def test_default_order_is_newest_first_and_count_caps(db) -> None:
    insert_events(db, [_event(i) for i in range(1, 6)])
    events = query_events(db, parse_archive_query({"count": "3"}))
    assert [e["id"] for e in events] == [5, 4, 3]

    events = query_events(db, parse_archive_query({"order": "asc", "count": "2"}))
    assert [e["id"] for e in events] == [1, 2]


def test_events_without_description_are_hidden_by_default(db) -> None:
    insert_events(db, [_event(1), _event(2, description=None)])
    assert [e["id"] for e in query_events(db, parse_archive_query({}))] == [1]

    query = parse_archive_query({"includeWithoutDescription": "true"})
    assert {e["id"] for e in query_events(db, query)} == {1, 2}


def test_date_range_is_inclusive_in_local_days(db) -> None:
    insert_events(
        db,
        [
            # 00:30 local on 5 March
            _event(1, create_time="2024-03-04T23:30:00Z"),
            _event(2, create_time="2024-03-05T12:00:00Z"),
            # 00:30 local on 6 March
            _event(3, create_time="2024-03-05T23:30:00Z"),
            _event(4, create_time="2024-03-04T22:30:00Z"),
        ],
    )
    query = parse_archive_query({"from": "2024-03-05", "to": "2024-03-05"})
    events = query_events(db, query, tz=LJUBLJANA)
    assert {e["id"] for e in events} == {1, 2}


def test_free_text_matches_title_and_description(db) -> None:
    insert_events(
        db,
        [
            _event(1, title="Požar stanovanjske hiše", description="Gasilci so pogasili ogenj."),
            _event(2, title="Prometna nesreča", description="Trčenje na avtocesti."),
        ],
    )
    assert [e["id"] for e in query_events(db, parse_archive_query({"q": "požar"}))] == [1]
    assert [e["id"] for e in query_events(db, parse_archive_query({"q": "avtoc"}))] == [2]
    assert fts_match_expression("  ...  ") is None


def test_geo_filter_excludes_outside_radius_and_includes_centre(db) -> None:
    insert_events(
        db,
        [
            _event(1),
            # Maribor, about 100 km away
            _event(2, lat=encode_coordinate(46.5547), lon=encode_coordinate(15.6459)),
            # inside the bounding box corner but beyond the radius
            _event(3, lat=encode_coordinate(46.0569 + 0.085), lon=encode_coordinate(14.5058 + 0.12)),
        ],
    )
    query = parse_archive_query(
        {"lat": str(CENTRE[0]), "lon": str(CENTRE[1]), "radius": "10"}
    )
    events = query_events(db, query)
    assert [e["id"] for e in events] == [1]
    assert events[0]["distance_km"] < 0.2


def test_tiny_radius_still_includes_event_at_centre(db) -> None:
    insert_events(db, [_event(1)])
    query = parse_archive_query(
        {"lat": str(CENTRE[0]), "lon": str(CENTRE[1]), "radius": "0.1"}
    )
    events = query_events(db, query)
    assert [e["id"] for e in events] == [1]
    assert events[0]["distance_km"] == 0


def test_distance_order_caps_after_sorting(db) -> None:
    events = []
    for i in range(1, 21):
        # step north roughly 1.1 km per id, newest ids are farthest away
        events.append(
            _event(i, lat=encode_coordinate(CENTRE[0] + 0.01 * i), create_time=f"2024-03-01T{i:02d}:00:00Z")
        )
    insert_events(db, events)

    query = parse_archive_query(
        {
            "lat": str(CENTRE[0]),
            "lon": str(CENTRE[1]),
            "radius": "50",
            "orderBy": "distance",
            "count": "5",
        }
    )
    result = query_events(db, query)
    assert [e["id"] for e in result] == [1, 2, 3, 4, 5]
    distances = [e["distance_km"] for e in result]
    assert distances == sorted(distances)


def test_get_event_returns_none_for_unknown_id(db) -> None:
    insert_events(db, [_event(9)])
    assert get_event(db, 9)["title"] == "Dogodek 9"
    assert get_event(db, 10) is None


def test_reference_listings(db) -> None:
    assert [m["name"] for m in list_municipalities(db)] == ["Kranj", "Ljubljana", "Maribor"]
    assert [t["id"] for t in list_event_types(db)] == [1, 2, 3]


def test_large_events_listing_filters_by_municipality_and_day(db) -> None:
    insert_large_events(
        db,
        [
            {"municipality_id": 1, "create_time": "2024-07-19T15:05:00Z", "description": "Neurje."},
            {"municipality_id": 2, "create_time": "2024-07-19T16:00:00Z", "description": "Toča."},
            {"municipality_id": 1, "create_time": "2024-07-21T08:00:00Z", "description": "Poplave."},
        ],
    )
    rows = list_large_events(
        db,
        municipalities=[1],
        date_from=None,
        date_to=None,
        count=10,
        tz=LJUBLJANA,
    )
    assert [r["description"] for r in rows] == ["Poplave.", "Neurje."]

    rows = list_large_events(
        db,
        municipalities=[],
        date_from=date(2024, 7, 19),
        date_to=date(2024, 7, 19),
        count=10,
        tz=LJUBLJANA,
    )
    assert {r["municipality"] for r in rows} == {"Ljubljana", "Maribor"}


@pytest.mark.parametrize(
    "params",
    [
        {"orderBy": "popularity"},
        {"lat": "46.0", "lon": "14.5"},
        {"from": "2024-03-05", "to": "2024-03-01"},
        {"count": "0"},
        {"lat": "46.0", "lon": "14.5", "radius": "5", "orderBy": "distance", "order": "desc"},
        {"municipalities": "1,abc"},
    ],
)
def test_invalid_queries_are_rejected(params) -> None:
    with pytest.raises(ValidationFailed) as excinfo:
        parse_archive_query(params)
    assert excinfo.value.fields
