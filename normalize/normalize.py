from __future__ import annotations

from datetime import UTC, datetime, tzinfo

from geo.proximity import encode_coordinate
from ingest.errors import UnresolvedReference, UpstreamMalformed
from store.reference import ReferenceSnapshot


ONGOING_ICON_CODE = 0

_FALLBACK_TIME_FORMATS = (
    "%d.%m.%Y %H:%M:%S",
    "%d.%m.%Y %H:%M",
    "%d. %m. %Y %H:%M",
    "%d.%m.%Y",
)


def _to_iso(dt: datetime) -> str:
    return dt.astimezone(tz=UTC).isoformat(timespec="seconds").replace("+00:00", "Z")


def parse_upstream_time(value: object, tz: tzinfo) -> str:
    text = str(value or "").strip()
    if not text:
        raise UpstreamMalformed("missing timestamp")

    dt: datetime | None = None
    try:
        dt = datetime.fromisoformat(
            text.removesuffix("Z") + "+00:00" if text.endswith("Z") else text
        )
    except ValueError:
        for fmt in _FALLBACK_TIME_FORMATS:
            try:
                dt = datetime.strptime(text, fmt)
                break
            except ValueError:
                continue
    if dt is None:
        raise UpstreamMalformed(f"unparseable timestamp: {text!r}")

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=tz)
    return _to_iso(dt)


def clean_text(value: object) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def map_event(record: dict, reference: ReferenceSnapshot, *, tz: tzinfo) -> dict:
    municipality_name = str(record.get("obcinaNaziv") or "")
    event_type_name = str(record.get("intervencijaVrstaNaziv") or "")

    municipality_id = reference.municipality_by_name(municipality_name)
    if municipality_id is None:
        raise UnresolvedReference("municipality", municipality_name)
    event_type_id = reference.event_type_by_name(event_type_name)
    if event_type_id is None:
        raise UnresolvedReference("event type", event_type_name)

    try:
        event_id = int(record["id"])
        lat = encode_coordinate(float(record["wgsLat"]))
        lon = encode_coordinate(float(record["wgsLon"]))
    except (KeyError, TypeError, ValueError) as e:
        raise UpstreamMalformed(f"event {record.get('id')!r}: {e}") from e

    return {
        "event_id": event_id,
        "municipality_id": municipality_id,
        "event_type_id": event_type_id,
        "lat": lat,
        "lon": lon,
        "create_time": parse_upstream_time(record.get("nastanekCas"), tz),
        "report_time": parse_upstream_time(record.get("prijavaCas"), tz),
        "description": clean_text(record.get("besedilo")),
        "title": clean_text(record.get("dogodekNaziv")),
        "on_going": str(record.get("ikona")).strip() == str(ONGOING_ICON_CODE),
    }


def map_large_event(
    group: dict, reference: ReferenceSnapshot, *, tz: tzinfo
) -> dict | None:
    """Collapse one bulletin group into a LargeEvent row.

    The upstream MID is matched first because bulletin municipality names
    drift; the name is only consulted when the group carries no MID. Texts
    are joined oldest first and the earliest bulletin date becomes the
    creation time, so a re-published group maps to the same natural key.
    """
    mid = group.get("obcinaMID")
    name = str(group.get("obcinaNaziv") or "").strip()
    if mid is not None:
        try:
            municipality_id = reference.municipality_by_mid(int(mid))
        except (TypeError, ValueError) as e:
            raise UpstreamMalformed(f"invalid municipality MID: {mid!r}") from e
        if municipality_id is None:
            raise UnresolvedReference("municipality MID", mid)
    else:
        municipality_id = reference.municipality_by_name(name)
        if municipality_id is None:
            raise UnresolvedReference("municipality", name)

    bulletins: list[tuple[str, str]] = []
    for entry in group.get("besediloList") or []:
        if not isinstance(entry, dict):
            continue
        text = clean_text(entry.get("besedilo"))
        if text is None:
            continue
        bulletins.append((parse_upstream_time(entry.get("datum"), tz), text))

    if not bulletins:
        return None

    bulletins.sort(key=lambda b: b[0])
    description = "\n\n".join(text for _, text in bulletins).strip()
    return {
        "municipality_id": municipality_id,
        "create_time": bulletins[0][0],
        "description": description,
    }
