from __future__ import annotations

import asyncio
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Literal

import httpx
from loguru import logger

from app.settings import Settings
from ingest.errors import UpstreamMalformed, UpstreamUnavailable
from ingest.parsers.json import parse_event_envelope, parse_large_event_groups
from ingest.parsers.rss import parse_index_ids


FetchStatus = Literal["found", "not_found", "error"]

_TIMEOUT = httpx.Timeout(connect=5.0, read=15.0, write=5.0, pool=5.0)


@dataclass(frozen=True)
class FetchResult:
    event_id: int
    status: FetchStatus
    record: dict | None = None
    error: str | None = None

    @property
    def found(self) -> bool:
        return self.status == "found"


async def fetch(
    client: httpx.AsyncClient,
    *,
    url: str,
    user_agent: str,
    accept: str = "application/json, */*",
) -> tuple[int, bytes]:
    headers = {"User-Agent": user_agent, "Accept": accept}
    response = await client.get(url, headers=headers, timeout=_TIMEOUT)
    return response.status_code, response.content


async def _fetch_document(
    client: httpx.AsyncClient, settings: Settings, url: str, accept: str
) -> bytes:
    try:
        status_code, content = await fetch(
            client, url=url, user_agent=settings.user_agent, accept=accept
        )
    except httpx.TimeoutException as e:
        raise UpstreamUnavailable(f"timeout fetching {url}") from e
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        raise UpstreamUnavailable(
            f"request_error:{e.__class__.__name__} fetching {url}"
        ) from e
    if status_code != 200:
        raise UpstreamUnavailable(f"http_{status_code} fetching {url}")
    return content


async def fetch_index_ids(client: httpx.AsyncClient, settings: Settings) -> list[int]:
    content = await _fetch_document(
        client,
        settings,
        settings.spin_index_url,
        "application/rss+xml, application/xml, text/xml, */*",
    )
    try:
        return parse_index_ids(content)
    except ValueError as e:
        raise UpstreamMalformed(str(e)) from e


async def fetch_event(
    client: httpx.AsyncClient, settings: Settings, event_id: int
) -> FetchResult:
    url = settings.spin_event_url.format(id=event_id)
    try:
        status_code, content = await fetch(client, url=url, user_agent=settings.user_agent)
    except httpx.TimeoutException:
        return FetchResult(event_id=event_id, status="error", error="timeout")
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        return FetchResult(
            event_id=event_id,
            status="error",
            error=f"request_error:{e.__class__.__name__}",
        )

    if status_code == 404:
        return FetchResult(event_id=event_id, status="not_found")
    if status_code != 200:
        return FetchResult(event_id=event_id, status="error", error=f"http_{status_code}")

    try:
        value = parse_event_envelope(content)
    except ValueError:
        return FetchResult(event_id=event_id, status="error", error="parse_error")
    if value is None:
        return FetchResult(event_id=event_id, status="not_found")
    return FetchResult(event_id=event_id, status="found", record={"id": event_id, **value})


async def fetch_events(
    client: httpx.AsyncClient,
    settings: Settings,
    ids: Iterable[int],
    *,
    concurrency: int,
) -> list[FetchResult]:
    sem = asyncio.Semaphore(max(1, concurrency))

    async def _one(event_id: int) -> FetchResult:
        async with sem:
            return await fetch_event(client, settings, event_id)

    results = await asyncio.gather(*(_one(event_id) for event_id in ids))
    errors = [r for r in results if r.status == "error"]
    if errors:
        logger.warning(
            f"{len(errors)} of {len(results)} event fetches failed "
            f"(first: {errors[0].event_id} {errors[0].error})"
        )
    return list(results)


async def fetch_large_events(client: httpx.AsyncClient, settings: Settings) -> list[dict]:
    content = await _fetch_document(
        client, settings, settings.spin_large_events_url, "application/json, */*"
    )
    try:
        return parse_large_event_groups(content)
    except ValueError as e:
        raise UpstreamMalformed(str(e)) from e
