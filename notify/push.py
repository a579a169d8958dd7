from __future__ import annotations

import httpx
from loguru import logger


_TIMEOUT = httpx.Timeout(connect=5.0, read=15.0, write=5.0, pool=5.0)


def build_push_payload(*, token: str, title: str, body: str) -> dict:
    return {
        "message": {
            "token": token,
            "notification": {"title": title, "body": body},
        }
    }


async def send_push(
    client: httpx.AsyncClient,
    *,
    url: str,
    bearer_token: str,
    token: str,
    title: str,
    body: str,
) -> bool:
    try:
        response = await client.post(
            url,
            json=build_push_payload(token=token, title=title, body=body),
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {bearer_token}",
            },
            timeout=_TIMEOUT,
        )
    except httpx.TimeoutException:
        logger.warning(f"Push timed out for token {token[:12]}...")
        return False
    except httpx.RequestError as e:
        logger.warning(f"Push error for token {token[:12]}...: {e.__class__.__name__}")
        return False

    if response.status_code >= 400:
        logger.warning(f"Push rejected for token {token[:12]}...: http_{response.status_code}")
        return False
    return True
