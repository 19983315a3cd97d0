"""
Outbound webhook client.

The receiver gets one POST per change:
- body: {"tableName": "...", "recordDetails": {...}}
- any 2xx status counts as delivered
"""

from __future__ import annotations

from typing import Any

import httpx

from core import settings

DEFAULT_TIMEOUT_S = 10.0


# Webhook failures are explicit and separable from other runtime errors.
class WebhookError(RuntimeError):
    pass


def webhook_url() -> str | None:
    return settings.env_str("WEBHOOK_URL") or None


def webhook_timeout_s() -> float:
    return settings.env_float("WEBHOOK_TIMEOUT_S", DEFAULT_TIMEOUT_S)


async def post_json(
    url: str,
    body: dict[str, Any],
    *,
    timeout_s: float = DEFAULT_TIMEOUT_S,
    client: httpx.AsyncClient | None = None,
) -> int:
    """
    POST `body` as JSON and return the response status.

    Raises WebhookError on transport errors, timeouts and non-2xx responses.
    """
    url = (url or "").strip()
    if not url:
        raise WebhookError("Webhook URL is empty.")

    try:
        if client is not None:
            resp = await client.post(url, json=body, timeout=timeout_s)
        else:
            async with httpx.AsyncClient(timeout=timeout_s) as own_client:
                resp = await own_client.post(url, json=body)
    except httpx.HTTPError as exc:
        raise WebhookError(f"Webhook request failed: {type(exc).__name__} {exc}") from exc

    if not resp.is_success:
        # Avoid dumping huge bodies; include a small snippet.
        snippet = resp.text[:300]
        raise WebhookError(f"Webhook returned {resp.status_code}: {snippet}")

    return resp.status_code
