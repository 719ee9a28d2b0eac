"""
Notification sinks — where progress messages and log events go.

A sink knows three things: post a message and hand back its id, edit a
previously posted message in place, and post a log line with an optional
structured summary.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from typing import Protocol

import httpx

import config
from models.errors import NotificationError
from models.schemas import SummaryEmbed

log = logging.getLogger(__name__)

MAX_RETRIES = 3
BASE_DELAY = 1.0  # seconds


class NotificationSink(Protocol):
    async def send_message(self, content: str) -> str: ...

    async def edit_message(self, message_id: str, content: str) -> None: ...

    async def send_log(self, message: str, summary: SummaryEmbed | None = None) -> None: ...


class DiscordWebhookSink:
    """Post to a Discord channel through an incoming webhook."""

    def __init__(
        self,
        webhook_url: str,
        *,
        username: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        if not webhook_url:
            raise ValueError("webhook_url is required")
        self.webhook_url = webhook_url.rstrip("/")
        self.username = username
        self.timeout = timeout or config.NOTIFY_TIMEOUT
        self._transport = transport

    async def send_message(self, content: str) -> str:
        data = await self._request("POST", self.webhook_url, params={"wait": "true"}, json=self._payload(content))
        message_id = str(data.get("id", ""))
        if not message_id:
            raise NotificationError("Webhook did not return a message id")
        return message_id

    async def edit_message(self, message_id: str, content: str) -> None:
        await self._request("PATCH", f"{self.webhook_url}/messages/{message_id}", json={"content": content})

    async def send_log(self, message: str, summary: SummaryEmbed | None = None) -> None:
        payload = self._payload(message)
        payload["embeds"] = [summary.to_dict()] if summary else []
        await self._request("POST", self.webhook_url, json=payload)

    def _payload(self, content: str) -> dict:
        payload: dict = {"content": content}
        if self.username:
            payload["username"] = self.username
        return payload

    async def _request(self, method: str, url: str, **kwargs) -> dict:
        """Send a webhook request, retrying on 429 with the advertised delay."""
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            for attempt in range(MAX_RETRIES):
                try:
                    response = await client.request(method, url, **kwargs)
                except httpx.HTTPError as e:
                    raise NotificationError(f"{method} webhook failed: {e}") from e

                if response.status_code == 429 and attempt < MAX_RETRIES - 1:
                    delay = _retry_after(response, BASE_DELAY * (2 ** attempt))
                    log.warning(
                        "Webhook rate limited (attempt %d/%d), retrying in %.1fs",
                        attempt + 1, MAX_RETRIES, delay,
                    )
                    await asyncio.sleep(delay)
                    continue
                if not 200 <= response.status_code < 300:
                    raise NotificationError(f"{method} webhook returned status_{response.status_code}")
                if response.status_code == 204 or not response.content:
                    return {}
                return response.json()

        return {}  # unreachable but satisfies type checker


def _retry_after(response: httpx.Response, default: float) -> float:
    raw = response.headers.get("Retry-After")
    try:
        return float(raw) if raw is not None else default
    except ValueError:
        return default


class LoggingSink:
    """Fallback sink used when no webhook is configured: writes to the local log."""

    def __init__(self):
        self._ids = itertools.count(1)

    async def send_message(self, content: str) -> str:
        message_id = str(next(self._ids))
        log.info("[NOTIFY #%s] %s", message_id, content.replace("\n", " | "))
        return message_id

    async def edit_message(self, message_id: str, content: str) -> None:
        log.info("[NOTIFY #%s] %s", message_id, content.replace("\n", " | "))

    async def send_log(self, message: str, summary: SummaryEmbed | None = None) -> None:
        if summary:
            fields = "; ".join(f"{f.name}: {f.value}" for f in summary.fields)
            log.info("[NOTIFY] %s (%s — %s)", message, summary.title, fields.replace("\n", " "))
        else:
            log.info("[NOTIFY] %s", message)


def build_sink() -> NotificationSink:
    """Return the Discord sink when a webhook is configured, else the logging sink."""
    if config.DISCORD_WEBHOOK_URL:
        return DiscordWebhookSink(config.DISCORD_WEBHOOK_URL, username=config.DISCORD_USERNAME)
    log.warning("DISCORD_WEBHOOK_URL not set — notifications go to the local log only")
    return LoggingSink()
