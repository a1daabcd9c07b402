"""Usage webhook reporting service.

Completed runs hand their usage payload to ``enqueue``; nothing on the
response path ever awaits a delivery.

With ``batch_size <= 1`` every payload is delivered on its own in a
background task.  With a larger batch size payloads accumulate in order and
are flushed when the batch is full or when the periodic timer fires,
whichever comes first.  A flush drains the whole queue at once and sends a
single payload bare or several wrapped as ``{"events": [...]}``.

Flushes are serialized by one lock: a trigger that arrives while a flush is
in flight waits for it, then drains whatever accumulated meanwhile.
"""

import asyncio
import logging
from contextlib import suppress
from typing import Any

from gateway.config.settings import Settings
from gateway.metrics import inc_counter
from gateway.webhooks.deliverer import WebhookDeliverer

logger = logging.getLogger("agw.webhooks")


def resolve_webhook_headers(
    configured: dict[str, str] | None = None,
    auth_header: str | None = None,
    gateway_token: str | None = None,
) -> dict[str, str]:
    headers: dict[str, str] = {"Content-Type": "application/json", **(configured or {})}
    if auth_header and auth_header.strip() and "Authorization" not in headers:
        headers["Authorization"] = auth_header.strip()
    if gateway_token and gateway_token.strip() and "X-Gateway-Token" not in headers:
        headers["X-Gateway-Token"] = gateway_token.strip()
    return headers


class UsageWebhookService:
    def __init__(
        self,
        url: str,
        deliverer: WebhookDeliverer,
        headers: dict[str, str] | None = None,
        batch_size: int = 1,
        flush_interval_ms: int = 5000,
        timeout_ms: int = 10_000,
        max_retries: int = 3,
    ) -> None:
        self._url = url
        self._deliverer = deliverer
        self._headers = headers if headers is not None else resolve_webhook_headers()
        self._batch_size = max(batch_size, 1)
        self._flush_interval_s = max(flush_interval_ms, 1) / 1000
        self._timeout_ms = timeout_ms
        self._max_retries = max_retries
        self._queue: list[dict[str, Any]] = []
        self._flush_lock = asyncio.Lock()
        self._timer_task: asyncio.Task[None] | None = None
        self._background: set[asyncio.Task[Any]] = set()

    @classmethod
    def from_settings(
        cls, settings: Settings, deliverer: WebhookDeliverer | None = None
    ) -> "UsageWebhookService | None":
        if not settings.usage_webhook_enabled or settings.usage_webhook_url is None:
            logger.info("usage_webhook_disabled")
            return None
        return cls(
            url=settings.usage_webhook_url.strip(),
            deliverer=deliverer
            or WebhookDeliverer(
                timeout_ms=settings.usage_webhook_timeout_ms,
                max_retries=settings.usage_webhook_max_retries,
            ),
            headers=resolve_webhook_headers(
                settings.usage_webhook_header_map,
                settings.usage_webhook_auth_header,
                settings.gateway_token,
            ),
            batch_size=settings.usage_webhook_batch_size,
            flush_interval_ms=settings.usage_webhook_flush_interval_ms,
            timeout_ms=settings.usage_webhook_timeout_ms,
            max_retries=settings.usage_webhook_max_retries,
        )

    @property
    def url(self) -> str:
        return self._url

    @property
    def headers(self) -> dict[str, str]:
        return dict(self._headers)

    @property
    def batching(self) -> bool:
        return self._batch_size > 1

    @property
    def pending_count(self) -> int:
        return len(self._queue)

    async def start(self) -> None:
        if self.batching and self._timer_task is None:
            self._timer_task = asyncio.create_task(self._flush_periodically())
        logger.info(
            "usage_webhook_enabled",
            extra={"endpoint": self._url, "batch_size": self._batch_size},
        )

    async def stop(self) -> None:
        if self._timer_task is not None:
            self._timer_task.cancel()
            with suppress(asyncio.CancelledError):
                await self._timer_task
            self._timer_task = None
        await self.flush()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    def enqueue(self, payload: dict[str, Any]) -> None:
        """Queue one usage payload; never blocks the caller."""
        if not self.batching:
            self._spawn(self._send(payload, events=1))
            return
        self._queue.append(payload)
        if len(self._queue) >= self._batch_size:
            self._spawn(self.flush())

    async def flush(self) -> bool | None:
        """Send everything queued; ``None`` when there was nothing to send."""
        async with self._flush_lock:
            if not self._queue:
                return None
            batch, self._queue = self._queue, []
            body: dict[str, Any] = batch[0] if len(batch) == 1 else {"events": batch}
            return await self._send(body, events=len(batch))

    async def _send(self, body: dict[str, Any], events: int) -> bool:
        try:
            success = await self._deliverer.deliver(
                self._url,
                body,
                headers=self._headers,
                timeout_ms=self._timeout_ms,
                max_retries=self._max_retries,
            )
        except Exception as exc:
            logger.warning(
                "usage_webhook_send_failed",
                extra={"endpoint": self._url, "error": f"{type(exc).__name__}: {exc}"},
            )
            success = False
        inc_counter(
            "agw_usage_webhook_events_total",
            {"outcome": "delivered" if success else "dropped"},
            float(events),
        )
        if not success:
            logger.warning(
                "usage_webhook_events_dropped",
                extra={"endpoint": self._url, "batch_size": events},
            )
        return success

    async def _flush_periodically(self) -> None:
        while True:
            await asyncio.sleep(self._flush_interval_s)
            await self.flush()

    def _spawn(self, coro: Any) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            logger.warning(
                "usage_webhook_send_skipped",
                extra={"endpoint": self._url, "error": "no_running_loop"},
            )
            return
        task = loop.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
