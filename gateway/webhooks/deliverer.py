"""Usage webhook delivery with bounded retry.

Posts a JSON body to the configured receiver.  Delivery is best-effort:
``deliver`` never raises, it reports success as a bool and logs failures.

Retry policy per call (``max_retries + 1`` attempts in total):

* 2xx: success, stop.
* 4xx: the receiver rejected the payload; terminal, no retry.
* Malformed URL: terminal, no retry.
* 5xx, timeout, transport error: retry after
  ``min(backoff_base_s * 2**attempt, backoff_max_s)``, attempt counted from 0.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from time import perf_counter
from typing import Any

import httpx

from gateway.metrics import inc_counter

logger = logging.getLogger("agw.webhooks")


@dataclass
class WebhookDeliveryResult:
    """Outcome of one ``deliver`` call across all of its attempts."""
    url: str
    success: bool = False
    status_code: int | None = None
    error: str | None = None
    attempt_count: int = 0
    duration_ms: float = 0.0


def backoff_delay_s(attempt: int, base_s: float = 0.1, max_s: float = 5.0) -> float:
    return min(base_s * (2**attempt), max_s)


class WebhookDeliverer:
    """Webhook POST client with exponential backoff.

    Parameters
    ----------
    timeout_ms : int
        Default per-attempt HTTP timeout.
    max_retries : int
        Default number of retries after the first attempt.
    backoff_base_s, backoff_max_s : float
        Backoff curve; defaults give 100ms, 200ms, 400ms, ... capped at 5s.
    """

    def __init__(
        self,
        timeout_ms: int = 10_000,
        max_retries: int = 3,
        backoff_base_s: float = 0.1,
        backoff_max_s: float = 5.0,
    ) -> None:
        self._timeout_ms = timeout_ms
        self._max_retries = max(max_retries, 0)
        self._backoff_base_s = max(backoff_base_s, 0.0)
        self._backoff_max_s = max(backoff_max_s, self._backoff_base_s)
        self._delivery_log: list[WebhookDeliveryResult] = []
        self._max_log_entries = 500

    async def deliver(
        self,
        url: str,
        payload: Any,
        headers: dict[str, str] | None = None,
        timeout_ms: int | None = None,
        max_retries: int | None = None,
    ) -> bool:
        result = await self.deliver_with_result(
            url, payload, headers=headers, timeout_ms=timeout_ms, max_retries=max_retries
        )
        return result.success

    async def deliver_with_result(
        self,
        url: str,
        payload: Any,
        headers: dict[str, str] | None = None,
        timeout_ms: int | None = None,
        max_retries: int | None = None,
    ) -> WebhookDeliveryResult:
        body = json.dumps(payload, separators=(",", ":"), ensure_ascii=True)
        request_headers = {"Content-Type": "application/json", **(headers or {})}
        timeout_s = (timeout_ms if timeout_ms is not None else self._timeout_ms) / 1000
        retries = self._max_retries if max_retries is None else max(max_retries, 0)
        attempts = retries + 1

        started = perf_counter()
        status_code: int | None = None
        last_error: str | None = None
        for attempt in range(attempts):
            try:
                async with httpx.AsyncClient(timeout=timeout_s) as client:
                    resp = await client.post(url, content=body, headers=request_headers)
            except httpx.InvalidURL as exc:
                last_error = f"{type(exc).__name__}: {exc}"
                logger.error(
                    "usage_webhook_invalid_url",
                    extra={"endpoint": url, "attempt": attempt + 1, "error": last_error},
                )
                return self._record(
                    WebhookDeliveryResult(
                        url=url,
                        error=last_error,
                        attempt_count=attempt + 1,
                        duration_ms=_elapsed_ms(started),
                    )
                )
            except httpx.HTTPError as exc:
                status_code = None
                last_error = f"{type(exc).__name__}: {exc}"
                logger.warning(
                    "usage_webhook_attempt_failed",
                    extra={"endpoint": url, "attempt": attempt + 1, "error": last_error},
                )
            else:
                status_code = resp.status_code
                if 200 <= status_code < 300:
                    return self._record(
                        WebhookDeliveryResult(
                            url=url,
                            success=True,
                            status_code=status_code,
                            attempt_count=attempt + 1,
                            duration_ms=_elapsed_ms(started),
                        )
                    )
                last_error = f"HTTP {status_code}"
                if 400 <= status_code < 500:
                    logger.error(
                        "usage_webhook_rejected",
                        extra={
                            "endpoint": url,
                            "attempt": attempt + 1,
                            "status_code": status_code,
                        },
                    )
                    return self._record(
                        WebhookDeliveryResult(
                            url=url,
                            status_code=status_code,
                            error=last_error,
                            attempt_count=attempt + 1,
                            duration_ms=_elapsed_ms(started),
                        )
                    )

            if attempt < attempts - 1:
                await asyncio.sleep(
                    backoff_delay_s(attempt, self._backoff_base_s, self._backoff_max_s)
                )

        logger.error(
            "usage_webhook_delivery_failed",
            extra={
                "endpoint": url,
                "attempt": attempts,
                "status_code": status_code,
                "error": last_error,
            },
        )
        return self._record(
            WebhookDeliveryResult(
                url=url,
                status_code=status_code,
                error=last_error,
                attempt_count=attempts,
                duration_ms=_elapsed_ms(started),
            )
        )

    def _record(self, result: WebhookDeliveryResult) -> WebhookDeliveryResult:
        inc_counter(
            "agw_usage_webhook_deliveries_total",
            {"outcome": "success" if result.success else "failure"},
        )
        self._delivery_log.append(result)
        if len(self._delivery_log) > self._max_log_entries:
            self._delivery_log = self._delivery_log[-self._max_log_entries:]
        return result

    def recent_deliveries(self, limit: int = 20) -> list[WebhookDeliveryResult]:
        """Return the most recent delivery results, newest first."""
        return list(reversed(self._delivery_log[-limit:]))


def _elapsed_ms(started: float) -> float:
    return round((perf_counter() - started) * 1000, 3)
