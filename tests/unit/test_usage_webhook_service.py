import asyncio
from typing import Any

from gateway.config.settings import Settings
from gateway.webhooks.service import UsageWebhookService, resolve_webhook_headers

URL = "https://usage.example.test/hook"


class RecordingDeliverer:
    def __init__(self, gate: asyncio.Event | None = None, ok: bool = True) -> None:
        self.calls: list[dict[str, Any]] = []
        self._gate = gate
        self._ok = ok

    async def deliver(  # type: ignore[no-untyped-def]
        self, url, payload, headers=None, timeout_ms=None, max_retries=None
    ) -> bool:
        self.calls.append(
            {
                "url": url,
                "payload": payload,
                "headers": headers,
                "timeout_ms": timeout_ms,
                "max_retries": max_retries,
            }
        )
        if self._gate is not None:
            await self._gate.wait()
        return self._ok


def _service(deliverer: RecordingDeliverer, **kwargs: Any) -> UsageWebhookService:
    return UsageWebhookService(url=URL, deliverer=deliverer, **kwargs)  # type: ignore[arg-type]


def test_single_mode_delivers_each_payload_individually() -> None:
    async def scenario() -> RecordingDeliverer:
        deliverer = RecordingDeliverer()
        service = _service(deliverer, timeout_ms=2500, max_retries=1)
        await service.start()
        service.enqueue({"runId": "a"})
        service.enqueue({"runId": "b"})
        assert service.pending_count == 0
        await service.stop()
        return deliverer

    deliverer = asyncio.run(scenario())
    assert [call["payload"] for call in deliverer.calls] == [{"runId": "a"}, {"runId": "b"}]
    assert deliverer.calls[0]["timeout_ms"] == 2500
    assert deliverer.calls[0]["max_retries"] == 1
    assert deliverer.calls[0]["url"] == URL


def test_enqueue_does_not_wait_for_delivery() -> None:
    async def scenario() -> tuple[int, int]:
        gate = asyncio.Event()
        deliverer = RecordingDeliverer(gate=gate)
        service = _service(deliverer)
        service.enqueue({"runId": "slow"})
        before = len(deliverer.calls)
        await asyncio.sleep(0)
        started = len(deliverer.calls)
        gate.set()
        await service.stop()
        return before, started

    before, started = asyncio.run(scenario())
    assert before == 0
    assert started == 1


def test_full_batch_is_wrapped_in_events_envelope() -> None:
    async def scenario() -> RecordingDeliverer:
        deliverer = RecordingDeliverer()
        service = _service(deliverer, batch_size=3, flush_interval_ms=60_000)
        await service.start()
        for run_id in ("a", "b", "c"):
            service.enqueue({"runId": run_id})
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        assert service.pending_count == 0
        await service.stop()
        return deliverer

    deliverer = asyncio.run(scenario())
    assert len(deliverer.calls) == 1
    assert deliverer.calls[0]["payload"] == {
        "events": [{"runId": "a"}, {"runId": "b"}, {"runId": "c"}]
    }


def test_partial_batch_waits_then_stop_sends_single_payload_bare() -> None:
    async def scenario() -> tuple[int, RecordingDeliverer]:
        deliverer = RecordingDeliverer()
        service = _service(deliverer, batch_size=5, flush_interval_ms=60_000)
        await service.start()
        service.enqueue({"runId": "only"})
        await asyncio.sleep(0)
        sent_before_stop = len(deliverer.calls)
        await service.stop()
        return sent_before_stop, deliverer

    sent_before_stop, deliverer = asyncio.run(scenario())
    assert sent_before_stop == 0
    assert [call["payload"] for call in deliverer.calls] == [{"runId": "only"}]


def test_periodic_timer_flushes_partial_batch() -> None:
    async def scenario() -> RecordingDeliverer:
        deliverer = RecordingDeliverer()
        service = _service(deliverer, batch_size=10, flush_interval_ms=10)
        await service.start()
        service.enqueue({"runId": "a"})
        service.enqueue({"runId": "b"})
        for _ in range(50):
            if deliverer.calls:
                break
            await asyncio.sleep(0.01)
        await service.stop()
        return deliverer

    deliverer = asyncio.run(scenario())
    assert deliverer.calls[0]["payload"] == {"events": [{"runId": "a"}, {"runId": "b"}]}
    assert len(deliverer.calls) == 1


def test_flush_with_empty_queue_sends_nothing() -> None:
    deliverer = RecordingDeliverer()
    service = _service(deliverer, batch_size=2)
    assert asyncio.run(service.flush()) is None
    assert deliverer.calls == []


def test_overlapping_flushes_are_serialized() -> None:
    async def scenario() -> RecordingDeliverer:
        gate = asyncio.Event()
        deliverer = RecordingDeliverer(gate=gate)
        service = _service(deliverer, batch_size=2, flush_interval_ms=60_000)
        service.enqueue({"runId": "a"})
        service.enqueue({"runId": "b"})
        await asyncio.sleep(0)
        # first flush is in flight; the next batch fills behind it
        service.enqueue({"runId": "c"})
        service.enqueue({"runId": "d"})
        await asyncio.sleep(0)
        assert len(deliverer.calls) == 1
        gate.set()
        await service.stop()
        return deliverer

    deliverer = asyncio.run(scenario())
    assert [call["payload"] for call in deliverer.calls] == [
        {"events": [{"runId": "a"}, {"runId": "b"}]},
        {"events": [{"runId": "c"}, {"runId": "d"}]},
    ]


def test_failed_delivery_does_not_raise() -> None:
    async def scenario() -> RecordingDeliverer:
        deliverer = RecordingDeliverer(ok=False)
        service = _service(deliverer)
        service.enqueue({"runId": "a"})
        await service.stop()
        return deliverer

    deliverer = asyncio.run(scenario())
    assert len(deliverer.calls) == 1


def test_enqueue_without_running_loop_is_skipped() -> None:
    deliverer = RecordingDeliverer()
    service = _service(deliverer)
    service.enqueue({"runId": "a"})
    assert deliverer.calls == []


def test_resolve_webhook_headers() -> None:
    headers = resolve_webhook_headers(
        {"X-Tenant": "acme"}, auth_header=" Bearer hook-secret ", gateway_token="gw-token"
    )
    assert headers == {
        "Content-Type": "application/json",
        "X-Tenant": "acme",
        "Authorization": "Bearer hook-secret",
        "X-Gateway-Token": "gw-token",
    }


def test_configured_authorization_header_wins() -> None:
    headers = resolve_webhook_headers({"Authorization": "Basic abc"}, auth_header="Bearer x")
    assert headers["Authorization"] == "Basic abc"
    assert "X-Gateway-Token" not in headers


def test_from_settings_returns_none_without_url() -> None:
    assert UsageWebhookService.from_settings(Settings(usage_webhook_url=None)) is None
    assert UsageWebhookService.from_settings(Settings(usage_webhook_url="   ")) is None


def test_from_settings_builds_configured_service() -> None:
    settings = Settings(
        usage_webhook_url=" https://usage.example.test/hook ",
        usage_webhook_batch_size=4,
        usage_webhook_auth_header="Bearer hook-secret",
        usage_webhook_headers='{"X-Tenant": "acme"}',
    )
    service = UsageWebhookService.from_settings(settings, deliverer=RecordingDeliverer())  # type: ignore[arg-type]
    assert service is not None
    assert service.url == URL
    assert service.batching is True
    assert service.headers["Authorization"] == "Bearer hook-secret"
    assert service.headers["X-Tenant"] == "acme"


def test_deliverer_exception_is_contained() -> None:
    class ExplodingDeliverer(RecordingDeliverer):
        async def deliver(  # type: ignore[no-untyped-def]
            self, url, payload, headers=None, timeout_ms=None, max_retries=None
        ) -> bool:
            raise RuntimeError("socket exploded")

    async def scenario() -> bool | None:
        service = _service(ExplodingDeliverer(), batch_size=2)
        service.enqueue({"runId": "a"})
        return await service.flush()

    assert asyncio.run(scenario()) is False
