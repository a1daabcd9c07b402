import asyncio

from gateway.agents.events import AgentEvent, AgentEventBus


def test_subscription_receives_only_its_run_in_order() -> None:
    async def scenario() -> list[str]:
        bus = AgentEventBus()
        subscription = bus.subscribe("run-a")
        bus.publish(AgentEvent(run_id="run-a", stream="assistant", data={"delta": "one"}))
        bus.publish(AgentEvent(run_id="run-b", stream="assistant", data={"delta": "other"}))
        bus.publish(AgentEvent(run_id="run-a", stream="assistant", data={"delta": "two"}))
        subscription.close()
        return [event.assistant_text async for event in subscription]

    # closing before iteration drops everything still queued
    assert asyncio.run(scenario()) == []


def test_subscription_iterates_until_closed() -> None:
    async def scenario() -> list[str]:
        bus = AgentEventBus()
        subscription = bus.subscribe("run-a")
        received: list[str] = []

        async def consume() -> None:
            async for event in subscription:
                received.append(event.assistant_text)

        consumer = asyncio.create_task(consume())
        for text in ("one", "two", "three"):
            bus.publish(AgentEvent(run_id="run-a", stream="assistant", data={"delta": text}))
            await asyncio.sleep(0)
        subscription.close()
        await consumer
        return received

    assert asyncio.run(scenario()) == ["one", "two", "three"]


def test_events_after_close_are_dropped() -> None:
    async def scenario() -> tuple[int, int, object]:
        bus = AgentEventBus()
        subscription = bus.subscribe("run-a")
        subscription.close()
        delivered = bus.publish(AgentEvent(run_id="run-a", stream="assistant", data={"delta": "x"}))
        return delivered, bus.subscriber_count("run-a"), subscription.get_nowait()

    delivered, count, pending = asyncio.run(scenario())
    assert delivered == 0
    assert count == 0
    assert pending is None


def test_get_nowait_returns_pending_events() -> None:
    async def scenario() -> list[str]:
        bus = AgentEventBus()
        subscription = bus.subscribe("run-a")
        bus.publish(AgentEvent(run_id="run-a", stream="lifecycle", data={"phase": "start"}))
        bus.publish(AgentEvent(run_id="run-a", stream="assistant", data={"text": "hi"}))
        out: list[str] = []
        while (event := subscription.get_nowait()) is not None:
            out.append(event.phase or event.assistant_text)
        return out

    assert asyncio.run(scenario()) == ["start", "hi"]


def test_assistant_text_prefers_delta_over_text() -> None:
    event = AgentEvent(run_id="r", stream="assistant", data={"delta": "d", "text": "full"})
    assert event.assistant_text == "d"
    assert AgentEvent(run_id="r", stream="assistant", data={"delta": 3}).assistant_text == ""
