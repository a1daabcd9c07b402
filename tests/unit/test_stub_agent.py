import asyncio

import pytest

from gateway.agents.base import AgentInvocation, AgentInvocationError, AgentResult
from gateway.agents.events import AgentEvent, AgentEventBus
from gateway.agents.stub import StubAgent


def _run(model: str, message: str = "hello there") -> tuple[AgentResult, list[AgentEvent]]:
    async def scenario() -> tuple[AgentResult, list[AgentEvent]]:
        bus = AgentEventBus()
        subscription = bus.subscribe("run-1")
        invocation = AgentInvocation(
            message=message, session_key="agent:main:openai", run_id="run-1", model=model
        )
        result = await StubAgent(bus, chunk_size=4).run(invocation)
        events: list[AgentEvent] = []
        while (event := subscription.get_nowait()) is not None:
            events.append(event)
        subscription.close()
        return result, events

    return asyncio.run(scenario())


def test_stub_streams_answer_in_chunks() -> None:
    result, events = _run("agent")
    deltas = [event.assistant_text for event in events if event.stream == "assistant"]
    assert "".join(deltas) == "Stub response: hello there"
    assert all(len(delta) <= 4 for delta in deltas)
    assert [event.phase for event in events if event.stream == "lifecycle"] == ["start", "end"]
    assert result.output_text() == "Stub response: hello there"
    assert result.provider == "stub"
    assert result.usage is not None
    assert (result.usage.input, result.usage.output, result.usage.total) == (2, 4, 6)
    assert result.usage.cache_read == 0
    assert result.meta is not None and result.meta.agent_meta is not None
    assert result.meta.agent_meta.session_id == "agent:main:openai"
    assert result.meta.agent_meta.model == "agent"
    assert result.duration_ms is not None


def test_silent_model_skips_deltas() -> None:
    result, events = _run("silent-agent")
    assert not [event for event in events if event.stream == "assistant"]
    assert result.output_text() == "Stub response: hello there"


def test_empty_model_returns_no_payloads() -> None:
    result, _ = _run("empty-agent")
    assert result.payloads == ()
    assert result.output_text() == "No response from agent."


def test_error_model_raises() -> None:
    with pytest.raises(AgentInvocationError, match="error-agent"):
        _run("error-agent")
