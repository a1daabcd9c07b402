import asyncio
from time import perf_counter

from gateway.agents.base import AgentInvocation, AgentInvocationError, AgentResult
from gateway.agents.events import AgentEvent, AgentEventBus


class StubAgent:
    """Deterministic agent used by default and in tests.

    Model name prefixes select behaviour: ``error-`` fails the run,
    ``silent-`` returns payloads without streaming any assistant deltas,
    ``empty-`` returns no payloads at all.
    """

    def __init__(
        self,
        event_bus: AgentEventBus,
        chunk_size: int = 16,
        delay_s: float = 0.0,
        provider: str = "stub",
    ):
        self._event_bus = event_bus
        self._chunk_size = max(chunk_size, 1)
        self._delay_s = delay_s
        self._provider = provider

    async def run(self, invocation: AgentInvocation) -> AgentResult:
        started = perf_counter()
        model = invocation.model or "agent"
        self._emit(invocation.run_id, "lifecycle", {"phase": "start"})

        if model.startswith("error-"):
            raise AgentInvocationError(f"stub agent failure for model {model}")

        answer = f"Stub response: {invocation.message[:120]}"
        if not model.startswith(("silent-", "empty-")):
            for idx in range(0, len(answer), self._chunk_size):
                await asyncio.sleep(self._delay_s)
                self._emit(
                    invocation.run_id,
                    "assistant",
                    {"delta": answer[idx : idx + self._chunk_size]},
                )

        prompt_words = len(invocation.message.split()) + len(
            (invocation.extra_system_prompt or "").split()
        )
        input_tokens = max(prompt_words, 1)
        output_tokens = max(len(answer.split()), 1)
        self._emit(invocation.run_id, "lifecycle", {"phase": "end"})

        payloads = [] if model.startswith("empty-") else [{"text": answer}]
        # same shape a remote agent run reports
        return AgentResult.from_mapping(
            {
                "payloads": payloads,
                "meta": {
                    "durationMs": int((perf_counter() - started) * 1000),
                    "agentMeta": {
                        "sessionId": invocation.session_key,
                        "provider": self._provider,
                        "model": model,
                        "usage": {
                            "input": input_tokens,
                            "output": output_tokens,
                            "cacheRead": 0,
                            "cacheWrite": 0,
                            "total": input_tokens + output_tokens,
                        },
                    },
                },
            }
        )

    def _emit(self, run_id: str, stream: str, data: dict[str, object]) -> None:
        self._event_bus.publish(AgentEvent(run_id=run_id, stream=stream, data=data))  # type: ignore[arg-type]
