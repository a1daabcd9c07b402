"""Agent event stream to OpenAI SSE chunk bridge.

One ``StreamBridge`` serves one run.  It drives two independent tasks:

* the event consumer, reading the run's ``EventSubscription`` and turning
  assistant deltas into content chunks as they arrive, and
* the agent invocation, whose outcome triggers finalization.

Both only touch the bridge through its ``BridgeSession`` value, which is
replaced on every transition::

    INIT -> STREAMING -> FINALIZING -> CLOSED

CLOSED is also reachable from every other state on client disconnect.

The transition functions below are pure: they take the current session plus
an input and return the next session and the chunks to write.  The bridge is
the only writer of its ``SseChunkWriter``.

A client disconnect closes the session, drops the subscription and abandons
the writer.  The agent task is not cancelled; its result is discarded.
"""

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, replace
from enum import Enum
from time import time
from typing import Any

from gateway.agents.base import AgentInvocation, AgentResult, AgentRunner
from gateway.agents.events import AgentEvent, AgentEventBus, EventSubscription
from gateway.bridge.chunks import ChunkFactory
from gateway.bridge.sse import SseChunkWriter
from gateway.models.openai import Usage
from gateway.usage.extractor import extract_usage

logger = logging.getLogger("agw.bridge")


class BridgeState(Enum):
    INIT = "init"
    STREAMING = "streaming"
    FINALIZING = "finalizing"
    CLOSED = "closed"


@dataclass(frozen=True)
class BridgeSession:
    state: BridgeState = BridgeState.INIT
    wrote_role: bool = False
    saw_assistant_delta: bool = False
    final_result: AgentResult | None = None

    @property
    def closed(self) -> bool:
        return self.state is BridgeState.CLOSED


Chunk = dict[str, Any]
Transition = tuple[BridgeSession, list[Chunk]]
CompletionCallback = Callable[[AgentResult, Usage], None]
FailureCallback = Callable[[BaseException], None]


def begin_streaming(session: BridgeSession) -> BridgeSession:
    if session.state is not BridgeState.INIT:
        return session
    return replace(session, state=BridgeState.STREAMING)


def _role_prefix(session: BridgeSession, chunks: ChunkFactory) -> list[Chunk]:
    return [] if session.wrote_role else [chunks.role()]


def on_assistant_delta(session: BridgeSession, text: str, chunks: ChunkFactory) -> Transition:
    if session.state not in (BridgeState.INIT, BridgeState.STREAMING) or not text:
        return session, []
    out = _role_prefix(session, chunks)
    out.append(chunks.content(text))
    return (
        replace(
            session,
            state=BridgeState.STREAMING,
            wrote_role=True,
            saw_assistant_delta=True,
        ),
        out,
    )


def on_agent_success(
    session: BridgeSession, result: AgentResult, chunks: ChunkFactory
) -> Transition:
    if session.closed:
        return session, []
    out: list[Chunk] = []
    if not session.saw_assistant_delta:
        out.extend(_role_prefix(session, chunks))
        out.append(chunks.content(result.output_text()))
    out.append(chunks.final(extract_usage(result.usage)))
    return (
        replace(
            session,
            state=BridgeState.FINALIZING,
            wrote_role=True,
            final_result=result,
        ),
        out,
    )


def on_agent_failure(session: BridgeSession, description: str, chunks: ChunkFactory) -> Transition:
    if session.closed:
        return session, []
    out = _role_prefix(session, chunks)
    out.append(chunks.error(description))
    return replace(session, state=BridgeState.FINALIZING, wrote_role=True), out


def on_closed(session: BridgeSession) -> BridgeSession:
    return replace(session, state=BridgeState.CLOSED)


def describe_error(exc: BaseException) -> str:
    return str(exc) or type(exc).__name__


class StreamBridge:
    def __init__(
        self,
        *,
        agent: AgentRunner,
        event_bus: AgentEventBus,
        invocation: AgentInvocation,
        model: str,
        on_complete: CompletionCallback | None = None,
        on_failure: FailureCallback | None = None,
        writer: SseChunkWriter | None = None,
        clock: Callable[[], float] = time,
    ):
        self._agent = agent
        self._event_bus = event_bus
        self._invocation = invocation
        self._chunks = ChunkFactory(run_id=invocation.run_id, model=model, clock=clock)
        self._on_complete = on_complete
        self._on_failure = on_failure
        self._writer = writer or SseChunkWriter()
        self._session = BridgeSession()
        self._subscription: EventSubscription | None = None
        self._consumer_task: asyncio.Task[None] | None = None
        self._agent_task: asyncio.Task[None] | None = None

    @property
    def run_id(self) -> str:
        return self._invocation.run_id

    @property
    def session(self) -> BridgeSession:
        return self._session

    @property
    def writer(self) -> SseChunkWriter:
        return self._writer

    @property
    def agent_task(self) -> asyncio.Task[None] | None:
        return self._agent_task

    def start(self) -> None:
        if self._session.state is not BridgeState.INIT:
            raise RuntimeError(f"stream bridge for {self.run_id} already started")
        self._subscription = self._event_bus.subscribe(self.run_id)
        self._session = begin_streaming(self._session)
        self._consumer_task = asyncio.create_task(self._consume(self._subscription))
        self._agent_task = asyncio.create_task(self._invoke())

    async def stream(self) -> AsyncIterator[str]:
        """Response body: start the run and relay frames until ``[DONE]``.

        Starlette cancels or closes this generator when the client goes
        away; that is the disconnect signal.
        """
        if self._session.state is BridgeState.INIT:
            self.start()
        try:
            async for frame in self._writer.frames():
                yield frame
        finally:
            if not self._writer.done:
                self.disconnect()

    def disconnect(self) -> None:
        if self._session.closed:
            return
        self._session = on_closed(self._session)
        self._teardown()
        self._writer.abandon()
        logger.info("chat_stream_client_disconnected", extra={"run_id": self.run_id})

    async def _consume(self, subscription: EventSubscription) -> None:
        async for event in subscription:
            self._handle_event(event)

    def _handle_event(self, event: AgentEvent) -> None:
        if event.run_id != self.run_id or event.stream != "assistant":
            return
        self._session, chunks = on_assistant_delta(
            self._session, event.assistant_text, self._chunks
        )
        self._emit(chunks)

    def _drain_pending(self) -> None:
        if self._subscription is None:
            return
        while (event := self._subscription.get_nowait()) is not None:
            self._handle_event(event)

    async def _invoke(self) -> None:
        try:
            result = await self._agent.run(self._invocation)
        except Exception as exc:
            self._finish_failure(exc)
        else:
            self._finish_success(result)

    def _finish_success(self, result: AgentResult) -> None:
        if self._session.closed:
            logger.debug("agent_result_discarded", extra={"run_id": self.run_id})
            return
        self._drain_pending()
        self._session, chunks = on_agent_success(self._session, result, self._chunks)
        self._emit(chunks)
        usage = extract_usage(result.usage)
        if self._on_complete is not None:
            self._run_hook(self._on_complete, result, usage)
        self._close_stream()

    def _finish_failure(self, exc: Exception) -> None:
        if self._session.closed:
            logger.debug(
                "agent_error_discarded",
                extra={"run_id": self.run_id, "error": describe_error(exc)},
            )
            return
        self._drain_pending()
        description = describe_error(exc)
        self._session, chunks = on_agent_failure(self._session, description, self._chunks)
        self._emit(chunks)
        self._event_bus.publish(
            AgentEvent(
                run_id=self.run_id,
                stream="lifecycle",
                data={"phase": "error", "error": description},
            )
        )
        logger.warning(
            "chat_stream_agent_failed",
            extra={"run_id": self.run_id, "error": description},
        )
        if self._on_failure is not None:
            self._run_hook(self._on_failure, exc)
        self._close_stream()

    def _run_hook(self, hook: Callable[..., None], *args: Any) -> None:
        try:
            hook(*args)
        except Exception as exc:
            logger.warning(
                "chat_stream_hook_failed",
                extra={"run_id": self.run_id, "error": describe_error(exc)},
            )

    def _close_stream(self) -> None:
        self._session = on_closed(self._session)
        self._teardown()
        self._writer.write_done()

    def _teardown(self) -> None:
        if self._subscription is not None:
            self._subscription.close()

    def _emit(self, chunks: list[Chunk]) -> None:
        for chunk in chunks:
            self._writer.write(chunk)
