import logging
from time import perf_counter, time
from uuid import uuid4

from fastapi import Request

from gateway.agents.base import AgentInvocation, AgentInvocationError, AgentResult, AgentRunner
from gateway.agents.events import AgentEventBus
from gateway.agents.prompt import build_agent_prompt, resolve_agent_id, resolve_session_key
from gateway.bridge.responder import NonStreamingResponder
from gateway.bridge.stream import StreamBridge, describe_error
from gateway.config.settings import Settings
from gateway.core.errors import AgentRunFailedError, InvalidChatRequestError
from gateway.metrics import record_completion
from gateway.models.openai import (
    ChatCompletionRequest,
    ChatCompletionResponse,
    Choice,
    ChoiceMessage,
    Usage,
)
from gateway.webhooks.payload import CostRates, build_usage_webhook_payload
from gateway.webhooks.service import UsageWebhookService

logger = logging.getLogger("agw.chat")

AGENT_ID_HEADER = "x-agent-id"


def new_run_id() -> str:
    return f"chatcmpl_{uuid4()}"


class ChatService:
    def __init__(
        self,
        settings: Settings,
        agent: AgentRunner,
        event_bus: AgentEventBus,
        usage_webhook: UsageWebhookService | None = None,
    ):
        self._settings = settings
        self._agent = agent
        self._event_bus = event_bus
        self._usage_webhook = usage_webhook
        self._responder = NonStreamingResponder(agent)
        self._cost_rates = CostRates(
            input_per_mtok=settings.usage_cost_input_per_mtok,
            output_per_mtok=settings.usage_cost_output_per_mtok,
        )

    @property
    def usage_webhook(self) -> UsageWebhookService | None:
        return self._usage_webhook

    async def handle_chat(
        self, request: Request, payload: ChatCompletionRequest
    ) -> ChatCompletionResponse:
        started = perf_counter()
        request_id = getattr(request.state, "request_id", None)
        invocation, model = self._prepare_invocation(request, payload)

        try:
            outcome = await self._responder.respond(invocation)
        except AgentInvocationError as exc:
            logger.warning(
                "chat_agent_failed",
                extra={
                    "request_id": request_id,
                    "run_id": invocation.run_id,
                    "model": model,
                    "stream": False,
                    "error": describe_error(exc),
                },
            )
            self._record_metrics(model, None, False, "error", started, Usage())
            raise AgentRunFailedError(describe_error(exc)) from exc

        self._report_usage(invocation.run_id, model, outcome.result, outcome.usage)

        latency_ms = int((perf_counter() - started) * 1000)
        logger.info(
            "chat_completed",
            extra={
                "request_id": request_id,
                "run_id": invocation.run_id,
                "model": model,
                "provider": outcome.result.provider,
                "stream": False,
                "latency_ms": latency_ms,
                "token_in": outcome.usage.prompt_tokens,
                "token_out": outcome.usage.completion_tokens,
            },
        )
        self._record_metrics(
            model, outcome.result.provider, False, "success", started, outcome.usage
        )
        return ChatCompletionResponse(
            id=invocation.run_id,
            created=int(time()),
            model=model,
            choices=[Choice(message=ChoiceMessage(content=outcome.content))],
            usage=outcome.usage,
        )

    def handle_chat_stream(self, request: Request, payload: ChatCompletionRequest) -> StreamBridge:
        """Validate and build the bridge; the run starts when the body is iterated."""
        started = perf_counter()
        request_id = getattr(request.state, "request_id", None)
        invocation, model = self._prepare_invocation(request, payload)

        def on_complete(result: AgentResult, usage: Usage) -> None:
            self._report_usage(invocation.run_id, model, result, usage)
            logger.info(
                "chat_stream_completed",
                extra={
                    "request_id": request_id,
                    "run_id": invocation.run_id,
                    "model": model,
                    "provider": result.provider,
                    "stream": True,
                    "latency_ms": int((perf_counter() - started) * 1000),
                    "token_in": usage.prompt_tokens,
                    "token_out": usage.completion_tokens,
                },
            )
            self._record_metrics(model, result.provider, True, "success", started, usage)

        def on_failure(exc: BaseException) -> None:
            self._record_metrics(model, None, True, "error", started, Usage())

        return StreamBridge(
            agent=self._agent,
            event_bus=self._event_bus,
            invocation=invocation,
            model=model,
            on_complete=on_complete,
            on_failure=on_failure,
        )

    def list_models(self) -> dict[str, object]:
        data = [
            {
                "id": model,
                "object": "model",
                "created": 0,
                "owned_by": "agent-gateway",
            }
            for model in self._settings.configured_models
        ]
        return {"object": "list", "data": data}

    def _prepare_invocation(
        self, request: Request, payload: ChatCompletionRequest
    ) -> tuple[AgentInvocation, str]:
        model = (payload.model or "").strip() or self._settings.default_model
        prompt = build_agent_prompt(payload.messages)
        if not prompt.message:
            raise InvalidChatRequestError(
                "Missing user message in `messages`.", code="missing_user_message"
            )
        agent_id = resolve_agent_id(
            model, request.headers.get(AGENT_ID_HEADER), self._settings.agent_id
        )
        invocation = AgentInvocation(
            message=prompt.message,
            extra_system_prompt=prompt.extra_system_prompt,
            session_key=resolve_session_key(agent_id, payload.user),
            run_id=new_run_id(),
            agent_id=agent_id,
            model=model,
        )
        return invocation, model

    def _report_usage(
        self, run_id: str, model: str, result: AgentResult, usage: Usage
    ) -> None:
        if self._usage_webhook is None:
            return
        self._usage_webhook.enqueue(
            build_usage_webhook_payload(
                run_id=run_id,
                model=model,
                result=result,
                usage=usage,
                rates=self._cost_rates,
            )
        )

    def _record_metrics(
        self,
        model: str,
        provider: str | None,
        streaming: bool,
        outcome: str,
        started: float,
        usage: Usage,
    ) -> None:
        if not self._settings.metrics_enabled:
            return
        record_completion(
            model=model,
            provider=provider or "unknown",
            streaming=streaming,
            outcome=outcome,
            latency_s=perf_counter() - started,
            prompt_tokens=usage.prompt_tokens,
            completion_tokens=usage.completion_tokens,
        )
