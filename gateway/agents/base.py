from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol

from gateway.usage.extractor import UsageRecord, usage_record_from_mapping

NO_RESPONSE_TEXT = "No response from agent."


class AgentInvocationError(Exception):
    """Raised when an agent run fails before producing a result."""


@dataclass(frozen=True)
class AgentInvocation:
    message: str
    session_key: str
    run_id: str
    extra_system_prompt: str | None = None
    agent_id: str = "main"
    model: str | None = None
    deliver: bool = False
    message_channel: str = "webchat"
    best_effort_deliver: bool = False


@dataclass(frozen=True)
class AgentPayload:
    text: str | None = None


@dataclass(frozen=True)
class AgentMeta:
    session_id: str | None = None
    provider: str | None = None
    model: str | None = None
    usage: UsageRecord | None = None


@dataclass(frozen=True)
class AgentRunMeta:
    duration_ms: int | None = None
    agent_meta: AgentMeta | None = None


@dataclass(frozen=True)
class AgentResult:
    payloads: tuple[AgentPayload, ...] = field(default_factory=tuple)
    meta: AgentRunMeta | None = None

    @property
    def usage(self) -> UsageRecord | None:
        if self.meta is None or self.meta.agent_meta is None:
            return None
        return self.meta.agent_meta.usage

    @property
    def provider(self) -> str | None:
        if self.meta is None or self.meta.agent_meta is None:
            return None
        return self.meta.agent_meta.provider

    @property
    def duration_ms(self) -> int | None:
        return self.meta.duration_ms if self.meta else None

    def output_text(self, fallback: str = NO_RESPONSE_TEXT) -> str:
        """Join non-empty payload texts with a blank line.

        ``fallback`` is used only when the run produced no payloads at all.
        """
        if not self.payloads:
            return fallback
        return "\n\n".join(payload.text for payload in self.payloads if payload.text)

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any] | None) -> "AgentResult":
        if not raw:
            return cls()
        payloads_raw = raw.get("payloads")
        payloads: list[AgentPayload] = []
        if isinstance(payloads_raw, list):
            for item in payloads_raw:
                if not isinstance(item, Mapping):
                    continue
                text = item.get("text")
                payloads.append(AgentPayload(text=text if isinstance(text, str) else None))

        meta_raw = raw.get("meta")
        if not isinstance(meta_raw, Mapping):
            return cls(payloads=tuple(payloads))
        agent_meta_raw = meta_raw.get("agentMeta")
        agent_meta: AgentMeta | None = None
        if isinstance(agent_meta_raw, Mapping):
            usage_raw = agent_meta_raw.get("usage")
            agent_meta = AgentMeta(
                session_id=_optional_str(agent_meta_raw.get("sessionId")),
                provider=_optional_str(agent_meta_raw.get("provider")),
                model=_optional_str(agent_meta_raw.get("model")),
                usage=usage_record_from_mapping(
                    usage_raw if isinstance(usage_raw, Mapping) else None
                ),
            )
        duration_raw = meta_raw.get("durationMs")
        duration_ms = (
            int(duration_raw)
            if isinstance(duration_raw, int | float) and not isinstance(duration_raw, bool)
            else None
        )
        return cls(
            payloads=tuple(payloads),
            meta=AgentRunMeta(duration_ms=duration_ms, agent_meta=agent_meta),
        )


def _optional_str(value: object) -> str | None:
    return value if isinstance(value, str) and value else None


class AgentRunner(Protocol):
    async def run(self, invocation: AgentInvocation) -> AgentResult:
        """Run the agent to completion, publishing events for ``invocation.run_id``."""
