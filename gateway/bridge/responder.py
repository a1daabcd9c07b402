from dataclasses import dataclass

from gateway.agents.base import AgentInvocation, AgentInvocationError, AgentResult, AgentRunner
from gateway.models.openai import Usage
from gateway.usage.extractor import extract_usage


@dataclass(frozen=True)
class CompletionOutcome:
    content: str
    usage: Usage
    result: AgentResult


class NonStreamingResponder:
    """Awaits the whole agent run and folds it into one completion."""

    def __init__(self, agent: AgentRunner):
        self._agent = agent

    async def respond(self, invocation: AgentInvocation) -> CompletionOutcome:
        try:
            result = await self._agent.run(invocation)
        except AgentInvocationError:
            raise
        except Exception as exc:
            raise AgentInvocationError(str(exc) or type(exc).__name__) from exc
        return CompletionOutcome(
            content=result.output_text(),
            usage=extract_usage(result.usage),
            result=result,
        )
