from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from gateway.models.openai import ChatMessage

HISTORY_CONTEXT_MARKER = "[Chat messages since your last reply - for context]"
CURRENT_MESSAGE_MARKER = "[Current message - respond to this]"
AGENT_MODEL_PREFIX = "agent:"


@dataclass(frozen=True)
class AgentPrompt:
    message: str
    extra_system_prompt: str | None = None


@dataclass(frozen=True)
class _Entry:
    role: str
    sender: str
    body: str

    def render(self) -> str:
        return f"{self.sender}: {self.body}"


def extract_text_content(content: Any) -> str:
    if isinstance(content, str):
        return content
    if not isinstance(content, Sequence):
        return ""
    parts: list[str] = []
    for part in content:
        if not isinstance(part, Mapping):
            continue
        part_type = part.get("type")
        text = part.get("text")
        input_text = part.get("input_text")
        if part_type in {"text", "input_text"} and isinstance(text, str):
            parts.append(text)
        elif isinstance(input_text, str):
            parts.append(input_text)
    return "\n".join(part for part in parts if part)


def _sender_for(role: str, name: str) -> str:
    if role == "assistant":
        return "Assistant"
    if role == "user":
        return "User"
    return f"Tool:{name}" if name else "Tool"


def build_agent_prompt(messages: Sequence[ChatMessage]) -> AgentPrompt:
    """Flatten chat history into one agent message plus an optional system prompt.

    System and developer messages become the extra system prompt.  The last
    user or tool message is the current message; anything before it is
    rendered as history context.
    """
    system_parts: list[str] = []
    entries: list[_Entry] = []

    for msg in messages:
        role = msg.role.strip()
        content = extract_text_content(msg.content).strip()
        if not role or not content:
            continue
        if role in {"system", "developer"}:
            system_parts.append(content)
            continue
        normalized_role = "tool" if role == "function" else role
        if normalized_role not in {"user", "assistant", "tool"}:
            continue
        name = (msg.name or "").strip()
        entries.append(
            _Entry(role=normalized_role, sender=_sender_for(normalized_role, name), body=content)
        )

    extra_system_prompt = "\n\n".join(system_parts) if system_parts else None
    if not entries:
        return AgentPrompt(message="", extra_system_prompt=extra_system_prompt)

    current_index = next(
        (
            index
            for index in range(len(entries) - 1, -1, -1)
            if entries[index].role in {"user", "tool"}
        ),
        len(entries) - 1,
    )
    current = entries[current_index]
    history = entries[:current_index]
    if not history:
        message = current.body
    else:
        lines = [HISTORY_CONTEXT_MARKER, *(entry.render() for entry in history), ""]
        lines.extend([CURRENT_MESSAGE_MARKER, current.render()])
        message = "\n".join(lines)
    return AgentPrompt(message=message, extra_system_prompt=extra_system_prompt)


def resolve_agent_id(model: str, header_agent_id: str | None, default_agent_id: str) -> str:
    if header_agent_id and header_agent_id.strip():
        return header_agent_id.strip()
    if model.startswith(AGENT_MODEL_PREFIX):
        candidate = model.removeprefix(AGENT_MODEL_PREFIX).strip()
        if candidate:
            return candidate
    return default_agent_id


def resolve_session_key(agent_id: str, user: str | None, prefix: str = "openai") -> str:
    if user and user.strip():
        return f"agent:{agent_id}:{prefix}-user:{user.strip()}"
    return f"agent:{agent_id}:{prefix}"
