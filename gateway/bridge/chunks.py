from collections.abc import Callable
from dataclasses import dataclass
from time import time
from typing import Any

from gateway.models.openai import Usage


@dataclass(frozen=True)
class ChunkFactory:
    """Builds ``chat.completion.chunk`` objects for one run."""

    run_id: str
    model: str
    clock: Callable[[], float] = time

    def _chunk(self, choice: dict[str, Any], **extra: Any) -> dict[str, Any]:
        return {
            "id": self.run_id,
            "object": "chat.completion.chunk",
            "created": int(self.clock()),
            "model": self.model,
            "choices": [{"index": 0, **choice}],
            **extra,
        }

    def role(self) -> dict[str, Any]:
        return self._chunk({"delta": {"role": "assistant"}})

    def content(self, text: str) -> dict[str, Any]:
        return self._chunk({"delta": {"content": text}, "finish_reason": None})

    def final(self, usage: Usage) -> dict[str, Any]:
        return self._chunk({"delta": {}, "finish_reason": "stop"}, usage=usage.model_dump())

    def error(self, description: str) -> dict[str, Any]:
        return self._chunk(
            {"delta": {"content": f"Error: {description}"}, "finish_reason": "stop"}
        )
