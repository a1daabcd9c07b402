from dataclasses import dataclass
from typing import Any
from uuid import uuid4

from starlette.requests import HTTPConnection
from starlette.responses import JSONResponse


@dataclass
class ErrorEnvelope:
    """OpenAI-shaped error body; ``code`` is omitted when unset."""

    message: str
    type: str
    request_id: str
    code: str | None = None

    def as_dict(self) -> dict[str, Any]:
        error: dict[str, Any] = {"message": self.message, "type": self.type}
        if self.code is not None:
            error["code"] = self.code
        error["request_id"] = self.request_id
        return {"error": error}


class AppError(Exception):
    def __init__(self, status_code: int, code: str, error_type: str, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.error_type = error_type
        self.message = message


class InvalidChatRequestError(AppError):
    def __init__(self, message: str, code: str = "invalid_request"):
        super().__init__(400, code, "invalid_request_error", message)


class AgentRunFailedError(AppError):
    def __init__(self, message: str):
        super().__init__(500, "agent_run_failed", "api_error", message)


def request_id_from_request(request: HTTPConnection) -> str:
    state_id = getattr(request.state, "request_id", None)
    header_id = request.headers.get("x-request-id")
    return state_id or header_id or str(uuid4())


def app_error_response(
    status_code: int, code: str | None, error_type: str, message: str, request_id: str
) -> JSONResponse:
    envelope = ErrorEnvelope(message=message, type=error_type, request_id=request_id, code=code)
    response = JSONResponse(status_code=status_code, content=envelope.as_dict())
    response.headers["x-request-id"] = request_id
    return response
