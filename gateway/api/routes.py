from fastapi import APIRouter, Request
from fastapi.responses import StreamingResponse

from gateway.metrics import metrics_router
from gateway.models.openai import ChatCompletionRequest, ChatCompletionResponse
from gateway.services.chat_service import ChatService

router = APIRouter()
router.include_router(metrics_router)


@router.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/v1/models")
def list_models(request: Request) -> dict[str, object]:
    service: ChatService = request.app.state.chat_service
    return service.list_models()


@router.post(
    "/v1/chat/completions",
    response_model=ChatCompletionResponse,
    response_model_exclude_none=True,
)
async def chat_completions(
    request: Request, payload: ChatCompletionRequest
) -> ChatCompletionResponse | StreamingResponse:
    service: ChatService = request.app.state.chat_service
    if payload.stream:
        bridge = service.handle_chat_stream(request, payload)
        return StreamingResponse(
            bridge.stream(),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
                "X-Accel-Buffering": "no",
            },
        )
    return await service.handle_chat(request, payload)
