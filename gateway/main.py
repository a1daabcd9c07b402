from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from gateway.agents.base import AgentRunner
from gateway.agents.events import AgentEventBus
from gateway.agents.stub import StubAgent
from gateway.api.routes import router
from gateway.config.settings import get_settings
from gateway.core.errors import AppError, app_error_response, request_id_from_request
from gateway.core.logging import configure_logging
from gateway.middleware.auth import AuthMiddleware
from gateway.middleware.request_id import RequestIDMiddleware
from gateway.services.chat_service import ChatService
from gateway.webhooks.deliverer import WebhookDeliverer
from gateway.webhooks.service import UsageWebhookService


def create_app(
    agent: AgentRunner | None = None,
    event_bus: AgentEventBus | None = None,
    webhook_deliverer: WebhookDeliverer | None = None,
) -> FastAPI:
    settings = get_settings()
    configure_logging(settings.log_level)

    bus = event_bus or AgentEventBus()
    runner = agent or StubAgent(event_bus=bus, chunk_size=settings.stub_agent_chunk_size)
    usage_webhook = UsageWebhookService.from_settings(settings, deliverer=webhook_deliverer)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        if usage_webhook is not None:
            await usage_webhook.start()
        try:
            yield
        finally:
            if usage_webhook is not None:
                await usage_webhook.stop()

    app = FastAPI(title="Agent Completions Gateway", version="0.1.0", lifespan=lifespan)

    app.add_middleware(AuthMiddleware)
    app.add_middleware(RequestIDMiddleware)

    app.state.event_bus = bus
    app.state.chat_service = ChatService(
        settings=settings,
        agent=runner,
        event_bus=bus,
        usage_webhook=usage_webhook,
    )

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
        request_id = request_id_from_request(request)
        return app_error_response(
            exc.status_code, exc.code, exc.error_type, exc.message, request_id
        )

    @app.exception_handler(RequestValidationError)
    async def validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        request_id = request_id_from_request(request)
        return app_error_response(
            422, "request_validation_failed", "invalid_request_error", str(exc), request_id
        )

    @app.exception_handler(Exception)
    async def unhandled_handler(request: Request, _: Exception) -> JSONResponse:
        request_id = request_id_from_request(request)
        return app_error_response(
            500, "internal_error", "api_error", "Internal server error", request_id
        )

    app.include_router(router)
    return app


app = create_app()
