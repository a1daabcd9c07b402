from starlette.datastructures import Headers
from starlette.types import ASGIApp, Receive, Scope, Send

from gateway.config.settings import get_settings
from gateway.core.errors import app_error_response

BYPASS_PATHS = {
    "/healthz",
    "/metrics",
    "/openapi.json",
    "/docs",
    "/docs/oauth2-redirect",
}


class AuthMiddleware:
    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or scope["path"] in BYPASS_PATHS:
            await self.app(scope, receive, send)
            return

        state = scope.setdefault("state", {})
        request_id = state.get("request_id", "")
        settings = get_settings()

        auth_header = Headers(scope=scope).get("authorization", "")
        if not auth_header.startswith("Bearer "):
            response = app_error_response(
                401, "auth_missing", "invalid_request_error", "Missing bearer token", request_id
            )
            await response(scope, receive, send)
            return

        token = auth_header.removeprefix("Bearer ").strip()
        if token not in settings.api_key_set:
            response = app_error_response(
                401, "auth_invalid", "invalid_request_error", "Invalid API key", request_id
            )
            await response(scope, receive, send)
            return

        state["api_token"] = token
        await self.app(scope, receive, send)
