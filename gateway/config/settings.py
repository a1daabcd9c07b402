import json as json_mod
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="AGW_", case_sensitive=False)

    api_keys: str = Field(default="dev-key", description="Comma separated API keys")
    default_model: str = "agent"
    model_catalog: str = "agent"
    agent_id: str = "main"
    stub_agent_chunk_size: int = 16
    log_level: str = "INFO"
    metrics_enabled: bool = True

    # Usage webhook
    usage_webhook_url: str | None = None
    usage_webhook_headers: str = ""
    usage_webhook_auth_header: str | None = None
    usage_webhook_batch_size: int = 1
    usage_webhook_flush_interval_ms: int = 5000
    usage_webhook_timeout_ms: int = 10000
    usage_webhook_max_retries: int = 3
    gateway_token: str | None = None

    # USD per million tokens
    usage_cost_input_per_mtok: float = 3.0
    usage_cost_output_per_mtok: float = 15.0

    @property
    def api_key_set(self) -> set[str]:
        return {item.strip() for item in self.api_keys.split(",") if item.strip()}

    @property
    def configured_models(self) -> list[str]:
        return [item.strip() for item in self.model_catalog.split(",") if item.strip()]

    @property
    def usage_webhook_enabled(self) -> bool:
        return bool(self.usage_webhook_url and self.usage_webhook_url.strip())

    @property
    def usage_webhook_header_map(self) -> dict[str, str]:
        raw = self.usage_webhook_headers.strip()
        if not raw:
            return {}
        if raw.startswith("{"):
            try:
                parsed = json_mod.loads(raw)
            except json_mod.JSONDecodeError:
                return {}
            if not isinstance(parsed, dict):
                return {}
            return {
                str(key).strip(): str(value).strip()
                for key, value in parsed.items()
                if str(key).strip()
            }
        result: dict[str, str] = {}
        for item in raw.split(","):
            item = item.strip()
            if ":" not in item:
                continue
            key, value = item.split(":", 1)
            key = key.strip()
            if not key:
                continue
            result[key] = value.strip()
        return result


@lru_cache
def get_settings() -> Settings:
    return Settings()


def clear_settings_cache() -> None:
    get_settings.cache_clear()
