import pytest
from fastapi.testclient import TestClient

from gateway.config.settings import clear_settings_cache
from gateway.main import create_app


@pytest.fixture
def client(monkeypatch: pytest.MonkeyPatch) -> TestClient:
    monkeypatch.setenv("AGW_API_KEYS", "test-key")
    monkeypatch.delenv("AGW_USAGE_WEBHOOK_URL", raising=False)
    monkeypatch.delenv("AGW_MODEL_CATALOG", raising=False)
    clear_settings_cache()
    app = create_app()
    return TestClient(app)


@pytest.fixture
def auth_headers() -> dict[str, str]:
    return {"Authorization": "Bearer test-key"}
