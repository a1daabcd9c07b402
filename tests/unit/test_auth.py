def test_missing_bearer_token_returns_401(client) -> None:
    response = client.post(
        "/v1/chat/completions",
        json={"model": "agent", "messages": [{"role": "user", "content": "hello"}]},
    )
    assert response.status_code == 401
    body = response.json()
    assert body["error"]["code"] == "auth_missing"
    assert body["error"]["type"] == "invalid_request_error"


def test_invalid_bearer_token_returns_401(client, auth_headers) -> None:
    headers = dict(auth_headers)
    headers["Authorization"] = "Bearer wrong"
    response = client.post(
        "/v1/chat/completions",
        headers=headers,
        json={"model": "agent", "messages": [{"role": "user", "content": "hello"}]},
    )
    assert response.status_code == 401
    assert response.json()["error"]["code"] == "auth_invalid"


def test_auth_error_carries_request_id(client) -> None:
    response = client.get("/v1/models", headers={"x-request-id": "req-auth-1"})
    assert response.status_code == 401
    assert response.headers["x-request-id"] == "req-auth-1"
    assert response.json()["error"]["request_id"] == "req-auth-1"


def test_healthz_bypasses_auth(client) -> None:
    assert client.get("/healthz").status_code == 200
