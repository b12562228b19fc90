import json

from fastapi.testclient import TestClient

from conftest import BASE_URL
from main import create_app
from oauth.models import SESSION_TTL_MS, Session, now_ms
from oauth.persistence import JsonFileBackend


def test_health(client):
    assert client.get("/health").json() == {"status": "ok", "version": "1.0.0"}


def test_info_page(client):
    response = client.get("/")
    assert response.status_code == 200
    assert f"{BASE_URL}/mcp" in response.text


def test_cors_preflight(client):
    response = client.options(
        "/mcp",
        headers={
            "Origin": "https://claude.ai",
            "Access-Control-Request-Method": "POST",
            "Access-Control-Request-Headers": "Authorization, Content-Type",
        },
    )
    assert response.status_code == 200
    assert response.headers["access-control-allow-origin"] == "*"


def test_sessions_survive_restart(config, client_factory, validator):
    live = Session(
        id="live",
        caspio_base_url="https://c1.caspio.com",
        caspio_client_id="cid",
        caspio_client_secret="secret",
        access_token="persisted-token",
        refresh_token="persisted-refresh",
        expires_at=now_ms() + SESSION_TTL_MS,
        created_at=now_ms(),
    )
    JsonFileBackend(config.sessions_file).upsert(live)

    app = create_app(config, client_factory=client_factory, validator=validator)
    with TestClient(app) as client:
        response = client.post(
            "/mcp",
            json={"jsonrpc": "2.0", "id": 1, "method": "tools/call", "params": {"name": "caspio_list_tables"}},
            headers={"Authorization": "Bearer persisted-token"},
        )
    assert response.status_code == 200
    assert client_factory.created[0][0] == ("https://c1.caspio.com", "cid", "secret")


def test_starts_with_malformed_session_record(config, client_factory, validator):
    config.sessions_file.parent.mkdir(parents=True, exist_ok=True)
    config.sessions_file.write_text(json.dumps({"s1": {"expires_at": 9999999999999}}))

    app = create_app(config, client_factory=client_factory, validator=validator)
    with TestClient(app) as client:
        assert client.get("/health").status_code == 200
    assert len(app.state.oauth.sessions) == 0
