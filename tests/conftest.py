import re
import sys
from pathlib import Path
from urllib.parse import parse_qs, urlsplit

import pytest
from fastapi.testclient import TestClient

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from config import Config  # noqa: E402
from main import create_app  # noqa: E402
from oauth.validator import CredentialValidationError  # noqa: E402

BASE_URL = "https://mcp.example.com"
CASPIO_URL = "https://c1abc123.caspio.com"
REDIRECT_URI = "https://client.example.com/callback"

AUTH_ID_PATTERN = re.compile(r'name="auth_id" value="([^"]+)"')


class RecordingClient:
    """Stands in for CaspioClient; every method call is recorded.

    Methods answer from ``responses`` (None when missing) or raise ``error``.
    """

    def __init__(self, responses: dict = None, error: Exception = None):
        self.calls = []
        self.responses = responses or {}
        self.error = error
        self.closed = False

    def __getattr__(self, name):
        if name.startswith("_"):
            raise AttributeError(name)

        async def call(*args, **kwargs):
            self.calls.append((name, args, kwargs))
            if self.error is not None:
                raise self.error
            return self.responses.get(name)
        return call

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        self.closed = True


class RecordingClientFactory:
    """Builds a fresh RecordingClient per call and remembers the credentials used."""

    def __init__(self, responses: dict = None, error: Exception = None):
        self.responses = responses or {}
        self.error = error
        self.created = []

    def __call__(self, base_url, client_id, client_secret):
        client = RecordingClient(self.responses, self.error)
        self.created.append(((base_url, client_id, client_secret), client))
        return client

    @property
    def calls(self):
        return [call for _, client in self.created for call in client.calls]


class FakeValidator:
    """Accepts any credentials except the secret ``wrong-secret``."""

    def __init__(self):
        self.attempts = []

    async def validate(self, base_url, client_id, client_secret):
        self.attempts.append((base_url, client_id, client_secret))
        if client_secret == "wrong-secret":
            raise CredentialValidationError("Failed to connect to Caspio. Please check your credentials.")


@pytest.fixture
def make_config(tmp_path):
    def _make(**overrides):
        data = {"DATA_DIR": str(tmp_path / "data"), "BASE_URL": BASE_URL}
        data.update(overrides)
        return Config(data)
    return _make


@pytest.fixture
def config(make_config):
    return make_config()


@pytest.fixture
def client_factory():
    return RecordingClientFactory({
        "list_tables": ["Customers", "Orders"],
        "list_views": ["ActiveCustomers"],
        "get_table_definition": {"Name": "Customers", "Columns": []},
        "get_view_definition": {"Name": "ActiveCustomers"},
    })


@pytest.fixture
def validator():
    return FakeValidator()


@pytest.fixture
def app(config, client_factory, validator):
    return create_app(config, client_factory=client_factory, validator=validator)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


def start_authorization(client, **params) -> str:
    """Open the authorize page and return the pending authorization id."""
    query = {"response_type": "code", "client_id": "test-client", "redirect_uri": REDIRECT_URI}
    query.update(params)
    response = client.get("/oauth/authorize", params=query)
    assert response.status_code == 200
    return AUTH_ID_PATTERN.search(response.text).group(1)


def submit_credentials(client, auth_id: str, secret: str = "caspio-secret"):
    return client.post(
        "/oauth/authorize/submit",
        data={
            "auth_id": auth_id,
            "caspio_base_url": CASPIO_URL,
            "caspio_client_id": "caspio-client",
            "caspio_client_secret": secret,
        },
        follow_redirects=False,
    )


def redirect_params(response) -> dict:
    query = parse_qs(urlsplit(response.headers["location"]).query)
    return {key: values[0] for key, values in query.items()}


def obtain_tokens(client, **params) -> dict:
    """Run authorize, submit and code exchange; return the token response."""
    auth_id = start_authorization(client, **params)
    code = redirect_params(submit_credentials(client, auth_id))["code"]
    response = client.post("/oauth/token", data={"grant_type": "authorization_code", "code": code})
    assert response.status_code == 200
    return response.json()
