"""Process-wide OAuth state, built once per app and injected into handlers."""

from dataclasses import dataclass

from fastapi import Request

from config import Config
from oauth.janitor import Janitor
from oauth.persistence import JsonFileBackend, SessionBackend
from oauth.stores import AuthorizationCodeRegistry, PendingAuthorizationRegistry, SessionStore
from oauth.tokens import TokenIssuer
from oauth.validator import ClientFactory, CredentialValidator, make_client_factory


@dataclass
class OAuthContext:
    config: Config
    sessions: SessionStore
    pending: PendingAuthorizationRegistry
    codes: AuthorizationCodeRegistry
    issuer: TokenIssuer
    validator: CredentialValidator
    client_factory: ClientFactory
    janitor: Janitor

    @property
    def server_url(self) -> str:
        return self.config.base_url


def build_context(
    config: Config,
    backend: SessionBackend = None,
    client_factory: ClientFactory = None,
    validator: CredentialValidator = None,
) -> OAuthContext:
    """Wire the registries together and load persisted sessions."""
    sessions = SessionStore(backend or JsonFileBackend(config.sessions_file))
    sessions.load()
    pending = PendingAuthorizationRegistry()
    codes = AuthorizationCodeRegistry()
    client_factory = client_factory or make_client_factory(config.caspio_timeout)

    return OAuthContext(
        config=config,
        sessions=sessions,
        pending=pending,
        codes=codes,
        issuer=TokenIssuer(sessions, codes, enforce_pkce=config.enforce_pkce),
        validator=validator or CredentialValidator(client_factory),
        client_factory=client_factory,
        janitor=Janitor(sessions, pending, codes, interval=config.sweep_interval),
    )


def get_context(request: Request) -> OAuthContext:
    """FastAPI dependency returning the app's OAuth state."""
    return request.app.state.oauth
