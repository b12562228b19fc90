"""Records held by the OAuth registries.

All timestamps are epoch milliseconds.
"""

import secrets
import time
from dataclasses import asdict, dataclass, fields
from typing import Optional

SESSION_TTL_MS = 24 * 60 * 60 * 1000  # 24 hours
PENDING_TTL_MS = 10 * 60 * 1000  # 10 minutes
CODE_TTL_MS = 10 * 60 * 1000  # 10 minutes


def now_ms() -> int:
    return int(time.time() * 1000)


def generate_id() -> str:
    """Opaque 256-bit identifier used for ids, codes and tokens."""
    return secrets.token_urlsafe(32)


@dataclass
class Session:
    """Backend credentials bound to an issued access/refresh token pair."""

    id: str
    caspio_base_url: str
    caspio_client_id: str
    caspio_client_secret: str
    access_token: str = ""
    refresh_token: str = ""
    expires_at: int = 0
    created_at: int = 0

    def is_expired(self, now: int = None) -> bool:
        return self.expires_at <= (now if now is not None else now_ms())

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, session_id: str, data: dict) -> "Session":
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}
        values["id"] = session_id
        return cls(**values)


@dataclass
class PendingAuthorization:
    """State bridging the authorize step and credential submission."""

    id: str
    redirect_uri: str
    code_challenge: str = ""
    code_challenge_method: str = "plain"
    state: str = ""
    client_id: str = ""
    created_at: int = 0
    caspio_base_url: Optional[str] = None
    caspio_client_id: Optional[str] = None
    caspio_client_secret: Optional[str] = None
    failed_attempts: int = 0


@dataclass
class AuthorizationCode:
    """Single-use code exchanged for session tokens."""

    code: str
    session_id: str
    expires_at: int
    code_challenge: str = ""
    code_challenge_method: str = "plain"

    def is_expired(self, now: int = None) -> bool:
        return self.expires_at <= (now if now is not None else now_ms())
