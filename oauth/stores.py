"""Registries shared between the OAuth endpoints and the MCP dispatcher.

- SessionStore: durable sessions, indexed by id, access token and refresh token
- PendingAuthorizationRegistry: authorize step -> credential submission bridge
- AuthorizationCodeRegistry: single-use codes bound to a session

Every method runs to completion without awaiting, so a lookup and the
mutation paired with it can never interleave with another request.
"""

import logging
from typing import Optional

from oauth.models import (
    CODE_TTL_MS,
    PENDING_TTL_MS,
    AuthorizationCode,
    PendingAuthorization,
    Session,
    generate_id,
    now_ms,
)
from oauth.persistence import MemoryBackend, SessionBackend

logger = logging.getLogger(__name__)


class TokenCollisionError(RuntimeError):
    """A freshly minted token is already bound to another live session."""


class SessionStore:
    """In-memory view of the persisted sessions with token indexes."""

    def __init__(self, backend: SessionBackend = None):
        self.backend = backend or MemoryBackend()
        self._sessions: dict[str, Session] = {}
        self._by_access: dict[str, str] = {}
        self._by_refresh: dict[str, str] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def load(self, now: int = None) -> int:
        """Populate the store from the backend, skipping expired sessions.

        Returns the number of sessions loaded.
        """
        now = now if now is not None else now_ms()
        self._sessions.clear()
        self._by_access.clear()
        self._by_refresh.clear()

        stored = self.backend.load_all()
        expired = [sid for sid, s in stored.items() if s.is_expired(now)]
        for sid, session in stored.items():
            if sid not in expired:
                self._put(session)

        if expired:
            self.backend.delete_many(expired)
        logger.info(
            f"[SESSIONS] Loaded {len(self._sessions)} sessions "
            f"({len(expired)} expired sessions skipped)"
        )
        return len(self._sessions)

    def _put(self, session: Session) -> None:
        self._sessions[session.id] = session
        if session.access_token:
            self._by_access[session.access_token] = session.id
        if session.refresh_token:
            self._by_refresh[session.refresh_token] = session.id

    def _unindex(self, session: Session) -> None:
        if self._by_access.get(session.access_token) == session.id:
            del self._by_access[session.access_token]
        if self._by_refresh.get(session.refresh_token) == session.id:
            del self._by_refresh[session.refresh_token]

    def _live(self, session_id: Optional[str], now: int = None) -> Optional[Session]:
        if not session_id:
            return None
        session = self._sessions.get(session_id)
        if session is None or session.is_expired(now):
            return None
        return session

    def get(self, session_id: str, now: int = None) -> Optional[Session]:
        return self._live(session_id, now)

    def by_access_token(self, token: str, now: int = None) -> Optional[Session]:
        if not token:
            return None
        return self._live(self._by_access.get(token), now)

    def by_refresh_token(self, token: str, now: int = None) -> Optional[Session]:
        if not token:
            return None
        return self._live(self._by_refresh.get(token), now)

    def add(self, session: Session) -> Session:
        """Insert a new session and persist it."""
        if session.id in self._sessions:
            raise ValueError(f"Session {session.id[:8]}... already exists")
        self._put(session)
        self.backend.upsert(session)
        return session

    def rotate_tokens(
        self,
        session_id: str,
        access_token: str,
        refresh_token: str,
        expires_at: int,
    ) -> Session:
        """Swap a session's token pair and persist it.

        The previous tokens stop resolving as soon as this returns.
        """
        session = self._sessions[session_id]
        for index, token in ((self._by_access, access_token), (self._by_refresh, refresh_token)):
            owner = index.get(token)
            if owner is not None and owner != session_id:
                raise TokenCollisionError("Token already bound to another session")

        self._unindex(session)
        session.access_token = access_token
        session.refresh_token = refresh_token
        session.expires_at = expires_at
        self._put(session)
        self.backend.upsert(session)
        return session

    def delete(self, session_id: str) -> bool:
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        self._unindex(session)
        self.backend.delete(session_id)
        return True

    def sweep(self, now: int = None) -> int:
        """Remove expired sessions, rewriting the backend only if any were removed."""
        now = now if now is not None else now_ms()
        expired = [sid for sid, s in self._sessions.items() if s.is_expired(now)]
        for sid in expired:
            self._unindex(self._sessions.pop(sid))
        if expired:
            self.backend.delete_many(expired)
        return len(expired)


class PendingAuthorizationRegistry:
    """Short-lived records created by the authorize endpoint."""

    def __init__(self, ttl_ms: int = PENDING_TTL_MS):
        self.ttl_ms = ttl_ms
        self._pending: dict[str, PendingAuthorization] = {}

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, pending_id: str) -> bool:
        return pending_id in self._pending

    def create(
        self,
        redirect_uri: str,
        code_challenge: str = "",
        code_challenge_method: str = "plain",
        state: str = "",
        client_id: str = "",
    ) -> PendingAuthorization:
        pending = PendingAuthorization(
            id=generate_id(),
            redirect_uri=redirect_uri,
            code_challenge=code_challenge,
            code_challenge_method=code_challenge_method,
            state=state,
            client_id=client_id,
            created_at=now_ms(),
        )
        self._pending[pending.id] = pending
        return pending

    def _expired(self, pending: PendingAuthorization, now: int) -> bool:
        return pending.created_at + self.ttl_ms <= now

    def get(self, pending_id: str, now: int = None) -> Optional[PendingAuthorization]:
        now = now if now is not None else now_ms()
        pending = self._pending.get(pending_id) if pending_id else None
        if pending is None:
            return None
        if self._expired(pending, now):
            del self._pending[pending_id]
            return None
        return pending

    def attach_credentials(self, pending_id: str, base_url: str, client_id: str, client_secret: str) -> None:
        pending = self._pending[pending_id]
        pending.caspio_base_url = base_url
        pending.caspio_client_id = client_id
        pending.caspio_client_secret = client_secret

    def record_failure(self, pending_id: str, max_attempts: int = 0) -> bool:
        """Count a failed credential check.

        Returns False when the cap was reached and the record was dropped.
        """
        pending = self._pending.get(pending_id)
        if pending is None:
            return False
        pending.failed_attempts += 1
        if max_attempts and pending.failed_attempts >= max_attempts:
            del self._pending[pending_id]
            return False
        return True

    def delete(self, pending_id: str) -> bool:
        return self._pending.pop(pending_id, None) is not None

    def sweep(self, now: int = None) -> int:
        now = now if now is not None else now_ms()
        expired = [pid for pid, p in self._pending.items() if self._expired(p, now)]
        for pid in expired:
            del self._pending[pid]
        return len(expired)


class AuthorizationCodeRegistry:
    """Single-use authorization codes."""

    def __init__(self, ttl_ms: int = CODE_TTL_MS):
        self.ttl_ms = ttl_ms
        self._codes: dict[str, AuthorizationCode] = {}

    def __len__(self) -> int:
        return len(self._codes)

    def __contains__(self, code: str) -> bool:
        return code in self._codes

    def issue(self, session_id: str, code_challenge: str = "", code_challenge_method: str = "plain") -> AuthorizationCode:
        auth_code = AuthorizationCode(
            code=generate_id(),
            session_id=session_id,
            expires_at=now_ms() + self.ttl_ms,
            code_challenge=code_challenge,
            code_challenge_method=code_challenge_method,
        )
        self._codes[auth_code.code] = auth_code
        return auth_code

    def redeem(self, code: str, now: int = None) -> Optional[AuthorizationCode]:
        """Remove and return a live code; None if unknown or expired."""
        auth_code = self._codes.pop(code, None) if code else None
        if auth_code is None or auth_code.is_expired(now):
            return None
        return auth_code

    def sweep(self, now: int = None) -> int:
        now = now if now is not None else now_ms()
        expired = [c for c, data in self._codes.items() if data.is_expired(now)]
        for c in expired:
            del self._codes[c]
        return len(expired)
