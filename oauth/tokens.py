"""Token issuance and rotation for OAuth sessions.

Access and refresh tokens are opaque 256-bit random values. They are only
meaningful through the SessionStore indexes, so rotating or deleting a
session invalidates them immediately.
"""

import base64
import hashlib
import hmac
import logging
from typing import Optional

from oauth.models import SESSION_TTL_MS, Session, generate_id, now_ms
from oauth.stores import AuthorizationCodeRegistry, SessionStore

logger = logging.getLogger(__name__)

ACCESS_TOKEN_EXPIRE_SECONDS = SESSION_TTL_MS // 1000
SCOPES = ["caspio:read", "caspio:write", "caspio:admin"]
SCOPE = " ".join(SCOPES)


class TokenError(Exception):
    """OAuth error answered by the token endpoint."""

    def __init__(self, error: str, description: str = None, status_code: int = 400):
        super().__init__(description or error)
        self.error = error
        self.description = description
        self.status_code = status_code

    def to_dict(self) -> dict:
        body = {"error": self.error}
        if self.description:
            body["error_description"] = self.description
        return body


def verify_code_challenge(verifier: str, challenge: str, method: str) -> bool:
    """Check a PKCE verifier against the stored challenge (plain or S256)."""
    if method == "S256":
        expected = base64.urlsafe_b64encode(
            hashlib.sha256(verifier.encode()).digest()
        ).rstrip(b"=").decode()
    elif method == "plain":
        expected = verifier
    else:
        return False
    return hmac.compare_digest(expected, challenge)


class TokenIssuer:
    """Mints and rotates session tokens."""

    def __init__(
        self,
        sessions: SessionStore,
        codes: AuthorizationCodeRegistry,
        enforce_pkce: bool = False,
        ttl_ms: int = SESSION_TTL_MS,
    ):
        self.sessions = sessions
        self.codes = codes
        self.enforce_pkce = enforce_pkce
        self.ttl_ms = ttl_ms

    def _token_response(self, session: Session) -> dict:
        return {
            "access_token": session.access_token,
            "token_type": "Bearer",
            "expires_in": self.ttl_ms // 1000,
            "refresh_token": session.refresh_token,
            "scope": SCOPE,
        }

    def _rotate(self, session: Session) -> Session:
        expires_at = max(session.expires_at, now_ms() + self.ttl_ms)
        return self.sessions.rotate_tokens(session.id, generate_id(), generate_id(), expires_at)

    def exchange_code(self, code: Optional[str], code_verifier: Optional[str] = None) -> dict:
        """authorization_code grant."""
        # Removed on lookup, so a code can never be redeemed twice
        auth_code = self.codes.redeem(code)
        if auth_code is None:
            logger.info("[TOKEN] Rejected unknown or expired authorization code")
            raise TokenError("invalid_grant", "Invalid or expired code")

        if auth_code.code_challenge:
            if code_verifier:
                if not verify_code_challenge(code_verifier, auth_code.code_challenge, auth_code.code_challenge_method):
                    logger.info("[TOKEN] PKCE verification failed")
                    raise TokenError("invalid_grant", "PKCE verification failed")
            elif self.enforce_pkce:
                raise TokenError("invalid_grant", "code_verifier required")

        session = self.sessions.get(auth_code.session_id)
        if session is None:
            raise TokenError("invalid_grant", "Session not found")

        session = self._rotate(session)
        logger.info(f"[TOKEN] Access token issued for session {session.id[:8]}...")
        return self._token_response(session)

    def refresh(self, refresh_token: Optional[str]) -> dict:
        """refresh_token grant: rotates both tokens."""
        if not refresh_token:
            raise TokenError("invalid_request", "refresh_token required")

        session = self.sessions.by_refresh_token(refresh_token)
        if session is None:
            logger.info("[TOKEN] Rejected unknown refresh token")
            raise TokenError("invalid_grant", "Invalid refresh token")

        session = self._rotate(session)
        logger.info(f"[TOKEN] Tokens rotated for session {session.id[:8]}...")
        return self._token_response(session)

    def revoke(self, token: str) -> bool:
        """Delete the session owning an access or refresh token."""
        session = self.sessions.by_access_token(token) or self.sessions.by_refresh_token(token)
        if session is None:
            return False
        self.sessions.delete(session.id)
        logger.info(f"[TOKEN] Session {session.id[:8]}... revoked")
        return True
