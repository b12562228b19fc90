"""Periodic sweep of expired sessions, pending authorizations and codes."""

import asyncio
import logging
from typing import Optional

from oauth.models import now_ms
from oauth.stores import AuthorizationCodeRegistry, PendingAuthorizationRegistry, SessionStore

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_SECONDS = 60.0


class Janitor:
    """Background task expiring entries across all three registries."""

    def __init__(
        self,
        sessions: SessionStore,
        pending: PendingAuthorizationRegistry,
        codes: AuthorizationCodeRegistry,
        interval: float = DEFAULT_INTERVAL_SECONDS,
    ):
        self.sessions = sessions
        self.pending = pending
        self.codes = codes
        self.interval = interval
        self._task: Optional[asyncio.Task] = None

    def sweep(self, now: int = None) -> dict:
        """Run one sweep and return how many entries each registry dropped."""
        now = now if now is not None else now_ms()
        removed = {
            "sessions": self.sessions.sweep(now),
            "pending": self.pending.sweep(now),
            "codes": self.codes.sweep(now),
        }
        if any(removed.values()):
            logger.info(
                f"[JANITOR] Cleaned up {removed['sessions']} sessions, "
                f"{removed['pending']} pending authorizations, {removed['codes']} codes"
            )
        return removed

    async def run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                self.sweep()
            except Exception:
                logger.exception("[JANITOR] Sweep failed")

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run())
        return self._task

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
