"""Durable backing for the session store.

The store only talks to a backend through load_all / upsert / delete /
delete_many / list_by_predicate, so the JSON file can be swapped for a
key-value or relational backend without touching the store.
"""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Callable, Iterable

from oauth.models import Session

logger = logging.getLogger(__name__)


class SessionBackend:
    """Interface implemented by session persistence backends."""

    def load_all(self) -> dict[str, Session]:
        raise NotImplementedError

    def upsert(self, session: Session) -> None:
        raise NotImplementedError

    def delete(self, session_id: str) -> bool:
        raise NotImplementedError

    def delete_many(self, session_ids: Iterable[str]) -> int:
        removed = 0
        for session_id in session_ids:
            if self.delete(session_id):
                removed += 1
        return removed

    def list_by_predicate(self, predicate: Callable[[Session], bool]) -> list[Session]:
        return [s for s in self.load_all().values() if predicate(s)]


class MemoryBackend(SessionBackend):
    """Non-durable backend, used when no data directory is wanted."""

    def __init__(self, sessions: dict[str, Session] = None):
        self._records: dict[str, dict] = {
            sid: s.to_dict() for sid, s in (sessions or {}).items()
        }

    def _decode(self) -> dict[str, Session]:
        sessions = {}
        for sid, data in list(self._records.items()):
            try:
                sessions[sid] = Session.from_dict(sid, data)
            except (TypeError, ValueError):
                logger.warning(f"[SESSIONS] Skipping malformed session {sid}")
                del self._records[sid]
        return sessions

    def load_all(self) -> dict[str, Session]:
        return self._decode()

    def upsert(self, session: Session) -> None:
        self._records[session.id] = session.to_dict()

    def delete(self, session_id: str) -> bool:
        return self._records.pop(session_id, None) is not None

    def list_by_predicate(self, predicate: Callable[[Session], bool]) -> list[Session]:
        return [s for s in self._decode().values() if predicate(s)]


class JsonFileBackend(MemoryBackend):
    """One JSON document mapping session id to session record.

    The whole document is rewritten on every mutation. Writes go to a
    temporary file that is renamed over the target so a crash mid-write
    leaves the previous document intact.
    """

    def __init__(self, path: Path):
        super().__init__()
        self.path = Path(path)

    def _ensure_dir(self) -> None:
        if not self.path.parent.exists():
            self.path.parent.mkdir(parents=True, exist_ok=True)
            logger.info(f"[SESSIONS] Created data directory: {self.path.parent}")

    def load_all(self) -> dict[str, Session]:
        if not self.path.exists():
            logger.info("[SESSIONS] No existing sessions file found, starting fresh")
            self._records = {}
            return {}

        try:
            with open(self.path, "r") as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.error(f"[SESSIONS] Failed to load sessions from {self.path}: {e}")
            self._records = {}
            return {}

        if not isinstance(data, dict):
            logger.error(f"[SESSIONS] Ignoring malformed sessions file {self.path}")
            self._records = {}
            return {}

        self._records = {sid: rec for sid, rec in data.items() if isinstance(rec, dict)}
        return super().load_all()

    def save(self) -> None:
        """Rewrite the whole document."""
        try:
            self._ensure_dir()
            fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, prefix=".sessions-", suffix=".tmp")
            try:
                with os.fdopen(fd, "w") as f:
                    json.dump(self._records, f, indent=2)
                os.chmod(tmp_path, 0o600)  # Owner read/write only
                os.replace(tmp_path, self.path)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise
            logger.info(f"[SESSIONS] Saved {len(self._records)} sessions to file")
        except OSError as e:
            logger.error(f"[SESSIONS] Failed to save sessions: {e}")

    def upsert(self, session: Session) -> None:
        super().upsert(session)
        self.save()

    def delete(self, session_id: str) -> bool:
        removed = super().delete(session_id)
        if removed:
            self.save()
        return removed

    def delete_many(self, session_ids: Iterable[str]) -> int:
        removed = 0
        for session_id in session_ids:
            if MemoryBackend.delete(self, session_id):
                removed += 1
        if removed:
            self.save()
        return removed
