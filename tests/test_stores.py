import json

import pytest

from oauth.models import SESSION_TTL_MS, Session, now_ms
from oauth.persistence import JsonFileBackend, MemoryBackend
from oauth.stores import (
    AuthorizationCodeRegistry,
    PendingAuthorizationRegistry,
    SessionStore,
    TokenCollisionError,
)


def make_session(session_id="s1", access="a1", refresh="r1", expires_at=None):
    return Session(
        id=session_id,
        caspio_base_url="https://c1.caspio.com",
        caspio_client_id="cid",
        caspio_client_secret="secret",
        access_token=access,
        refresh_token=refresh,
        expires_at=expires_at if expires_at is not None else now_ms() + SESSION_TTL_MS,
        created_at=now_ms(),
    )


class CountingBackend(JsonFileBackend):
    def __init__(self, path):
        super().__init__(path)
        self.saves = 0

    def save(self):
        self.saves += 1
        super().save()


class TestJsonFileBackend:
    def test_round_trip(self, tmp_path):
        path = tmp_path / "data" / "sessions.json"
        backend = JsonFileBackend(path)
        session = make_session()
        backend.upsert(session)

        assert path.exists()
        assert json.loads(path.read_text())["s1"]["access_token"] == "a1"
        assert JsonFileBackend(path).load_all() == {"s1": session}

    def test_missing_file_is_empty(self, tmp_path):
        assert JsonFileBackend(tmp_path / "none.json").load_all() == {}

    def test_corrupt_file_is_empty(self, tmp_path):
        path = tmp_path / "sessions.json"
        path.write_text("{not json")
        assert JsonFileBackend(path).load_all() == {}

    def test_malformed_record_is_skipped(self, tmp_path):
        path = tmp_path / "sessions.json"
        path.write_text(json.dumps({
            "s1": {"expires_at": 9999999999999},
            "good": make_session("good").to_dict(),
        }))
        backend = JsonFileBackend(path)
        assert list(backend.load_all()) == ["good"]
        backend.upsert(make_session("other", access="a2", refresh="r2"))
        assert set(json.loads(path.read_text())) == {"good", "other"}

    def test_unknown_fields_ignored(self, tmp_path):
        path = tmp_path / "sessions.json"
        record = make_session().to_dict()
        record["legacy_field"] = "x"
        path.write_text(json.dumps({"s1": record}))
        assert JsonFileBackend(path).load_all()["s1"].caspio_client_id == "cid"

    def test_list_by_predicate(self):
        backend = MemoryBackend({"s1": make_session(), "s2": make_session("s2", "a2", "r2", expires_at=1)})
        expired = backend.list_by_predicate(lambda s: s.is_expired())
        assert [s.id for s in expired] == ["s2"]


class TestSessionStore:
    def test_load_skips_and_drops_expired(self, tmp_path):
        path = tmp_path / "sessions.json"
        backend = JsonFileBackend(path)
        backend.upsert(make_session("live", "a1", "r1"))
        backend.upsert(make_session("old", "a2", "r2", expires_at=now_ms() - 1))

        store = SessionStore(JsonFileBackend(path))
        assert store.load() == 1
        assert "old" not in store
        assert store.by_access_token("a1").id == "live"
        assert set(json.loads(path.read_text())) == {"live"}

    def test_token_indexes(self):
        store = SessionStore()
        store.add(make_session())
        assert store.by_access_token("a1").id == "s1"
        assert store.by_refresh_token("r1").id == "s1"
        assert store.by_access_token("r1") is None
        assert store.by_access_token("") is None

    def test_duplicate_id_rejected(self):
        store = SessionStore()
        store.add(make_session())
        with pytest.raises(ValueError):
            store.add(make_session())

    def test_rotation_invalidates_old_tokens(self):
        store = SessionStore()
        store.add(make_session())
        store.rotate_tokens("s1", "a2", "r2", now_ms() + SESSION_TTL_MS)

        assert store.by_access_token("a1") is None
        assert store.by_refresh_token("r1") is None
        assert store.by_access_token("a2").id == "s1"
        assert store.by_refresh_token("r2").id == "s1"

    def test_rotation_refuses_foreign_token(self):
        store = SessionStore()
        store.add(make_session("s1", "a1", "r1"))
        store.add(make_session("s2", "a2", "r2"))
        with pytest.raises(TokenCollisionError):
            store.rotate_tokens("s1", "a2", "r9", now_ms() + SESSION_TTL_MS)
        assert store.by_access_token("a1").id == "s1"

    def test_reads_check_expiry(self):
        store = SessionStore()
        session = store.add(make_session())
        assert store.get("s1", now=session.expires_at - 1) is not None
        assert store.get("s1", now=session.expires_at) is None
        assert store.by_access_token("a1", now=session.expires_at) is None

    def test_delete_clears_indexes(self):
        store = SessionStore()
        store.add(make_session())
        assert store.delete("s1")
        assert store.by_access_token("a1") is None
        assert not store.delete("s1")

    def test_sweep_rewrites_only_when_something_expired(self, tmp_path):
        path = tmp_path / "sessions.json"
        backend = CountingBackend(path)
        store = SessionStore(backend)
        session = store.add(make_session())
        assert backend.saves == 1

        assert store.sweep(now=session.expires_at - 1) == 0
        assert backend.saves == 1

        assert store.sweep(now=session.expires_at) == 1
        assert backend.saves == 2
        assert json.loads(path.read_text()) == {}


class TestPendingAuthorizationRegistry:
    def test_expires_after_ttl(self):
        registry = PendingAuthorizationRegistry(ttl_ms=1000)
        pending = registry.create("https://client/cb", state="s")
        assert registry.get(pending.id, now=pending.created_at + 999) is pending
        assert registry.get(pending.id, now=pending.created_at + 1000) is None
        assert pending.id not in registry

    def test_failures_unlimited_by_default(self):
        registry = PendingAuthorizationRegistry()
        pending = registry.create("https://client/cb")
        for _ in range(10):
            assert registry.record_failure(pending.id)
        assert pending.failed_attempts == 10

    def test_failure_cap_drops_record(self):
        registry = PendingAuthorizationRegistry()
        pending = registry.create("https://client/cb")
        assert registry.record_failure(pending.id, max_attempts=2)
        assert not registry.record_failure(pending.id, max_attempts=2)
        assert pending.id not in registry

    def test_sweep(self):
        registry = PendingAuthorizationRegistry(ttl_ms=1000)
        old = registry.create("https://client/cb")
        assert registry.sweep(now=old.created_at + 1000) == 1
        assert len(registry) == 0


class TestAuthorizationCodeRegistry:
    def test_redeem_is_single_use(self):
        codes = AuthorizationCodeRegistry()
        issued = codes.issue("s1")
        assert codes.redeem(issued.code).session_id == "s1"
        assert codes.redeem(issued.code) is None

    def test_expired_code_is_removed(self):
        codes = AuthorizationCodeRegistry(ttl_ms=1000)
        issued = codes.issue("s1")
        assert codes.redeem(issued.code, now=issued.expires_at) is None
        assert issued.code not in codes

    def test_sweep(self):
        codes = AuthorizationCodeRegistry(ttl_ms=1000)
        issued = codes.issue("s1")
        codes.issue("s2")
        assert codes.sweep(now=issued.expires_at - 1) == 0
        assert codes.sweep(now=issued.expires_at + 5000) == 2
