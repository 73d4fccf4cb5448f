from __future__ import annotations

import json
from collections.abc import Generator
from pathlib import Path
from typing import Any

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, create_engine

from app import main as app_main
from app.api.routers import access_control
from app.domain.models import Badge, BadgeRequest, BadgeRequestStatus, FallbackStore, FallbackUser, Member
from app.infra import audit, db, redis_state
from app.infra.settings import AccessControlSettings
from app.services.fallback_cache_service import (
    ExportDisabledError,
    ExportForbiddenError,
    FallbackStoreCache,
    SnapshotBuildError,
    verify_export_code,
    watch_session_commits,
)
from infra.scripts import warm_fallback_store
from infra.scripts.warm_fallback_store import WarmResult

CACHE_KEY = redis_state.FALLBACK_STORE_CACHE_KEY


class FakeRedis:
    def __init__(self) -> None:
        self._store: dict[str, str] = {}
        self.expiry: dict[str, int | None] = {}
        self.fail = False

    def set(self, key: str, value: str, ex: int | None = None) -> bool:
        if self.fail:
            raise ConnectionError("redis unavailable")
        self._store[key] = value
        self.expiry[key] = ex
        return True

    def get(self, key: str) -> str | None:
        if self.fail:
            raise ConnectionError("redis unavailable")
        return self._store.get(key)

    def delete(self, key: str) -> int:
        if self.fail:
            raise ConnectionError("redis unavailable")
        self.expiry.pop(key, None)
        return 1 if self._store.pop(key, None) is not None else 0

    def ping(self) -> bool:
        return True


class FakeClock:
    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class StubBuilder:
    def __init__(self, *serials: str) -> None:
        self.calls = 0
        self.error: Exception | None = None
        self.set_serials(*serials)

    def set_serials(self, *serials: str) -> None:
        self.payload = FallbackStore(
            users=[FallbackUser(id=f"uuid-{serial}", card_serial=serial, uuid=f"uuid-{serial}") for serial in serials]
        )

    def build(self) -> FallbackStore:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.payload


class ReporterSpy:
    def __init__(self) -> None:
        self.calls: list[tuple[BaseException, dict[str, Any]]] = []

    def __call__(self, exc: BaseException, **context: Any) -> None:
        self.calls.append((exc, context))


@pytest.fixture()
def fake_redis(monkeypatch: pytest.MonkeyPatch) -> FakeRedis:
    fake = FakeRedis()
    monkeypatch.setattr(redis_state, "get_redis", lambda: fake)
    return fake


@pytest.fixture()
def cache_engine(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> Generator[Engine, None, None]:
    db_path = tmp_path / "fallback_cache_test.db"
    test_engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )
    SQLModel.metadata.create_all(test_engine)
    monkeypatch.setattr(db, "engine", test_engine)
    monkeypatch.setattr(audit, "engine", test_engine)
    yield test_engine
    test_engine.dispose()


def _cache(
    builder: StubBuilder,
    clock: FakeClock | None = None,
    reporter: ReporterSpy | None = None,
    **overrides: Any,
) -> FallbackStoreCache:
    return FallbackStoreCache(
        builder=builder,  # type: ignore[arg-type]
        settings=AccessControlSettings(**overrides),
        clock=clock or FakeClock(),
        error_reporter=reporter or ReporterSpy(),
    )


def _cached_serials(fake_redis: FakeRedis) -> list[str]:
    envelope = json.loads(fake_redis._store[CACHE_KEY])
    return [user["card_serial"] for user in envelope["payload"]["users"]]


def test_disabled_cache_always_builds_and_never_writes(fake_redis: FakeRedis) -> None:
    builder = StubBuilder("1")
    cache = _cache(builder, export_cache_enabled=False)

    first = cache.get_payload()
    builder.set_serials("2")
    second = cache.get_payload()

    assert [user.card_serial for user in first.users] == ["1"]
    assert [user.card_serial for user in second.users] == ["2"]
    assert builder.calls == 2
    assert fake_redis._store == {}


def test_populated_cache_is_served_until_expiry(fake_redis: FakeRedis) -> None:
    builder = StubBuilder("1")
    clock = FakeClock()
    cache = _cache(builder, clock, export_cache_lifetime_seconds=120)

    cache.get_payload()
    builder.set_serials("2")
    clock.now += 119
    cached = cache.get_payload()

    assert [user.card_serial for user in cached.users] == ["1"]
    assert builder.calls == 1
    assert fake_redis.expiry[CACHE_KEY] == 120
    assert json.loads(fake_redis._store[CACHE_KEY])["expires_at"] == 1_120

    clock.now += 1
    rebuilt = cache.get_payload()

    assert [user.card_serial for user in rebuilt.users] == ["2"]
    assert builder.calls == 2
    assert _cached_serials(fake_redis) == ["2"]


def test_force_refresh_bypasses_cached_entry(fake_redis: FakeRedis) -> None:
    builder = StubBuilder("1")
    cache = _cache(builder)

    cache.get_payload()
    builder.set_serials("2")
    refreshed = cache.get_payload(force_refresh=True)

    assert [user.card_serial for user in refreshed.users] == ["2"]
    assert _cached_serials(fake_redis) == ["2"]


def test_cache_lifetime_has_a_sixty_second_floor(fake_redis: FakeRedis) -> None:
    clock = FakeClock()
    cache = _cache(StubBuilder("1"), clock, export_cache_lifetime_seconds=5)

    cache.get_payload()

    assert cache.lifetime == 60
    assert fake_redis.expiry[CACHE_KEY] == 60
    assert json.loads(fake_redis._store[CACHE_KEY])["expires_at"] == 1_060


def test_invalidate_prevents_stale_payload(fake_redis: FakeRedis) -> None:
    builder = StubBuilder("1")
    cache = _cache(builder)

    cache.get_payload()
    builder.set_serials("2")
    cache.invalidate()

    assert CACHE_KEY not in fake_redis._store
    assert [user.card_serial for user in cache.get_payload().users] == ["2"]


def test_unreadable_entry_is_treated_as_a_miss(fake_redis: FakeRedis) -> None:
    fake_redis.set(CACHE_KEY, "{not json")
    builder = StubBuilder("1")

    payload = _cache(builder).get_payload()

    assert [user.card_serial for user in payload.users] == ["1"]
    assert builder.calls == 1
    assert _cached_serials(fake_redis) == ["1"]


def test_build_failure_is_reported_and_leaves_no_entry(fake_redis: FakeRedis) -> None:
    builder = StubBuilder("1")
    builder.error = RuntimeError("database went away")
    reporter = ReporterSpy()
    cache = _cache(builder, reporter=reporter)

    with pytest.raises(SnapshotBuildError, match="Unable to build fallback export."):
        cache.get_payload()

    assert fake_redis._store == {}
    assert len(reporter.calls) == 1
    exc, context = reporter.calls[0]
    assert isinstance(exc, RuntimeError)
    assert context["operation"] == "fallback_store_build"


def test_redis_outage_still_serves_a_fresh_build(fake_redis: FakeRedis) -> None:
    fake_redis.fail = True
    builder = StubBuilder("1")
    reporter = ReporterSpy()
    cache = _cache(builder, reporter=reporter)

    payload = cache.get_payload()
    cache.invalidate()

    assert [user.card_serial for user in payload.users] == ["1"]
    assert len(reporter.calls) == 1
    assert reporter.calls[0][1]["operation"] == "fallback_store_invalidate"


def test_warm_refreshes_entry_and_swallows_build_failures(fake_redis: FakeRedis) -> None:
    builder = StubBuilder("1")
    cache = _cache(builder)

    assert cache.warm() is True
    assert _cached_serials(fake_redis) == ["1"]

    builder.error = RuntimeError("boom")
    assert cache.warm() is False
    assert _cached_serials(fake_redis) == ["1"]


def test_warm_is_noop_when_cache_disabled(fake_redis: FakeRedis) -> None:
    builder = StubBuilder("1")

    assert _cache(builder, export_cache_enabled=False).warm() is False

    assert builder.calls == 0
    assert fake_redis._store == {}


def test_run_warm_honours_refresh_toggle(fake_redis: FakeRedis) -> None:
    builder = StubBuilder("1")
    scheduled_off = AccessControlSettings(export_cache_refresh_on_warm=False)
    cache = FallbackStoreCache(builder=builder, settings=scheduled_off, clock=FakeClock())  # type: ignore[arg-type]

    assert warm_fallback_store.run_warm(scheduled_off, cache=cache) is WarmResult.SKIPPED
    assert builder.calls == 0

    assert warm_fallback_store.run_warm(scheduled_off, force=True, cache=cache) is WarmResult.WARMED
    assert builder.calls == 1

    disabled = AccessControlSettings(export_cache_enabled=False)
    assert warm_fallback_store.run_warm(disabled, force=True, cache=cache) is WarmResult.SKIPPED
    assert builder.calls == 1


def test_warm_cli_exits_non_zero_when_build_fails(
    fake_redis: FakeRedis,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    builder = StubBuilder("1")
    builder.error = RuntimeError("database went away")
    monkeypatch.setattr(
        warm_fallback_store,
        "FallbackStoreCache",
        lambda settings: _cache(builder),
    )

    assert warm_fallback_store.main(["--force"]) == 1
    assert fake_redis._store == {}

    builder.error = None
    assert warm_fallback_store.main(["--force"]) == 0
    assert _cached_serials(fake_redis) == ["1"]


def test_rolled_back_savepoint_keeps_outer_change_pending(fake_redis: FakeRedis, cache_engine: Engine) -> None:
    cache = _cache(StubBuilder("1"))
    cache.get_payload()
    unwatch = watch_session_commits(cache)
    try:
        with Session(cache_engine) as session:
            session.add(Member(username="kept", uuid="uuid-kept", roles=["member"]))
            session.flush()
            savepoint = session.begin_nested()
            session.add(Badge(name="Scratch", text_id="scratch"))
            session.flush()
            savepoint.rollback()
            session.commit()
        assert CACHE_KEY not in fake_redis._store
    finally:
        unwatch()

    with Session(cache_engine) as session:
        assert session.get(Member, 1) is not None
        assert session.get(Badge, 1) is None


def test_committed_member_changes_invalidate_the_cache(fake_redis: FakeRedis, cache_engine: Engine) -> None:
    cache = _cache(StubBuilder("1"))
    cache.get_payload()
    unwatch = watch_session_commits(cache)
    try:
        with Session(cache_engine) as session:
            session.add(Member(username="rolled", uuid="uuid-rolled", roles=["member"]))
            session.flush()
            session.rollback()
        assert CACHE_KEY in fake_redis._store

        with Session(cache_engine) as session:
            session.add(Member(username="new", uuid="uuid-new", roles=["member"]))
            session.commit()
        assert CACHE_KEY not in fake_redis._store

        cache.get_payload()
        with Session(cache_engine, expire_on_commit=False) as session:
            badge = Badge(name="Door", text_id="door")
            session.add(badge)
            session.commit()
        assert CACHE_KEY not in fake_redis._store

        cache.get_payload()
        with Session(cache_engine) as session:
            session.add(BadgeRequest(member_id=1, badge_id=badge.id))
            session.commit()
        assert CACHE_KEY not in fake_redis._store
    finally:
        unwatch()

    cache.get_payload()
    with Session(cache_engine) as session:
        session.add(Member(username="late", uuid="uuid-late", roles=["member"]))
        session.commit()
    assert CACHE_KEY in fake_redis._store


def test_verify_export_code() -> None:
    with pytest.raises(ExportDisabledError, match="Fallback export is disabled."):
        verify_export_code(AccessControlSettings(export_shared_code="  "), "anything")

    enabled = AccessControlSettings(export_shared_code="s3cret")
    for supplied in (None, "", "wrong", "S3CRET"):
        with pytest.raises(ExportForbiddenError, match="Invalid access code."):
            verify_export_code(enabled, supplied)

    verify_export_code(enabled, " s3cret ")


@pytest.fixture()
def export_client(cache_engine: Engine, fake_redis: FakeRedis) -> Generator[TestClient, None, None]:
    settings = AccessControlSettings(export_shared_code="s3cret")
    app_main.app.dependency_overrides[access_control.get_access_settings] = lambda: settings
    client = TestClient(app_main.app)
    yield client
    client.close()
    app_main.app.dependency_overrides.clear()


def _seed_export(engine: Engine) -> None:
    with Session(engine, expire_on_commit=False) as session:
        member = Member(username="u1", uuid="uuid-1", card_serial="12345", roles=["member"])
        badge = Badge(name="Door", text_id="door")
        session.add(member)
        session.add(badge)
        session.commit()
        session.add(BadgeRequest(member_id=member.id, badge_id=badge.id, status=BadgeRequestStatus.ACTIVE))
        session.commit()


def test_fallback_store_endpoint_requires_code(export_client: TestClient, cache_engine: Engine) -> None:
    missing = export_client.get("/api/v0/access-control/fallback-store")
    assert missing.status_code == 403
    assert missing.json() == {"error": "Invalid access code."}

    wrong = export_client.get("/api/v0/access-control/fallback-store", params={"code": "nope"})
    assert wrong.status_code == 403


def test_fallback_store_endpoint_returns_snapshot(
    export_client: TestClient,
    cache_engine: Engine,
    fake_redis: FakeRedis,
) -> None:
    _seed_export(cache_engine)

    by_query = export_client.get("/api/v0/access-control/fallback-store", params={"code": "s3cret"})
    assert by_query.status_code == 200
    assert by_query.headers["cache-control"] == "no-store"
    assert by_query.json() == {
        "users": [{"id": "uuid-1", "card_serial": "12345", "uuid": "uuid-1"}],
        "tools": [
            {
                "id": "perm.door.1",
                "name": "Door",
                "badge_name": "door",
                "reader_device_id": "perm.door.1",
                "activator_device_id": "perm.door.1",
                "device_id": "perm.door.1",
            }
        ],
        "assignments": [["uuid-1", "perm.door.1"]],
    }
    assert CACHE_KEY in fake_redis._store

    by_header = export_client.get(
        "/api/v0/access-control/fallback-store",
        headers={"X-Access-Control-Code": "s3cret"},
    )
    assert by_header.status_code == 200
    assert by_header.json() == by_query.json()


def test_fallback_store_endpoint_refresh_rebuilds(
    export_client: TestClient,
    cache_engine: Engine,
    fake_redis: FakeRedis,
) -> None:
    export_client.get("/api/v0/access-control/fallback-store", params={"code": "s3cret"})
    _seed_export(cache_engine)

    stale = export_client.get("/api/v0/access-control/fallback-store", params={"code": "s3cret"})
    assert stale.json()["users"] == []

    fresh = export_client.get(
        "/api/v0/access-control/fallback-store",
        params={"code": "s3cret", "refresh": "true"},
    )
    assert [user["card_serial"] for user in fresh.json()["users"]] == ["12345"]


def test_fallback_store_endpoint_disabled_without_shared_code(export_client: TestClient) -> None:
    app_main.app.dependency_overrides[access_control.get_access_settings] = lambda: AccessControlSettings()

    response = export_client.get("/api/v0/access-control/fallback-store", params={"code": "s3cret"})

    assert response.status_code == 503
    assert response.json() == {"error": "Fallback export is disabled."}


def test_fallback_store_endpoint_reports_build_failure(
    export_client: TestClient,
    fake_redis: FakeRedis,
) -> None:
    builder = StubBuilder()
    builder.error = RuntimeError("boom")
    app_main.app.dependency_overrides[access_control.get_fallback_store_cache] = lambda: _cache(builder)

    response = export_client.get("/api/v0/access-control/fallback-store", params={"code": "s3cret"})

    assert response.status_code == 500
    assert response.json() == {"error": "Unable to build fallback export."}
    assert fake_redis._store == {}
