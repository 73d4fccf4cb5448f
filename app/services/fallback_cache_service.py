from __future__ import annotations

import hmac
import json
import time
from collections.abc import Callable
from typing import Any

from pydantic import ValidationError
from sqlalchemy import event
from sqlalchemy.orm import Session as OrmSession
from sqlalchemy.orm import SessionTransaction

from app.domain.models import Badge, BadgeRequest, FallbackStore, Member, MemberProfile
from app.infra import redis_state
from app.infra.error_sink import ErrorReporter, report_exception
from app.infra.logging import get_logger
from app.infra.settings import AccessControlSettings, get_settings
from app.services.fallback_store_service import FallbackStoreBuilder

logger = get_logger(__name__)

TRACKED_MODELS: tuple[type, ...] = (Member, MemberProfile, Badge, BadgeRequest)
_PENDING_INVALIDATION_KEY = "fallback_store_dirty"


class FallbackStoreError(Exception):
    pass


class ExportDisabledError(FallbackStoreError):
    pass


class ExportForbiddenError(FallbackStoreError):
    pass


class SnapshotBuildError(FallbackStoreError):
    pass


def verify_export_code(settings: AccessControlSettings, supplied: str | None) -> None:
    expected = settings.export_shared_code.strip()
    if not expected:
        raise ExportDisabledError("Fallback export is disabled.")
    candidate = (supplied or "").strip()
    if not candidate or not hmac.compare_digest(expected.encode("utf-8"), candidate.encode("utf-8")):
        raise ExportForbiddenError("Invalid access code.")


class FallbackStoreCache:
    def __init__(
        self,
        *,
        builder: FallbackStoreBuilder | None = None,
        settings: AccessControlSettings | None = None,
        clock: Callable[[], float] | None = None,
        error_reporter: ErrorReporter | None = None,
        cache_key: str = redis_state.FALLBACK_STORE_CACHE_KEY,
    ) -> None:
        self._settings = settings or get_settings()
        self._builder = builder or FallbackStoreBuilder(settings=self._settings)
        self._clock = clock or time.time
        self._report = error_reporter or report_exception
        self._cache_key = cache_key

    @property
    def caching_enabled(self) -> bool:
        return self._settings.export_cache_enabled

    @property
    def lifetime(self) -> int:
        return self._settings.effective_cache_lifetime

    def get_payload(self, force_refresh: bool = False) -> FallbackStore:
        if not self.caching_enabled:
            return self._build()

        if not force_refresh:
            cached = self._read()
            if cached is not None:
                return cached

        payload = self._build()
        self._write(payload)
        return payload

    def warm(self) -> bool:
        if not self.caching_enabled:
            return False
        try:
            self.get_payload(force_refresh=True)
        except SnapshotBuildError:
            logger.warning("fallback_store_warm_failed", cache_key=self._cache_key)
            return False
        return True

    def invalidate(self) -> None:
        try:
            redis_state.delete_key(self._cache_key)
        except Exception as exc:
            self._report(exc, operation="fallback_store_invalidate", cache_key=self._cache_key)
            return
        logger.info("fallback_store_invalidated", cache_key=self._cache_key)

    def _build(self) -> FallbackStore:
        started = self._clock()
        try:
            payload = self._builder.build()
        except Exception as exc:
            self._report(exc, operation="fallback_store_build")
            raise SnapshotBuildError("Unable to build fallback export.") from exc
        logger.info(
            "fallback_store_built",
            users=len(payload.users),
            tools=len(payload.tools),
            assignments=len(payload.assignments),
            elapsed_seconds=round(self._clock() - started, 3),
        )
        return payload

    def _read(self) -> FallbackStore | None:
        try:
            raw = redis_state.read_text(self._cache_key)
        except Exception as exc:
            logger.error("fallback_store_cache_read_failed", cache_key=self._cache_key, error=str(exc))
            return None
        if raw is None:
            return None
        try:
            envelope: dict[str, Any] = json.loads(raw)
            expires_at = float(envelope["expires_at"])
            payload = FallbackStore.model_validate(envelope["payload"])
        except (ValueError, KeyError, TypeError, ValidationError):
            logger.warning("fallback_store_cache_unreadable", cache_key=self._cache_key)
            return None
        if expires_at <= self._clock():
            return None
        return payload

    def _write(self, payload: FallbackStore) -> None:
        lifetime = self.lifetime
        envelope = {
            "expires_at": self._clock() + lifetime,
            "payload": payload.export_dict(),
        }
        try:
            redis_state.write_text(
                self._cache_key,
                json.dumps(envelope, sort_keys=True, separators=(",", ":")),
                ttl_seconds=lifetime,
            )
        except Exception as exc:
            logger.error(
                "fallback_store_cache_write_failed",
                cache_key=self._cache_key,
                error=str(exc),
            )


def watch_session_commits(cache: FallbackStoreCache) -> Callable[[], None]:
    def _collect(session: OrmSession, _flush_context: object) -> None:
        touched = (*session.new, *session.dirty, *session.deleted)
        if any(isinstance(item, TRACKED_MODELS) for item in touched):
            session.info[_PENDING_INVALIDATION_KEY] = True

    def _after_commit(session: OrmSession) -> None:
        if session.info.pop(_PENDING_INVALIDATION_KEY, False):
            cache.invalidate()

    def _after_rollback(session: OrmSession, previous_transaction: SessionTransaction) -> None:
        if previous_transaction.nested:
            return
        session.info.pop(_PENDING_INVALIDATION_KEY, None)

    event.listen(OrmSession, "after_flush", _collect)
    event.listen(OrmSession, "after_commit", _after_commit)
    event.listen(OrmSession, "after_soft_rollback", _after_rollback)

    def _unwatch() -> None:
        event.remove(OrmSession, "after_flush", _collect)
        event.remove(OrmSession, "after_commit", _after_commit)
        event.remove(OrmSession, "after_soft_rollback", _after_rollback)

    return _unwatch
