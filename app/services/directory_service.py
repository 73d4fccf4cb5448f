from __future__ import annotations

from collections.abc import Iterable

from sqlalchemy import func
from sqlmodel import Session, col, select

from app.domain.models import Badge, BadgeRequest, BadgeRequestStatus, Member, MemberProfile
from app.domain.permissions import fold_permission_code
from app.infra.db import open_session

MAIN_PROFILE_TYPE = "main"


class MemberDirectory:
    def _session(self) -> Session:
        return open_session()

    def get_by_uuid(self, member_uuid: str) -> Member | None:
        with self._session() as session:
            statement = select(Member).where(Member.uuid == member_uuid).limit(1)
            return session.exec(statement).first()

    def get_by_email(self, email: str) -> Member | None:
        with self._session() as session:
            statement = (
                select(Member)
                .where(func.lower(func.trim(col(Member.email))) == email.strip().lower())
                .order_by(col(Member.id))
                .limit(1)
            )
            return session.exec(statement).first()

    def get_by_serial(self, serial: str) -> Member | None:
        with self._session() as session:
            direct = session.exec(
                select(Member).where(Member.card_serial == serial).order_by(col(Member.id)).limit(1)
            ).first()
            if direct is not None:
                return direct

            profiles = session.exec(
                select(MemberProfile)
                .where(MemberProfile.profile_type == MAIN_PROFILE_TYPE)
                .where(MemberProfile.card_serial == serial)
                .order_by(col(MemberProfile.id))
            ).all()
            for profile in profiles:
                owner = session.get(Member, profile.member_id)
                if owner is not None:
                    return owner
        return None

    def list_active(self) -> list[Member]:
        with self._session() as session:
            statement = select(Member).where(col(Member.is_active).is_(True)).order_by(col(Member.id))
            return list(session.exec(statement).all())

    def profile_serials(self, member_ids: Iterable[int]) -> dict[int, str]:
        ids = sorted(set(member_ids))
        if not ids:
            return {}
        serials: dict[int, str] = {}
        with self._session() as session:
            profiles = session.exec(
                select(MemberProfile)
                .where(MemberProfile.profile_type == MAIN_PROFILE_TYPE)
                .where(col(MemberProfile.member_id).in_(ids))
                .order_by(col(MemberProfile.member_id), col(MemberProfile.id))
            ).all()
        for profile in profiles:
            if profile.member_id in serials:
                continue
            value = (profile.card_serial or "").strip()
            if value:
                serials[profile.member_id] = value
        return serials


class BadgeCatalog:
    def __init__(self) -> None:
        self._code_cache: dict[str, Badge | None] = {}

    def _session(self) -> Session:
        return open_session()

    def list_all(self) -> list[Badge]:
        with self._session() as session:
            return list(session.exec(select(Badge).order_by(col(Badge.id))).all())

    def find_by_code(self, permission_code: str | None) -> Badge | None:
        requested = fold_permission_code(permission_code)
        if not requested:
            return None
        if requested in self._code_cache:
            return self._code_cache[requested]

        with self._session() as session:
            statement = (
                select(Badge)
                .where(col(Badge.text_id).is_not(None))
                .where(func.lower(func.trim(col(Badge.text_id))) == requested)
                .order_by(col(Badge.id))
                .limit(1)
            )
            badge = session.exec(statement).first()
        self._code_cache[requested] = badge
        return badge


class BadgeRequestStore:
    def _session(self) -> Session:
        return open_session()

    def has_request(
        self,
        member_id: int,
        badge_id: int,
        *,
        status: BadgeRequestStatus | None = BadgeRequestStatus.ACTIVE,
    ) -> bool:
        with self._session() as session:
            statement = (
                select(BadgeRequest.id)
                .where(BadgeRequest.member_id == member_id)
                .where(BadgeRequest.badge_id == badge_id)
            )
            if status is not None:
                statement = statement.where(BadgeRequest.status == status)
            return session.exec(statement.limit(1)).first() is not None

    def list_for_badges(
        self,
        badge_ids: Iterable[int],
        *,
        status: BadgeRequestStatus | None = BadgeRequestStatus.ACTIVE,
    ) -> list[BadgeRequest]:
        ids = sorted(set(badge_ids))
        if not ids:
            return []
        with self._session() as session:
            statement = select(BadgeRequest).where(col(BadgeRequest.badge_id).in_(ids))
            if status is not None:
                statement = statement.where(BadgeRequest.status == status)
            statement = statement.order_by(col(BadgeRequest.created_at), col(BadgeRequest.id))
            return list(session.exec(statement).all())
