from __future__ import annotations

from app.domain.eligibility import (
    ERROR_NO_MATCHING_USER,
    REASON_INVALID_IDENTIFIER_TYPE,
    REASON_INVALID_PERMISSION,
    REASON_MISSING_PERMISSION,
    REASON_NO_ACTIVE_BADGE,
    REASON_NO_USER,
    status_block_reason,
)
from app.domain.models import (
    AccessDecision,
    AccessGrantRead,
    AccessRequestContext,
    Badge,
    BadgeRequestStatus,
    DecisionOutcome,
    IdentifierType,
    Member,
    MemberInfoRead,
    PermissionListItem,
)
from app.infra.audit import DecisionSink, combine_notes, write_access_log
from app.infra.error_sink import ErrorReporter, report_exception
from app.infra.logging import get_logger
from app.infra.settings import AccessControlSettings, get_settings
from app.services.directory_service import BadgeCatalog, BadgeRequestStore, MemberDirectory

logger = get_logger(__name__)


class AccessControlError(Exception):
    pass


class NotFoundError(AccessControlError):
    pass


class AccessControlService:
    def __init__(
        self,
        *,
        settings: AccessControlSettings | None = None,
        members: MemberDirectory | None = None,
        catalog: BadgeCatalog | None = None,
        badge_requests: BadgeRequestStore | None = None,
        log_writer: DecisionSink | None = None,
        error_reporter: ErrorReporter | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._members = members or MemberDirectory()
        self._catalog = catalog or BadgeCatalog()
        self._badge_requests = badge_requests or BadgeRequestStore()
        self._log_writer = log_writer or write_access_log
        self._report = error_reporter or report_exception

    def _lookup_member(self, identifier: str, identifier_type: IdentifierType) -> Member | None:
        if identifier_type is IdentifierType.UUID:
            return self._members.get_by_uuid(identifier)
        if identifier_type is IdentifierType.SERIAL:
            return self._members.get_by_serial(identifier)
        return self._members.get_by_email(identifier)

    def _record(
        self,
        *,
        member: Member | None,
        badge: Badge | None,
        result: bool,
        note: str,
        context: AccessRequestContext,
    ) -> None:
        try:
            self._log_writer(
                member_id=member.id if member is not None else None,
                badge_id=badge.id if badge is not None else None,
                result=result,
                note=note,
                source=context.source,
                method=context.method,
            )
        except Exception as exc:
            self._report(
                exc,
                operation="access_log_write",
                member_id=member.id if member is not None else None,
                badge_id=badge.id if badge is not None else None,
                result=result,
            )

    def _deny(
        self,
        outcome: DecisionOutcome,
        reason: str,
        context: AccessRequestContext,
        *,
        identifier_type: str,
        member: Member | None = None,
        badge: Badge | None = None,
        error: str | None = None,
    ) -> AccessDecision:
        note = combine_notes(reason, context.note)
        self._record(member=member, badge=badge, result=False, note=note, context=context)
        logger.info(
            "access_decision",
            result=False,
            outcome=outcome.value,
            reason=reason,
            identifier_type=identifier_type,
            member_id=member.id if member is not None else None,
            badge_id=badge.id if badge is not None else None,
            source=context.source,
            method=context.method,
        )
        return AccessDecision(
            result=False,
            outcome=outcome,
            reason=reason,
            error=error or reason,
            note=note,
            member_id=member.id if member is not None else None,
            badge_id=badge.id if badge is not None else None,
        )

    def _grant(
        self,
        member: Member | None,
        badge: Badge,
        context: AccessRequestContext,
        *,
        identifier_type: str,
    ) -> AccessDecision:
        note = combine_notes("", context.note)
        self._record(member=member, badge=badge, result=True, note=note, context=context)
        logger.info(
            "access_decision",
            result=True,
            outcome=DecisionOutcome.GRANTED.value,
            identifier_type=identifier_type,
            member_id=member.id if member is not None else None,
            badge_id=badge.id,
            source=context.source,
            method=context.method,
        )
        grant = AccessGrantRead(
            first_name=member.first_name if member is not None else None,
            last_name=member.last_name if member is not None else None,
            permission=badge.name.lower(),
            uuid=member.uuid if member is not None else None,
            source=context.source,
            method=context.method,
        )
        return AccessDecision(
            result=True,
            outcome=DecisionOutcome.GRANTED,
            note=note,
            member_id=member.id if member is not None else None,
            badge_id=badge.id,
            grant=grant,
        )

    def evaluate(
        self,
        identifier: str,
        identifier_type: str,
        permission_code: str,
        context: AccessRequestContext | None = None,
    ) -> AccessDecision:
        context = context or AccessRequestContext()
        settings = self._settings

        member: Member | None = None
        if settings.check_identity_exists:
            try:
                kind = IdentifierType(identifier_type)
            except ValueError:
                logger.info(
                    "access_decision_rejected",
                    reason=REASON_INVALID_IDENTIFIER_TYPE,
                    identifier_type=identifier_type,
                    source=context.source,
                    method=context.method,
                )
                return AccessDecision(
                    result=False,
                    outcome=DecisionOutcome.INVALID_REQUEST,
                    reason=REASON_INVALID_IDENTIFIER_TYPE,
                    error=REASON_INVALID_IDENTIFIER_TYPE,
                    note=combine_notes(REASON_INVALID_IDENTIFIER_TYPE, context.note),
                    logged=False,
                )
            member = self._lookup_member(identifier, kind)
            if member is None:
                return self._deny(
                    DecisionOutcome.NOT_FOUND,
                    REASON_NO_USER,
                    context,
                    identifier_type=identifier_type,
                    error=ERROR_NO_MATCHING_USER,
                )

        if member is not None:
            reason = status_block_reason(member, settings)
            if reason is not None:
                return self._deny(
                    DecisionOutcome.FORBIDDEN,
                    reason,
                    context,
                    identifier_type=identifier_type,
                    member=member,
                )

        badge = self._catalog.find_by_code(permission_code)
        if badge is None:
            return self._deny(
                DecisionOutcome.INVALID_REQUEST,
                REASON_INVALID_PERMISSION,
                context,
                identifier_type=identifier_type,
                member=member,
            )

        if settings.check_has_permission and member is not None and member.id is not None:
            require_active = settings.check_badge_status
            has_badge = self._badge_requests.has_request(
                member.id,
                badge.id if badge.id is not None else -1,
                status=BadgeRequestStatus.ACTIVE if require_active else None,
            )
            if not has_badge:
                reason = REASON_NO_ACTIVE_BADGE if require_active else REASON_MISSING_PERMISSION
                return self._deny(
                    DecisionOutcome.FORBIDDEN,
                    reason,
                    context,
                    identifier_type=identifier_type,
                    member=member,
                    badge=badge,
                )

        return self._grant(member, badge, context, identifier_type=identifier_type)

    def list_permissions(self) -> list[PermissionListItem]:
        badges = self._catalog.list_all()
        if not badges:
            raise NotFoundError("No permissions found.")
        return [PermissionListItem(badge_name=badge.name, permission_id=badge.text_id) for badge in badges]

    @staticmethod
    def _member_info(member: Member) -> MemberInfoRead:
        return MemberInfoRead(
            first_name=member.first_name,
            last_name=member.last_name,
            uuid=member.uuid,
            access="Active" if member.is_active else "Inactive",
        )

    def member_info_by_serial(self, serial: str) -> MemberInfoRead:
        member = self._members.get_by_serial(serial)
        if member is None:
            raise NotFoundError("User not found for serial.")
        return self._member_info(member)

    def member_info_by_uuid(self, member_uuid: str) -> MemberInfoRead:
        member = self._members.get_by_uuid(member_uuid)
        if member is None:
            raise NotFoundError("User not found for UUID.")
        return self._member_info(member)

    def get_member(self, member_uuid: str) -> Member:
        member = self._members.get_by_uuid(member_uuid)
        if member is None:
            raise NotFoundError("User not found for UUID.")
        return member
