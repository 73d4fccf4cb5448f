from __future__ import annotations

from app.domain.models import AccessOverride, Member
from app.domain.permissions import ALLOWED_ACCESS_ROLES, has_allowed_role
from app.infra.settings import AccessControlSettings

REASON_NO_USER = "No user found."
REASON_INVALID_IDENTIFIER_TYPE = "Invalid identifier type."
REASON_CHARGEBEE_PAUSE = "User account on Chargebee payment pause."
REASON_MANUAL_PAUSE = "User account on manual pause."
REASON_PAYMENT_FAILED = "User account has payment failed status."
REASON_OVERRIDE_DENY = "User access explicitly denied by override."
REASON_INVALID_ROLE = "User does not have a valid role for access."
REASON_INVALID_PERMISSION = "Invalid permission ID."
REASON_NO_ACTIVE_BADGE = "No active badge request found."
REASON_MISSING_PERMISSION = "User does not have the specified permission."

ERROR_NO_MATCHING_USER = "No matching user found."


def override_denies(member: Member) -> bool:
    override = member.access_override
    if override is None:
        return False
    return str(override).strip().lower() == AccessOverride.DENY.value


def hold_block_reason(member: Member) -> str | None:
    if member.chargebee_payment_pause:
        return REASON_CHARGEBEE_PAUSE
    if member.manual_pause:
        return REASON_MANUAL_PAUSE
    if member.payment_failed:
        return REASON_PAYMENT_FAILED
    return None


def status_block_reason(
    member: Member,
    settings: AccessControlSettings,
    allowed_roles: tuple[str, ...] = ALLOWED_ACCESS_ROLES,
) -> str | None:
    if not settings.check_identity_status:
        return None
    if settings.check_pause_payment:
        reason = hold_block_reason(member)
        if reason is not None:
            return reason
    if override_denies(member):
        return REASON_OVERRIDE_DENY
    if not has_allowed_role(member.roles or [], allowed_roles):
        return REASON_INVALID_ROLE
    return None


def is_member_eligible(member: Member, settings: AccessControlSettings) -> bool:
    return status_block_reason(member, settings) is None
