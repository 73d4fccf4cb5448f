from __future__ import annotations

from dataclasses import dataclass, field
from typing import cast

from app.domain.eligibility import is_member_eligible
from app.domain.models import (
    Badge,
    BadgeRequestStatus,
    FallbackStore,
    FallbackTool,
    FallbackUser,
    Member,
)
from app.domain.permissions import build_tool_id, normalize_permission_id
from app.infra.logging import get_logger
from app.infra.settings import AccessControlSettings, get_settings
from app.services.directory_service import BadgeCatalog, BadgeRequestStore, MemberDirectory

logger = get_logger(__name__)

MISSING_CODE_EXAMPLE_LIMIT = 10


@dataclass
class _UserBundle:
    records: list[FallbackUser] = field(default_factory=list)
    store_ids: dict[int, str] = field(default_factory=dict)


@dataclass
class _ToolBundle:
    records: list[FallbackTool] = field(default_factory=list)
    tool_ids: dict[int, str] = field(default_factory=dict)


class FallbackStoreBuilder:
    def __init__(
        self,
        *,
        settings: AccessControlSettings | None = None,
        members: MemberDirectory | None = None,
        catalog: BadgeCatalog | None = None,
        badge_requests: BadgeRequestStore | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._members = members or MemberDirectory()
        self._catalog = catalog or BadgeCatalog()
        self._badge_requests = badge_requests or BadgeRequestStore()

    def build(self) -> FallbackStore:
        users = self._collect_users()
        tools = self._collect_tools()
        assignments = self._collect_assignments(users.store_ids, tools.tool_ids)
        return FallbackStore(users=users.records, tools=tools.records, assignments=assignments)

    @staticmethod
    def _store_id(member: Member) -> str:
        return member.uuid

    def _collect_users(self) -> _UserBundle:
        settings = self._settings
        eligible = [
            member
            for member in self._members.list_active()
            if member.id is not None and is_member_eligible(member, settings)
        ]
        if not eligible:
            return _UserBundle()

        fallback_ids = [
            member.id
            for member in eligible
            if member.id is not None and not (member.card_serial or "").strip()
        ]
        profile_serials = self._members.profile_serials(fallback_ids)

        bundle = _UserBundle()
        records: dict[str, FallbackUser] = {}
        for member in eligible:
            member_id = cast(int, member.id)
            card_serial = (member.card_serial or "").strip() or profile_serials.get(member_id, "")
            if not card_serial:
                continue
            store_id = self._store_id(member)
            record = FallbackUser(id=store_id, card_serial=card_serial, uuid=member.uuid)
            if settings.export_include_names:
                record.first_name = member.first_name or ""
                record.last_name = member.last_name or ""
            if settings.export_include_contact:
                record.email = member.email or ""
            records[store_id] = record
            bundle.store_ids[member_id] = store_id

        bundle.records = [records[key] for key in sorted(records)]
        return bundle

    def _collect_tools(self) -> _ToolBundle:
        badges = self._catalog.list_all()
        if not badges:
            return _ToolBundle()

        allowlist = self._settings.export_permission_allowlist
        bundle = _ToolBundle()
        records: dict[str, FallbackTool] = {}
        missing: list[int] = []
        for badge in badges:
            if badge.id is None:
                continue
            permission_id = normalize_permission_id(badge.text_id)
            if not permission_id:
                missing.append(badge.id)
                continue
            if allowlist and permission_id not in allowlist:
                continue
            tool_id = build_tool_id(permission_id, badge.id)
            records[tool_id] = self._tool_record(badge, permission_id, tool_id)
            bundle.tool_ids[badge.id] = tool_id

        if missing:
            logger.warning(
                "fallback_store_badges_skipped",
                count=len(missing),
                examples=", ".join(str(item) for item in missing[:MISSING_CODE_EXAMPLE_LIMIT]),
            )

        bundle.records = [records[key] for key in sorted(records)]
        return bundle

    @staticmethod
    def _tool_record(badge: Badge, permission_id: str, tool_id: str) -> FallbackTool:
        return FallbackTool(
            id=tool_id,
            name=badge.name,
            badge_name=permission_id,
            reader_device_id=tool_id,
            activator_device_id=tool_id,
            device_id=tool_id,
        )

    def _collect_assignments(
        self,
        store_ids: dict[int, str],
        tool_ids: dict[int, str],
    ) -> list[tuple[str, str]]:
        if not store_ids or not tool_ids:
            return []

        status = BadgeRequestStatus.ACTIVE if self._settings.check_badge_status else None
        requests = self._badge_requests.list_for_badges(tool_ids.keys(), status=status)
        if not requests:
            return []

        if not self._settings.check_has_permission:
            logger.warning(
                "fallback_store_assignments_required",
                detail="export still requires explicit assignments while check_has_permission is disabled",
            )

        pairs: set[tuple[str, str]] = set()
        for item in requests:
            user_id = store_ids.get(item.member_id)
            tool_id = tool_ids.get(item.badge_id)
            if user_id is None or tool_id is None:
                continue
            pairs.add((user_id, tool_id))
        return sorted(pairs)
