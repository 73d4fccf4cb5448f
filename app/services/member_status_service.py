from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

from pydantic import ValidationError

from app.domain.eligibility import override_denies
from app.domain.models import (
    AccessStatusItem,
    AccessStatusSummary,
    AdminLink,
    AdminLinkGroup,
    BadgeRequestStatus,
    Member,
    MemberAccessStatus,
    StatusItemState,
)
from app.domain.permissions import ALLOWED_ACCESS_ROLES, DOOR_PERMISSION_ID, ROLE_SERVICES
from app.infra.logging import get_logger
from app.services.directory_service import BadgeCatalog, BadgeRequestStore

logger = get_logger(__name__)

DEFAULT_LINK_CATEGORY = "Admin Links"


@dataclass(frozen=True)
class LinkViewer:
    id: str | None = None
    permissions: frozenset[str] = field(default_factory=frozenset)

    def has_permission(self, permission: str) -> bool:
        return permission in self.permissions


class AdminLinkProvider(Protocol):
    def links_for(self, member: Member, viewer: LinkViewer) -> Iterable[dict[str, Any]]: ...


class AdminLinkRegistry:
    def __init__(self, providers: Sequence[AdminLinkProvider] = ()) -> None:
        self._providers: tuple[AdminLinkProvider, ...] = tuple(providers)

    def _normalize(self, definition: dict[str, Any], viewer: LinkViewer) -> AdminLink | None:
        if "access" in definition and not definition["access"]:
            return None
        for permission in definition.get("permissions") or ():
            if not viewer.has_permission(permission):
                return None
        if not definition.get("title") or not definition.get("url"):
            return None
        try:
            return AdminLink.model_validate(
                {
                    key: definition[key]
                    for key in AdminLink.model_fields
                    if definition.get(key) is not None
                }
            )
        except ValidationError:
            logger.warning("admin_link_invalid", link_id=definition.get("id"))
            return None

    def collect(self, member: Member, viewer: LinkViewer) -> list[AdminLink]:
        links: list[AdminLink] = []
        seen: set[str] = set()
        for provider in self._providers:
            for definition in provider.links_for(member, viewer):
                if not isinstance(definition, dict):
                    continue
                link = self._normalize(definition, viewer)
                if link is None:
                    continue
                if link.id:
                    if link.id in seen:
                        continue
                    seen.add(link.id)
                links.append(link)
        links.sort(key=lambda item: (item.weight, item.title.casefold()))
        return links

    def build_groups(self, member: Member, viewer: LinkViewer) -> list[AdminLinkGroup]:
        grouped: dict[str, AdminLinkGroup] = {}
        for link in self.collect(member, viewer):
            label = link.category or DEFAULT_LINK_CATEGORY
            group = grouped.get(label)
            if group is None:
                group = AdminLinkGroup(label=label, weight=link.group_weight)
                grouped[label] = group
            group.links.append(link)
        return sorted(grouped.values(), key=lambda item: (item.weight, item.label.casefold()))


def _format_roles(roles: Iterable[str]) -> str:
    values = list(roles)
    if not values:
        return "none"
    return ", ".join(values)


class MemberStatusService:
    def __init__(
        self,
        *,
        catalog: BadgeCatalog | None = None,
        badge_requests: BadgeRequestStore | None = None,
        link_registry: AdminLinkRegistry | None = None,
        allowed_roles: tuple[str, ...] = ALLOWED_ACCESS_ROLES,
    ) -> None:
        self._catalog = catalog or BadgeCatalog()
        self._badge_requests = badge_requests or BadgeRequestStore()
        self._links = link_registry or AdminLinkRegistry()
        self._allowed_roles = allowed_roles

    @staticmethod
    def _flag_item(id_: str, label: str, flagged: bool, blocked: str, ok: str) -> AccessStatusItem:
        return AccessStatusItem(
            id=id_,
            label=label,
            state=StatusItemState.BLOCKED if flagged else StatusItemState.OK,
            message=blocked if flagged else ok,
            blocks_access=flagged,
        )

    def _role_item(self, member: Member) -> AccessStatusItem:
        roles = list(member.roles or [])
        matched = [role for role in self._allowed_roles if role in roles]
        if matched:
            message = f"Member has an access role ({_format_roles(matched)})."
        else:
            message = f"Add one of: {_format_roles(self._allowed_roles)}"
        return AccessStatusItem(
            id="allowed_roles",
            label="Maker Roles",
            state=StatusItemState.OK if matched else StatusItemState.BLOCKED,
            message=message,
            blocks_access=not matched,
            details=_format_roles(roles),
        )

    def has_active_badge(self, member: Member, permission_id: str) -> bool:
        if ROLE_SERVICES in (member.roles or []):
            return True
        if not permission_id or member.id is None:
            return False
        badge = self._catalog.find_by_code(permission_id)
        if badge is None or badge.id is None:
            return False
        return self._badge_requests.has_request(member.id, badge.id, status=BadgeRequestStatus.ACTIVE)

    def _door_item(self, member: Member) -> AccessStatusItem:
        has_badge = self.has_active_badge(member, DOOR_PERMISSION_ID)
        return AccessStatusItem(
            id="door_badge",
            label="Door Access",
            state=StatusItemState.OK if has_badge else StatusItemState.BLOCKED,
            message="Door badge is active." if has_badge else "Door badge missing or inactive.",
            blocks_access=not has_badge,
        )

    def evaluate(self, member: Member, viewer: LinkViewer | None = None) -> MemberAccessStatus:
        items = [
            self._flag_item(
                "chargebee_pause",
                "Chargebee Pause",
                bool(member.chargebee_payment_pause),
                "Chargebee payment pause is active.",
                "Chargebee billing is active.",
            ),
            self._flag_item(
                "manual_pause",
                "Manual Pause",
                bool(member.manual_pause),
                "Manual pause prevents access.",
                "Manual pause disabled.",
            ),
            self._flag_item(
                "payment_failed",
                "Payment Failure",
                bool(member.payment_failed),
                "Latest membership payment failed.",
                "No payment failures.",
            ),
            self._flag_item(
                "access_override",
                "Access Override",
                override_denies(member),
                "Access override denies entry.",
                "No access override.",
            ),
            self._role_item(member),
            self._door_item(member),
        ]

        blocking = [item.message for item in items if item.blocks_access]
        summary = AccessStatusSummary(
            state=StatusItemState.BLOCKED if blocking else StatusItemState.OK,
            label="Key Access Blocked" if blocking else "Key Access Ready",
            message=blocking[0] if blocking else "No blocking flags detected.",
            blocking_messages=blocking,
        )
        link_groups = self._links.build_groups(member, viewer or LinkViewer())
        return MemberAccessStatus(summary=summary, items=items, link_groups=link_groups)
