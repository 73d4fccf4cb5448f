from __future__ import annotations

import re
from collections.abc import Iterable

ROLE_MEMBER = "member"
ROLE_SERVICES = "services"
ROLE_INSTRUCTOR = "instructor"

ALLOWED_ACCESS_ROLES: tuple[str, ...] = (ROLE_MEMBER, ROLE_SERVICES, ROLE_INSTRUCTOR)

DOOR_PERMISSION_ID = "door"
TOOL_ID_PREFIX = "perm"

_INVALID_PERMISSION_CHARS = re.compile(r"[^a-z0-9._-]+")
_ALLOWLIST_SEPARATORS = re.compile(r"[\r\n,]+")


def fold_permission_code(value: str | None) -> str:
    return (value or "").strip().lower()


def normalize_permission_id(value: str | None) -> str:
    normalized = _INVALID_PERMISSION_CHARS.sub("_", fold_permission_code(value))
    return normalized.strip("_")


def build_tool_id(permission_id: str, badge_id: int) -> str:
    if not permission_id:
        return f"{TOOL_ID_PREFIX}.{badge_id}"
    return f"{TOOL_ID_PREFIX}.{permission_id}.{badge_id}"


def parse_permission_allowlist(raw: str | Iterable[str] | None) -> frozenset[str]:
    if raw is None:
        return frozenset()
    fragments = _ALLOWLIST_SEPARATORS.split(raw) if isinstance(raw, str) else list(raw)
    allowed = {normalize_permission_id(fragment) for fragment in fragments}
    allowed.discard("")
    return frozenset(allowed)


def has_allowed_role(roles: Iterable[str], allowed: Iterable[str] = ALLOWED_ACCESS_ROLES) -> bool:
    return not set(allowed).isdisjoint(roles)
