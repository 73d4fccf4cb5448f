from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict
from pydantic import Field as PydanticField
from sqlalchemy import JSON, Column, Index
from sqlmodel import Field, SQLModel


def now_utc() -> datetime:
    return datetime.now(UTC)


class AccessOverride(StrEnum):
    ALLOW = "allow"
    DENY = "deny"


class BadgeRequestStatus(StrEnum):
    ACTIVE = "active"
    PENDING = "pending"
    INACTIVE = "inactive"
    REVOKED = "revoked"


class Member(SQLModel, table=True):
    __tablename__ = "members"

    id: int | None = Field(default=None, primary_key=True)
    uuid: str = Field(default_factory=lambda: str(uuid4()), index=True, unique=True)
    username: str = Field(index=True)
    email: str | None = Field(default=None, index=True, unique=True)
    first_name: str | None = None
    last_name: str | None = None
    card_serial: str | None = Field(default=None, index=True)
    roles: list[str] = Field(
        default_factory=list,
        sa_column=Column(JSON, nullable=False),
    )
    chargebee_payment_pause: bool = Field(default=False)
    manual_pause: bool = Field(default=False)
    payment_failed: bool = Field(default=False)
    access_override: AccessOverride | None = Field(default=None)
    is_active: bool = Field(default=True, index=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)


class MemberProfile(SQLModel, table=True):
    __tablename__ = "member_profiles"
    __table_args__ = (
        Index("ix_member_profiles_member_type", "member_id", "profile_type"),
    )

    id: int | None = Field(default=None, primary_key=True)
    member_id: int = Field(foreign_key="members.id", index=True)
    profile_type: str = Field(default="main")
    card_serial: str | None = Field(default=None, index=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)


class Badge(SQLModel, table=True):
    __tablename__ = "badges"

    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(index=True)
    text_id: str | None = Field(default=None, index=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)


class BadgeRequest(SQLModel, table=True):
    __tablename__ = "badge_requests"
    __table_args__ = (
        Index("ix_badge_requests_member_badge", "member_id", "badge_id"),
        Index("ix_badge_requests_badge_status", "badge_id", "status"),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    member_id: int = Field(foreign_key="members.id", index=True)
    badge_id: int = Field(foreign_key="badges.id", index=True)
    status: BadgeRequestStatus = Field(default=BadgeRequestStatus.PENDING)
    created_at: datetime = Field(default_factory=now_utc, index=True)


class AccessControlLog(SQLModel, table=True):
    __tablename__ = "access_control_logs"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    member_id: int | None = Field(default=None, index=True)
    badge_id: int | None = Field(default=None, index=True)
    result: bool
    note: str = ""
    source: str = "unknown"
    method: str = "unknown"
    created_at: datetime = Field(default_factory=now_utc, index=True)


class IdentifierType(StrEnum):
    UUID = "uuid"
    SERIAL = "serial"
    EMAIL = "email"


class DecisionOutcome(StrEnum):
    GRANTED = "granted"
    NOT_FOUND = "not_found"
    INVALID_REQUEST = "invalid_request"
    FORBIDDEN = "forbidden"


class AccessRequestContext(BaseModel):
    model_config = ConfigDict(frozen=True)

    source: str = "unknown"
    method: str = "unknown"
    note: str = ""


class AccessGrantRead(BaseModel):
    first_name: str | None = None
    last_name: str | None = None
    permission: str
    access: str = "true"
    uuid: str | None = None
    source: str
    method: str


class AccessDecision(BaseModel):
    model_config = ConfigDict(frozen=True)

    result: bool
    outcome: DecisionOutcome
    reason: str = ""
    error: str | None = None
    note: str = ""
    member_id: int | None = None
    badge_id: int | None = None
    logged: bool = True
    grant: AccessGrantRead | None = None


class PermissionListItem(BaseModel):
    badge_name: str
    permission_id: str | None = None


class PermissionListRead(BaseModel):
    permissions: list[PermissionListItem]


class MemberInfoRead(BaseModel):
    first_name: str | None = None
    last_name: str | None = None
    uuid: str
    access: str


class FallbackUser(BaseModel):
    id: str
    card_serial: str
    uuid: str
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None


class FallbackTool(BaseModel):
    id: str
    name: str
    badge_name: str
    reader_device_id: str
    activator_device_id: str
    device_id: str


class FallbackStore(BaseModel):
    users: list[FallbackUser] = PydanticField(default_factory=list)
    tools: list[FallbackTool] = PydanticField(default_factory=list)
    assignments: list[tuple[str, str]] = PydanticField(default_factory=list)

    def export_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)

    def export_json(self) -> str:
        return self.model_dump_json(exclude_none=True)


class StatusItemState(StrEnum):
    OK = "ok"
    BLOCKED = "blocked"


class AccessStatusItem(BaseModel):
    id: str
    label: str
    state: StatusItemState
    message: str
    blocks_access: bool
    details: str | None = None


class AccessStatusSummary(BaseModel):
    state: StatusItemState
    label: str
    message: str
    blocking_messages: list[str] = PydanticField(default_factory=list)


class AdminLink(BaseModel):
    id: str | None = None
    title: str
    url: str
    description: str | None = None
    category: str | None = None
    weight: int = 0
    group_weight: int = 0
    attributes: dict[str, str] = PydanticField(default_factory=dict)


class AdminLinkGroup(BaseModel):
    label: str
    weight: int = 0
    links: list[AdminLink] = PydanticField(default_factory=list)


class MemberAccessStatus(BaseModel):
    summary: AccessStatusSummary
    items: list[AccessStatusItem]
    link_groups: list[AdminLinkGroup] = PydanticField(default_factory=list)
