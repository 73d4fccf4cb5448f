from __future__ import annotations

import os
from functools import lru_cache

from pydantic import BaseModel, ConfigDict, field_validator

from app.domain.permissions import parse_permission_allowlist

MIN_EXPORT_CACHE_LIFETIME_SECONDS = 60
DEFAULT_EXPORT_CACHE_LIFETIME_SECONDS = 900

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


class AccessControlSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    check_identity_exists: bool = True
    check_identity_status: bool = True
    check_pause_payment: bool = True
    check_has_permission: bool = True
    check_badge_status: bool = True

    export_shared_code: str = ""
    export_cache_enabled: bool = True
    export_cache_lifetime_seconds: int = DEFAULT_EXPORT_CACHE_LIFETIME_SECONDS
    export_cache_refresh_on_warm: bool = True
    export_include_names: bool = False
    export_include_contact: bool = False
    export_permission_allowlist: frozenset[str] = frozenset()

    @field_validator("export_permission_allowlist", mode="before")
    @classmethod
    def _normalize_allowlist(cls, value: object) -> frozenset[str]:
        if isinstance(value, str) or value is None:
            return parse_permission_allowlist(value)
        if isinstance(value, list | tuple | set | frozenset):
            return parse_permission_allowlist([str(item) for item in value])
        raise ValueError("export_permission_allowlist must be a string or a list of codes")

    @property
    def export_enabled(self) -> bool:
        return bool(self.export_shared_code.strip())

    @property
    def effective_cache_lifetime(self) -> int:
        return max(self.export_cache_lifetime_seconds, MIN_EXPORT_CACHE_LIFETIME_SECONDS)


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ValueError(f"{name} must be a boolean flag, got {raw!r}")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return int(raw.strip())


def load_settings() -> AccessControlSettings:
    return AccessControlSettings(
        check_identity_exists=_env_flag("ACCESS_CONTROL_CHECK_IDENTITY_EXISTS", True),
        check_identity_status=_env_flag("ACCESS_CONTROL_CHECK_IDENTITY_STATUS", True),
        check_pause_payment=_env_flag("ACCESS_CONTROL_CHECK_PAUSE_PAYMENT", True),
        check_has_permission=_env_flag("ACCESS_CONTROL_CHECK_HAS_PERMISSION", True),
        check_badge_status=_env_flag("ACCESS_CONTROL_CHECK_BADGE_STATUS", True),
        export_shared_code=os.getenv("ACCESS_CONTROL_EXPORT_SHARED_CODE", ""),
        export_cache_enabled=_env_flag("ACCESS_CONTROL_EXPORT_CACHE_ENABLED", True),
        export_cache_lifetime_seconds=_env_int(
            "ACCESS_CONTROL_EXPORT_CACHE_LIFETIME_SECONDS",
            DEFAULT_EXPORT_CACHE_LIFETIME_SECONDS,
        ),
        export_cache_refresh_on_warm=_env_flag("ACCESS_CONTROL_EXPORT_CACHE_REFRESH_ON_WARM", True),
        export_include_names=_env_flag("ACCESS_CONTROL_EXPORT_INCLUDE_NAMES", False),
        export_include_contact=_env_flag("ACCESS_CONTROL_EXPORT_INCLUDE_CONTACT", False),
        export_permission_allowlist=os.getenv("ACCESS_CONTROL_EXPORT_PERMISSION_ALLOWLIST", ""),
    )


@lru_cache(maxsize=1)
def get_settings() -> AccessControlSettings:
    return load_settings()
