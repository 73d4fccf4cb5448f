from __future__ import annotations

from collections.abc import Callable

from sqlmodel import Session

from app.domain.models import AccessControlLog
from app.infra.db import engine

DecisionSink = Callable[..., None]


def combine_notes(system_note: str, user_note: str) -> str:
    if user_note:
        if system_note:
            return f"{system_note}. {user_note}"
        return user_note
    return system_note


def write_access_log(
    *,
    member_id: int | None,
    badge_id: int | None,
    result: bool,
    note: str = "",
    source: str = "unknown",
    method: str = "unknown",
) -> None:
    entry = AccessControlLog(
        member_id=member_id,
        badge_id=badge_id,
        result=result,
        note=note,
        source=source,
        method=method,
    )
    with Session(engine) as session:
        session.add(entry)
        session.commit()
