from __future__ import annotations

from collections.abc import Callable
from typing import Any

from app.infra.logging import get_logger

logger = get_logger(__name__)

ErrorReporter = Callable[..., None]


def report_exception(exc: BaseException, *, operation: str, **context: Any) -> None:
    logger.error(
        "unhandled_exception",
        operation=operation,
        error_type=type(exc).__name__,
        exc_info=exc,
        **context,
    )
