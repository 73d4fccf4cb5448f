"""Rebuild the cached fallback export so reader downloads stay fast.

Meant to be run from cron, e.g. every ten minutes:

    python -m infra.scripts.warm_fallback_store

Exits non-zero when the export could not be rebuilt.
"""

from __future__ import annotations

import argparse
import sys
from enum import StrEnum

from app.infra.logging import configure_logging, get_logger
from app.infra.settings import AccessControlSettings, load_settings
from app.services.fallback_cache_service import FallbackStoreCache

logger = get_logger(__name__)


class WarmResult(StrEnum):
    WARMED = "warmed"
    SKIPPED = "skipped"
    FAILED = "failed"


def run_warm(
    settings: AccessControlSettings,
    *,
    force: bool = False,
    cache: FallbackStoreCache | None = None,
) -> WarmResult:
    if not settings.export_cache_enabled:
        logger.info("fallback_store_warm_skipped", reason="cache disabled")
        return WarmResult.SKIPPED
    if not force and not settings.export_cache_refresh_on_warm:
        logger.info("fallback_store_warm_skipped", reason="refresh on warm disabled")
        return WarmResult.SKIPPED
    if not (cache or FallbackStoreCache(settings=settings)).warm():
        return WarmResult.FAILED
    return WarmResult.WARMED


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Warm the fallback export cache.")
    parser.add_argument(
        "--force",
        action="store_true",
        help="Warm even when scheduled refresh is turned off in settings",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    configure_logging()
    args = _parse_args(argv)
    result = run_warm(load_settings(), force=args.force)
    return 1 if result is WarmResult.FAILED else 0


if __name__ == "__main__":
    sys.exit(main())
