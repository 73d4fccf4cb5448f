from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException

from app.api.routers import access_control
from app.infra.db import check_db_ready
from app.infra.logging import configure_logging, get_logger
from app.infra.redis_state import check_redis_ready
from app.services.fallback_cache_service import FallbackStoreCache, watch_session_commits
from app.services.member_status_service import AdminLinkRegistry

configure_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    unwatch = watch_session_commits(FallbackStoreCache())
    logger.info("fallback_store_invalidation_enabled")
    try:
        yield
    finally:
        unwatch()


app = FastAPI(
    title="makerspace-access-control",
    description="Access decisions and offline fallback export for makerspace door and tool readers.",
    version="0.1.0",
    lifespan=lifespan,
)

access_control.configure_admin_links(AdminLinkRegistry(providers=()))

app.include_router(
    access_control.router,
    prefix="/api/v0/access-control",
    tags=["access-control"],
)


@app.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/readyz")
def readyz() -> dict[str, object]:
    db_ok = check_db_ready()
    redis_ok = check_redis_ready()
    checks = {
        "db": "ok" if db_ok else "fail",
        "redis": "ok" if redis_ok else "fail",
    }
    if not (db_ok and redis_ok):
        raise HTTPException(
            status_code=503,
            detail={"status": "not_ready", "checks": checks},
        )
    return {"status": "ready", "checks": checks}
