from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends, Header, Query, status
from fastapi.responses import JSONResponse

from app.domain.models import (
    AccessDecision,
    AccessGrantRead,
    AccessRequestContext,
    DecisionOutcome,
    MemberAccessStatus,
    MemberInfoRead,
    PermissionListRead,
)
from app.infra.settings import AccessControlSettings, get_settings
from app.services.access_control_service import AccessControlService, NotFoundError
from app.services.fallback_cache_service import (
    ExportDisabledError,
    ExportForbiddenError,
    FallbackStoreCache,
    SnapshotBuildError,
    verify_export_code,
)
from app.services.member_status_service import AdminLinkRegistry, LinkViewer, MemberStatusService

router = APIRouter()

_admin_link_registry = AdminLinkRegistry()

_OUTCOME_STATUS = {
    DecisionOutcome.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    DecisionOutcome.INVALID_REQUEST: status.HTTP_400_BAD_REQUEST,
    DecisionOutcome.FORBIDDEN: status.HTTP_403_FORBIDDEN,
}


def configure_admin_links(registry: AdminLinkRegistry) -> None:
    global _admin_link_registry
    _admin_link_registry = registry


def get_access_settings() -> AccessControlSettings:
    return get_settings()


Settings = Annotated[AccessControlSettings, Depends(get_access_settings)]


def get_access_control_service(settings: Settings) -> AccessControlService:
    return AccessControlService(settings=settings)


def get_fallback_store_cache(settings: Settings) -> FallbackStoreCache:
    return FallbackStoreCache(settings=settings)


def get_admin_link_registry() -> AdminLinkRegistry:
    return _admin_link_registry


def get_member_status_service(
    registry: Annotated[AdminLinkRegistry, Depends(get_admin_link_registry)],
) -> MemberStatusService:
    return MemberStatusService(link_registry=registry)


Service = Annotated[AccessControlService, Depends(get_access_control_service)]
Cache = Annotated[FallbackStoreCache, Depends(get_fallback_store_cache)]
StatusService = Annotated[MemberStatusService, Depends(get_member_status_service)]


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def _decision_response(decision: AccessDecision) -> JSONResponse | list[AccessGrantRead]:
    if decision.result and decision.grant is not None:
        return [decision.grant]
    status_code = _OUTCOME_STATUS.get(decision.outcome, status.HTTP_403_FORBIDDEN)
    return _error(status_code, decision.error or decision.reason)


@router.get("/permissions", response_model=PermissionListRead)
def list_permissions(service: Service) -> Any:
    try:
        return PermissionListRead(permissions=service.list_permissions())
    except NotFoundError as exc:
        return _error(status.HTTP_404_NOT_FOUND, str(exc))


@router.get("/users/serial/{serial}", response_model=MemberInfoRead)
def get_member_info_by_serial(serial: str, service: Service) -> Any:
    try:
        return service.member_info_by_serial(serial)
    except NotFoundError as exc:
        return _error(status.HTTP_404_NOT_FOUND, str(exc))


@router.get("/users/uuid/{member_uuid}", response_model=MemberInfoRead)
def get_member_info_by_uuid(member_uuid: str, service: Service) -> Any:
    try:
        return service.member_info_by_uuid(member_uuid)
    except NotFoundError as exc:
        return _error(status.HTTP_404_NOT_FOUND, str(exc))


@router.get("/members/{member_uuid}/status", response_model=MemberAccessStatus)
def get_member_access_status(
    member_uuid: str,
    service: Service,
    status_service: StatusService,
) -> Any:
    try:
        member = service.get_member(member_uuid)
    except NotFoundError as exc:
        return _error(status.HTTP_404_NOT_FOUND, str(exc))
    return status_service.evaluate(member, LinkViewer())


@router.get("/fallback-store")
def get_fallback_store(
    settings: Settings,
    cache: Cache,
    code: Annotated[str | None, Query()] = None,
    header_code: Annotated[str | None, Header(alias="X-Access-Control-Code")] = None,
    refresh: Annotated[bool, Query()] = False,
) -> Any:
    try:
        verify_export_code(settings, code or header_code)
    except ExportDisabledError as exc:
        return _error(status.HTTP_503_SERVICE_UNAVAILABLE, str(exc))
    except ExportForbiddenError as exc:
        return _error(status.HTTP_403_FORBIDDEN, str(exc))

    try:
        payload = cache.get_payload(force_refresh=refresh)
    except SnapshotBuildError as exc:
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc))
    return JSONResponse(content=payload.export_dict(), headers={"Cache-Control": "no-store"})


@router.get(
    "/{identifier_type}/{identifier}/{permission_id}",
    response_model=list[AccessGrantRead],
)
def check_access(
    identifier_type: str,
    identifier: str,
    permission_id: str,
    service: Service,
    source: Annotated[str, Query()] = "unknown",
    method: Annotated[str, Query()] = "unknown",
    note: Annotated[str, Query()] = "",
) -> Any:
    context = AccessRequestContext(source=source, method=method, note=note)
    decision = service.evaluate(identifier, identifier_type, permission_id, context)
    return _decision_response(decision)
