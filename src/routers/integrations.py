"""Wearable provider connect / callback / status / disconnect / data endpoints."""

from __future__ import annotations

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response
from fastapi.responses import RedirectResponse

from src.dependencies import AppSettings, CurrentMemberId, Services
from src.integrations.base import IntegrationSource
from src.integrations.callback import CallbackParams
from src.integrations.errors import ProviderUnavailable
from src.integrations.sessions import new_session_id
from src.integrations.sync import SyncResult
from src.models.base import ErrorDetail
from src.models.integrations import (
    AuthorizeResponse,
    ConnectionStatusRead,
    DisconnectResponse,
    MetricRead,
    SourceSyncRead,
    SyncAllResponse,
    SyncResponse,
    SyncSummaryRead,
)

logger = logging.getLogger("rebate.integrations.api")

router = APIRouter(prefix="/integrations", tags=["integrations"])


def _resolve_source(source: str) -> IntegrationSource:
    try:
        return IntegrationSource.from_slug(source)
    except ValueError:
        raise HTTPException(status_code=404, detail=f"Unknown integration source '{source}'")


Source = Annotated[IntegrationSource, Depends(_resolve_source)]


def handshake_cookie(source: IntegrationSource) -> str:
    return f"{source.value}_handshake"


# ---------- Connect ----------

@router.post(
    "/{source}/auth",
    response_model=AuthorizeResponse,
    responses={502: {"model": ErrorDetail}},
)
async def begin_authorization(
    source: Source,
    member_id: CurrentMemberId,
    services: Services,
    settings: AppSettings,
    response: Response,
) -> Any:
    manager = services.managers.get(source)
    if manager is None:
        raise HTTPException(status_code=404, detail=f"{source.value} cannot be connected")

    try:
        authorization_url, session = await manager.begin_authorization(member_id)
    except ProviderUnavailable as exc:
        logger.warning("Could not start %s authorization: %s", source.value, exc)
        raise HTTPException(
            status_code=502,
            detail=f"Failed to initiate {manager.DISPLAY_NAME} authentication",
        )

    session_id = new_session_id()
    await services.sessions.put(session_id, session, services.session_ttl)
    response.set_cookie(
        handshake_cookie(source),
        session_id,
        max_age=services.session_ttl,
        httponly=True,
        secure=settings.secure_cookies,
        samesite="lax",
        path="/",
    )
    return AuthorizeResponse(authorization_url=authorization_url)


@router.get("/{source}/callback", include_in_schema=False)
async def authorization_callback(
    source: Source,
    request: Request,
    services: Services,
    settings: AppSettings,
) -> RedirectResponse:
    cookie = handshake_cookie(source)
    outcome = await services.coordinator.handle(
        source,
        request.cookies.get(cookie),
        CallbackParams.from_query(source, request.query_params),
    )
    redirect = RedirectResponse(
        outcome.redirect_url(settings.connect_page_url()), status_code=303
    )
    redirect.delete_cookie(cookie, path="/")
    return redirect


# ---------- Connection state ----------

@router.get("/{source}/status", response_model=ConnectionStatusRead)
async def connection_status(source: Source, member_id: CurrentMemberId, services: Services) -> Any:
    integration = await services.store.find_integration(member_id, source)
    if integration is None:
        return ConnectionStatusRead(connected=False)
    return ConnectionStatusRead(
        connected=integration.is_active,
        status=integration.status.value,
        last_sync_at=integration.last_sync_at,
        last_sync_status=(
            integration.last_sync_status.value if integration.last_sync_status else None
        ),
        connected_at=integration.connected_at,
    )


@router.delete("/{source}/auth", response_model=DisconnectResponse)
async def disconnect(source: Source, member_id: CurrentMemberId, services: Services) -> Any:
    revoked = await services.store.revoke(member_id, source)
    if not revoked:
        logger.info("Disconnect %s for member %s: nothing to revoke", source.value, member_id)
    return DisconnectResponse(success=True)


# ---------- Data ----------

def _sync_response(result: SyncResult) -> SyncResponse:
    def dump(records: list | None) -> list[dict[str, Any]] | None:
        if records is None:
            return None
        return [r.model_dump(mode="json") for r in records]

    return SyncResponse(
        connected=result.connected,
        source=result.source.value,
        start_date=result.start_date,
        end_date=result.end_date,
        sleep=dump(result.sleep),
        activity=dump(result.activity),
        readiness=dump(result.readiness),
        unavailable=result.unavailable,
        summary=SyncSummaryRead(**result.summary.to_dict()) if result.summary else None,
        metrics=[
            MetricRead(
                metric_type=m.metric_type.value,
                category=m.category.value,
                value=m.value,
                unit=m.unit,
                day=m.recorded_on,
                source_record_id=m.source_record_id,
            )
            for m in result.metrics
        ],
        last_sync_at=result.last_sync_at,
        last_sync_status=result.last_sync_status.value if result.last_sync_status else None,
    )


@router.get("/{source}/data", response_model=SyncResponse)
async def recent_data(
    source: Source,
    member_id: CurrentMemberId,
    services: Services,
    days: int | None = Query(default=None, ge=0),
) -> Any:
    if not services.aggregator.supports(source):
        raise HTTPException(status_code=404, detail=f"No data sync for {source.value}")
    try:
        result = await services.aggregator.sync_recent(member_id, days, source)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    return _sync_response(result)


@router.post("/sync", response_model=SyncAllResponse)
async def sync_all(
    member_id: CurrentMemberId,
    services: Services,
    days: int | None = Query(default=None, ge=0),
) -> Any:
    try:
        results = await services.aggregator.sync_all(member_id, days)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    return SyncAllResponse(
        results={
            result.source.value: SourceSyncRead(
                success=result.succeeded,
                metrics_updated=len(result.metrics),
                last_sync_status=(
                    result.last_sync_status.value if result.last_sync_status else None
                ),
                unavailable=result.unavailable,
            )
            for result in results
        }
    )
