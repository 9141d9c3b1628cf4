from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends
from sqlmodel import Session

from autoapi.app.core.context import RequestContext, get_request_context
from autoapi.app.core.db import get_session
from autoapi.app.models.api_service import (
    ApiService,
    ApiServiceCreate,
    ApiServiceUpdate,
    ApiServiceVersion,
    PublishRequest,
    TableSelection,
    TableSelectionRequest,
)
from autoapi.app.services import lifecycle_service, table_selection_service

router = APIRouter(prefix="/api-services", tags=["api-services"])


@router.post("/", response_model=ApiService)
def create_api_service(
    payload: ApiServiceCreate,
    ctx: RequestContext = Depends(get_request_context),
    session: Session = Depends(get_session),
):
    return lifecycle_service.create_api_service(session, ctx, payload)


@router.get("/", response_model=Dict[str, Any])
def read_api_services(
    skip: int = 0,
    limit: int = 100,
    name: Optional[str] = None,
    status: Optional[str] = None,
    owned_only: bool = False,
    ctx: RequestContext = Depends(get_request_context),
    session: Session = Depends(get_session),
):
    page = lifecycle_service.list_api_services(session, ctx, skip, limit, name, status, owned_only)
    return {"data": page["items"], "total": page["total"], "skip": skip, "limit": limit}


@router.get("/{service_id}", response_model=ApiService)
def read_api_service(
    service_id: int,
    ctx: RequestContext = Depends(get_request_context),
    session: Session = Depends(get_session),
):
    return lifecycle_service.get_api_service(session, ctx, service_id)


@router.put("/{service_id}", response_model=ApiService)
def update_api_service(
    service_id: int,
    payload: ApiServiceUpdate,
    ctx: RequestContext = Depends(get_request_context),
    session: Session = Depends(get_session),
):
    return lifecycle_service.update_api_service(session, ctx, service_id, payload)


@router.delete("/{service_id}")
def delete_api_service(
    service_id: int,
    ctx: RequestContext = Depends(get_request_context),
    session: Session = Depends(get_session),
):
    lifecycle_service.delete_api_service(session, ctx, service_id)
    return {"ok": True}


@router.post("/{service_id}/publish", response_model=ApiServiceVersion)
def publish(
    service_id: int,
    request: PublishRequest,
    ctx: RequestContext = Depends(get_request_context),
    session: Session = Depends(get_session),
):
    return lifecycle_service.publish(session, ctx, service_id, request)


@router.post("/{service_id}/unpublish", response_model=ApiServiceVersion)
def unpublish(
    service_id: int,
    ctx: RequestContext = Depends(get_request_context),
    session: Session = Depends(get_session),
):
    return lifecycle_service.unpublish(session, ctx, service_id)


@router.get("/{service_id}/versions", response_model=Dict[str, Any])
def read_versions(
    service_id: int,
    skip: int = 0,
    limit: int = 20,
    ctx: RequestContext = Depends(get_request_context),
    session: Session = Depends(get_session),
):
    return lifecycle_service.list_versions(session, ctx, service_id, skip, limit)


@router.get("/{service_id}/versions/active", response_model=ApiServiceVersion)
def read_active_version(
    service_id: int,
    ctx: RequestContext = Depends(get_request_context),
    session: Session = Depends(get_session),
):
    lifecycle_service.get_api_service(session, ctx, service_id)
    return lifecycle_service.get_active_version(session, service_id)


@router.get("/{service_id}/versions/compare")
def compare_versions(
    service_id: int,
    source: str,
    target: str,
    ctx: RequestContext = Depends(get_request_context),
    session: Session = Depends(get_session),
):
    comparison = lifecycle_service.compare_versions(session, ctx, service_id, source, target)
    return {**comparison.model_dump(), "changed_count": len(comparison.changed)}


@router.get("/{service_id}/versions/{version}", response_model=ApiServiceVersion)
def read_version(
    service_id: int,
    version: str,
    ctx: RequestContext = Depends(get_request_context),
    session: Session = Depends(get_session),
):
    lifecycle_service.get_api_service(session, ctx, service_id)
    return lifecycle_service.get_version(session, service_id, version)


@router.put("/{service_id}/tables", response_model=List[TableSelection])
def save_tables(
    service_id: int,
    requests: List[TableSelectionRequest],
    ctx: RequestContext = Depends(get_request_context),
    session: Session = Depends(get_session),
):
    return table_selection_service.save_table_selections(session, ctx, service_id, requests)


@router.get("/{service_id}/tables", response_model=List[TableSelection])
def read_tables(
    service_id: int,
    ctx: RequestContext = Depends(get_request_context),
    session: Session = Depends(get_session),
):
    return table_selection_service.list_table_selections(session, ctx, service_id)


@router.get("/{service_id}/sql-template")
def read_sql_template(
    service_id: int,
    ctx: RequestContext = Depends(get_request_context),
    session: Session = Depends(get_session),
):
    return {"sql": table_selection_service.generate_service_template(session, ctx, service_id)}
