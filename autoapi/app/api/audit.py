from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query
from sqlmodel import Session

from autoapi.app.core.context import RequestContext, get_request_context
from autoapi.app.core.db import get_session
from autoapi.app.services.audit_service import list_audit_logs, purge_audit_logs

router = APIRouter(prefix="/audit", tags=["audit"])


@router.get("/", response_model=Dict[str, Any])
def get_audit_logs(
    skip: int = 0,
    limit: int = 100,
    api_service_id: Optional[int] = None,
    action: Optional[str] = None,
    outcome: Optional[str] = None,
    user_id: Optional[int] = None,
    resource: Optional[str] = None,
    ctx: RequestContext = Depends(get_request_context),
    session: Session = Depends(get_session),
):
    return list_audit_logs(session, ctx, skip, limit, api_service_id, action, outcome, user_id, resource)


@router.get("/api-services/{service_id}", response_model=Dict[str, Any])
def get_service_audit_logs(
    service_id: int,
    skip: int = 0,
    limit: int = 100,
    ctx: RequestContext = Depends(get_request_context),
    session: Session = Depends(get_session),
):
    return list_audit_logs(session, ctx, skip, limit, api_service_id=service_id)


@router.delete("/")
def purge(
    older_than_days: Optional[int] = Query(default=None, ge=0),
    session: Session = Depends(get_session),
):
    count = purge_audit_logs(session, older_than_days)
    return {"ok": True, "count": count}
