import json
import logging
import re
from dataclasses import asdict
from datetime import timedelta
from typing import Any, Dict, Optional

from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, SQLModel, func, select

from autoapi.app.core.config import settings
from autoapi.app.core.context import RequestContext
from autoapi.app.core.db import engine
from autoapi.app.models.audit import AuditLog, OperationResult, OperationType
from autoapi.app.models.audited import AUDITED_FIELDS, audited, utcnow

logger = logging.getLogger(__name__)

SECRET_PATTERNS = (
    (re.compile(r"(://[^:/@\s]+:)[^@\s]+@"), r"\1****@"),
    (re.compile(r"(password\s*[=:]\s*)[^\s,;&]+", re.IGNORECASE), r"\1****"),
)

SNAPSHOT_EXCLUDE = {"password"}


def redact_secrets(text: Optional[str]) -> Optional[str]:
    if not text:
        return text
    for pattern, replacement in SECRET_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


def snapshot(data: Any) -> Optional[str]:
    if data is None:
        return None
    if isinstance(data, SQLModel):
        data = data.model_dump()
    if isinstance(data, dict):
        record = audited(data)
        data = {k: v for k, v in data.items() if k not in SNAPSHOT_EXCLUDE and k not in AUDITED_FIELDS}
        # Bookkeeping columns are nested under "record", the rest stays flat.
        if any(value is not None for value in asdict(record).values()):
            data["record"] = asdict(record)
    return json.dumps(data, default=str, ensure_ascii=False)


def record_audit(
    ctx: Optional[RequestContext],
    action: OperationType,
    resource: str,
    api_service_id: Optional[int] = None,
    outcome: OperationResult = OperationResult.SUCCESS,
    description: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
    before: Any = None,
    after: Any = None,
    error: Optional[str] = None,
    duration_ms: Optional[int] = None,
) -> Optional[AuditLog]:
    """Appends one audit record in its own transaction.

    A failure to write is logged and swallowed so that auditing never changes
    the outcome of the operation being audited.
    """
    log = AuditLog(
        api_service_id=api_service_id,
        user_id=ctx.user_id if ctx else None,
        tenant_id=ctx.tenant_id if ctx else None,
        action=action.value,
        outcome=outcome.value,
        resource=resource,
        description=description,
        details=redact_secrets(json.dumps(details, default=str, ensure_ascii=False)) if details else None,
        before_data=snapshot(before),
        after_data=snapshot(after),
        error_message=redact_secrets(error),
        duration_ms=duration_ms,
    )
    try:
        with Session(engine) as session:
            session.add(log)
            session.commit()
            session.refresh(log)
        return log
    except SQLAlchemyError as e:
        logger.warning(f"Failed to write audit log for {action.value} on {resource}: {e}")
        return None


def list_audit_logs(
    session: Session,
    ctx: RequestContext,
    skip: int = 0,
    limit: int = 100,
    api_service_id: Optional[int] = None,
    action: Optional[str] = None,
    outcome: Optional[str] = None,
    user_id: Optional[int] = None,
    resource: Optional[str] = None,
) -> Dict[str, Any]:
    query = select(AuditLog).where(AuditLog.tenant_id == ctx.tenant_id)
    if api_service_id is not None:
        query = query.where(AuditLog.api_service_id == api_service_id)
    if action:
        query = query.where(AuditLog.action == action)
    if outcome:
        query = query.where(AuditLog.outcome == outcome)
    if user_id is not None:
        query = query.where(AuditLog.user_id == user_id)
    if resource:
        query = query.where(AuditLog.resource == resource)

    count_query = select(func.count()).select_from(query.subquery())
    total = session.exec(count_query).one()

    query = query.order_by(AuditLog.timestamp.desc(), AuditLog.id.desc()).offset(skip).limit(limit)
    items = session.exec(query).all()
    return {"items": items, "total": total}


def purge_audit_logs(session: Session, older_than_days: Optional[int] = None) -> int:
    days = settings.AUDIT_RETENTION_DAYS if older_than_days is None else older_than_days
    cutoff = utcnow() - timedelta(days=days)
    result = session.connection().execute(delete(AuditLog).where(AuditLog.timestamp < cutoff))
    session.commit()
    logger.info(f"Purged {result.rowcount} audit logs older than {days} days")
    return result.rowcount
