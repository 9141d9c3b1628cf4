from dataclasses import dataclass, fields
from datetime import datetime, timezone
from typing import Optional

from autoapi.app.core.context import RequestContext


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class AuditedRecord:
    """Identity and bookkeeping columns every persisted entity declares."""

    id: Optional[int]
    created_at: Optional[datetime]
    updated_at: Optional[datetime]
    created_by: Optional[int]
    updated_by: Optional[int]
    tenant_id: Optional[int]


AUDITED_FIELDS = tuple(f.name for f in fields(AuditedRecord))


def audited(entity) -> AuditedRecord:
    if isinstance(entity, dict):
        return AuditedRecord(**{name: entity.get(name) for name in AUDITED_FIELDS})
    return AuditedRecord(**{name: getattr(entity, name, None) for name in AUDITED_FIELDS})


def stamp_created(entity, ctx: RequestContext) -> None:
    now = utcnow()
    entity.created_at = now
    entity.updated_at = now
    entity.created_by = ctx.user_id
    entity.updated_by = ctx.user_id
    entity.tenant_id = ctx.tenant_id


def stamp_updated(entity, ctx: RequestContext) -> None:
    entity.updated_at = utcnow()
    entity.updated_by = ctx.user_id
