import json
import logging
from typing import Any, Dict, Optional

from sqlmodel import Session, func, select

from autoapi.app.core.config import settings
from autoapi.app.core.context import RequestContext
from autoapi.app.core.errors import InvalidState, NotFound
from autoapi.app.models.audit import OperationType
from autoapi.app.models.audited import stamp_created, stamp_updated
from autoapi.app.models.datasource import DataSource, DataSourceCreate, DataSourceUpdate
from autoapi.app.services.audit_service import record_audit
from autoapi.datasource.errors import ConfigurationError
from autoapi.datasource.factory import DataSourceFactory
from autoapi.datasource.validation import validate_datasource_request

logger = logging.getLogger(__name__)

factory = DataSourceFactory(
    acquire_timeout=settings.POOL_ACQUIRE_TIMEOUT,
    health_check_timeout=settings.POOL_HEALTH_CHECK_TIMEOUT,
    http_timeout=settings.HTTP_TIMEOUT,
)


def _resource(datasource: DataSource) -> str:
    return f"datasource:{datasource.name}"


def get_datasource(
    session: Session, ctx: RequestContext, datasource_id: int, require_enabled: bool = False
) -> DataSource:
    datasource = session.get(DataSource, datasource_id)
    if not datasource or datasource.tenant_id != ctx.tenant_id:
        raise NotFound(f"DataSource {datasource_id} not found")
    if require_enabled and not datasource.enabled:
        raise InvalidState(f"DataSource {datasource.name} is disabled")
    return datasource


def _validate(data: Dict[str, Any]) -> None:
    result = validate_datasource_request(data)
    if not result.valid:
        raise ConfigurationError(result.error_message)


def create_datasource(session: Session, ctx: RequestContext, payload: DataSourceCreate) -> DataSource:
    _validate(payload.model_dump())
    datasource = payload.to_model()
    stamp_created(datasource, ctx)
    session.add(datasource)
    session.commit()
    session.refresh(datasource)

    record_audit(ctx, OperationType.CREATE, _resource(datasource), description=f"Type: {datasource.type}", after=datasource)
    return datasource


def update_datasource(
    session: Session, ctx: RequestContext, datasource_id: int, payload: DataSourceUpdate
) -> DataSource:
    datasource = get_datasource(session, ctx, datasource_id)
    before = datasource.model_dump()
    changes = payload.model_dump(exclude_unset=True)

    merged = datasource.model_dump()
    merged.update(changes)
    _validate(merged)

    properties = changes.pop("properties", None)
    for key, value in changes.items():
        setattr(datasource, key, value)
    if properties is not None:
        datasource.properties = json.dumps(properties) if properties else None
    stamp_updated(datasource, ctx)
    session.add(datasource)
    session.commit()
    session.refresh(datasource)

    factory.evict(datasource.to_config().pool_key)
    record_audit(ctx, OperationType.UPDATE, _resource(datasource), before=before, after=datasource)
    return datasource


def delete_datasource(session: Session, ctx: RequestContext, datasource_id: int) -> DataSource:
    """Soft delete: the row stays so published versions keep resolving their data source."""
    datasource = get_datasource(session, ctx, datasource_id)
    datasource.enabled = False
    stamp_updated(datasource, ctx)
    session.add(datasource)
    session.commit()
    session.refresh(datasource)

    factory.evict(datasource.to_config().pool_key)
    record_audit(ctx, OperationType.DELETE, _resource(datasource), description="Disabled data source")
    return datasource


def list_datasources(
    session: Session,
    ctx: RequestContext,
    skip: int = 0,
    limit: int = 100,
    name: Optional[str] = None,
    type: Optional[str] = None,
    include_disabled: bool = False,
) -> Dict[str, Any]:
    query = select(DataSource).where(DataSource.tenant_id == ctx.tenant_id)
    if not include_disabled:
        query = query.where(DataSource.enabled == True)  # noqa: E712
    if name:
        query = query.where(DataSource.name.contains(name))
    if type:
        query = query.where(DataSource.type == type)

    count_query = select(func.count()).select_from(query.subquery())
    total = session.exec(count_query).one()
    datasources = session.exec(query.order_by(DataSource.id).offset(skip).limit(limit)).all()
    return {"data": datasources, "total": total, "skip": skip, "limit": limit}
