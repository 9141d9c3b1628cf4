"""
Draft and version lifecycle of API services.

A draft is published any number of times; each publish freezes a copy of the
draft into a labelled ``ApiServiceVersion``. Exactly one version per service
is active after a publish. The switch is a single UPDATE so that concurrent
publishes never leave two active rows.
"""
import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional

from sqlalchemy import case, delete, update
from sqlmodel import Session, func, select

from autoapi.app.core.context import RequestContext
from autoapi.app.core.errors import (
    DuplicateVersionLabel,
    InvalidState,
    NoActiveVersion,
    NotFound,
    PermissionDenied,
    ServiceError,
    VersionNotFound,
)
from autoapi.app.models.api_service import (
    SNAPSHOT_FIELDS,
    ApiService,
    ApiServiceCreate,
    ApiServiceUpdate,
    ApiServiceVersion,
    ApiStatus,
    DifferenceType,
    PublishRequest,
    TableSelection,
    VersionComparison,
    VersionDifference,
)
from autoapi.app.models.audit import OperationResult, OperationType
from autoapi.app.models.audited import stamp_created, stamp_updated, utcnow
from autoapi.app.services.audit_service import record_audit
from autoapi.app.services.datasource_service import get_datasource
from autoapi.datasource.errors import DataSourceError, QueryRejected
from autoapi.datasource.validation import validate_query

logger = logging.getLogger(__name__)

COMPARED_FIELDS = (
    "name",
    "description",
    "path",
    "method",
    "datasource_id",
    "sql_content",
    "request_params",
    "response_example",
    "cache_enabled",
    "cache_duration",
    "rate_limit",
)

_locks_guard = threading.Lock()
_service_locks: Dict[int, threading.Lock] = {}


@contextmanager
def _service_lock(service_id: int) -> Iterator[None]:
    # Serializes lifecycle transitions of one service inside this process.
    with _locks_guard:
        lock = _service_locks.setdefault(service_id, threading.Lock())
    with lock:
        yield


@dataclass
class ResolvedQuery:
    api_service_id: int
    datasource_id: int
    sql_content: str
    version: Optional[str] = None


def _resource(service: ApiService) -> str:
    return f"api_service:{service.name}"


def _elapsed(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


def get_api_service(session: Session, ctx: RequestContext, service_id: int) -> ApiService:
    service = session.get(ApiService, service_id)
    if not service or service.tenant_id != ctx.tenant_id:
        raise NotFound(f"API service {service_id} not found")
    return service


def ensure_owner(service: ApiService, ctx: RequestContext) -> None:
    if service.created_by != ctx.user_id or service.tenant_id != ctx.tenant_id:
        raise PermissionDenied(f"User {ctx.user_id} does not own API service {service.id}")


def _audit_failure(ctx, action, service_id, resource, error, started, before=None) -> None:
    record_audit(
        ctx,
        action,
        resource,
        api_service_id=service_id,
        outcome=OperationResult.FAILED,
        error=error.message if isinstance(error, (ServiceError, DataSourceError)) else str(error),
        before=before,
        duration_ms=_elapsed(started),
    )


def create_api_service(session: Session, ctx: RequestContext, payload: ApiServiceCreate) -> ApiService:
    get_datasource(session, ctx, payload.datasource_id, require_enabled=True)

    duplicate_name = session.exec(
        select(ApiService).where(ApiService.created_by == ctx.user_id, ApiService.name == payload.name)
    ).first()
    if duplicate_name:
        raise InvalidState(f"API service name '{payload.name}' already exists")
    duplicate_path = session.exec(
        select(ApiService).where(
            ApiService.tenant_id == ctx.tenant_id,
            ApiService.path == payload.path,
            ApiService.method == payload.method.upper(),
        )
    ).first()
    if duplicate_path:
        raise InvalidState(f"{payload.method.upper()} {payload.path} is already used by another API service")

    service = ApiService(**payload.model_dump())
    service.method = service.method.upper()
    service.status = ApiStatus.DRAFT.value
    stamp_created(service, ctx)
    session.add(service)
    session.commit()
    session.refresh(service)

    record_audit(ctx, OperationType.CREATE, _resource(service), api_service_id=service.id, after=service)
    return service


def update_api_service(
    session: Session, ctx: RequestContext, service_id: int, payload: ApiServiceUpdate
) -> ApiService:
    started = time.perf_counter()
    service = get_api_service(session, ctx, service_id)
    before = service.model_dump()
    try:
        ensure_owner(service, ctx)
        if service.status != ApiStatus.DRAFT.value:
            raise InvalidState("Only draft API services can be edited; unpublish it first")
        changes = payload.model_dump(exclude_unset=True)
        if "datasource_id" in changes:
            get_datasource(session, ctx, changes["datasource_id"], require_enabled=True)
        if "method" in changes and changes["method"]:
            changes["method"] = changes["method"].upper()
        for key, value in changes.items():
            setattr(service, key, value)
        stamp_updated(service, ctx)
        session.add(service)
        session.commit()
        session.refresh(service)
    except ServiceError as e:
        session.rollback()
        _audit_failure(ctx, OperationType.UPDATE, service_id, f"api_service:{service_id}", e, started, before)
        raise

    record_audit(
        ctx,
        OperationType.UPDATE,
        _resource(service),
        api_service_id=service.id,
        before=before,
        after=service,
        duration_ms=_elapsed(started),
    )
    return service


def delete_api_service(session: Session, ctx: RequestContext, service_id: int) -> None:
    """Deletes a draft together with its versions and table selections. Audit records stay."""
    service = get_api_service(session, ctx, service_id)
    ensure_owner(service, ctx)
    if service.status != ApiStatus.DRAFT.value:
        raise InvalidState("Published API services must be unpublished before deletion")
    before = service.model_dump()
    resource = _resource(service)

    connection = session.connection()
    connection.execute(delete(ApiServiceVersion).where(ApiServiceVersion.api_service_id == service_id))
    connection.execute(delete(TableSelection).where(TableSelection.api_service_id == service_id))
    session.delete(service)
    session.commit()
    with _locks_guard:
        _service_locks.pop(service_id, None)

    record_audit(ctx, OperationType.DELETE, resource, api_service_id=service_id, before=before)


def list_api_services(
    session: Session,
    ctx: RequestContext,
    skip: int = 0,
    limit: int = 100,
    name: Optional[str] = None,
    status: Optional[str] = None,
    owned_only: bool = False,
) -> Dict[str, Any]:
    query = select(ApiService).where(ApiService.tenant_id == ctx.tenant_id)
    if owned_only:
        query = query.where(ApiService.created_by == ctx.user_id)
    if name:
        query = query.where(ApiService.name.contains(name))
    if status:
        query = query.where(ApiService.status == status)

    count_query = select(func.count()).select_from(query.subquery())
    total = session.exec(count_query).one()
    items = session.exec(query.order_by(ApiService.id).offset(skip).limit(limit)).all()
    return {"items": items, "total": total}


# Versions


def set_active_version(session: Session, service_id: int, version_id: int) -> None:
    """Activates one version and deactivates every other version of the service in one statement."""
    session.connection().execute(
        update(ApiServiceVersion)
        .where(ApiServiceVersion.api_service_id == service_id)
        .values(
            is_active=case((ApiServiceVersion.id == version_id, True), else_=False),
            updated_at=utcnow(),
        )
    )


def find_version(session: Session, service_id: int, label: str) -> Optional[ApiServiceVersion]:
    return session.exec(
        select(ApiServiceVersion).where(
            ApiServiceVersion.api_service_id == service_id, ApiServiceVersion.version == label
        )
    ).first()


def get_version(session: Session, service_id: int, label: str) -> ApiServiceVersion:
    version = find_version(session, service_id, label)
    if version is None:
        raise VersionNotFound(service_id, label)
    return version


def get_active_version(session: Session, service_id: int) -> ApiServiceVersion:
    version = session.exec(
        select(ApiServiceVersion).where(
            ApiServiceVersion.api_service_id == service_id, ApiServiceVersion.is_active == True  # noqa: E712
        )
    ).first()
    if version is None:
        raise NoActiveVersion(service_id)
    return version


def list_versions(
    session: Session, ctx: RequestContext, service_id: int, skip: int = 0, limit: int = 20
) -> Dict[str, Any]:
    get_api_service(session, ctx, service_id)
    query = select(ApiServiceVersion).where(ApiServiceVersion.api_service_id == service_id)
    count_query = select(func.count()).select_from(query.subquery())
    total = session.exec(count_query).one()
    items = session.exec(
        query.order_by(ApiServiceVersion.published_at.desc(), ApiServiceVersion.id.desc()).offset(skip).limit(limit)
    ).all()
    return {"items": items, "total": total}


def _copy_snapshot(service: ApiService, version: ApiServiceVersion) -> None:
    for field_name in SNAPSHOT_FIELDS:
        setattr(version, field_name, getattr(service, field_name))


def publish(session: Session, ctx: RequestContext, service_id: int, request: PublishRequest) -> ApiServiceVersion:
    started = time.perf_counter()
    label = (request.version or "").strip()
    with _service_lock(service_id):
        service = get_api_service(session, ctx, service_id)
        before = service.model_dump()
        try:
            ensure_owner(service, ctx)
            if not label:
                raise InvalidState("A version label is required to publish")
            datasource = get_datasource(session, ctx, service.datasource_id, require_enabled=True)
            check = validate_query(service.sql_content, datasource.type)
            if not check.valid:
                raise QueryRejected(check.errors)

            version = find_version(session, service_id, label)
            if version is not None and not request.force_publish:
                raise DuplicateVersionLabel(service_id, label)

            now = utcnow()
            if version is None:
                version = ApiServiceVersion(api_service_id=service_id, version=label, is_active=False)
                stamp_created(version, ctx)
            else:
                logger.info(f"Force publish overwrites version {label} of API service {service_id}")
                stamp_updated(version, ctx)
            _copy_snapshot(service, version)
            version.version_description = request.version_description
            version.published_at = now
            version.unpublished_at = None
            session.add(version)
            session.flush()

            set_active_version(session, service_id, version.id)

            service.status = ApiStatus.PUBLISHED.value
            stamp_updated(service, ctx)
            session.add(service)
            session.commit()
            session.refresh(version)
        except (ServiceError, DataSourceError) as e:
            session.rollback()
            _audit_failure(ctx, OperationType.PUBLISH, service_id, f"api_service:{service_id}", e, started, before)
            raise

    logger.info(f"Published API service {service_id} as version {label}")
    record_audit(
        ctx,
        OperationType.PUBLISH,
        _resource(service),
        api_service_id=service_id,
        description=f"Published version {label}",
        details={"version": label, "force_publish": request.force_publish},
        before=before,
        after=version,
        duration_ms=_elapsed(started),
    )
    return version


def unpublish(session: Session, ctx: RequestContext, service_id: int) -> ApiServiceVersion:
    started = time.perf_counter()
    with _service_lock(service_id):
        service = get_api_service(session, ctx, service_id)
        try:
            ensure_owner(service, ctx)
            if service.status != ApiStatus.PUBLISHED.value:
                raise InvalidState(f"API service {service_id} is not published")
            version = get_active_version(session, service_id)
            version.is_active = False
            version.unpublished_at = utcnow()
            stamp_updated(version, ctx)
            service.status = ApiStatus.DRAFT.value
            stamp_updated(service, ctx)
            session.add(version)
            session.add(service)
            session.commit()
            session.refresh(version)
        except ServiceError as e:
            session.rollback()
            _audit_failure(ctx, OperationType.UNPUBLISH, service_id, f"api_service:{service_id}", e, started)
            raise

    logger.info(f"Unpublished version {version.version} of API service {service_id}")
    record_audit(
        ctx,
        OperationType.UNPUBLISH,
        _resource(service),
        api_service_id=service_id,
        description=f"Unpublished version {version.version}",
        after=version,
        duration_ms=_elapsed(started),
    )
    return version


# Query resolution


def resolve_draft(session: Session, ctx: RequestContext, service_id: int) -> ResolvedQuery:
    service = get_api_service(session, ctx, service_id)
    ensure_owner(service, ctx)
    return ResolvedQuery(api_service_id=service.id, datasource_id=service.datasource_id, sql_content=service.sql_content)


def resolve_published(
    session: Session, ctx: RequestContext, service_id: int, version: Optional[str] = None
) -> ResolvedQuery:
    get_api_service(session, ctx, service_id)
    snapshot = get_version(session, service_id, version) if version else get_active_version(session, service_id)
    return ResolvedQuery(
        api_service_id=service_id,
        datasource_id=snapshot.datasource_id,
        sql_content=snapshot.sql_content,
        version=snapshot.version,
    )


# Comparison


def compare_values(source: Any, target: Any) -> DifferenceType:
    if source is None and target is None:
        return DifferenceType.UNCHANGED
    if source is None:
        return DifferenceType.ADDED
    if target is None:
        return DifferenceType.REMOVED
    if source != target:
        return DifferenceType.MODIFIED
    return DifferenceType.UNCHANGED


def compare_snapshots(source: ApiServiceVersion, target: ApiServiceVersion) -> List[VersionDifference]:
    differences = []
    for field_name in COMPARED_FIELDS:
        source_value = getattr(source, field_name)
        target_value = getattr(target, field_name)
        differences.append(
            VersionDifference(
                field_name=field_name,
                source_value=source_value,
                target_value=target_value,
                difference_type=compare_values(source_value, target_value),
            )
        )
    return differences


def compare_versions(
    session: Session, ctx: RequestContext, service_id: int, source_label: str, target_label: str
) -> VersionComparison:
    started = time.perf_counter()
    service = get_api_service(session, ctx, service_id)
    try:
        source = get_version(session, service_id, source_label)
        target = get_version(session, service_id, target_label)
    except VersionNotFound as e:
        _audit_failure(ctx, OperationType.VERSION_COMPARE, service_id, _resource(service), e, started)
        raise

    comparison = VersionComparison(
        api_service_id=service_id,
        source_version=source_label,
        target_version=target_label,
        differences=compare_snapshots(source, target),
    )
    record_audit(
        ctx,
        OperationType.VERSION_COMPARE,
        _resource(service),
        api_service_id=service_id,
        description=f"Compared {source_label} with {target_label}",
        details={"changed_fields": [d.field_name for d in comparison.changed]},
        duration_ms=_elapsed(started),
    )
    return comparison
