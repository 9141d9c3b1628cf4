from dataclasses import asdict
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from sqlmodel import Session

from autoapi.app.core.context import RequestContext, get_request_context
from autoapi.app.core.db import get_session
from autoapi.app.models.datasource import DataSourceCreate, DataSourceRead, DataSourceUpdate
from autoapi.app.services import datasource_service
from autoapi.app.services.datasource_service import factory
from autoapi.datasource.connection import Capability
from autoapi.datasource.types import Category, get_descriptor, list_descriptors
from autoapi.datasource.validation import validate_datasource_request

router = APIRouter(prefix="/datasources", tags=["datasources"])


def _descriptor_dict(descriptor) -> Dict[str, Any]:
    data = asdict(descriptor)
    data["recommended_version"] = descriptor.recommended_version
    return data


# Static routes are declared before /{datasource_id}.


@router.get("/types", response_model=Dict[str, Any])
def list_types(category: Optional[Category] = None):
    items = [_descriptor_dict(d) for d in list_descriptors(category)]
    return {"items": items, "total": len(items)}


@router.get("/types/{ds_type}/dependency")
def get_dependency_info(ds_type: str):
    return asdict(factory.get_dependency_info(ds_type))


@router.post("/validate")
def validate_datasource(payload: DataSourceCreate):
    request_check = validate_datasource_request(payload.model_dump())
    if not request_check.valid:
        return {"valid": False, "errors": request_check.errors, "error_message": request_check.error_message}
    check = factory.validate_configuration(payload.to_model().to_config())
    return {
        "valid": check.valid,
        "errors": [check.error_message] if check.error_message else [],
        "error_message": check.error_message,
        "recommendation": check.recommendation,
    }


@router.post("/connection-url")
def build_connection_url(payload: DataSourceCreate):
    get_descriptor(payload.type)
    return {"url": factory.build_connection_url(payload.to_model().to_config())}


@router.post("/test-connection")
def test_adhoc_connection(payload: DataSourceCreate):
    return asdict(factory.test_connection(payload.to_model().to_config()))


@router.post("/", response_model=DataSourceRead)
def create_datasource(
    payload: DataSourceCreate,
    ctx: RequestContext = Depends(get_request_context),
    session: Session = Depends(get_session),
):
    return DataSourceRead.from_model(datasource_service.create_datasource(session, ctx, payload))


@router.get("/", response_model=Dict[str, Any])
def read_datasources(
    skip: int = 0,
    limit: int = 100,
    name: Optional[str] = None,
    type: Optional[str] = None,
    include_disabled: bool = False,
    ctx: RequestContext = Depends(get_request_context),
    session: Session = Depends(get_session),
):
    page = datasource_service.list_datasources(session, ctx, skip, limit, name, type, include_disabled)
    page["data"] = [DataSourceRead.from_model(d) for d in page["data"]]
    return page


@router.get("/{datasource_id}", response_model=DataSourceRead)
def read_datasource(
    datasource_id: int,
    ctx: RequestContext = Depends(get_request_context),
    session: Session = Depends(get_session),
):
    return DataSourceRead.from_model(datasource_service.get_datasource(session, ctx, datasource_id))


@router.put("/{datasource_id}", response_model=DataSourceRead)
def update_datasource(
    datasource_id: int,
    payload: DataSourceUpdate,
    ctx: RequestContext = Depends(get_request_context),
    session: Session = Depends(get_session),
):
    return DataSourceRead.from_model(datasource_service.update_datasource(session, ctx, datasource_id, payload))


@router.delete("/{datasource_id}")
def delete_datasource(
    datasource_id: int,
    ctx: RequestContext = Depends(get_request_context),
    session: Session = Depends(get_session),
):
    datasource_service.delete_datasource(session, ctx, datasource_id)
    return {"ok": True}


@router.post("/{datasource_id}/test")
def test_connection(
    datasource_id: int,
    ctx: RequestContext = Depends(get_request_context),
    session: Session = Depends(get_session),
):
    datasource = datasource_service.get_datasource(session, ctx, datasource_id)
    return asdict(factory.test_connection(datasource.to_config()))


@router.get("/{datasource_id}/connection-url")
def get_connection_url(
    datasource_id: int,
    ctx: RequestContext = Depends(get_request_context),
    session: Session = Depends(get_session),
):
    datasource = datasource_service.get_datasource(session, ctx, datasource_id)
    return {"url": factory.build_connection_url(datasource.to_config())}


@router.get("/{datasource_id}/tables")
def list_tables(
    datasource_id: int,
    database: Optional[str] = None,
    schema: Optional[str] = None,
    ctx: RequestContext = Depends(get_request_context),
    session: Session = Depends(get_session),
):
    config = datasource_service.get_datasource(session, ctx, datasource_id, require_enabled=True).to_config()
    with factory.acquire(config) as connection:
        if (database or schema) and connection.supports(Capability.MULTI_SCHEMA):
            tables = connection.get_tables(database=database, schema=schema)
        else:
            tables = connection.list_tables()
    return {"tables": [asdict(t) for t in tables], "total": len(tables)}


@router.get("/{datasource_id}/tables/{table_name}/schema")
def get_table_schema(
    datasource_id: int,
    table_name: str,
    ctx: RequestContext = Depends(get_request_context),
    session: Session = Depends(get_session),
):
    config = datasource_service.get_datasource(session, ctx, datasource_id, require_enabled=True).to_config()
    with factory.acquire(config) as connection:
        schema = connection.get_table_schema(table_name)
    return asdict(schema)


@router.get("/{datasource_id}/databases")
def list_databases(
    datasource_id: int,
    ctx: RequestContext = Depends(get_request_context),
    session: Session = Depends(get_session),
):
    config = datasource_service.get_datasource(session, ctx, datasource_id, require_enabled=True).to_config()
    with factory.acquire(config) as connection:
        if not connection.supports(Capability.MULTI_DATABASE):
            return {"applicable": False, "items": []}
        return {"applicable": True, "items": connection.list_databases()}


@router.get("/{datasource_id}/schemas")
def list_schemas(
    datasource_id: int,
    ctx: RequestContext = Depends(get_request_context),
    session: Session = Depends(get_session),
):
    config = datasource_service.get_datasource(session, ctx, datasource_id, require_enabled=True).to_config()
    with factory.acquire(config) as connection:
        if not connection.supports(Capability.MULTI_SCHEMA):
            return {"applicable": False, "items": []}
        return {"applicable": True, "items": connection.list_schemas()}


@router.get("/{datasource_id}/pool-status")
def get_pool_status(
    datasource_id: int,
    ctx: RequestContext = Depends(get_request_context),
    session: Session = Depends(get_session),
):
    datasource = datasource_service.get_datasource(session, ctx, datasource_id)
    if not datasource.enabled:
        return {"pooled": False, "enabled": False}
    status = factory.pool_status(datasource.to_config())
    if status is None:
        return {"pooled": False}
    return {"pooled": True, **asdict(status)}
