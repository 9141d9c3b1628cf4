import json
import logging
from typing import List

from sqlalchemy import delete
from sqlmodel import Session, select

from autoapi.app.core.context import RequestContext
from autoapi.app.core.errors import InvalidState, ValidationFailed
from autoapi.app.models.api_service import ApiStatus, TableSelection, TableSelectionRequest
from autoapi.app.models.audit import OperationType
from autoapi.app.models.audited import stamp_created
from autoapi.app.services.audit_service import record_audit
from autoapi.app.services.lifecycle_service import ensure_owner, get_api_service

logger = logging.getLogger(__name__)

JOIN_TYPES = ("INNER", "LEFT", "RIGHT", "FULL")
EMPTY_TEMPLATE = "SELECT * FROM your_table"
PARAMETER_HINT = "  -- Add query conditions here using ${paramName} placeholders"


def save_table_selections(
    session: Session, ctx: RequestContext, service_id: int, requests: List[TableSelectionRequest]
) -> List[TableSelection]:
    """Replaces every table selection of a draft."""
    service = get_api_service(session, ctx, service_id)
    ensure_owner(service, ctx)
    if service.status != ApiStatus.DRAFT.value:
        raise InvalidState("Table selections can only be changed on a draft")

    primaries = [r for r in requests if r.is_primary]
    if len(primaries) > 1:
        raise ValidationFailed("Only one table can be the primary table")
    for request in requests:
        if request.join_type and request.join_type.upper() not in JOIN_TYPES:
            raise ValidationFailed(f"Unsupported join type: {request.join_type}")

    session.connection().execute(delete(TableSelection).where(TableSelection.api_service_id == service_id))
    selections = []
    for index, request in enumerate(requests):
        selection = TableSelection(
            api_service_id=service_id,
            database_name=request.database_name,
            schema_name=request.schema_name,
            table_name=request.table_name,
            table_alias=request.table_alias,
            table_type=request.table_type,
            selected_columns=json.dumps(request.selected_columns) if request.selected_columns else None,
            is_primary=request.is_primary or (not primaries and index == 0),
            join_type=request.join_type.upper() if request.join_type else None,
            join_condition=request.join_condition,
            sort_order=index if request.sort_order is None else request.sort_order,
        )
        stamp_created(selection, ctx)
        session.add(selection)
        selections.append(selection)
    session.commit()
    for selection in selections:
        session.refresh(selection)

    record_audit(
        ctx,
        OperationType.UPDATE,
        f"api_service:{service.name}",
        api_service_id=service_id,
        description="Replaced table selections",
        details={"tables": [s.table_name for s in selections]},
    )
    return sorted(selections, key=lambda s: (s.sort_order, s.id))


def list_table_selections(session: Session, ctx: RequestContext, service_id: int) -> List[TableSelection]:
    get_api_service(session, ctx, service_id)
    return session.exec(
        select(TableSelection)
        .where(TableSelection.api_service_id == service_id)
        .order_by(TableSelection.sort_order, TableSelection.id)
    ).all()


def _qualified_name(selection: TableSelection) -> str:
    parts = [p for p in (selection.database_name, selection.schema_name) if p]
    parts.append(selection.table_name)
    name = ".".join(parts)
    if selection.table_alias:
        name += f" AS {selection.table_alias}"
    return name


def _columns(selection: TableSelection) -> List[str]:
    if not selection.selected_columns:
        return []
    prefix = selection.table_alias or selection.table_name
    return [f"{prefix}.{column}" for column in json.loads(selection.selected_columns)]


def generate_sql_template(selections: List[TableSelection]) -> str:
    if not selections:
        return EMPTY_TEMPLATE

    ordered = sorted(selections, key=lambda s: (not s.is_primary, s.sort_order))
    primary, joined = ordered[0], ordered[1:]

    columns = [column for selection in ordered for column in _columns(selection)]
    sql = "SELECT " + (",\n       ".join(columns) if columns else "*")
    sql += f"\nFROM {_qualified_name(primary)}"
    for selection in joined:
        join_type = selection.join_type or "INNER"
        sql += f"\n{join_type} JOIN {_qualified_name(selection)}"
        if selection.join_condition:
            sql += f" ON {selection.join_condition}"
    sql += "\nWHERE 1=1"
    sql += f"\n{PARAMETER_HINT}"
    return sql


def generate_service_template(session: Session, ctx: RequestContext, service_id: int) -> str:
    return generate_sql_template(list_table_selections(session, ctx, service_id))
