import logging
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from sqlmodel import Field, Session, SQLModel

from autoapi.app.core.config import settings
from autoapi.app.core.context import RequestContext
from autoapi.app.core.db import engine
from autoapi.app.core.errors import ServiceError
from autoapi.app.models.audit import OperationResult, OperationType
from autoapi.app.models.audited import utcnow
from autoapi.app.services.audit_service import record_audit
from autoapi.app.services.datasource_service import factory, get_datasource
from autoapi.app.services.lifecycle_service import ResolvedQuery, resolve_draft, resolve_published
from autoapi.datasource.connection import Capability
from autoapi.datasource.errors import DataSourceError, ExecutionError, QueryRejected
from autoapi.datasource.templating import missing_parameters, render_template
from autoapi.datasource.types import DataSourceConfig
from autoapi.datasource.validation import validate_query

logger = logging.getLogger(__name__)

INTERNAL_ERROR = "INTERNAL_ERROR"


class ApiTestResult(SQLModel):
    success: bool = False
    message: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    data: List[Dict[str, Any]] = Field(default_factory=list)
    columns: List[str] = Field(default_factory=list)
    record_count: int = 0
    executed_query: Optional[str] = None
    test_parameters: Dict[str, Any] = Field(default_factory=dict)
    version: Optional[str] = None
    connection_time_ms: Optional[int] = None
    query_time_ms: Optional[int] = None
    execution_time_ms: int = 0
    test_time: datetime = Field(default_factory=utcnow)
    api_service_id: Optional[int] = None


class SqlValidationResult(SQLModel):
    valid: bool = True
    errors: List[str] = Field(default_factory=list)
    rendered_query: Optional[str] = None
    missing_parameters: List[str] = Field(default_factory=list)
    preflight_applicable: bool = False
    preflight_valid: Optional[bool] = None
    preflight_error: Optional[str] = None
    line: Optional[int] = None
    column: Optional[int] = None


def _elapsed(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


def _fail(result: ApiTestResult, error_code: str, message: str) -> None:
    result.success = False
    result.error_code = error_code
    result.error_message = message
    result.message = f"Test failed: {message}"


def _execute(config: DataSourceConfig, sql: str, params: Dict[str, Any], result: ApiTestResult) -> None:
    check = validate_query(sql, config.type)
    if not check.valid:
        logger.warning(f"Rejected query for API service {result.api_service_id}: {check.error_message}")
        raise QueryRejected(check.errors)

    query = render_template(sql, params, escape_quotes=settings.TEMPLATE_ESCAPE_QUOTES)
    result.executed_query = query

    connect_started = time.perf_counter()
    with factory.acquire(config) as connection:
        result.connection_time_ms = _elapsed(connect_started)
        outcome = connection.execute_query(query)

    result.query_time_ms = outcome.elapsed_ms
    if not outcome.ok:
        raise ExecutionError(outcome.error or "Query failed")
    result.success = True
    result.data = outcome.rows
    result.columns = outcome.column_names
    result.record_count = outcome.row_count
    result.message = f"Test succeeded, {outcome.row_count} records returned"


def _run(
    ctx: RequestContext,
    service_id: int,
    params: Optional[Dict[str, Any]],
    resolve: Callable[[Session], ResolvedQuery],
) -> ApiTestResult:
    """Resolves, renders and executes one query. Never raises for expected failures."""
    started = time.perf_counter()
    result = ApiTestResult(api_service_id=service_id, test_parameters=dict(params or {}))
    try:
        with Session(engine) as session:
            resolved = resolve(session)
            result.version = resolved.version
            datasource = get_datasource(session, ctx, resolved.datasource_id, require_enabled=True)
            config = datasource.to_config()
        _execute(config, resolved.sql_content, result.test_parameters, result)
    except (ServiceError, DataSourceError) as e:
        _fail(result, e.error_code, e.message)
    except Exception as e:
        logger.exception(f"Test of API service {service_id} failed unexpectedly")
        _fail(result, INTERNAL_ERROR, str(e))
    result.execution_time_ms = _elapsed(started)
    return result


def _audit_test(ctx: RequestContext, service_id: int, result: ApiTestResult, draft: bool) -> None:
    record_audit(
        ctx,
        OperationType.TEST,
        f"api_service:{service_id}",
        api_service_id=service_id,
        outcome=OperationResult.SUCCESS if result.success else OperationResult.FAILED,
        description="Draft test" if draft else f"Published test of version {result.version}",
        details={
            "parameters": result.test_parameters,
            "record_count": result.record_count,
            "error_code": result.error_code,
        },
        error=result.error_message,
        duration_ms=result.execution_time_ms,
    )


def _test(
    ctx: RequestContext,
    service_id: int,
    params: Optional[Dict[str, Any]],
    version: Optional[str] = None,
    draft: bool = False,
) -> ApiTestResult:
    if draft:
        return _run(ctx, service_id, params, lambda session: resolve_draft(session, ctx, service_id))
    return _run(ctx, service_id, params, lambda session: resolve_published(session, ctx, service_id, version))


def test_draft(ctx: RequestContext, service_id: int, params: Optional[Dict[str, Any]] = None) -> ApiTestResult:
    result = _test(ctx, service_id, params, draft=True)
    _audit_test(ctx, service_id, result, draft=True)
    return result


def test_published(
    ctx: RequestContext,
    service_id: int,
    params: Optional[Dict[str, Any]] = None,
    version: Optional[str] = None,
) -> ApiTestResult:
    result = _test(ctx, service_id, params, version=version)
    _audit_test(ctx, service_id, result, draft=False)
    return result


def batch_test(
    ctx: RequestContext,
    service_id: int,
    param_sets: List[Dict[str, Any]],
    version: Optional[str] = None,
    draft: bool = False,
    parallel: bool = False,
    max_workers: Optional[int] = None,
) -> List[ApiTestResult]:
    """Runs one test per parameter set. Results keep input order and one failure never stops the rest."""
    started = time.perf_counter()

    def run_item(params: Dict[str, Any]) -> ApiTestResult:
        return _test(ctx, service_id, params, version=version, draft=draft)

    if parallel and len(param_sets) > 1:
        workers = min(max_workers or settings.BATCH_MAX_WORKERS, len(param_sets))
        with ThreadPoolExecutor(max_workers=workers) as executor:
            results = list(executor.map(run_item, param_sets))
    else:
        results = [run_item(params) for params in param_sets]

    succeeded = sum(1 for r in results if r.success)
    if results and succeeded == len(results):
        outcome = OperationResult.SUCCESS
    elif succeeded:
        outcome = OperationResult.PARTIAL_SUCCESS
    else:
        outcome = OperationResult.FAILED
    record_audit(
        ctx,
        OperationType.TEST,
        f"api_service:{service_id}",
        api_service_id=service_id,
        outcome=outcome,
        description=f"Batch test: {succeeded}/{len(results)} succeeded",
        details={"total": len(results), "succeeded": succeeded, "parallel": parallel, "draft": draft},
        duration_ms=_elapsed(started),
    )
    return results


def validate_sql(
    ctx: RequestContext, datasource_id: int, sql: str, params: Optional[Dict[str, Any]] = None
) -> SqlValidationResult:
    """Checks a query without executing it.

    The deny-list and shape rules always run. When the data source advertises
    query validation the rendered text is also pre-flighted on the backend.
    """
    with Session(engine) as session:
        datasource = get_datasource(session, ctx, datasource_id, require_enabled=True)
        config = datasource.to_config()

    check = validate_query(sql, config.type)
    result = SqlValidationResult(valid=check.valid, errors=check.errors)
    if not sql or not sql.strip():
        return result
    result.missing_parameters = missing_parameters(sql, params)
    result.rendered_query = render_template(sql, params, escape_quotes=settings.TEMPLATE_ESCAPE_QUOTES)
    if not check.valid:
        return result

    with factory.acquire(config) as connection:
        if not connection.supports(Capability.QUERY_VALIDATION):
            return result
        preflight = connection.validate_query(result.rendered_query)
    result.preflight_applicable = True
    result.preflight_valid = preflight.valid
    result.preflight_error = preflight.error
    result.line = preflight.line
    result.column = preflight.column
    if not preflight.valid:
        result.valid = False
        result.errors.append(preflight.error or "Query failed backend validation")
    return result
