from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends
from sqlmodel import Field, SQLModel

from autoapi.app.core.context import RequestContext, get_request_context
from autoapi.app.services import testing_service
from autoapi.app.services.testing_service import ApiTestResult, SqlValidationResult

router = APIRouter(prefix="/api-services", tags=["testing"])


class ApiTestRequest(SQLModel):
    parameters: Dict[str, Any] = Field(default_factory=dict)
    version: Optional[str] = None


class BatchTestRequest(SQLModel):
    parameter_sets: List[Dict[str, Any]]
    version: Optional[str] = None
    draft: bool = False
    parallel: bool = False
    max_workers: Optional[int] = Field(default=None, ge=1, le=32)


class SqlValidationRequest(SQLModel):
    datasource_id: int
    sql: str
    parameters: Dict[str, Any] = Field(default_factory=dict)


@router.post("/{service_id}/test/draft", response_model=ApiTestResult)
def test_draft(service_id: int, request: ApiTestRequest, ctx: RequestContext = Depends(get_request_context)):
    return testing_service.test_draft(ctx, service_id, request.parameters)


@router.post("/{service_id}/test/published", response_model=ApiTestResult)
def test_published(service_id: int, request: ApiTestRequest, ctx: RequestContext = Depends(get_request_context)):
    return testing_service.test_published(ctx, service_id, request.parameters, request.version)


@router.post("/{service_id}/test/batch", response_model=Dict[str, Any])
def batch_test(service_id: int, request: BatchTestRequest, ctx: RequestContext = Depends(get_request_context)):
    results = testing_service.batch_test(
        ctx,
        service_id,
        request.parameter_sets,
        version=request.version,
        draft=request.draft,
        parallel=request.parallel,
        max_workers=request.max_workers,
    )
    succeeded = sum(1 for r in results if r.success)
    return {"items": results, "total": len(results), "succeeded": succeeded, "failed": len(results) - succeeded}


@router.post("/validate-sql", response_model=SqlValidationResult)
def validate_sql(request: SqlValidationRequest, ctx: RequestContext = Depends(get_request_context)):
    return testing_service.validate_sql(ctx, request.datasource_id, request.sql, request.parameters)
