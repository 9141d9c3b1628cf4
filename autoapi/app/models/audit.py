from datetime import datetime
from enum import Enum
from typing import Optional

from sqlmodel import Field, SQLModel

from autoapi.app.models.audited import utcnow


class OperationType(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    PUBLISH = "publish"
    UNPUBLISH = "unpublish"
    TEST = "test"
    VERSION_COMPARE = "version_compare"


class OperationResult(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    PARTIAL_SUCCESS = "partial_success"


class AuditLog(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    api_service_id: Optional[int] = Field(default=None, index=True)
    user_id: Optional[int] = Field(default=None, index=True)
    tenant_id: Optional[int] = Field(default=None, index=True)
    action: str = Field(index=True)
    outcome: str = Field(default=OperationResult.SUCCESS.value)
    resource: str
    description: Optional[str] = None
    details: Optional[str] = None
    before_data: Optional[str] = None
    after_data: Optional[str] = None
    error_message: Optional[str] = None
    duration_ms: Optional[int] = None
    timestamp: datetime = Field(default_factory=utcnow, index=True)
