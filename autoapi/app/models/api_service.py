from datetime import datetime
from enum import Enum
from typing import Any, List, Optional

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel

from autoapi.app.models.audited import utcnow


class ApiStatus(str, Enum):
    DRAFT = "draft"
    PUBLISHED = "published"


class ApiServiceBase(SQLModel):
    name: str = Field(index=True)
    description: Optional[str] = None
    path: str = Field(index=True)
    method: str = "GET"
    datasource_id: int = Field(foreign_key="datasource.id", index=True)
    sql_content: str
    request_params: Optional[str] = None  # JSON parameter schema
    response_example: Optional[str] = None
    cache_enabled: bool = False
    cache_duration: int = 300
    rate_limit: int = 100


class ApiService(ApiServiceBase, table=True):
    """The mutable draft of an API service."""

    id: Optional[int] = Field(default=None, primary_key=True)
    status: str = Field(default=ApiStatus.DRAFT.value, index=True)
    tenant_id: Optional[int] = Field(default=None, index=True)
    created_by: Optional[int] = Field(default=None, index=True)
    updated_by: Optional[int] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class ApiServiceCreate(ApiServiceBase):
    pass


class ApiServiceUpdate(SQLModel):
    name: Optional[str] = None
    description: Optional[str] = None
    path: Optional[str] = None
    method: Optional[str] = None
    datasource_id: Optional[int] = None
    sql_content: Optional[str] = None
    request_params: Optional[str] = None
    response_example: Optional[str] = None
    cache_enabled: Optional[bool] = None
    cache_duration: Optional[int] = None
    rate_limit: Optional[int] = None


# Draft fields copied into every version snapshot.
SNAPSHOT_FIELDS = (
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


class ApiServiceVersion(SQLModel, table=True):
    """Frozen copy of a draft taken at publish time."""

    __tablename__ = "apiserviceversion"
    __table_args__ = (UniqueConstraint("api_service_id", "version", name="uq_service_version"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    api_service_id: int = Field(foreign_key="apiservice.id", index=True)
    version: str
    version_description: Optional[str] = None
    name: str
    description: Optional[str] = None
    path: str
    method: str
    datasource_id: int
    sql_content: str
    request_params: Optional[str] = None
    response_example: Optional[str] = None
    cache_enabled: bool = False
    cache_duration: int = 300
    rate_limit: int = 100
    is_active: bool = Field(default=False, index=True)
    published_at: datetime = Field(default_factory=utcnow)
    unpublished_at: Optional[datetime] = None
    tenant_id: Optional[int] = Field(default=None, index=True)
    created_by: Optional[int] = None
    updated_by: Optional[int] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class PublishRequest(SQLModel):
    version: str
    version_description: Optional[str] = None
    force_publish: bool = False


class DifferenceType(str, Enum):
    ADDED = "added"
    REMOVED = "removed"
    MODIFIED = "modified"
    UNCHANGED = "unchanged"


class VersionDifference(SQLModel):
    field_name: str
    source_value: Optional[Any] = None
    target_value: Optional[Any] = None
    difference_type: DifferenceType


class VersionComparison(SQLModel):
    api_service_id: int
    source_version: str
    target_version: str
    differences: List[VersionDifference] = []

    @property
    def changed(self) -> List[VersionDifference]:
        return [d for d in self.differences if d.difference_type != DifferenceType.UNCHANGED]


class TableSelection(SQLModel, table=True):
    __tablename__ = "apiservicetableselection"

    id: Optional[int] = Field(default=None, primary_key=True)
    api_service_id: int = Field(foreign_key="apiservice.id", index=True)
    database_name: Optional[str] = None
    schema_name: Optional[str] = None
    table_name: str
    table_alias: Optional[str] = None
    table_type: str = "TABLE"
    selected_columns: Optional[str] = None  # JSON list of column names
    is_primary: bool = False
    join_type: Optional[str] = None  # INNER, LEFT, RIGHT
    join_condition: Optional[str] = None
    sort_order: int = 0
    tenant_id: Optional[int] = Field(default=None, index=True)
    created_by: Optional[int] = None
    updated_by: Optional[int] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class TableSelectionRequest(SQLModel):
    database_name: Optional[str] = None
    schema_name: Optional[str] = None
    table_name: str
    table_alias: Optional[str] = None
    table_type: str = "TABLE"
    selected_columns: List[str] = []
    is_primary: bool = False
    join_type: Optional[str] = None
    join_condition: Optional[str] = None
    sort_order: Optional[int] = None
