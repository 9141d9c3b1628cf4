import json
from datetime import datetime
from typing import Dict, Optional

from sqlmodel import Field, SQLModel

from autoapi.app.models.audited import utcnow
from autoapi.datasource.types import DataSourceConfig


class DataSourceBase(SQLModel):
    name: str = Field(index=True)
    description: Optional[str] = Field(default=None)
    type: str = Field(index=True)  # mysql, postgresql, sqlite, mongodb, http_api, ...
    host: Optional[str] = None
    port: Optional[int] = None
    database: Optional[str] = None
    username: Optional[str] = None
    ssl_enabled: bool = False
    pool_enabled: bool = True
    min_pool_size: int = 1
    max_pool_size: int = 10
    connection_timeout: float = 30.0
    idle_timeout: float = 600.0
    max_lifetime: float = 1800.0


class DataSource(DataSourceBase, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    password: Optional[str] = None
    properties: Optional[str] = None  # JSON object of driver/protocol options
    enabled: bool = Field(default=True, index=True)
    tenant_id: Optional[int] = Field(default=None, index=True)
    created_by: Optional[int] = None
    updated_by: Optional[int] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def property_dict(self) -> Dict[str, str]:
        if not self.properties:
            return {}
        return {str(k): str(v) for k, v in json.loads(self.properties).items()}

    def to_config(self) -> DataSourceConfig:
        return DataSourceConfig(
            id=self.id,
            name=self.name,
            type=self.type,
            host=self.host or "",
            port=self.port or 0,
            database=self.database,
            username=self.username,
            password=self.password,
            ssl_enabled=self.ssl_enabled,
            min_pool_size=self.min_pool_size,
            max_pool_size=self.max_pool_size,
            connection_timeout=self.connection_timeout,
            idle_timeout=self.idle_timeout,
            max_lifetime=self.max_lifetime,
            pool_enabled=self.pool_enabled,
            enabled=self.enabled,
            properties=self.property_dict(),
        )


class DataSourceCreate(DataSourceBase):
    password: Optional[str] = None
    properties: Dict[str, str] = {}

    def to_model(self) -> DataSource:
        data = self.model_dump(exclude={"properties"})
        return DataSource(**data, properties=json.dumps(self.properties) if self.properties else None)


class DataSourceUpdate(SQLModel):
    name: Optional[str] = None
    description: Optional[str] = None
    host: Optional[str] = None
    port: Optional[int] = None
    database: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    properties: Optional[Dict[str, str]] = None
    ssl_enabled: Optional[bool] = None
    pool_enabled: Optional[bool] = None
    min_pool_size: Optional[int] = None
    max_pool_size: Optional[int] = None
    connection_timeout: Optional[float] = None
    idle_timeout: Optional[float] = None
    max_lifetime: Optional[float] = None
    enabled: Optional[bool] = None


class DataSourceRead(DataSourceBase):
    id: int
    properties: Dict[str, str] = {}
    enabled: bool
    tenant_id: Optional[int] = None
    created_by: Optional[int] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_model(cls, datasource: DataSource) -> "DataSourceRead":
        data = datasource.model_dump(exclude={"password", "properties"})
        return cls(**data, properties=datasource.property_dict())
