"""
Protocol-agnostic connection contract shared by every backend.

Query and update failures come back as failed results, never as exceptions.
Only opening a connection raises, and that happens in the factory.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional

from autoapi.datasource.errors import CapabilityNotSupported

logger = logging.getLogger(__name__)


class Capability(str, Enum):
    MULTI_DATABASE = "multi_database"
    MULTI_SCHEMA = "multi_schema"
    QUERY_VALIDATION = "query_validation"


@dataclass
class ColumnInfo:
    name: str
    type: Optional[str] = None
    nullable: bool = True
    comment: Optional[str] = None
    default: Optional[str] = None


@dataclass
class IndexInfo:
    name: str
    columns: List[str] = field(default_factory=list)
    unique: bool = False
    type: Optional[str] = None


@dataclass
class TableInfo:
    name: str
    type: str = "TABLE"
    comment: Optional[str] = None


@dataclass
class TableSchema:
    table_name: str
    columns: List[ColumnInfo] = field(default_factory=list)
    indexes: List[IndexInfo] = field(default_factory=list)
    primary_key: List[str] = field(default_factory=list)


@dataclass
class ConnectionInfo:
    url: str
    version: Optional[str] = None
    properties: Dict[str, Any] = field(default_factory=dict)


@dataclass
class QueryResult:
    rows: List[Dict[str, Any]] = field(default_factory=list)
    columns: List[ColumnInfo] = field(default_factory=list)
    row_count: int = 0
    elapsed_ms: int = 0
    ok: bool = True
    error: Optional[str] = None

    @classmethod
    def failure(cls, error: str, elapsed_ms: int = 0) -> "QueryResult":
        return cls(ok=False, error=error, elapsed_ms=elapsed_ms)

    @property
    def column_names(self) -> List[str]:
        return [c.name for c in self.columns]


@dataclass
class UpdateResult:
    affected_count: int = 0
    elapsed_ms: int = 0
    ok: bool = True
    error: Optional[str] = None

    @classmethod
    def failure(cls, error: str, elapsed_ms: int = 0) -> "UpdateResult":
        return cls(ok=False, error=error, elapsed_ms=elapsed_ms)


@dataclass
class QueryValidation:
    valid: bool
    error: Optional[str] = None
    line: Optional[int] = None
    column: Optional[int] = None


class DataSourceConnection(ABC):
    """Base contract. Optional behaviour is advertised through ``capabilities``."""

    capabilities: FrozenSet[Capability] = frozenset()

    def __init__(self):
        self._closed = False

    def supports(self, capability: Capability) -> bool:
        return capability in self.capabilities

    @property
    def closed(self) -> bool:
        return self._closed

    @abstractmethod
    def is_valid(self) -> bool:
        ...

    @abstractmethod
    def execute_query(self, text: str, params: Optional[Dict[str, Any]] = None) -> QueryResult:
        ...

    @abstractmethod
    def execute_update(self, text: str, params: Optional[Dict[str, Any]] = None) -> UpdateResult:
        ...

    @abstractmethod
    def get_connection_info(self) -> ConnectionInfo:
        ...

    @abstractmethod
    def list_tables(self) -> List[TableInfo]:
        ...

    @abstractmethod
    def get_table_schema(self, table_name: str) -> TableSchema:
        ...

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._close()
        except Exception as e:
            logger.warning(f"Error while closing {type(self).__name__}: {e}")

    def _close(self) -> None:
        pass

    # Capability methods. Callers must check ``supports`` first.

    def list_databases(self) -> List[str]:
        raise CapabilityNotSupported(f"{type(self).__name__} does not support {Capability.MULTI_DATABASE.value}")

    def use_database(self, database: str) -> None:
        raise CapabilityNotSupported(f"{type(self).__name__} does not support {Capability.MULTI_DATABASE.value}")

    def list_schemas(self) -> List[str]:
        raise CapabilityNotSupported(f"{type(self).__name__} does not support {Capability.MULTI_SCHEMA.value}")

    def get_tables(self, database: Optional[str] = None, schema: Optional[str] = None) -> List[TableInfo]:
        raise CapabilityNotSupported(f"{type(self).__name__} does not support {Capability.MULTI_SCHEMA.value}")

    def validate_query(self, text: str) -> QueryValidation:
        raise CapabilityNotSupported(f"{type(self).__name__} does not support {Capability.QUERY_VALIDATION.value}")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


def elapsed_ms(started: float, now: float) -> int:
    return int(round((now - started) * 1000))
