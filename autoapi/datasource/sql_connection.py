import logging
import re
import time
from typing import Any, Dict, List, Optional

from sqlalchemy import inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import NoSuchTableError, SQLAlchemyError

from autoapi.datasource.connection import (
    Capability,
    ColumnInfo,
    ConnectionInfo,
    DataSourceConnection,
    IndexInfo,
    QueryResult,
    QueryValidation,
    TableInfo,
    TableSchema,
    UpdateResult,
    elapsed_ms,
)
from autoapi.datasource.errors import ConfigurationError, ExecutionError
from autoapi.datasource.types import TypeDescriptor
from autoapi.datasource.validation import DATABASE_NAME_PATTERN

logger = logging.getLogger(__name__)

_LINE_PATTERN = re.compile(r"line (\d+)", re.IGNORECASE)
_COLUMN_PATTERN = re.compile(r"(?:column|position) (\d+)", re.IGNORECASE)


def driver_error_message(error: Exception) -> str:
    orig = getattr(error, "orig", None)
    return str(orig) if orig is not None else str(error)


class SqlConnection(DataSourceConnection):
    """One live SQLAlchemy connection. Owns its engine, which must use NullPool."""

    def __init__(self, engine: Engine, descriptor: TypeDescriptor):
        super().__init__()
        self._engine = engine
        self._descriptor = descriptor
        self._conn = engine.connect()
        capabilities = {Capability.MULTI_SCHEMA, Capability.QUERY_VALIDATION}
        if descriptor.multi_database:
            capabilities.add(Capability.MULTI_DATABASE)
        self.capabilities = frozenset(capabilities)

    def _statement(self, query: str, params: Optional[Dict[str, Any]]):
        # Without bind parameters every colon is literal text (casts, time values).
        if params:
            return text(query)
        return text(query.replace(":", r"\:"))

    def _end_read(self) -> None:
        if self._conn.in_transaction():
            self._conn.rollback()

    def is_valid(self) -> bool:
        if self._closed or self._conn.closed:
            return False
        try:
            self._conn.execute(text(self._descriptor.validation_query or "SELECT 1"))
            self._end_read()
            return True
        except SQLAlchemyError as e:
            logger.debug(f"Validation query failed on {self._descriptor.name}: {driver_error_message(e)}")
            return False

    def execute_query(self, query: str, params: Optional[Dict[str, Any]] = None) -> QueryResult:
        started = time.perf_counter()
        try:
            result = self._conn.execute(self._statement(query, params), params or {})
            if not result.returns_rows:
                self._end_read()
                return QueryResult(elapsed_ms=elapsed_ms(started, time.perf_counter()))
            columns = [ColumnInfo(name=key) for key in result.keys()]
            rows = [dict(row) for row in result.mappings()]
            self._end_read()
            return QueryResult(
                rows=rows,
                columns=columns,
                row_count=len(rows),
                elapsed_ms=elapsed_ms(started, time.perf_counter()),
            )
        except SQLAlchemyError as e:
            self._end_read()
            return QueryResult.failure(driver_error_message(e), elapsed_ms(started, time.perf_counter()))

    def execute_update(self, query: str, params: Optional[Dict[str, Any]] = None) -> UpdateResult:
        started = time.perf_counter()
        try:
            result = self._conn.execute(self._statement(query, params), params or {})
            affected = result.rowcount if result.rowcount is not None and result.rowcount >= 0 else 0
            self._conn.commit()
            return UpdateResult(affected_count=affected, elapsed_ms=elapsed_ms(started, time.perf_counter()))
        except SQLAlchemyError as e:
            self._conn.rollback()
            return UpdateResult.failure(driver_error_message(e), elapsed_ms(started, time.perf_counter()))

    def get_connection_info(self) -> ConnectionInfo:
        dialect = self._engine.dialect
        version = None
        if dialect.server_version_info:
            version = ".".join(str(part) for part in dialect.server_version_info)
        return ConnectionInfo(
            url=self._engine.url.render_as_string(hide_password=True),
            version=version,
            properties={
                "dialect": dialect.name,
                "driver": dialect.driver,
                "database": self._engine.url.database,
                "type": self._descriptor.name,
            },
        )

    def _tables(self, schema: Optional[str] = None) -> List[TableInfo]:
        try:
            inspector = inspect(self._conn)
            tables = []
            for name in inspector.get_table_names(schema=schema):
                try:
                    comment = inspector.get_table_comment(name, schema=schema).get("text")
                except NotImplementedError:
                    comment = None
                tables.append(TableInfo(name=name, type="TABLE", comment=comment))
            for name in inspector.get_view_names(schema=schema):
                tables.append(TableInfo(name=name, type="VIEW"))
            return tables
        except SQLAlchemyError as e:
            raise ExecutionError(f"Failed to list tables: {driver_error_message(e)}") from e
        finally:
            self._end_read()

    def list_tables(self) -> List[TableInfo]:
        return self._tables()

    def get_table_schema(self, table_name: str, schema: Optional[str] = None) -> TableSchema:
        try:
            inspector = inspect(self._conn)
            columns = [
                ColumnInfo(
                    name=col["name"],
                    type=str(col["type"]),
                    nullable=bool(col.get("nullable", True)),
                    comment=col.get("comment"),
                    default=None if col.get("default") is None else str(col["default"]),
                )
                for col in inspector.get_columns(table_name, schema=schema)
            ]
            indexes = [
                IndexInfo(name=idx["name"], columns=[c for c in idx["column_names"] if c], unique=bool(idx["unique"]))
                for idx in inspector.get_indexes(table_name, schema=schema)
            ]
            pk = inspector.get_pk_constraint(table_name, schema=schema)
            return TableSchema(
                table_name=table_name,
                columns=columns,
                indexes=indexes,
                primary_key=list(pk.get("constrained_columns") or []),
            )
        except NoSuchTableError as e:
            raise ExecutionError(f"Table not found: {table_name}") from e
        except SQLAlchemyError as e:
            raise ExecutionError(f"Failed to read schema of {table_name}: {driver_error_message(e)}") from e
        finally:
            self._end_read()

    def list_databases(self) -> List[str]:
        if Capability.MULTI_DATABASE not in self.capabilities:
            return super().list_databases()
        result = self.execute_query("SHOW DATABASES")
        if not result.ok:
            raise ExecutionError(f"Failed to list databases: {result.error}")
        return [next(iter(row.values())) for row in result.rows]

    def use_database(self, database: str) -> None:
        if Capability.MULTI_DATABASE not in self.capabilities:
            return super().use_database(database)
        if not DATABASE_NAME_PATTERN.match(database or ""):
            raise ConfigurationError(f"Invalid database name: {database}")
        outcome = self.execute_update(f"USE {database}")
        if not outcome.ok:
            raise ExecutionError(f"Failed to switch database: {outcome.error}")

    def list_schemas(self) -> List[str]:
        try:
            return inspect(self._conn).get_schema_names()
        except SQLAlchemyError as e:
            raise ExecutionError(f"Failed to list schemas: {driver_error_message(e)}") from e
        finally:
            self._end_read()

    def get_tables(self, database: Optional[str] = None, schema: Optional[str] = None) -> List[TableInfo]:
        # MySQL-family dialects model databases as schemas.
        return self._tables(schema=schema or database)

    def validate_query(self, query: str) -> QueryValidation:
        prefix = "EXPLAIN PLAN FOR " if self._descriptor.name == "oracle" else "EXPLAIN "
        try:
            self._conn.execute(text(prefix + query.replace(":", r"\:")))
            return QueryValidation(valid=True)
        except SQLAlchemyError as e:
            message = driver_error_message(e)
            line = _LINE_PATTERN.search(message)
            column = _COLUMN_PATTERN.search(message)
            return QueryValidation(
                valid=False,
                error=message,
                line=int(line.group(1)) if line else None,
                column=int(column.group(1)) if column else None,
            )
        finally:
            self._end_read()

    def _close(self) -> None:
        try:
            self._conn.close()
        finally:
            self._engine.dispose()
