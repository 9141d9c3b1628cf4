"""
Document-store connection backed by pymongo.

Query text is a JSON find command::

    {"collection": "users", "filter": {"status": ${status}}, "limit": 20}

Update text names an operation: insertOne, insertMany, updateOne,
updateMany, deleteOne or deleteMany.
"""
import logging
import time
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote_plus

import yaml
from bson import ObjectId
from pymongo import MongoClient
from pymongo.errors import PyMongoError

from autoapi.datasource.connection import (
    ColumnInfo,
    ConnectionInfo,
    DataSourceConnection,
    QueryResult,
    TableInfo,
    TableSchema,
    UpdateResult,
    elapsed_ms,
)
from autoapi.datasource.errors import ExecutionError
from autoapi.datasource.http_connection import columns_from_rows

logger = logging.getLogger(__name__)

SCHEMA_SAMPLE_SIZE = 100


def build_connection_string(
    host: str,
    port: int,
    database: Optional[str],
    username: Optional[str] = None,
    password: Optional[str] = None,
) -> str:
    credentials = ""
    if username:
        credentials = f"{quote_plus(username)}:{quote_plus(password or '')}@"
    return f"mongodb://{credentials}{host}:{port}/{database or ''}"


def to_plain(value: Any) -> Any:
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, dict):
        return {k: to_plain(v) for k, v in value.items()}
    if isinstance(value, list):
        return [to_plain(v) for v in value]
    return value


def parse_command(text: str) -> Dict[str, Any]:
    # Rendered templates quote strings with single quotes, which YAML flow style accepts.
    try:
        command = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ValueError(f"Mongo command must be a JSON object: {e}") from e
    if not isinstance(command, dict) or not command.get("collection"):
        raise ValueError("Mongo command must be a JSON object with a 'collection' field")
    if not isinstance(command["collection"], str):
        raise ValueError("Mongo 'collection' must be a string")
    for key in ("filter", "projection"):
        if command.get(key) is not None and not isinstance(command[key], dict):
            raise ValueError(f"Mongo '{key}' must be an object")
    if command.get("sort"):
        command["sort"] = sort_spec(command["sort"])
    return command


def sort_spec(value: Any) -> List[Tuple[str, int]]:
    """``{"name": 1}`` or ``[["name", 1]]`` as pymongo sort pairs."""
    pairs = list(value.items()) if isinstance(value, dict) else value
    if not isinstance(pairs, list):
        raise ValueError("Mongo 'sort' must be an object or a list of [field, direction] pairs")
    spec = []
    for pair in pairs:
        if not isinstance(pair, (list, tuple)) or len(pair) != 2 or not isinstance(pair[0], str):
            raise ValueError(f"Invalid Mongo sort entry: {pair}")
        spec.append((pair[0], int(pair[1])))
    return spec


class MongoConnection(DataSourceConnection):
    def __init__(self, client: MongoClient, database: str, owns_client: bool = True):
        super().__init__()
        self._client = client
        self._db = client[database]
        self._owns_client = owns_client

    def is_valid(self) -> bool:
        if self._closed:
            return False
        try:
            self._client.admin.command("ping")
            return True
        except PyMongoError as e:
            logger.debug(f"Mongo ping failed: {e}")
            return False

    def execute_query(self, text: str, params: Optional[Dict[str, Any]] = None) -> QueryResult:
        started = time.perf_counter()
        try:
            command = parse_command(text)
            cursor = self._db[command["collection"]].find(command.get("filter") or {}, command.get("projection"))
            if command.get("sort"):
                cursor = cursor.sort(command["sort"])
            if command.get("skip"):
                cursor = cursor.skip(int(command["skip"]))
            if command.get("limit"):
                cursor = cursor.limit(int(command["limit"]))
            rows = [to_plain(doc) for doc in cursor]
        except (ValueError, TypeError, PyMongoError) as e:
            return QueryResult.failure(str(e), elapsed_ms(started, time.perf_counter()))
        return QueryResult(
            rows=rows,
            columns=columns_from_rows(rows),
            row_count=len(rows),
            elapsed_ms=elapsed_ms(started, time.perf_counter()),
        )

    def execute_update(self, text: str, params: Optional[Dict[str, Any]] = None) -> UpdateResult:
        started = time.perf_counter()
        try:
            command = parse_command(text)
            collection = self._db[command["collection"]]
            operation = command.get("operation")
            if operation == "insertOne":
                collection.insert_one(command["document"])
                affected = 1
            elif operation == "insertMany":
                affected = len(collection.insert_many(command["documents"]).inserted_ids)
            elif operation == "updateOne":
                affected = collection.update_one(command["filter"], command["update"]).modified_count
            elif operation == "updateMany":
                affected = collection.update_many(command["filter"], command["update"]).modified_count
            elif operation == "deleteOne":
                affected = collection.delete_one(command["filter"]).deleted_count
            elif operation == "deleteMany":
                affected = collection.delete_many(command["filter"]).deleted_count
            else:
                raise ValueError(f"Unsupported Mongo operation: {operation}")
        except KeyError as e:
            return UpdateResult.failure(f"Missing field in Mongo command: {e}", elapsed_ms(started, time.perf_counter()))
        except (ValueError, TypeError, PyMongoError) as e:
            return UpdateResult.failure(str(e), elapsed_ms(started, time.perf_counter()))
        return UpdateResult(affected_count=affected, elapsed_ms=elapsed_ms(started, time.perf_counter()))

    def get_connection_info(self) -> ConnectionInfo:
        version = None
        try:
            version = self._client.server_info().get("version")
        except PyMongoError as e:
            logger.debug(f"Could not read Mongo server version: {e}")
        return ConnectionInfo(
            url=f"mongodb://{self._client.address[0]}:{self._client.address[1]}/{self._db.name}"
            if self._client.address
            else f"mongodb:///{self._db.name}",
            version=version,
            properties={"database": self._db.name},
        )

    def list_tables(self) -> List[TableInfo]:
        try:
            return [TableInfo(name=name, type="COLLECTION") for name in self._db.list_collection_names()]
        except PyMongoError as e:
            raise ExecutionError(f"Failed to list collections: {e}") from e

    def get_table_schema(self, table_name: str) -> TableSchema:
        try:
            documents = list(self._db[table_name].find().limit(SCHEMA_SAMPLE_SIZE))
        except PyMongoError as e:
            raise ExecutionError(f"Failed to sample {table_name}: {e}") from e
        seen: Dict[str, set] = {}
        counts: Dict[str, int] = {}
        for doc in documents:
            for key, value in doc.items():
                seen.setdefault(key, set()).add(type(value).__name__)
                counts[key] = counts.get(key, 0) + 1
        columns = [
            ColumnInfo(
                name=key,
                type="|".join(sorted(types)),
                nullable=counts[key] < len(documents) or "NoneType" in types,
            )
            for key, types in seen.items()
        ]
        return TableSchema(table_name=table_name, columns=columns, primary_key=["_id"] if "_id" in seen else [])

    def _close(self) -> None:
        if self._owns_client:
            self._client.close()
