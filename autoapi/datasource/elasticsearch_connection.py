import logging
import time
from typing import Any, Dict, List, Optional

import requests

from autoapi.datasource.connection import (
    ColumnInfo,
    ConnectionInfo,
    QueryResult,
    TableInfo,
    TableSchema,
    elapsed_ms,
)
from autoapi.datasource.errors import ExecutionError
from autoapi.datasource.http_connection import HttpConnection, columns_from_rows, parse_request_text

logger = logging.getLogger(__name__)


def hits_to_rows(payload: Dict[str, Any]) -> List[Dict[str, Any]]:
    rows = []
    for hit in (payload.get("hits") or {}).get("hits") or []:
        row = dict(hit.get("_source") or {})
        row["_id"] = hit.get("_id")
        row["_index"] = hit.get("_index")
        rows.append(row)
    return rows


def total_hits(payload: Dict[str, Any], default: int) -> int:
    total = (payload.get("hits") or {}).get("total")
    if isinstance(total, dict):
        return int(total.get("value", default))
    if isinstance(total, int):
        return total
    return default


def flatten_mapping(properties: Dict[str, Any], prefix: str = "") -> List[ColumnInfo]:
    columns = []
    for name, spec in properties.items():
        full_name = f"{prefix}{name}"
        if "properties" in spec:
            columns.extend(flatten_mapping(spec["properties"], prefix=f"{full_name}."))
        else:
            columns.append(ColumnInfo(name=full_name, type=spec.get("type", "object")))
    return columns


class ElasticsearchConnection(HttpConnection):
    """Search-engine connection over the Elasticsearch REST API.

    Query text is ``GET|POST /<index>/_search`` plus a JSON body. Rows are the
    hits' ``_source`` documents with ``_id`` and ``_index`` added.
    """

    def is_valid(self) -> bool:
        if self._closed:
            return False
        try:
            return self._request("GET", "/").ok
        except requests.RequestException as e:
            logger.debug(f"Elasticsearch ping failed for {self.base_url}: {e}")
            return False

    def execute_query(self, text: str, params: Optional[Dict[str, Any]] = None) -> QueryResult:
        started = time.perf_counter()
        spec = parse_request_text(text, default_method="POST")
        kwargs = {"json": spec.body} if isinstance(spec.body, dict) else {}
        if params and spec.method == "GET" and not kwargs:
            kwargs["params"] = params
        try:
            response = self._request(spec.method, spec.path, **kwargs)
        except requests.RequestException as e:
            return QueryResult.failure(f"Elasticsearch request failed: {e}", elapsed_ms(started, time.perf_counter()))
        if not response.ok:
            return QueryResult.failure(
                f"Elasticsearch {response.status_code}: {response.text[:500]}",
                elapsed_ms(started, time.perf_counter()),
            )
        payload = self._decode(response)
        if not isinstance(payload, dict):
            return QueryResult.failure("Elasticsearch returned a non-JSON response", elapsed_ms(started, time.perf_counter()))
        rows = hits_to_rows(payload)
        return QueryResult(
            rows=rows,
            columns=columns_from_rows(rows),
            row_count=total_hits(payload, len(rows)),
            elapsed_ms=elapsed_ms(started, time.perf_counter()),
        )

    def get_connection_info(self) -> ConnectionInfo:
        info = super().get_connection_info()
        try:
            response = self._request("GET", "/")
            if response.ok:
                body = response.json()
                info.version = (body.get("version") or {}).get("number")
                info.properties["cluster_name"] = body.get("cluster_name")
        except (requests.RequestException, ValueError) as e:
            logger.debug(f"Could not read Elasticsearch version: {e}")
        return info

    def list_tables(self) -> List[TableInfo]:
        try:
            response = self._request("GET", "/_cat/indices?format=json")
            response.raise_for_status()
            indices = response.json()
        except (requests.RequestException, ValueError) as e:
            raise ExecutionError(f"Failed to list indices: {e}") from e
        return [
            TableInfo(name=item["index"], type="INDEX")
            for item in indices
            if item.get("index") and not item["index"].startswith(".")
        ]

    def get_table_schema(self, table_name: str) -> TableSchema:
        try:
            response = self._request("GET", f"/{table_name}/_mapping")
            response.raise_for_status()
            body = response.json()
        except (requests.RequestException, ValueError) as e:
            raise ExecutionError(f"Failed to read mapping of {table_name}: {e}") from e
        columns: List[ColumnInfo] = []
        for index_body in body.values():
            properties = (index_body.get("mappings") or {}).get("properties") or {}
            columns.extend(flatten_mapping(properties))
        return TableSchema(table_name=table_name, columns=columns)
