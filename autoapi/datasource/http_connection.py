"""
Stateless HTTP data source.

Query text is a request line followed by an optional body::

    GET /users?status=${status}

    POST /search
    {"name": ${name}}

JSON responses are flattened into rows with pandas.
"""
import json
import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

import pandas as pd
import requests
import yaml
from requests.auth import HTTPBasicAuth

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

logger = logging.getLogger(__name__)

REQUEST_LINE = re.compile(r"^(GET|POST|PUT|PATCH|DELETE|HEAD|OPTIONS)\s+(\S+)\s*$", re.IGNORECASE)

AFFECTED_KEYS = ("affected", "affectedRows", "affected_rows", "count", "updated", "deleted")


@dataclass
class HttpRequestSpec:
    method: str
    path: str
    body: Any = None


def parse_request_text(text: str, default_method: str = "GET") -> HttpRequestSpec:
    lines = (text or "").strip().splitlines()
    first = lines[0].strip() if lines else ""
    match = REQUEST_LINE.match(first)
    if match:
        method, path = match.group(1).upper(), match.group(2)
        rest = "\n".join(lines[1:]).strip()
    elif first.startswith("/"):
        method, path = default_method, first
        rest = "\n".join(lines[1:]).strip()
    else:
        method, path = default_method, "/"
        rest = "\n".join(lines).strip()

    if not path.startswith("/"):
        path = "/" + path

    body: Any = None
    if rest:
        body = load_body(rest)
    return HttpRequestSpec(method=method, path=path, body=body)


def load_body(text: str) -> Any:
    """JSON, or the YAML flow style rendered templates produce (single-quoted strings, NULL)."""
    try:
        return json.loads(text)
    except ValueError:
        pass
    try:
        return yaml.safe_load(text)
    except yaml.YAMLError:
        return text


def frame_to_records(frame: pd.DataFrame) -> List[Dict[str, Any]]:
    frame = frame.astype(object).where(pd.notnull(frame), None)
    return frame.to_dict(orient="records")


def payload_to_rows(payload: Any) -> List[Dict[str, Any]]:
    if isinstance(payload, list):
        if payload and all(isinstance(item, dict) for item in payload):
            return frame_to_records(pd.json_normalize(payload))
        return [{"value": item} for item in payload]
    if isinstance(payload, dict):
        return frame_to_records(pd.json_normalize(payload))
    return [{"value": payload}]


def columns_from_rows(rows: Iterable[Dict[str, Any]]) -> List[ColumnInfo]:
    names: List[str] = []
    for row in rows:
        for key in row:
            if key not in names:
                names.append(key)
    return [ColumnInfo(name=name) for name in names]


class HttpConnection(DataSourceConnection):
    DISCOVERY_PATHS = ("/api", "/v1", "/docs", "/swagger.json", "/openapi.json")

    def __init__(
        self,
        base_url: str,
        username: Optional[str] = None,
        password: Optional[str] = None,
        timeout: float = 30.0,
        verify: bool = True,
        headers: Optional[Dict[str, str]] = None,
        session: Optional[requests.Session] = None,
    ):
        super().__init__()
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = session or requests.Session()
        self._session.verify = verify
        if username:
            self._session.auth = HTTPBasicAuth(username, password or "")
        if headers:
            self._session.headers.update(headers)

    def _url(self, path: str) -> str:
        if not path.startswith("/"):
            path = "/" + path
        return self.base_url + path

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        return self._session.request(method, self._url(path), timeout=self.timeout, **kwargs)

    def _body_kwargs(self, spec: HttpRequestSpec, params: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        if spec.method == "GET":
            return {"params": params} if params else {}
        if isinstance(spec.body, (dict, list)):
            return {"json": spec.body}
        if spec.body is not None:
            return {"data": spec.body}
        if params:
            return {"json": params}
        return {}

    @staticmethod
    def _decode(response: requests.Response) -> Any:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return response.text

    def is_valid(self) -> bool:
        if self._closed:
            return False
        try:
            if self._request("HEAD", "/").ok:
                return True
            return self._request("GET", "/").ok
        except requests.RequestException as e:
            logger.debug(f"HTTP validation failed for {self.base_url}: {e}")
            return False

    def execute_query(self, text: str, params: Optional[Dict[str, Any]] = None) -> QueryResult:
        started = time.perf_counter()
        spec = parse_request_text(text)
        try:
            response = self._request(spec.method, spec.path, **self._body_kwargs(spec, params))
        except requests.RequestException as e:
            return QueryResult.failure(f"HTTP request failed: {e}", elapsed_ms(started, time.perf_counter()))
        if not response.ok:
            return QueryResult.failure(
                f"HTTP {response.status_code}: {response.text[:500]}",
                elapsed_ms(started, time.perf_counter()),
            )
        payload = self._decode(response)
        rows = [] if payload is None else payload_to_rows(payload)
        return QueryResult(
            rows=rows,
            columns=columns_from_rows(rows),
            row_count=len(rows),
            elapsed_ms=elapsed_ms(started, time.perf_counter()),
        )

    def execute_update(self, text: str, params: Optional[Dict[str, Any]] = None) -> UpdateResult:
        started = time.perf_counter()
        spec = parse_request_text(text, default_method="POST")
        try:
            response = self._request(spec.method, spec.path, **self._body_kwargs(spec, params))
        except requests.RequestException as e:
            return UpdateResult.failure(f"HTTP request failed: {e}", elapsed_ms(started, time.perf_counter()))
        if not response.ok:
            return UpdateResult.failure(
                f"HTTP {response.status_code}: {response.text[:500]}",
                elapsed_ms(started, time.perf_counter()),
            )
        payload = self._decode(response)
        affected = 1
        if isinstance(payload, dict):
            for key in AFFECTED_KEYS:
                if isinstance(payload.get(key), int):
                    affected = payload[key]
                    break
        return UpdateResult(affected_count=affected, elapsed_ms=elapsed_ms(started, time.perf_counter()))

    def get_connection_info(self) -> ConnectionInfo:
        return ConnectionInfo(
            url=self.base_url,
            version="HTTP/1.1",
            properties={
                "auth": "basic" if self._session.auth else "none",
                "timeout": self.timeout,
                "verify": self._session.verify,
            },
        )

    def list_tables(self) -> List[TableInfo]:
        endpoints = []
        for path in self.DISCOVERY_PATHS:
            try:
                if self._request("GET", path).ok:
                    endpoints.append(TableInfo(name=path, type="ENDPOINT"))
            except requests.RequestException:
                continue
        return endpoints or [TableInfo(name="/", type="ENDPOINT")]

    def get_table_schema(self, table_name: str) -> TableSchema:
        try:
            response = self._request("OPTIONS", table_name)
        except requests.RequestException as e:
            raise ExecutionError(f"Failed to inspect endpoint {table_name}: {e}") from e
        allow = response.headers.get("Allow", "")
        methods = [m.strip().upper() for m in allow.split(",") if m.strip()]
        return TableSchema(
            table_name=table_name,
            columns=[ColumnInfo(name=method, type="HTTP_METHOD") for method in methods],
        )

    def _close(self) -> None:
        self._session.close()
