import importlib.util
import logging
import re
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError, NoSuchModuleError, SQLAlchemyError
from sqlalchemy.pool import NullPool

from autoapi.datasource.connection import DataSourceConnection, elapsed_ms
from autoapi.datasource.errors import (
    ConfigurationError,
    ConnectorNotImplemented,
    DataSourceConnectionError,
    DataSourceError,
    DependencyUnavailable,
)
from autoapi.datasource.pool import ConnectionPool, PoolStatus
from autoapi.datasource.sql_connection import SqlConnection, driver_error_message
from autoapi.datasource.types import (
    DataSourceConfig,
    Protocol,
    TypeDescriptor,
    get_descriptor,
    list_descriptors,
)

logger = logging.getLogger(__name__)

URL_PLACEHOLDER = re.compile(r"\{(host|port|database)\}")

# DB-API connect() keyword for the socket timeout, by driver module.
CONNECT_TIMEOUT_ARGS = {
    "pymysql": "connect_timeout",
    "psycopg2": "connect_timeout",
    "sqlite3": "timeout",
}

HEADER_PREFIX = "header."


@dataclass
class ConfigurationCheck:
    valid: bool
    error_message: Optional[str] = None
    recommendation: Optional[str] = None


@dataclass
class DependencyInfo:
    type: str
    module: str
    coordinate: str
    supported_versions: List[str] = field(default_factory=list)
    recommended_version: Optional[str] = None
    available: bool = False
    implemented: bool = True


@dataclass
class ConnectionTestResult:
    success: bool
    message: str
    elapsed_ms: int = 0
    error_code: Optional[str] = None


class DataSourceFactory:
    """Builds, validates and pools connections for configured data sources."""

    def __init__(self, acquire_timeout: float = 30.0, health_check_timeout: float = 1.0, http_timeout: float = 30.0):
        self.acquire_timeout = acquire_timeout
        self.health_check_timeout = health_check_timeout
        self.http_timeout = http_timeout
        self._pools: Dict[str, ConnectionPool] = {}
        self._clients: Dict[str, Any] = {}
        self._lock = threading.Lock()

    # Discovery

    def list_types(self) -> List[TypeDescriptor]:
        return list_descriptors()

    def is_dependency_available(self, ds_type: str) -> bool:
        module = get_descriptor(ds_type).driver_module
        try:
            return importlib.util.find_spec(module) is not None
        except (ImportError, ValueError):
            return False

    def get_dependency_info(self, ds_type: str) -> DependencyInfo:
        descriptor = get_descriptor(ds_type)
        return DependencyInfo(
            type=descriptor.name,
            module=descriptor.driver_module,
            coordinate=descriptor.coordinate,
            supported_versions=list(descriptor.supported_versions),
            recommended_version=descriptor.recommended_version,
            available=self.is_dependency_available(ds_type),
            implemented=descriptor.implemented,
        )

    # Configuration

    def build_connection_url(self, config: DataSourceConfig) -> str:
        descriptor = get_descriptor(config.type)
        values = {
            "host": config.host or "",
            "port": str(config.port),
            "database": config.database or "",
        }
        return URL_PLACEHOLDER.sub(lambda m: values[m.group(1)], descriptor.url_template)

    def validate_configuration(self, config: DataSourceConfig) -> ConfigurationCheck:
        if config is None:
            raise ValueError("config must not be None")
        try:
            descriptor = get_descriptor(config.type)
        except ConfigurationError as e:
            names = ", ".join(d.name for d in list_descriptors())
            return ConfigurationCheck(False, e.message, f"Use one of: {names}")

        if not descriptor.implemented:
            return ConfigurationCheck(
                False,
                f"{descriptor.display_name} connections are not implemented",
                f"Choose another data source type; {descriptor.coordinate} support is planned",
            )

        if not descriptor.embedded:
            if not config.host or not config.host.strip():
                return ConfigurationCheck(False, "Host must not be empty", "Set the server host name or IP address")
            if not isinstance(config.port, int) or not 1 <= config.port <= 65535:
                return ConfigurationCheck(
                    False,
                    f"Port must be between 1 and 65535, got {config.port}",
                    f"The default {descriptor.display_name} port is {descriptor.default_port}",
                )

        if descriptor.protocol == Protocol.JDBC:
            if descriptor.credentials and not (config.username or "").strip():
                return ConfigurationCheck(False, "Username must not be empty", "Set the database user name")
            if descriptor.embedded and not config.database:
                return ConfigurationCheck(False, "Database path must not be empty", "Use a file path or :memory:")
            if not self.is_dependency_available(config.type):
                return ConfigurationCheck(
                    False,
                    f"Driver module '{descriptor.driver_module}' is not installed",
                    f"pip install {descriptor.coordinate}",
                )
        elif descriptor.protocol == Protocol.HTTP:
            if "://" in (config.host or ""):
                return ConfigurationCheck(
                    False, "Host must not contain a scheme", "Put only the host name in host; pick http_api or https_api"
                )
            if not self.build_connection_url(config).startswith(("http://", "https://")):
                return ConfigurationCheck(False, "HTTP URL must start with http:// or https://")
        elif descriptor.name == "mongodb":
            if not config.database:
                return ConfigurationCheck(False, "MongoDB requires a database name", "Set the database to query")
            if not self.is_dependency_available(config.type):
                return ConfigurationCheck(
                    False, f"Driver module '{descriptor.driver_module}' is not installed", f"pip install {descriptor.coordinate}"
                )

        recommendation = None
        if descriptor.recommended_version:
            recommendation = f"Recommended {descriptor.display_name} version: {descriptor.recommended_version}"
        return ConfigurationCheck(True, None, recommendation)

    # Connections

    def create_connection(self, config: DataSourceConfig) -> DataSourceConnection:
        if config is None:
            raise ValueError("config must not be None")
        descriptor = get_descriptor(config.type)
        if not descriptor.implemented:
            raise ConnectorNotImplemented(descriptor.name)
        if descriptor.protocol != Protocol.HTTP and not self.is_dependency_available(config.type):
            raise DependencyUnavailable(descriptor.name, descriptor.driver_module, descriptor.coordinate)

        check = self.validate_configuration(config)
        if not check.valid:
            raise ConfigurationError(check.error_message)

        if descriptor.protocol == Protocol.JDBC:
            return self._create_sql_connection(config, descriptor)
        if descriptor.protocol == Protocol.HTTP:
            return self._create_http_connection(config, descriptor)
        if descriptor.name == "mongodb":
            return self._create_mongo_connection(config)
        raise ConnectorNotImplemented(descriptor.name)

    def _create_sql_connection(self, config: DataSourceConfig, descriptor: TypeDescriptor) -> SqlConnection:
        url = make_url(self.build_connection_url(config))
        if descriptor.credentials:
            url = url.set(username=config.username, password=config.password)
        query = dict(config.properties or {})
        if config.ssl_enabled and descriptor.name == "postgresql":
            query.setdefault("sslmode", "require")
        if query:
            url = url.update_query_dict(query)

        connect_args: Dict[str, Any] = {}
        timeout_arg = CONNECT_TIMEOUT_ARGS.get(descriptor.driver_module)
        if timeout_arg:
            connect_args[timeout_arg] = int(config.connection_timeout)
        if descriptor.name == "sqlite":
            connect_args["check_same_thread"] = False

        try:
            engine = create_engine(url, poolclass=NullPool, connect_args=connect_args)
        except NoSuchModuleError as e:
            raise DependencyUnavailable(descriptor.name, descriptor.driver_module, descriptor.coordinate) from e
        except ArgumentError as e:
            raise ConfigurationError(f"Invalid connection settings: {e}") from e

        try:
            connection = SqlConnection(engine, descriptor)
        except SQLAlchemyError as e:
            engine.dispose()
            raise DataSourceConnectionError(
                f"Failed to connect to {descriptor.display_name} at {config.host}:{config.port}: {driver_error_message(e)}"
            ) from e
        logger.info(f"Opened {descriptor.name} connection {config.pool_key}")
        return connection

    def _create_http_connection(self, config: DataSourceConfig, descriptor: TypeDescriptor):
        from autoapi.datasource.elasticsearch_connection import ElasticsearchConnection
        from autoapi.datasource.http_connection import HttpConnection

        properties = config.properties or {}
        headers = {k[len(HEADER_PREFIX):]: v for k, v in properties.items() if k.startswith(HEADER_PREFIX)}
        connection_class = ElasticsearchConnection if descriptor.name == "elasticsearch" else HttpConnection
        return connection_class(
            self.build_connection_url(config),
            username=config.username,
            password=config.password,
            timeout=self.http_timeout,
            verify=str(properties.get("verify_ssl", "true")).lower() != "false",
            headers=headers,
        )

    def _mongo_client(self, config: DataSourceConfig):
        from pymongo import MongoClient

        from autoapi.datasource.mongo_connection import build_connection_string

        return MongoClient(
            build_connection_string(config.host, config.port, config.database, config.username, config.password),
            serverSelectionTimeoutMS=int(config.connection_timeout * 1000),
            maxPoolSize=config.max_pool_size,
            minPoolSize=config.min_pool_size,
            maxIdleTimeMS=int(config.idle_timeout * 1000),
            tls=config.ssl_enabled,
        )

    def _create_mongo_connection(self, config: DataSourceConfig) -> DataSourceConnection:
        from pymongo.errors import PyMongoError

        from autoapi.datasource.mongo_connection import MongoConnection

        client = self._mongo_client(config)
        try:
            client.admin.command("ping")
        except PyMongoError as e:
            client.close()
            raise DataSourceConnectionError(f"Failed to connect to MongoDB at {config.host}:{config.port}: {e}") from e
        return MongoConnection(client, config.database, owns_client=True)

    def _shared_mongo_connection(self, config: DataSourceConfig) -> DataSourceConnection:
        from autoapi.datasource.mongo_connection import MongoConnection

        with self._lock:
            client = self._clients.get(config.pool_key)
            if client is None:
                client = self._mongo_client(config)
                self._clients[config.pool_key] = client
        return MongoConnection(client, config.database, owns_client=False)

    def get_connection_pool(self, config: DataSourceConfig) -> Optional[ConnectionPool]:
        """The pool for a JDBC-like data source, created on first use. None for other protocols."""
        descriptor = get_descriptor(config.type)
        if descriptor.protocol != Protocol.JDBC or not config.pool_enabled:
            return None
        with self._lock:
            pool = self._pools.get(config.pool_key)
            if pool is None:
                pool = ConnectionPool(
                    name=config.pool_key,
                    creator=lambda: self.create_connection(config),
                    min_size=config.min_pool_size,
                    max_size=config.max_pool_size,
                    idle_timeout=config.idle_timeout,
                    max_lifetime=config.max_lifetime,
                    acquire_timeout=self.acquire_timeout,
                    health_check_timeout=self.health_check_timeout,
                )
                self._pools[config.pool_key] = pool
        return pool

    def pool_status(self, config: DataSourceConfig) -> Optional[PoolStatus]:
        pool = self.get_connection_pool(config)
        return pool.status() if pool is not None else None

    @contextmanager
    def acquire(self, config: DataSourceConfig) -> Iterator[DataSourceConnection]:
        """A connection for one operation: pooled, over a shared client, or fresh."""
        descriptor = get_descriptor(config.type)
        pool = self.get_connection_pool(config)
        if pool is not None:
            with pool.connection() as connection:
                yield connection
            return

        if descriptor.name == "mongodb" and descriptor.implemented:
            if not self.is_dependency_available(config.type):
                raise DependencyUnavailable(descriptor.name, descriptor.driver_module, descriptor.coordinate)
            check = self.validate_configuration(config)
            if not check.valid:
                raise ConfigurationError(check.error_message)
            connection = self._shared_mongo_connection(config)
        else:
            connection = self.create_connection(config)
        try:
            yield connection
        finally:
            connection.close()

    def test_connection(self, config: DataSourceConfig) -> ConnectionTestResult:
        started = time.perf_counter()
        connection = None
        try:
            connection = self.create_connection(config)
            valid = connection.is_valid()
            return ConnectionTestResult(
                success=valid,
                message="Connection successful" if valid else "Connection opened but failed validation",
                elapsed_ms=elapsed_ms(started, time.perf_counter()),
                error_code=None if valid else DataSourceConnectionError.error_code,
            )
        except DataSourceError as e:
            return ConnectionTestResult(
                success=False,
                message=e.message,
                elapsed_ms=elapsed_ms(started, time.perf_counter()),
                error_code=e.error_code,
            )
        finally:
            if connection is not None:
                connection.close()

    # Lifecycle

    def evict(self, pool_key: str) -> None:
        with self._lock:
            pool = self._pools.pop(pool_key, None)
            client = self._clients.pop(pool_key, None)
        if pool is not None:
            pool.close()
        if client is not None:
            client.close()

    def close_all(self) -> None:
        with self._lock:
            keys = set(self._pools) | set(self._clients)
        for key in keys:
            self.evict(key)
