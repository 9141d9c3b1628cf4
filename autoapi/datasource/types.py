from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple

from autoapi.datasource.errors import ConfigurationError


class Protocol(str, Enum):
    JDBC = "jdbc"
    HTTP = "http"
    NATIVE = "native"


class Category(str, Enum):
    RELATIONAL = "relational"
    DOCUMENT = "document"
    SEARCH = "search"
    TIME_SERIES = "time-series"
    GRAPH = "graph"
    MESSAGE_QUEUE = "message-queue"
    HTTP_API = "http-api"


@dataclass(frozen=True)
class TypeDescriptor:
    name: str
    display_name: str
    category: Category
    protocol: Protocol
    url_template: str
    default_port: int
    supported_versions: Tuple[str, ...]
    driver_module: str
    coordinate: str
    validation_query: Optional[str] = None
    multi_database: bool = False
    credentials: bool = True
    embedded: bool = False
    implemented: bool = True

    @property
    def recommended_version(self) -> Optional[str]:
        return self.supported_versions[0] if self.supported_versions else None


_DESCRIPTORS: List[TypeDescriptor] = [
    TypeDescriptor(
        name="mysql",
        display_name="MySQL",
        category=Category.RELATIONAL,
        protocol=Protocol.JDBC,
        url_template="mysql+pymysql://{host}:{port}/{database}",
        default_port=3306,
        supported_versions=("8.0", "5.7"),
        driver_module="pymysql",
        coordinate="PyMySQL",
        validation_query="SELECT 1",
        multi_database=True,
    ),
    TypeDescriptor(
        name="postgresql",
        display_name="PostgreSQL",
        category=Category.RELATIONAL,
        protocol=Protocol.JDBC,
        url_template="postgresql+psycopg2://{host}:{port}/{database}",
        default_port=5432,
        supported_versions=("16", "15", "14", "13"),
        driver_module="psycopg2",
        coordinate="psycopg2-binary",
        validation_query="SELECT 1",
    ),
    TypeDescriptor(
        name="oracle",
        display_name="Oracle",
        category=Category.RELATIONAL,
        protocol=Protocol.JDBC,
        url_template="oracle+oracledb://{host}:{port}/{database}",
        default_port=1521,
        supported_versions=("21c", "19c", "12c"),
        driver_module="oracledb",
        coordinate="oracledb",
        validation_query="SELECT 1 FROM DUAL",
    ),
    TypeDescriptor(
        name="sqlite",
        display_name="SQLite",
        category=Category.RELATIONAL,
        protocol=Protocol.JDBC,
        url_template="sqlite:///{database}",
        default_port=0,
        supported_versions=("3",),
        driver_module="sqlite3",
        coordinate="sqlite3 (standard library)",
        validation_query="SELECT 1",
        credentials=False,
        embedded=True,
    ),
    TypeDescriptor(
        name="clickhouse",
        display_name="ClickHouse",
        category=Category.RELATIONAL,
        protocol=Protocol.JDBC,
        url_template="clickhouse+native://{host}:{port}/{database}",
        default_port=9000,
        supported_versions=("24.3", "23.8", "22.8"),
        driver_module="clickhouse_sqlalchemy",
        coordinate="clickhouse-sqlalchemy",
        validation_query="SELECT 1",
        multi_database=True,
    ),
    TypeDescriptor(
        name="starrocks",
        display_name="StarRocks",
        category=Category.RELATIONAL,
        protocol=Protocol.JDBC,
        url_template="mysql+pymysql://{host}:{port}/{database}",
        default_port=9030,
        supported_versions=("3.2", "3.1", "2.5"),
        driver_module="pymysql",
        coordinate="PyMySQL",
        validation_query="SELECT 1",
        multi_database=True,
    ),
    TypeDescriptor(
        name="tdengine",
        display_name="TDengine",
        category=Category.TIME_SERIES,
        protocol=Protocol.JDBC,
        url_template="taosrest://{host}:{port}/{database}",
        default_port=6041,
        supported_versions=("3.0",),
        driver_module="taosrest",
        coordinate="taospy",
        validation_query="SELECT SERVER_VERSION()",
    ),
    TypeDescriptor(
        name="mongodb",
        display_name="MongoDB",
        category=Category.DOCUMENT,
        protocol=Protocol.NATIVE,
        url_template="mongodb://{host}:{port}/{database}",
        default_port=27017,
        supported_versions=("7.0", "6.0", "5.0"),
        driver_module="pymongo",
        coordinate="pymongo",
    ),
    TypeDescriptor(
        name="elasticsearch",
        display_name="Elasticsearch",
        category=Category.SEARCH,
        protocol=Protocol.HTTP,
        url_template="http://{host}:{port}",
        default_port=9200,
        supported_versions=("8.x", "7.x"),
        driver_module="requests",
        coordinate="requests",
    ),
    TypeDescriptor(
        name="nebula_graph",
        display_name="NebulaGraph",
        category=Category.GRAPH,
        protocol=Protocol.NATIVE,
        url_template="{host}:{port}",
        default_port=9669,
        supported_versions=("3.x",),
        driver_module="nebula3",
        coordinate="nebula3-python",
        implemented=False,
    ),
    TypeDescriptor(
        name="kafka",
        display_name="Apache Kafka",
        category=Category.MESSAGE_QUEUE,
        protocol=Protocol.NATIVE,
        url_template="{host}:{port}",
        default_port=9092,
        supported_versions=("3.x", "2.8"),
        driver_module="kafka",
        coordinate="kafka-python",
        implemented=False,
    ),
    TypeDescriptor(
        name="http_api",
        display_name="HTTP API",
        category=Category.HTTP_API,
        protocol=Protocol.HTTP,
        url_template="http://{host}:{port}",
        default_port=80,
        supported_versions=("1.1",),
        driver_module="requests",
        coordinate="requests",
        credentials=False,
    ),
    TypeDescriptor(
        name="https_api",
        display_name="HTTPS API",
        category=Category.HTTP_API,
        protocol=Protocol.HTTP,
        url_template="https://{host}:{port}",
        default_port=443,
        supported_versions=("1.1",),
        driver_module="requests",
        coordinate="requests",
        credentials=False,
    ),
]

DATA_SOURCE_TYPES: Dict[str, TypeDescriptor] = {d.name: d for d in _DESCRIPTORS}


def get_descriptor(ds_type: str) -> TypeDescriptor:
    descriptor = DATA_SOURCE_TYPES.get((ds_type or "").lower())
    if descriptor is None:
        raise ConfigurationError(f"Unsupported data source type: {ds_type}")
    return descriptor


def list_descriptors(category: Optional[Category] = None) -> List[TypeDescriptor]:
    if category is None:
        return list(_DESCRIPTORS)
    return [d for d in _DESCRIPTORS if d.category == category]


@dataclass
class DataSourceConfig:
    """Connection settings for one configured data source, independent of storage."""

    type: str
    host: str = ""
    port: int = 0
    database: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    id: Optional[int] = None
    name: Optional[str] = None
    ssl_enabled: bool = False
    min_pool_size: int = 1
    max_pool_size: int = 10
    connection_timeout: float = 30.0
    idle_timeout: float = 600.0
    max_lifetime: float = 1800.0
    pool_enabled: bool = True
    enabled: bool = True
    properties: Dict[str, str] = field(default_factory=dict)

    @property
    def descriptor(self) -> TypeDescriptor:
        return get_descriptor(self.type)

    @property
    def pool_key(self) -> str:
        if self.id is not None:
            return f"ds-{self.id}"
        return f"{self.type}://{self.host}:{self.port}/{self.database or ''}#{self.username or ''}"
