"""
Query and data-source request validation.

Query checks are a keyword deny-list plus a per-category shape rule applied
to the raw template text. This is not a SQL parser.
"""
import re
from dataclasses import dataclass, field
from typing import Any, List, Mapping, Optional

from autoapi.datasource.errors import ConfigurationError
from autoapi.datasource.types import Category, Protocol, get_descriptor

DENIED_KEYWORDS = (
    "DROP TABLE",
    "DELETE FROM",
    "TRUNCATE",
    "ALTER TABLE",
    "CREATE TABLE",
    "INSERT INTO",
    "UPDATE ",
    "EXEC",
    "EXECUTE",
    "SP_",
    "XP_",
)

DOCUMENT_DENIED_VERBS = re.compile(r"drop|remove|delete", re.IGNORECASE)

HOST_PATTERN = re.compile(r"^[a-zA-Z0-9]([a-zA-Z0-9\-.]*[a-zA-Z0-9])?$")
DATABASE_NAME_PATTERN = re.compile(r"^[a-zA-Z][a-zA-Z0-9_]{0,63}$")

MAX_NAME_LENGTH = 100
MAX_POOL_SIZE = 100
MIN_CONNECTION_TIMEOUT = 1.0
MIN_IDLE_TIMEOUT = 60.0
MIN_MAX_LIFETIME = 600.0


@dataclass
class ValidationResult:
    valid: bool = True
    errors: List[str] = field(default_factory=list)

    def add(self, error: str) -> None:
        self.valid = False
        self.errors.append(error)

    @property
    def error_message(self) -> Optional[str]:
        return ", ".join(self.errors) if self.errors else None


def validate_query(text: Optional[str], ds_type: str) -> ValidationResult:
    result = ValidationResult()
    if text is None or not text.strip():
        result.add("Query text must not be empty")
        return result

    upper = text.upper()
    for keyword in DENIED_KEYWORDS:
        if keyword in upper:
            result.add(f"Query contains forbidden keyword: {keyword.strip()}")

    descriptor = get_descriptor(ds_type)
    stripped = text.strip()
    if descriptor.category == Category.RELATIONAL:
        if not stripped.upper().startswith("SELECT"):
            result.add(f"{descriptor.display_name} queries must be SELECT statements")
    elif descriptor.category == Category.DOCUMENT:
        if DOCUMENT_DENIED_VERBS.search(text):
            result.add(f"{descriptor.display_name} queries must not drop, remove or delete documents")
    elif descriptor.category in (Category.SEARCH, Category.HTTP_API):
        if not stripped.upper().startswith(("GET", "POST")):
            result.add(f"{descriptor.display_name} requests must start with GET or POST")

    return result


def validate_datasource_request(payload: Mapping[str, Any]) -> ValidationResult:
    """Checks a full create or merged update payload before it is saved."""
    result = ValidationResult()

    name = payload.get("name")
    if not name or not str(name).strip():
        result.add("Data source name is required")
    elif len(str(name)) > MAX_NAME_LENGTH:
        result.add(f"Data source name must be at most {MAX_NAME_LENGTH} characters")

    ds_type = payload.get("type")
    descriptor = None
    try:
        descriptor = get_descriptor(ds_type)
    except ConfigurationError as e:
        result.add(str(e))

    embedded = descriptor is not None and descriptor.embedded

    if not embedded:
        host = payload.get("host")
        if not host or not str(host).strip():
            result.add("Host is required")
        elif not HOST_PATTERN.match(str(host)):
            result.add(f"Invalid host: {host}")

        port = payload.get("port")
        if not isinstance(port, int) or isinstance(port, bool) or not 1 <= port <= 65535:
            result.add("Port must be between 1 and 65535")

    database = payload.get("database")
    if database and not embedded:
        if not DATABASE_NAME_PATTERN.match(str(database)):
            result.add(f"Invalid database name: {database}")

    if descriptor is not None and descriptor.protocol == Protocol.JDBC and descriptor.credentials:
        if not payload.get("username"):
            result.add(f"Username is required for {descriptor.display_name}")
        if payload.get("password") is None:
            result.add(f"Password is required for {descriptor.display_name}")

    _validate_pool(payload, result)
    return result


def _validate_pool(payload: Mapping[str, Any], result: ValidationResult) -> None:
    max_size = payload.get("max_pool_size")
    min_size = payload.get("min_pool_size")
    if max_size is not None and not 1 <= max_size <= MAX_POOL_SIZE:
        result.add(f"max_pool_size must be between 1 and {MAX_POOL_SIZE}")
    if min_size is not None and min_size < 0:
        result.add("min_pool_size must not be negative")
    if min_size is not None and max_size is not None and min_size > max_size:
        result.add("min_pool_size must not exceed max_pool_size")

    timeout = payload.get("connection_timeout")
    if timeout is not None and timeout < MIN_CONNECTION_TIMEOUT:
        result.add(f"connection_timeout must be at least {MIN_CONNECTION_TIMEOUT:g}s")
    idle = payload.get("idle_timeout")
    if idle is not None and idle < MIN_IDLE_TIMEOUT:
        result.add(f"idle_timeout must be at least {MIN_IDLE_TIMEOUT:g}s")
    lifetime = payload.get("max_lifetime")
    if lifetime is not None and lifetime < MIN_MAX_LIFETIME:
        result.add(f"max_lifetime must be at least {MIN_MAX_LIFETIME:g}s")
