from typing import List, Optional


class DataSourceError(Exception):
    error_code = "DATASOURCE_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ConfigurationError(DataSourceError):
    """Bad host/port or a missing required field. Never retried."""

    error_code = "CONFIGURATION_ERROR"


class DependencyUnavailable(DataSourceError):
    error_code = "DEPENDENCY_UNAVAILABLE"

    def __init__(self, ds_type: str, module: str, coordinate: str):
        super().__init__(
            f"Driver not found for {ds_type}: module '{module}' is missing, "
            f"install it with: pip install {coordinate}"
        )
        self.ds_type = ds_type
        self.module = module
        self.coordinate = coordinate


class DataSourceConnectionError(DataSourceError):
    error_code = "CONNECTION_ERROR"


class PoolExhausted(DataSourceConnectionError):
    error_code = "POOL_EXHAUSTED"

    def __init__(self, pool_name: str, timeout: float):
        super().__init__(f"Connection pool '{pool_name}' exhausted, no connection available within {timeout}s")
        self.pool_name = pool_name
        self.timeout = timeout


class QueryRejected(DataSourceError):
    error_code = "QUERY_REJECTED"

    def __init__(self, errors: List[str]):
        super().__init__(", ".join(errors))
        self.errors = list(errors)


class ExecutionError(DataSourceError):
    error_code = "EXECUTION_ERROR"


class ConnectorNotImplemented(DataSourceError):
    error_code = "NOT_IMPLEMENTED"

    def __init__(self, ds_type: str, detail: Optional[str] = None):
        super().__init__(detail or f"Connector for data source type '{ds_type}' is not implemented")
        self.ds_type = ds_type


class CapabilityNotSupported(DataSourceError):
    """Raised when a caller skips the capability check. A programming error."""

    error_code = "CAPABILITY_NOT_SUPPORTED"
