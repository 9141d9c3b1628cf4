import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from autoapi.datasource.errors import CapabilityNotSupported, DataSourceError

logger = logging.getLogger(__name__)


class ServiceError(Exception):
    error_code = "SERVICE_ERROR"
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFound(ServiceError):
    error_code = "NOT_FOUND"
    status_code = 404


class InvalidState(ServiceError):
    error_code = "INVALID_STATE"
    status_code = 409


class ValidationFailed(ServiceError):
    error_code = "VALIDATION_FAILED"
    status_code = 422


class PermissionDenied(ServiceError):
    error_code = "PERMISSION_DENIED"
    status_code = 403


class VersionNotFound(ServiceError):
    error_code = "VERSION_NOT_FOUND"
    status_code = 404

    def __init__(self, service_id: int, version: str):
        super().__init__(f"Version '{version}' does not exist for API service {service_id}")
        self.version = version


class DuplicateVersionLabel(ServiceError):
    error_code = "DUPLICATE_VERSION_LABEL"
    status_code = 409

    def __init__(self, service_id: int, version: str):
        super().__init__(f"Version '{version}' already exists for API service {service_id}")
        self.version = version


class NoActiveVersion(ServiceError):
    error_code = "NO_ACTIVE_VERSION"
    status_code = 404

    def __init__(self, service_id: int):
        super().__init__(f"API service {service_id} has no active version")


DATASOURCE_STATUS_CODES = {
    "CONFIGURATION_ERROR": 400,
    "QUERY_REJECTED": 400,
    "DEPENDENCY_UNAVAILABLE": 424,
    "NOT_IMPLEMENTED": 501,
    "CONNECTION_ERROR": 502,
    "POOL_EXHAUSTED": 503,
    "EXECUTION_ERROR": 502,
}


def error_body(error_code: str, message: str) -> dict:
    return {"success": False, "error_code": error_code, "message": message}


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(ServiceError)
    async def handle_service_error(request: Request, exc: ServiceError):
        return JSONResponse(status_code=exc.status_code, content=error_body(exc.error_code, exc.message))

    @app.exception_handler(DataSourceError)
    async def handle_datasource_error(request: Request, exc: DataSourceError):
        if isinstance(exc, CapabilityNotSupported):
            logger.error(f"Capability used without probing: {exc.message}")
            return JSONResponse(status_code=500, content=error_body(exc.error_code, exc.message))
        status = DATASOURCE_STATUS_CODES.get(exc.error_code, 400)
        return JSONResponse(status_code=status, content=error_body(exc.error_code, exc.message))
