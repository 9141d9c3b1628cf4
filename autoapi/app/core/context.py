from dataclasses import dataclass

from fastapi import Header


@dataclass(frozen=True)
class RequestContext:
    """Caller identity for one request. Passed explicitly to every service call."""

    user_id: int
    tenant_id: int


def get_request_context(
    x_user_id: int = Header(..., alias="X-User-Id"),
    x_tenant_id: int = Header(1, alias="X-Tenant-Id"),
) -> RequestContext:
    return RequestContext(user_id=x_user_id, tenant_id=x_tenant_id)
