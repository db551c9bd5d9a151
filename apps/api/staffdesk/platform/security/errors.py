from __future__ import annotations

from staffdesk.core.errors import DomainError


class AuthorizationError(DomainError):
    """Base authorization error for scope enforcement failures."""

    code = "forbidden"
    status_code = 403


class TenantScopeError(AuthorizationError):
    """Raised when a write targets a record owned by another tenant."""

    code = "tenant_scope_violation"

    def __init__(self, resource: str, tenant_id: str | None) -> None:
        self.resource = resource
        self.tenant_id = tenant_id
        super().__init__(f"Out-of-scope tenant for resource '{resource}'", details={"resource": resource})
