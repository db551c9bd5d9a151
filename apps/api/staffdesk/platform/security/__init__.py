from staffdesk.platform.security.context import AuthContext
from staffdesk.platform.security.errors import AuthorizationError, TenantScopeError
from staffdesk.platform.security.repository import BaseRepository
from staffdesk.platform.security.tenancy import apply_tenant_filter, validate_tenant_write

__all__ = [
    "AuthContext",
    "AuthorizationError",
    "TenantScopeError",
    "BaseRepository",
    "apply_tenant_filter",
    "validate_tenant_write",
]
