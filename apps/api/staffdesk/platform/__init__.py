from staffdesk.platform.kinds import APPROVABLE_KINDS, ApprovalModule, EntityKind, approval_module_for
from staffdesk.platform.security.context import AuthContext
from staffdesk.platform.security.errors import AuthorizationError, TenantScopeError
from staffdesk.platform.security.repository import BaseRepository

__all__ = [
    "APPROVABLE_KINDS",
    "ApprovalModule",
    "EntityKind",
    "approval_module_for",
    "AuthContext",
    "AuthorizationError",
    "TenantScopeError",
    "BaseRepository",
]
