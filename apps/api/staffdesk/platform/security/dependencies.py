from __future__ import annotations

from fastapi import Depends, HTTPException, Request, status

from staffdesk.context import get_correlation_id
from staffdesk.core.auth import AuthUser, get_current_user
from staffdesk.core.context import get_request_context
from staffdesk.platform.security.context import AuthContext


def get_auth_context(
    request: Request,
    auth_user: AuthUser = Depends(get_current_user),
) -> AuthContext:
    request_context = get_request_context(request)
    if request_context.tenant_id is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="x-tenant-id header is required")

    request_context.user_id = auth_user.sub
    roles = [str(item) for item in auth_user.roles]
    normalized = {item.lower() for item in roles}

    return AuthContext(
        user_id=auth_user.sub,
        tenant_id=request_context.tenant_id,
        correlation_id=get_correlation_id() or request_context.correlation_id or None,
        is_super_admin=("admin" in normalized or "system.admin" in normalized),
        roles=roles,
    )
