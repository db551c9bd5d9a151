from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.sql import Select

from staffdesk.metrics import observe_tenant_denied_write
from staffdesk.platform.security.context import AuthContext
from staffdesk.platform.security.errors import TenantScopeError


logger = logging.getLogger("staffdesk.security")


def apply_tenant_filter(query: Select[Any], ctx: AuthContext) -> Select[Any]:
    """Restrict every selected model that exposes ``tenant_id`` to the caller's tenant."""

    for description in query.column_descriptions:
        model = description.get("entity")
        if model is None:
            continue
        if hasattr(model, "tenant_id"):
            query = query.where(getattr(model, "tenant_id") == ctx.tenant_id)
    return query


def validate_tenant_write(resource: str, tenant_id: str | None, ctx: AuthContext) -> None:
    if tenant_id is None or tenant_id == ctx.tenant_id:
        return
    observe_tenant_denied_write(resource)
    logger.warning(
        "tenant_write_denied",
        extra={"entity_kind": resource, "error": f"tenant {tenant_id} is outside caller scope"},
    )
    raise TenantScopeError(resource, tenant_id)
