from __future__ import annotations

from typing import Any

from sqlalchemy.sql import Select

from staffdesk.platform.security.context import AuthContext
from staffdesk.platform.security.tenancy import apply_tenant_filter, validate_tenant_write


class BaseRepository:
    resource = ""

    def apply_scope_query(self, query: Select[Any], ctx: AuthContext) -> Select[Any]:
        return apply_tenant_filter(query, ctx)

    def validate_write_scope(self, record: Any, ctx: AuthContext) -> None:
        validate_tenant_write(self.resource, getattr(record, "tenant_id", None), ctx)
