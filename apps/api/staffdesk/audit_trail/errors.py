from __future__ import annotations

from staffdesk.core.errors import DomainError


class AuditWriteFailed(DomainError):
    """The activity record could not be written; the triggering mutation must roll back."""

    code = "audit_write_failed"
    status_code = 500
