from __future__ import annotations

from staffdesk.core.errors import DomainError


class RecordConflict(DomainError):
    code = "row_version_conflict"
    status_code = 409


class InvalidRecordPayload(DomainError):
    code = "invalid_record_payload"
    status_code = 422
