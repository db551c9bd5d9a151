from staffdesk.audit_trail.errors import AuditWriteFailed
from staffdesk.audit_trail.models import ActionType, ActivityTrack, FieldChange
from staffdesk.audit_trail.recorder import (
    AuditTrailRecorder,
    FieldDiff,
    audit_trail_recorder,
    diff_states,
    serialize_value,
    snapshot,
)

__all__ = [
    "AuditWriteFailed",
    "ActionType",
    "ActivityTrack",
    "FieldChange",
    "AuditTrailRecorder",
    "FieldDiff",
    "audit_trail_recorder",
    "diff_states",
    "serialize_value",
    "snapshot",
]
