from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, assert_never

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from staffdesk.audit_trail.errors import AuditWriteFailed
from staffdesk.audit_trail.models import ActionType, ActivityTrack, FieldChange
from staffdesk.context import get_correlation_id
from staffdesk.metrics import observe_audit_failure, observe_audit_track
from staffdesk.platform.kinds import EntityKind


logger = logging.getLogger("staffdesk.audit_trail")

_DIFFED_ACTIONS = {ActionType.UPDATE, ActionType.APPROVE}


@dataclass(frozen=True, slots=True)
class FieldDiff:
    field_name: str
    old_value: str | None
    new_value: str | None
    is_document_change: bool = False


def document_fields_for(kind: EntityKind) -> frozenset[str]:
    match kind:
        case EntityKind.TIMESHEET:
            return frozenset({"documents"})
        case EntityKind.LEDGER | EntityKind.SELF_SERVICE_REQUEST:
            return frozenset({"attachments"})
        case EntityKind.EXPENSE:
            return frozenset({"receipts"})
        case EntityKind.COMPANY | EntityKind.APPROVAL_SETTING | EntityKind.RECURRING_CONFIGURATION:
            return frozenset()
        case _:
            assert_never(kind)


def label_field_for(kind: EntityKind) -> str | None:
    """Field copied onto delete tracks so the record stays identifiable."""
    match kind:
        case EntityKind.TIMESHEET:
            return "placement_ref"
        case EntityKind.LEDGER:
            return "reference_number"
        case EntityKind.SELF_SERVICE_REQUEST:
            return "subject"
        case EntityKind.COMPANY | EntityKind.APPROVAL_SETTING:
            return "name"
        case EntityKind.EXPENSE | EntityKind.RECURRING_CONFIGURATION:
            return None
        case _:
            assert_never(kind)


def serialize_value(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (Decimal, uuid.UUID)):
        return str(value)
    if isinstance(value, (list, tuple, dict)):
        return json.dumps(value, sort_keys=True, default=str)
    return str(value)


def document_identifiers(value: Any) -> str | None:
    if value is None:
        return None
    items = value if isinstance(value, (list, tuple)) else [value]
    identifiers: list[str] = []
    for item in items:
        if isinstance(item, Mapping):
            identifier = item.get("id") or item.get("document_id")
            if identifier is None:
                raise ValueError("document entries must carry an id")
            identifiers.append(str(identifier))
        else:
            identifiers.append(str(item))
    return json.dumps(sorted(identifiers))


def diff_states(
    before: Mapping[str, Any],
    after: Mapping[str, Any],
    document_fields: Iterable[str] = (),
) -> list[FieldDiff]:
    document_set = set(document_fields)
    diffs: list[FieldDiff] = []
    for name in dict.fromkeys([*before.keys(), *after.keys()]):
        is_document = name in document_set
        encode = document_identifiers if is_document else serialize_value
        old_value = encode(before.get(name))
        new_value = encode(after.get(name))
        if old_value != new_value:
            diffs.append(FieldDiff(name, old_value, new_value, is_document))
    return diffs


def snapshot(record: Any, fields: Iterable[str]) -> dict[str, Any]:
    return {name: getattr(record, name) for name in fields}


@dataclass(slots=True)
class AuditTrailRecorder:
    """Writes one activity track and its field changes into the caller's transaction.

    Nothing is committed here. A failure raises ``AuditWriteFailed`` and the
    caller rolls back the mutation that triggered it.
    """

    def record(
        self,
        session: Session,
        *,
        tenant_id: str,
        entity_kind: EntityKind,
        entity_id: uuid.UUID,
        actor_id: str,
        action: ActionType,
        before: Mapping[str, Any] | None = None,
        after: Mapping[str, Any] | None = None,
        label: str | None = None,
        approval_level: int | None = None,
        approval_user_id: str | None = None,
    ) -> ActivityTrack:
        try:
            changes: list[FieldDiff] = []
            if action in _DIFFED_ACTIONS:
                if before is None or after is None:
                    raise ValueError(f"{action.value} tracks need both before and after states")
                changes = diff_states(before, after, document_fields_for(entity_kind))
            if action == ActionType.DELETE and label is None:
                label_field = label_field_for(entity_kind)
                if label_field is not None and before is not None:
                    label = serialize_value(before.get(label_field))

            track = ActivityTrack(
                id=uuid.uuid4(),
                tenant_id=tenant_id,
                entity_kind=entity_kind.value,
                entity_id=entity_id,
                action=action.value,
                actor_id=actor_id,
                label=label[:255] if label else None,
                is_document_modified=any(change.is_document_change for change in changes),
                approval_level=approval_level,
                approval_user_id=approval_user_id,
                correlation_id=get_correlation_id(),
            )
            session.add(track)
            session.add_all(
                FieldChange(
                    track_id=track.id,
                    field_name=change.field_name,
                    old_value=change.old_value,
                    new_value=change.new_value,
                    is_document_change=change.is_document_change,
                )
                for change in changes
            )
            session.flush()
        except (SQLAlchemyError, TypeError, ValueError) as exc:
            observe_audit_failure(entity_kind.value)
            logger.exception(
                "audit_write_failed",
                extra={"entity_kind": entity_kind.value, "entity_id": str(entity_id), "action": action.value},
            )
            raise AuditWriteFailed(
                f"could not record {action.value} on {entity_kind.value}",
                details={"entity_id": str(entity_id)},
            ) from exc

        observe_audit_track(entity_kind.value, action.value)
        return track


audit_trail_recorder = AuditTrailRecorder()
