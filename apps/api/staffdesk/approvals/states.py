from __future__ import annotations

from enum import StrEnum

from staffdesk.platform.kinds import EntityKind


class ApprovalStatus(StrEnum):
    DRAFTED = "DRAFTED"
    SUBMITTED = "SUBMITTED"
    APPROVAL_IN_PROGRESS = "APPROVAL_IN_PROGRESS"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    VOID = "VOID"
    WRITE_OFF = "WRITE_OFF"
    CLOSED = "CLOSED"
    REOPENED = "REOPENED"
    CANCELLED = "CANCELLED"


class ExtensionAction(StrEnum):
    VOID = "void"
    WRITE_OFF = "write_off"
    CONVERT_TO_DRAFT = "convert_to_draft"
    CLOSE = "close"
    REOPEN = "reopen"
    CANCEL = "cancel"


S = ApprovalStatus

SUBMITTABLE_STATUSES = {S.DRAFTED, S.REJECTED, S.REOPENED}
IN_FLIGHT_STATUSES = {S.SUBMITTED, S.APPROVAL_IN_PROGRESS}
EDITABLE_STATUSES = SUBMITTABLE_STATUSES

VALID_APPROVAL_TRANSITIONS: dict[ApprovalStatus, set[ApprovalStatus]] = {
    S.DRAFTED: {S.SUBMITTED},
    S.SUBMITTED: {S.APPROVAL_IN_PROGRESS, S.APPROVED, S.REJECTED},
    S.APPROVAL_IN_PROGRESS: {S.APPROVAL_IN_PROGRESS, S.APPROVED, S.REJECTED},
    S.REJECTED: {S.SUBMITTED},
    S.APPROVED: set(),
}

LEDGER_TRANSITIONS: dict[ApprovalStatus, set[ApprovalStatus]] = {
    S.APPROVED: {S.VOID, S.WRITE_OFF, S.DRAFTED},
    S.VOID: set(),
    S.WRITE_OFF: set(),
}

SELF_SERVICE_TRANSITIONS: dict[ApprovalStatus, set[ApprovalStatus]] = {
    S.APPROVED: {S.CLOSED},
    S.CLOSED: {S.REOPENED, S.CANCELLED},
    S.REOPENED: {S.SUBMITTED},
    S.CANCELLED: set(),
}

EXTENSION_TARGETS: dict[ExtensionAction, ApprovalStatus] = {
    ExtensionAction.VOID: S.VOID,
    ExtensionAction.WRITE_OFF: S.WRITE_OFF,
    ExtensionAction.CONVERT_TO_DRAFT: S.DRAFTED,
    ExtensionAction.CLOSE: S.CLOSED,
    ExtensionAction.REOPEN: S.REOPENED,
    ExtensionAction.CANCEL: S.CANCELLED,
}


def transitions_for(kind: EntityKind) -> dict[ApprovalStatus, set[ApprovalStatus]]:
    table = {status: set(targets) for status, targets in VALID_APPROVAL_TRANSITIONS.items()}
    if kind == EntityKind.LEDGER:
        extension = LEDGER_TRANSITIONS
    elif kind == EntityKind.SELF_SERVICE_REQUEST:
        extension = SELF_SERVICE_TRANSITIONS
    else:
        extension = {}
    for status, targets in extension.items():
        table.setdefault(status, set()).update(targets)
    return table
