from __future__ import annotations

from enum import StrEnum
from typing import assert_never


class EntityKind(StrEnum):
    TIMESHEET = "timesheet"
    LEDGER = "ledger"
    EXPENSE = "expense"
    SELF_SERVICE_REQUEST = "self_service_request"
    COMPANY = "company"
    APPROVAL_SETTING = "approval_setting"
    RECURRING_CONFIGURATION = "recurring_configuration"


class ApprovalModule(StrEnum):
    TIMESHEET = "timesheet"
    INVOICE = "invoice"
    EXPENSE = "expense"
    SELF_SERVICE = "self_service"


APPROVABLE_KINDS: frozenset[EntityKind] = frozenset(
    {
        EntityKind.TIMESHEET,
        EntityKind.LEDGER,
        EntityKind.EXPENSE,
        EntityKind.SELF_SERVICE_REQUEST,
    }
)


def approval_module_for(kind: EntityKind) -> ApprovalModule:
    match kind:
        case EntityKind.TIMESHEET:
            return ApprovalModule.TIMESHEET
        case EntityKind.LEDGER:
            return ApprovalModule.INVOICE
        case EntityKind.EXPENSE:
            return ApprovalModule.EXPENSE
        case EntityKind.SELF_SERVICE_REQUEST:
            return ApprovalModule.SELF_SERVICE
        case EntityKind.COMPANY | EntityKind.APPROVAL_SETTING | EntityKind.RECURRING_CONFIGURATION:
            raise ValueError(f"{kind.value} is not an approvable entity kind")
        case _:
            assert_never(kind)
