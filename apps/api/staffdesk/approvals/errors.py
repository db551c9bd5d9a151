from __future__ import annotations

from typing import Any

from staffdesk.core.errors import DomainError


class ApprovalError(DomainError):
    code = "approval_error"


class ChainValidationError(ApprovalError):
    status_code = 422


class RankCountMismatch(ChainValidationError):
    """Two or more submitted levels share a rank."""

    code = "rank_count_mismatch"


class RankSequenceGap(ChainValidationError):
    """Distinct ranks do not form 1..N."""

    code = "rank_sequence_gap"


class NoApproverAssigned(ChainValidationError):
    code = "no_approver_assigned"


class ChainIntegrityError(ApprovalError):
    status_code = 409


class DuplicateApproverInLevel(ChainIntegrityError):
    code = "duplicate_approver_in_level"


class LastApproverInLevel(ChainIntegrityError):
    code = "last_approver_in_level"


class LastLevelInSetting(ChainIntegrityError):
    code = "last_level_in_setting"


class ChainConcurrentlyModified(ChainIntegrityError):
    code = "chain_concurrently_modified"


class ApprovalSettingNotFound(ApprovalError):
    code = "approval_setting_not_found"
    status_code = 404


class NoApplicableChain(ApprovalError):
    """No record, owner or global chain governs the entity.

    This is a configuration failure, not bad input: the global slot for the
    module was never seeded or points at a soft-deleted setting.
    """

    code = "no_applicable_chain"
    status_code = 500

    def __init__(self, message: str, *, module: str | None = None, tenant_id: str | None = None, details: Any = None) -> None:
        self.module = module
        self.tenant_id = tenant_id
        super().__init__(message, details=details or {"module": module, "tenant_id": tenant_id})


class NotAuthorizedApprover(ApprovalError):
    code = "not_authorized_approver"
    status_code = 403


class InvalidStateTransition(ApprovalError):
    code = "invalid_state_transition"
    status_code = 409

    def __init__(self, message: str, *, current: str | None = None, attempted: str | None = None) -> None:
        self.current = current
        self.attempted = attempted
        super().__init__(message, details={"current": current, "attempted": attempted})


class ScopeMismatch(ChainIntegrityError):
    code = "approval_scope_mismatch"
