from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import and_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from staffdesk import events
from staffdesk.approvals.capability import Approvable
from staffdesk.approvals.errors import InvalidStateTransition, NoApproverAssigned, NotAuthorizedApprover
from staffdesk.approvals.models import ApprovalAction, ApprovalDecision, ApprovalLevel, ApprovalPathStep, ApprovalSetting, utcnow
from staffdesk.approvals.resolver import ApprovalConfigResolver
from staffdesk.approvals.schemas import ApprovalPathLevelRead, ApprovalStateRead
from staffdesk.approvals.states import (
    EXTENSION_TARGETS,
    IN_FLIGHT_STATUSES,
    ApprovalStatus,
    ExtensionAction,
    transitions_for,
)
from staffdesk.audit_trail.models import ActionType
from staffdesk.audit_trail.recorder import AuditTrailRecorder, snapshot
from staffdesk.core.errors import DomainError
from staffdesk.metrics import observe_approval_transition
from staffdesk.otel import domain_span
from staffdesk.platform.kinds import approval_module_for
from staffdesk.platform.security.context import AuthContext


logger = logging.getLogger("staffdesk.approvals.workflow")

STATE_FIELDS = (
    "status",
    "current_approval_level",
    "resolved_approval_setting_id",
    "submission_cycle",
    "submitted_on",
    "submitted_by",
    "approved_on",
    "rejected_on",
    "reject_reason",
)

EXTENSION_EVENTS: dict[ExtensionAction, str] = {
    ExtensionAction.VOID: "approval.voided",
    ExtensionAction.WRITE_OFF: "approval.written_off",
    ExtensionAction.CONVERT_TO_DRAFT: "approval.drafted",
    ExtensionAction.CLOSE: "approval.closed",
    ExtensionAction.REOPEN: "approval.reopened",
    ExtensionAction.CANCEL: "approval.cancelled",
}


def _assert_transition(entity: Approvable, target: ApprovalStatus) -> None:
    current = ApprovalStatus(entity.status)
    allowed = transitions_for(entity.entity_kind).get(current, set())
    if target not in allowed:
        raise InvalidStateTransition(
            f"cannot move {entity.entity_kind.value} from {current.value} to {target.value}",
            current=current.value,
            attempted=target.value,
        )


@dataclass(slots=True)
class ApprovalStateMachine:
    """Moves approvable records through their lifecycle.

    Approvers are checked against the path frozen at submission, never against
    the live chain, so editing a chain cannot reroute an in-flight record.
    Every write is a conditional update on ``row_version`` and the current
    level, which turns a lost race into ``InvalidStateTransition``.
    """

    resolver: ApprovalConfigResolver = field(default_factory=ApprovalConfigResolver)
    recorder: AuditTrailRecorder = field(default_factory=AuditTrailRecorder)

    def submit(self, session: Session, ctx: AuthContext, entity: Approvable) -> ApprovalStateRead:
        _assert_transition(entity, ApprovalStatus.SUBMITTED)

        with domain_span("approval.submit", entity_kind=entity.entity_kind.value, entity_id=entity.id):
            resolved = self.resolver.resolve(session, entity)
            path = self._chain_path(session, resolved.setting)
            if not path:
                raise NoApproverAssigned(
                    "resolved approval chain has no approvers",
                    details={"setting_id": str(resolved.setting.id)},
                )

            cycle = entity.submission_cycle + 1
            first_rank = min(path)
            for rank, approver_ids in path.items():
                session.add_all(
                    ApprovalPathStep(
                        tenant_id=entity.tenant_id,
                        entity_kind=entity.entity_kind.value,
                        entity_id=entity.id,
                        submission_cycle=cycle,
                        setting_id=resolved.setting.id,
                        rank=rank,
                        approver_id=approver_id,
                    )
                    for approver_id in approver_ids
                )

            self._persist(
                session,
                ctx,
                entity,
                operation="submit",
                values={
                    "status": ApprovalStatus.SUBMITTED.value,
                    "current_approval_level": first_rank,
                    "resolved_approval_setting_id": resolved.setting.id,
                    "submission_cycle": cycle,
                    "submitted_on": utcnow(),
                    "submitted_by": ctx.user_id,
                    "approved_on": None,
                    "rejected_on": None,
                    "reject_reason": None,
                },
                audit_action=ActionType.UPDATE,
            )

        self._announce("approval.submitted", ctx, entity, action="submit", source=resolved.source)
        return self.get_state(session, entity)

    def approve(
        self,
        session: Session,
        ctx: AuthContext,
        entity: Approvable,
        *,
        expected_level: int | None = None,
        comment: str | None = None,
    ) -> ApprovalStateRead:
        level = self._check_decision(session, ctx, entity, expected_level, ApprovalStatus.APPROVED)
        path = self._frozen_path(session, entity)
        next_rank = min((rank for rank in path if rank > level), default=None)

        if next_rank is None:
            target = ApprovalStatus.APPROVED
            values: dict[str, Any] = {"status": target.value, "approved_on": utcnow()}
        else:
            target = ApprovalStatus.APPROVAL_IN_PROGRESS
            values = {"status": target.value, "current_approval_level": next_rank}
        _assert_transition(entity, target)

        with domain_span("approval.approve", entity_kind=entity.entity_kind.value, entity_id=entity.id, level=level):
            session.add(self._decision(entity, ctx, level, ApprovalDecision.APPROVED, comment))
            self._persist(
                session,
                ctx,
                entity,
                operation="approve",
                values=values,
                audit_action=ActionType.APPROVE,
                guard_level=level,
            )

        event_type = "approval.approved" if target == ApprovalStatus.APPROVED else "approval.advanced"
        self._announce(event_type, ctx, entity, action="approve", level=level)
        return self.get_state(session, entity)

    def reject(
        self,
        session: Session,
        ctx: AuthContext,
        entity: Approvable,
        reason: str,
        *,
        expected_level: int | None = None,
    ) -> ApprovalStateRead:
        level = self._check_decision(session, ctx, entity, expected_level, ApprovalStatus.REJECTED)
        _assert_transition(entity, ApprovalStatus.REJECTED)

        with domain_span("approval.reject", entity_kind=entity.entity_kind.value, entity_id=entity.id, level=level):
            session.add(self._decision(entity, ctx, level, ApprovalDecision.REJECTED, reason))
            self._persist(
                session,
                ctx,
                entity,
                operation="reject",
                values={
                    "status": ApprovalStatus.REJECTED.value,
                    "rejected_on": utcnow(),
                    "reject_reason": reason,
                },
                audit_action=ActionType.APPROVE,
                guard_level=level,
            )

        self._announce("approval.rejected", ctx, entity, action="reject", level=level)
        return self.get_state(session, entity)

    def transition(
        self,
        session: Session,
        ctx: AuthContext,
        entity: Approvable,
        action: ExtensionAction,
    ) -> ApprovalStateRead:
        target = EXTENSION_TARGETS[action]
        _assert_transition(entity, target)

        values: dict[str, Any] = {"status": target.value}
        if action == ExtensionAction.CONVERT_TO_DRAFT:
            values.update(current_approval_level=None, approved_on=None)

        with domain_span(f"approval.{action.value}", entity_kind=entity.entity_kind.value, entity_id=entity.id):
            self._persist(session, ctx, entity, operation=action.value, values=values, audit_action=ActionType.UPDATE)

        self._announce(EXTENSION_EVENTS[action], ctx, entity, action=action.value)
        return self.get_state(session, entity)

    def get_state(self, session: Session, entity: Approvable) -> ApprovalStateRead:
        path = self._frozen_path(session, entity) if entity.submission_cycle else {}
        payload = {name: getattr(entity, name) for name in STATE_FIELDS}
        payload.update(
            entity_kind=entity.entity_kind.value,
            entity_id=entity.id,
            row_version=entity.row_version,
            path=[ApprovalPathLevelRead(rank=rank, approver_ids=ids) for rank, ids in sorted(path.items())],
        )
        return ApprovalStateRead.model_validate(payload)

    def _check_decision(
        self,
        session: Session,
        ctx: AuthContext,
        entity: Approvable,
        expected_level: int | None,
        attempted: ApprovalStatus,
    ) -> int:
        # state before identity, so a late approver learns the record moved on
        if entity.status not in IN_FLIGHT_STATUSES or entity.current_approval_level is None:
            raise InvalidStateTransition(
                f"{entity.entity_kind.value} is {entity.status}, not awaiting approval",
                current=entity.status,
                attempted=attempted.value,
            )
        level = entity.current_approval_level
        if expected_level is not None and expected_level != level:
            raise InvalidStateTransition(
                f"approval level moved from {expected_level} to {level}",
                current=entity.status,
                attempted=attempted.value,
            )

        path = self._frozen_path(session, entity)
        if ctx.user_id not in path.get(level, []):
            raise NotAuthorizedApprover(
                f"{ctx.user_id} is not an approver at level {level}",
                details={"entity_id": str(entity.id), "level": level},
            )

        already_decided = session.scalar(
            select(ApprovalAction.id).where(
                and_(
                    ApprovalAction.entity_kind == entity.entity_kind.value,
                    ApprovalAction.entity_id == entity.id,
                    ApprovalAction.submission_cycle == entity.submission_cycle,
                    ApprovalAction.rank == level,
                    ApprovalAction.approver_id == ctx.user_id,
                )
            )
        )
        if already_decided is not None:
            raise InvalidStateTransition(
                f"{ctx.user_id} already acted at level {level}",
                current=entity.status,
                attempted=attempted.value,
            )
        return level

    @staticmethod
    def _decision(
        entity: Approvable,
        ctx: AuthContext,
        level: int,
        decision: ApprovalDecision,
        comment: str | None,
    ) -> ApprovalAction:
        return ApprovalAction(
            tenant_id=entity.tenant_id,
            entity_kind=entity.entity_kind.value,
            entity_id=entity.id,
            submission_cycle=entity.submission_cycle,
            rank=level,
            approver_id=ctx.user_id,
            decision=decision.value,
            comment=comment,
        )

    def _persist(
        self,
        session: Session,
        ctx: AuthContext,
        entity: Approvable,
        *,
        operation: str,
        values: dict[str, Any],
        audit_action: ActionType,
        guard_level: int | None = None,
    ) -> None:
        model = type(entity)
        before = snapshot(entity, STATE_FIELDS)
        seen_version = entity.row_version
        attempted = str(values["status"])
        conditions = [model.id == entity.id, model.row_version == seen_version]
        if guard_level is not None:
            conditions.append(model.current_approval_level == guard_level)

        try:
            session.flush()
            result = session.execute(
                update(model)
                .where(and_(*conditions))
                .values(row_version=seen_version + 1, updated_at=utcnow(), **values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise InvalidStateTransition(
                    f"{entity.entity_kind.value} changed while {operation} was in progress",
                    current=before["status"],
                    attempted=attempted,
                )
            session.refresh(entity)
            self.recorder.record(
                session,
                tenant_id=entity.tenant_id,
                entity_kind=entity.entity_kind,
                entity_id=entity.id,
                actor_id=ctx.user_id,
                action=audit_action,
                before=before,
                after=snapshot(entity, STATE_FIELDS),
                approval_level=guard_level,
                approval_user_id=ctx.user_id if guard_level is not None else None,
            )
            session.commit()
        except IntegrityError as exc:
            session.rollback()
            raise InvalidStateTransition(
                f"{operation} conflicted with a concurrent decision",
                current=before["status"],
                attempted=attempted,
            ) from exc
        except (DomainError, SQLAlchemyError):
            session.rollback()
            raise

    @staticmethod
    def _chain_path(session: Session, setting: ApprovalSetting) -> dict[int, list[str]]:
        levels = session.scalars(
            select(ApprovalLevel)
            .where(ApprovalLevel.setting_id == setting.id)
            .options(selectinload(ApprovalLevel.approvers))
            .order_by(ApprovalLevel.rank.asc())
        ).all()
        # placeholder levels carry no approvers and are skipped
        return {level.rank: [user.approver_id for user in level.approvers] for level in levels if level.approvers}

    @staticmethod
    def _frozen_path(session: Session, entity: Approvable) -> dict[int, list[str]]:
        steps = session.execute(
            select(ApprovalPathStep.rank, ApprovalPathStep.approver_id)
            .where(
                and_(
                    ApprovalPathStep.entity_kind == entity.entity_kind.value,
                    ApprovalPathStep.entity_id == entity.id,
                    ApprovalPathStep.submission_cycle == entity.submission_cycle,
                )
            )
            .order_by(ApprovalPathStep.rank.asc(), ApprovalPathStep.created_at.asc())
        ).all()
        path: dict[int, list[str]] = defaultdict(list)
        for rank, approver_id in steps:
            path[rank].append(approver_id)
        return dict(path)

    @staticmethod
    def _announce(event_type: str, ctx: AuthContext, entity: Approvable, *, action: str, **extra: Any) -> None:
        module = approval_module_for(entity.entity_kind)
        observe_approval_transition(module.value, action)
        logger.info(
            "approval_transition",
            extra={
                "entity_kind": entity.entity_kind.value,
                "entity_id": str(entity.id),
                "approval_module": module.value,
                "action": action,
                "status": entity.status,
            },
        )
        events.publish(
            {
                "event_type": event_type,
                "tenant_id": entity.tenant_id,
                "entity_kind": entity.entity_kind.value,
                "entity_id": str(entity.id),
                "module": module.value,
                "status": entity.status,
                "current_approval_level": entity.current_approval_level,
                "submission_cycle": entity.submission_cycle,
                "actor_id": ctx.user_id,
                "correlation_id": ctx.correlation_id,
                **extra,
            }
        )


approval_state_machine = ApprovalStateMachine()
