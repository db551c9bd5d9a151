from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date
from typing import Any

from sqlalchemy import and_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from staffdesk import events
from staffdesk.audit_trail.models import ActionType
from staffdesk.audit_trail.recorder import AuditTrailRecorder, snapshot
from staffdesk.core.config import get_settings
from staffdesk.core.errors import DomainError
from staffdesk.metrics import observe_recurrence
from staffdesk.otel import domain_span
from staffdesk.platform.kinds import APPROVABLE_KINDS, EntityKind
from staffdesk.platform.security.context import AuthContext
from staffdesk.platform.security.repository import BaseRepository
from staffdesk.records.service import record_service
from staffdesk.recurrence.calculator import next_occurrence, validate_schedule
from staffdesk.recurrence.errors import InvalidRecurrence, NoMoreOccurrences, RecurrenceNotFound
from staffdesk.recurrence.models import RecurringConfiguration
from staffdesk.recurrence.schemas import MaterializeSummary, RecurrenceCreate, RecurrencePreview, RecurrenceRead


logger = logging.getLogger("staffdesk.recurrence")

PROGRESS_FIELDS = ("occurrence_count", "last_occurrence_date", "is_active")
SYSTEM_ACTOR = "system"


class RecurrenceRepository(BaseRepository):
    resource = "recurrence.configuration"


@dataclass(slots=True)
class RecurrenceService:
    repository: RecurrenceRepository = RecurrenceRepository()
    recorder: AuditTrailRecorder = field(default_factory=AuditTrailRecorder)

    def create_configuration(self, session: Session, ctx: AuthContext, payload: RecurrenceCreate) -> RecurrenceRead:
        if payload.subject_kind not in APPROVABLE_KINDS:
            raise InvalidRecurrence(
                f"{payload.subject_kind.value} records cannot recur",
                details={"subject_kind": payload.subject_kind.value},
            )
        record_service.load(session, ctx, payload.subject_kind, payload.subject_id)

        config = RecurringConfiguration(
            tenant_id=ctx.tenant_id,
            subject_kind=payload.subject_kind.value,
            subject_id=payload.subject_id,
            cycle_type=payload.cycle_type.value,
            interval_count=payload.interval_count,
            start_date=payload.start_date,
            end_date=None if payload.never_expires else payload.end_date,
            never_expires=payload.never_expires,
            occurrence_count=0,
            is_active=True,
            created_by=ctx.user_id,
        )
        validate_schedule(config)

        session.add(config)
        try:
            session.flush()
            self.recorder.record(
                session,
                tenant_id=config.tenant_id,
                entity_kind=EntityKind.RECURRING_CONFIGURATION,
                entity_id=config.id,
                actor_id=ctx.user_id,
                action=ActionType.CREATE,
            )
            session.commit()
        except (DomainError, SQLAlchemyError):
            session.rollback()
            raise

        logger.info(
            "recurrence_configured",
            extra={"entity_kind": config.subject_kind, "entity_id": str(config.subject_id), "action": config.cycle_type},
        )
        return RecurrenceRead.model_validate(config)

    def get_configuration(self, session: Session, ctx: AuthContext, config_id: uuid.UUID) -> RecurrenceRead:
        return RecurrenceRead.model_validate(self._get_row(session, ctx, config_id))

    def preview_next(self, session: Session, ctx: AuthContext, config_id: uuid.UUID, today: date) -> RecurrencePreview:
        config = self._get_row(session, ctx, config_id)
        if not config.is_active:
            return RecurrencePreview(configuration_id=config.id, next_on=None, is_due=False, exhausted=True)
        try:
            occurrence = next_occurrence(config, today)
        except NoMoreOccurrences:
            return RecurrencePreview(configuration_id=config.id, next_on=None, is_due=False, exhausted=True)
        return RecurrencePreview(
            configuration_id=config.id,
            next_on=occurrence.on,
            is_due=occurrence.is_due,
            exhausted=False,
        )

    def materialize_due(self, session: Session, today: date, *, limit: int | None = None) -> MaterializeSummary:
        """Advance every active configuration up to ``today``.

        Each configuration commits on its own, so one failing schedule does not
        hold back the rest of the batch.
        """

        batch_size = limit or get_settings().recurrence_batch_size
        configs = session.scalars(
            select(RecurringConfiguration)
            .where(and_(RecurringConfiguration.is_active.is_(True), RecurringConfiguration.start_date <= today))
            .order_by(RecurringConfiguration.created_at.asc())
            .limit(batch_size)
        ).all()

        summary = MaterializeSummary()
        with domain_span("recurrence.materialize", today=today.isoformat(), batch=len(configs)):
            for config in configs:
                summary.scanned += 1
                config_id = config.id
                try:
                    due, completed = self._advance(session, config, today)
                except (DomainError, SQLAlchemyError):
                    logger.exception("recurrence_failed", extra={"entity_id": str(config_id)})
                    observe_recurrence("failed")
                    summary.failed += 1
                    continue
                summary.due += due
                summary.completed += int(completed)
        return summary

    def _advance(self, session: Session, config: RecurringConfiguration, today: date) -> tuple[int, bool]:
        before = snapshot(config, PROGRESS_FIELDS)
        pending: list[dict[str, Any]] = []
        completed = False

        while True:
            try:
                occurrence = next_occurrence(config, today)
            except NoMoreOccurrences:
                config.is_active = False
                completed = True
                pending.append(self._envelope("recurrence.completed", config))
                break
            except InvalidRecurrence:
                logger.exception(
                    "recurrence_invalid",
                    extra={"entity_kind": config.subject_kind, "entity_id": str(config.subject_id)},
                )
                config.is_active = False
                break
            if not occurrence.is_due:
                break
            config.last_occurrence_date = occurrence.on
            config.occurrence_count += 1
            pending.append(self._envelope("recurrence.occurrence_due", config, occurrence_date=occurrence.on.isoformat()))

        if snapshot(config, PROGRESS_FIELDS) == before:
            return 0, False

        try:
            session.flush()
            self.recorder.record(
                session,
                tenant_id=config.tenant_id,
                entity_kind=EntityKind.RECURRING_CONFIGURATION,
                entity_id=config.id,
                actor_id=SYSTEM_ACTOR,
                action=ActionType.UPDATE,
                before=before,
                after=snapshot(config, PROGRESS_FIELDS),
            )
            session.commit()
        except (DomainError, SQLAlchemyError):
            session.rollback()
            raise

        due = sum(1 for envelope in pending if envelope["event_type"] == "recurrence.occurrence_due")
        if due:
            observe_recurrence("due", due)
        if completed:
            observe_recurrence("completed")
        for envelope in pending:
            events.publish(envelope)
        return due, completed

    def _get_row(self, session: Session, ctx: AuthContext, config_id: uuid.UUID) -> RecurringConfiguration:
        stmt = select(RecurringConfiguration).where(RecurringConfiguration.id == config_id)
        config = session.scalar(self.repository.apply_scope_query(stmt, ctx))
        if config is None:
            raise RecurrenceNotFound("recurring configuration not found", details={"configuration_id": str(config_id)})
        return config

    @staticmethod
    def _envelope(event_type: str, config: RecurringConfiguration, **extra: Any) -> dict[str, Any]:
        return {
            "event_type": event_type,
            "tenant_id": config.tenant_id,
            "configuration_id": str(config.id),
            "subject_kind": config.subject_kind,
            "subject_id": str(config.subject_id),
            "occurrence_count": config.occurrence_count,
            **extra,
        }


recurrence_service = RecurrenceService()
