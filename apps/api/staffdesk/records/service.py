from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError
from sqlalchemy import and_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from staffdesk import events
from staffdesk.approvals.errors import ApprovalSettingNotFound, InvalidStateTransition, ScopeMismatch
from staffdesk.approvals.models import ApprovalSetting, utcnow
from staffdesk.approvals.resolver import owner_setting_field
from staffdesk.approvals.states import EDITABLE_STATUSES, IN_FLIGHT_STATUSES
from staffdesk.audit_trail.models import ActionType
from staffdesk.audit_trail.recorder import AuditTrailRecorder, snapshot
from staffdesk.core.errors import DomainError, RecordNotFound
from staffdesk.platform.kinds import ApprovalModule, EntityKind, approval_module_for
from staffdesk.platform.security.context import AuthContext
from staffdesk.records.errors import InvalidRecordPayload, RecordConflict
from staffdesk.records.models import APPROVABLE_MODELS, Company
from staffdesk.records.repository import ApprovableRecordRepository, CompanyRepository
from staffdesk.records.schemas import (
    FIELD_SCHEMAS,
    TRACKED_FIELDS,
    AssignChainRequest,
    CompanyCreate,
    CompanyRead,
    CompanyUpdate,
    RecordCreate,
    RecordRead,
    RecordUpdate,
)


logger = logging.getLogger("staffdesk.records")

COMPANY_FIELDS = (
    "name",
    "code",
    "timesheet_approval_id",
    "invoice_approval_id",
    "expense_approval_id",
    "self_service_approval_id",
)

_LINK_FIELDS = ("company_id", "approval_setting_id")


def _validated(schema: Any, data: dict[str, Any], *, partial: bool = False) -> dict[str, Any]:
    try:
        return schema.model_validate(data).model_dump(exclude_unset=partial)
    except ValidationError as exc:
        raise InvalidRecordPayload(
            "record fields are invalid",
            details=exc.errors(include_url=False, include_input=False, include_context=False),
        ) from exc


@dataclass(slots=True)
class RecordService:
    repository: ApprovableRecordRepository = ApprovableRecordRepository()
    company_repository: CompanyRepository = CompanyRepository()
    recorder: AuditTrailRecorder = field(default_factory=AuditTrailRecorder)

    def create(self, session: Session, ctx: AuthContext, kind: EntityKind, payload: RecordCreate) -> RecordRead:
        model = self._model_for(kind)
        create_schema, _ = FIELD_SCHEMAS[kind]
        values = _validated(create_schema, payload.fields)

        if payload.company_id is not None:
            self._get_company_row(session, ctx, payload.company_id)
        if payload.approval_setting_id is not None:
            self._check_chain(session, ctx, payload.approval_setting_id, approval_module_for(kind))

        record = model(
            tenant_id=ctx.tenant_id,
            company_id=payload.company_id,
            approval_setting_id=payload.approval_setting_id,
            created_by=ctx.user_id,
            **values,
        )
        self.repository.validate_write_scope(record, ctx)
        session.add(record)
        try:
            session.flush()
            self.recorder.record(
                session,
                tenant_id=record.tenant_id,
                entity_kind=kind,
                entity_id=record.id,
                actor_id=ctx.user_id,
                action=ActionType.CREATE,
                after=self._state(kind, record),
            )
            session.commit()
        except IntegrityError as exc:
            session.rollback()
            raise RecordConflict(f"{kind.value} conflicts with an existing record") from exc
        except (DomainError, SQLAlchemyError):
            session.rollback()
            raise

        self._emit("record.created", ctx, kind, record)
        return self._to_record_read(kind, record)

    def get(self, session: Session, ctx: AuthContext, kind: EntityKind, record_id: uuid.UUID) -> RecordRead:
        return self._to_record_read(kind, self.load(session, ctx, kind, record_id))

    def load(self, session: Session, ctx: AuthContext, kind: EntityKind, record_id: uuid.UUID) -> Any:
        model = self._model_for(kind)
        stmt = select(model).where(and_(model.id == record_id, model.deleted_at.is_(None)))
        record = session.scalar(self.repository.apply_scope_query(stmt, ctx))
        if record is None:
            raise RecordNotFound(f"{kind.value} not found", details={"entity_id": str(record_id)})
        return record

    def update(
        self,
        session: Session,
        ctx: AuthContext,
        kind: EntityKind,
        record_id: uuid.UUID,
        payload: RecordUpdate,
    ) -> RecordRead:
        record = self.load(session, ctx, kind, record_id)
        self._require_editable(kind, record)

        create_schema, update_schema = FIELD_SCHEMAS[kind]
        changes = _validated(update_schema, payload.fields, partial=True)
        current = {name: getattr(record, name) for name in TRACKED_FIELDS[kind]}
        merged = _validated(create_schema, {**current, **changes}) if changes else current
        values = {name: merged[name] for name in changes}
        if "company_id" in payload.model_fields_set:
            if payload.company_id is not None:
                self._get_company_row(session, ctx, payload.company_id)
            values["company_id"] = payload.company_id

        return self._write(
            session,
            ctx,
            kind,
            record,
            values,
            expected_row_version=payload.row_version,
            event_type="record.updated",
        )

    def assign_custom_chain(
        self,
        session: Session,
        ctx: AuthContext,
        kind: EntityKind,
        record_id: uuid.UUID,
        payload: AssignChainRequest,
    ) -> RecordRead:
        record = self.load(session, ctx, kind, record_id)
        # in-flight records keep the chain frozen at submission
        self._require_editable(kind, record)
        if payload.setting_id is not None:
            self._check_chain(session, ctx, payload.setting_id, approval_module_for(kind))
        return self._write(
            session,
            ctx,
            kind,
            record,
            {"approval_setting_id": payload.setting_id},
            expected_row_version=payload.row_version,
            event_type="record.chain_assigned",
        )

    def delete(
        self,
        session: Session,
        ctx: AuthContext,
        kind: EntityKind,
        record_id: uuid.UUID,
        *,
        expected_row_version: int | None = None,
    ) -> None:
        record = self.load(session, ctx, kind, record_id)
        if record.status in IN_FLIGHT_STATUSES:
            raise InvalidStateTransition(
                f"{kind.value} cannot be deleted while awaiting approval",
                current=record.status,
            )
        self._write(
            session,
            ctx,
            kind,
            record,
            {"deleted_at": utcnow()},
            expected_row_version=expected_row_version,
            event_type="record.deleted",
            action=ActionType.DELETE,
        )

    def create_company(self, session: Session, ctx: AuthContext, payload: CompanyCreate) -> CompanyRead:
        company = Company(
            tenant_id=ctx.tenant_id,
            name=payload.name.strip(),
            code=payload.code.strip().upper(),
            created_by=ctx.user_id,
        )
        session.add(company)
        try:
            session.flush()
            self.recorder.record(
                session,
                tenant_id=company.tenant_id,
                entity_kind=EntityKind.COMPANY,
                entity_id=company.id,
                actor_id=ctx.user_id,
                action=ActionType.CREATE,
            )
            session.commit()
        except IntegrityError as exc:
            session.rollback()
            raise RecordConflict(f"company code {company.code} already exists") from exc
        except (DomainError, SQLAlchemyError):
            session.rollback()
            raise

        self._emit("company.created", ctx, EntityKind.COMPANY, company)
        return CompanyRead.model_validate(company)

    def get_company(self, session: Session, ctx: AuthContext, company_id: uuid.UUID) -> CompanyRead:
        return CompanyRead.model_validate(self._get_company_row(session, ctx, company_id))

    def update_company(
        self,
        session: Session,
        ctx: AuthContext,
        company_id: uuid.UUID,
        payload: CompanyUpdate,
    ) -> CompanyRead:
        company = self._get_company_row(session, ctx, company_id)
        values: dict[str, Any] = {}
        if payload.name is not None:
            values["name"] = payload.name.strip()
        if payload.code is not None:
            values["code"] = payload.code.strip().upper()
        self._write_company(
            session,
            ctx,
            company,
            values,
            expected_row_version=payload.row_version,
            event_type="company.updated",
        )
        return CompanyRead.model_validate(company)

    def delete_company(
        self,
        session: Session,
        ctx: AuthContext,
        company_id: uuid.UUID,
        *,
        expected_row_version: int | None = None,
    ) -> None:
        company = self._get_company_row(session, ctx, company_id)
        self._write_company(
            session,
            ctx,
            company,
            {"deleted_at": utcnow()},
            expected_row_version=expected_row_version,
            event_type="company.deleted",
            action=ActionType.DELETE,
        )

    def assign_owner_chain(
        self,
        session: Session,
        ctx: AuthContext,
        company_id: uuid.UUID,
        module: ApprovalModule,
        payload: AssignChainRequest,
    ) -> CompanyRead:
        company = self._get_company_row(session, ctx, company_id)
        if payload.setting_id is not None:
            self._check_chain(session, ctx, payload.setting_id, module)
        self._write_company(
            session,
            ctx,
            company,
            {owner_setting_field(module): payload.setting_id},
            expected_row_version=payload.row_version,
            event_type="company.chain_assigned",
        )
        return CompanyRead.model_validate(company)

    def _write(
        self,
        session: Session,
        ctx: AuthContext,
        kind: EntityKind,
        record: Any,
        values: dict[str, Any],
        *,
        expected_row_version: int | None,
        event_type: str,
        action: ActionType = ActionType.UPDATE,
    ) -> RecordRead:
        model = type(record)
        before = self._state(kind, record)
        seen_version = record.row_version if expected_row_version is None else expected_row_version

        try:
            result = session.execute(
                update(model)
                .where(
                    and_(
                        model.id == record.id,
                        model.row_version == seen_version,
                        model.deleted_at.is_(None),
                    )
                )
                .values(row_version=seen_version + 1, updated_at=utcnow(), **values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise RecordConflict(
                    "row_version conflict",
                    details={"entity_id": str(record.id), "expected": seen_version},
                )
            session.refresh(record)
            self.recorder.record(
                session,
                tenant_id=record.tenant_id,
                entity_kind=kind,
                entity_id=record.id,
                actor_id=ctx.user_id,
                action=action,
                before=before,
                after=None if action == ActionType.DELETE else self._state(kind, record),
            )
            session.commit()
        except IntegrityError as exc:
            session.rollback()
            raise RecordConflict(f"{kind.value} conflicts with an existing record") from exc
        except (DomainError, SQLAlchemyError):
            session.rollback()
            raise

        self._emit(event_type, ctx, kind, record)
        return self._to_record_read(kind, record)

    def _write_company(
        self,
        session: Session,
        ctx: AuthContext,
        company: Company,
        values: dict[str, Any],
        *,
        expected_row_version: int | None,
        event_type: str,
        action: ActionType = ActionType.UPDATE,
    ) -> None:
        before = snapshot(company, COMPANY_FIELDS)
        seen_version = company.row_version if expected_row_version is None else expected_row_version
        try:
            result = session.execute(
                update(Company)
                .where(
                    and_(
                        Company.id == company.id,
                        Company.row_version == seen_version,
                        Company.deleted_at.is_(None),
                    )
                )
                .values(row_version=seen_version + 1, updated_at=utcnow(), **values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise RecordConflict(
                    "row_version conflict",
                    details={"entity_id": str(company.id), "expected": seen_version},
                )
            session.refresh(company)
            self.recorder.record(
                session,
                tenant_id=company.tenant_id,
                entity_kind=EntityKind.COMPANY,
                entity_id=company.id,
                actor_id=ctx.user_id,
                action=action,
                before=before,
                after=None if action == ActionType.DELETE else snapshot(company, COMPANY_FIELDS),
            )
            session.commit()
        except IntegrityError as exc:
            session.rollback()
            raise RecordConflict("company conflicts with an existing company") from exc
        except (DomainError, SQLAlchemyError):
            session.rollback()
            raise

        self._emit(event_type, ctx, EntityKind.COMPANY, company)

    def _get_company_row(self, session: Session, ctx: AuthContext, company_id: uuid.UUID) -> Company:
        stmt = select(Company).where(and_(Company.id == company_id, Company.deleted_at.is_(None)))
        company = session.scalar(self.company_repository.apply_scope_query(stmt, ctx))
        if company is None:
            raise RecordNotFound("company not found", details={"company_id": str(company_id)})
        return company

    @staticmethod
    def _check_chain(session: Session, ctx: AuthContext, setting_id: uuid.UUID, module: ApprovalModule) -> None:
        setting = session.scalar(
            select(ApprovalSetting).where(
                and_(
                    ApprovalSetting.id == setting_id,
                    ApprovalSetting.tenant_id == ctx.tenant_id,
                    ApprovalSetting.deleted_at.is_(None),
                )
            )
        )
        if setting is None:
            raise ApprovalSettingNotFound("approval setting not found", details={"setting_id": str(setting_id)})
        if setting.module != module.value:
            raise ScopeMismatch(
                f"setting governs {setting.module}, not {module.value}",
                details={"setting_id": str(setting_id), "module": setting.module},
            )

    @staticmethod
    def _model_for(kind: EntityKind) -> Any:
        model = APPROVABLE_MODELS.get(kind)
        if model is None:
            raise RecordNotFound(f"{kind.value} records are not approvable")
        return model

    @staticmethod
    def _require_editable(kind: EntityKind, record: Any) -> None:
        if record.status not in EDITABLE_STATUSES:
            raise InvalidStateTransition(
                f"{kind.value} cannot be edited while {record.status}",
                current=record.status,
            )

    @staticmethod
    def _state(kind: EntityKind, record: Any) -> dict[str, Any]:
        return snapshot(record, (*TRACKED_FIELDS[kind], *_LINK_FIELDS))

    @staticmethod
    def _emit(event_type: str, ctx: AuthContext, kind: EntityKind, record: Any) -> None:
        logger.info(
            event_type.replace(".", "_"),
            extra={"entity_kind": kind.value, "entity_id": str(record.id)},
        )
        events.publish(
            {
                "event_type": event_type,
                "tenant_id": record.tenant_id,
                "entity_kind": kind.value,
                "entity_id": str(record.id),
                "row_version": record.row_version,
                "actor_id": ctx.user_id,
                "correlation_id": ctx.correlation_id,
            }
        )

    @staticmethod
    def _to_record_read(kind: EntityKind, record: Any) -> RecordRead:
        payload = {
            "id": record.id,
            "entity_kind": kind,
            "tenant_id": record.tenant_id,
            "company_id": record.company_id,
            "approval_setting_id": record.approval_setting_id,
            "status": record.status,
            "current_approval_level": record.current_approval_level,
            "resolved_approval_setting_id": record.resolved_approval_setting_id,
            "submission_cycle": record.submission_cycle,
            "submitted_on": record.submitted_on,
            "submitted_by": record.submitted_by,
            "approved_on": record.approved_on,
            "rejected_on": record.rejected_on,
            "reject_reason": record.reject_reason,
            "row_version": record.row_version,
            "created_by": record.created_by,
            "created_at": record.created_at,
            "updated_at": record.updated_at,
            "deleted_at": record.deleted_at,
            "fields": {name: getattr(record, name) for name in TRACKED_FIELDS[kind]},
        }
        return RecordRead.model_validate(payload)


record_service = RecordService()
