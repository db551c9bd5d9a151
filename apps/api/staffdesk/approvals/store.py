from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import and_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from staffdesk import events
from staffdesk.approvals.errors import (
    ApprovalSettingNotFound,
    ChainConcurrentlyModified,
    DuplicateApproverInLevel,
    LastApproverInLevel,
    LastLevelInSetting,
    NoApproverAssigned,
    ScopeMismatch,
)
from staffdesk.approvals.models import ApprovalDefault, ApprovalLevel, ApprovalScope, ApprovalSetting, ApprovalUser, utcnow
from staffdesk.approvals.repository import ApprovalDefaultRepository, ApprovalSettingRepository
from staffdesk.approvals.schemas import (
    AddLevelRequest,
    ApprovalChainCreate,
    ApprovalChainReplace,
    ApprovalLevelInput,
    ApprovalSettingRead,
    ChainEditRequest,
    GlobalDefaultRead,
    SoleApproverLevelRead,
)
from staffdesk.approvals.validator import LevelDraft, LevelSlot, renumber, shift_for_insert, validate_chain
from staffdesk.audit_trail.models import ActionType
from staffdesk.audit_trail.recorder import AuditTrailRecorder
from staffdesk.core.errors import DomainError
from staffdesk.metrics import observe_chain_edit
from staffdesk.otel import domain_span
from staffdesk.platform.kinds import ApprovalModule, EntityKind
from staffdesk.platform.security.context import AuthContext


logger = logging.getLogger("staffdesk.approvals.store")


def chain_state(setting: ApprovalSetting) -> dict[str, Any]:
    """Flat view of a chain used for audit diffs: one ``level_<rank>`` key per level."""

    state: dict[str, Any] = {
        "name": setting.name,
        "scope": setting.scope,
        "level_count": len(setting.levels),
    }
    for level in sorted(setting.levels, key=lambda item: item.rank):
        state[f"level_{level.rank}"] = ",".join(sorted(user.approver_id for user in level.approvers))
    return state


@dataclass(slots=True)
class ApprovalChainStore:
    setting_repository: ApprovalSettingRepository = ApprovalSettingRepository()
    default_repository: ApprovalDefaultRepository = ApprovalDefaultRepository()
    recorder: AuditTrailRecorder = field(default_factory=AuditTrailRecorder)

    def create_chain(self, session: Session, ctx: AuthContext, payload: ApprovalChainCreate) -> ApprovalSettingRead:
        drafts = validate_chain(payload.levels)

        with domain_span("approval_chain.create", module=payload.module.value, scope=payload.scope):
            setting = ApprovalSetting(
                tenant_id=ctx.tenant_id,
                name=payload.name,
                module=payload.module.value,
                scope=payload.scope,
                level_count=len(drafts),
                created_by=ctx.user_id,
            )
            session.add(setting)
            self._insert_levels(setting, drafts)
            try:
                session.flush()
                self._audit(session, ctx, setting, ActionType.CREATE, before=None, after=chain_state(setting))
                if payload.scope == ApprovalScope.GLOBAL:
                    self._assign_slot(session, ctx, payload.module, setting)
                session.commit()
            except (DomainError, SQLAlchemyError):
                session.rollback()
                raise

        observe_chain_edit("create")
        logger.info(
            "approval_chain_created",
            extra={"setting_id": str(setting.id), "approval_module": setting.module, "action": payload.scope},
        )
        self._emit("approval_chain.created", setting, ctx, operation="create")
        return self.get_chain(session, ctx, setting.id)

    def get_chain(self, session: Session, ctx: AuthContext, setting_id: uuid.UUID) -> ApprovalSettingRead:
        setting = self._get_setting(session, ctx, setting_id, include_deleted=True)
        return self._to_setting_read(setting)

    def list_chains(
        self,
        session: Session,
        ctx: AuthContext,
        *,
        module: ApprovalModule | None = None,
        include_deleted: bool = False,
    ) -> list[ApprovalSettingRead]:
        stmt = select(ApprovalSetting).options(selectinload(ApprovalSetting.levels).selectinload(ApprovalLevel.approvers))
        if module is not None:
            stmt = stmt.where(ApprovalSetting.module == module.value)
        if not include_deleted:
            stmt = stmt.where(ApprovalSetting.deleted_at.is_(None))
        stmt = self.setting_repository.apply_scope_query(stmt, ctx)
        rows = session.scalars(stmt.order_by(ApprovalSetting.created_at.asc())).all()
        return [self._to_setting_read(row) for row in rows]

    def replace_levels(
        self,
        session: Session,
        ctx: AuthContext,
        setting_id: uuid.UUID,
        payload: ApprovalChainReplace,
    ) -> ApprovalSettingRead:
        drafts = validate_chain(payload.levels)
        with self._edit(session, ctx, setting_id, operation="replace_levels", expected_row_version=payload.row_version) as setting:
            setting.levels.clear()
            session.flush()
            self._insert_levels(setting, drafts)
        return self.get_chain(session, ctx, setting_id)

    def add_approver(
        self,
        session: Session,
        ctx: AuthContext,
        level_id: uuid.UUID,
        approver_id: str,
        *,
        expected_row_version: int | None = None,
    ) -> ApprovalSettingRead:
        setting_id = self._setting_id_for_level(session, level_id)
        with self._edit(session, ctx, setting_id, operation="add_approver", expected_row_version=expected_row_version) as setting:
            self._append_approver(setting, level_id, approver_id)
        return self.get_chain(session, ctx, setting_id)

    def remove_approver(
        self,
        session: Session,
        ctx: AuthContext,
        approver_row_id: uuid.UUID,
        *,
        expected_row_version: int | None = None,
    ) -> ApprovalSettingRead:
        row = session.get(ApprovalUser, approver_row_id)
        if row is None:
            raise ApprovalSettingNotFound("approver assignment not found")
        setting_id = self._setting_id_for_level(session, row.level_id)
        with self._edit(session, ctx, setting_id, operation="remove_approver", expected_row_version=expected_row_version) as setting:
            self._drop_approver(setting, approver_row_id)
        return self.get_chain(session, ctx, setting_id)

    def add_level(
        self,
        session: Session,
        ctx: AuthContext,
        setting_id: uuid.UUID,
        payload: AddLevelRequest,
    ) -> ApprovalSettingRead:
        with self._edit(session, ctx, setting_id, operation="add_level", expected_row_version=payload.row_version) as setting:
            self._insert_level_at(session, setting, payload.position, payload.approver_ids)
        return self.get_chain(session, ctx, setting_id)

    def remove_level(
        self,
        session: Session,
        ctx: AuthContext,
        level_id: uuid.UUID,
        *,
        expected_row_version: int | None = None,
    ) -> ApprovalSettingRead:
        setting_id = self._setting_id_for_level(session, level_id)
        with self._edit(session, ctx, setting_id, operation="remove_level", expected_row_version=expected_row_version) as setting:
            self._drop_level(session, setting, level_id)
        return self.get_chain(session, ctx, setting_id)

    def apply_edits(
        self,
        session: Session,
        ctx: AuthContext,
        setting_id: uuid.UUID,
        payload: ChainEditRequest,
    ) -> ApprovalSettingRead:
        """Run a batch of partial edits as one unit; any failure leaves the chain untouched."""

        with self._edit(session, ctx, setting_id, operation="apply_edits", expected_row_version=payload.row_version) as setting:
            for approver_row_id in payload.remove_approver_ids:
                self._drop_approver(setting, approver_row_id)
            for level_id in payload.remove_level_ids:
                self._drop_level(session, setting, level_id)
            for level in payload.add_levels:
                self._insert_level_at(session, setting, level.position, level.approver_ids)
            for item in payload.add_approvers:
                self._append_approver(setting, item.level_id, item.approver_id)
        return self.get_chain(session, ctx, setting_id)

    def delete_chain(
        self,
        session: Session,
        ctx: AuthContext,
        setting_id: uuid.UUID,
        *,
        expected_row_version: int | None = None,
    ) -> ApprovalSettingRead:
        with self._edit(
            session,
            ctx,
            setting_id,
            operation="delete",
            expected_row_version=expected_row_version,
            action=ActionType.DELETE,
        ) as setting:
            setting.deleted_at = utcnow()
        return self.get_chain(session, ctx, setting_id)

    def assign_global_default(
        self,
        session: Session,
        ctx: AuthContext,
        module: ApprovalModule,
        setting_id: uuid.UUID,
    ) -> GlobalDefaultRead:
        setting = self._get_setting(session, ctx, setting_id)
        try:
            slot = self._assign_slot(session, ctx, module, setting)
            session.commit()
        except (DomainError, SQLAlchemyError):
            session.rollback()
            raise

        observe_chain_edit("assign_default")
        events.publish(
            {
                "event_type": "approval_default.assigned",
                "tenant_id": ctx.tenant_id,
                "module": module.value,
                "setting_id": str(setting.id),
                "actor_id": ctx.user_id,
                "correlation_id": ctx.correlation_id,
            }
        )
        return GlobalDefaultRead.model_validate(slot)

    def sole_approver_levels(self, session: Session, ctx: AuthContext, approver_id: str) -> list[SoleApproverLevelRead]:
        stmt = (
            select(ApprovalLevel, ApprovalSetting)
            .join(ApprovalUser, ApprovalUser.level_id == ApprovalLevel.id)
            .join(ApprovalSetting, ApprovalSetting.id == ApprovalLevel.setting_id)
            .where(and_(ApprovalUser.approver_id == approver_id, ApprovalSetting.deleted_at.is_(None)))
            .options(selectinload(ApprovalLevel.approvers))
        )
        stmt = self.setting_repository.apply_scope_query(stmt, ctx)
        rows = session.execute(stmt).all()
        return [
            SoleApproverLevelRead(setting_id=setting.id, module=setting.module, level_id=level.id, rank=level.rank)
            for level, setting in rows
            if len(level.approvers) == 1
        ]

    @contextmanager
    def _edit(
        self,
        session: Session,
        ctx: AuthContext,
        setting_id: uuid.UUID,
        *,
        operation: str,
        expected_row_version: int | None,
        action: ActionType = ActionType.UPDATE,
    ) -> Iterator[ApprovalSetting]:
        with domain_span(f"approval_chain.{operation}", setting_id=setting_id):
            setting = self._load_for_update(session, ctx, setting_id, expected_row_version)
            before = chain_state(setting)
            try:
                yield setting
                session.flush()
                if action != ActionType.DELETE:
                    self._revalidate(setting)
                self._bump_version(session, setting)
                after = chain_state(setting)
                if action == ActionType.DELETE:
                    self._audit(session, ctx, setting, action, before=before, after=None)
                else:
                    self._audit(session, ctx, setting, action, before=before, after=after)
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ChainConcurrentlyModified(
                    "approval chain changed concurrently",
                    details={"setting_id": str(setting_id)},
                ) from exc
            except (DomainError, SQLAlchemyError):
                session.rollback()
                raise

        observe_chain_edit(operation)
        logger.info(
            "approval_chain_updated",
            extra={"setting_id": str(setting.id), "approval_module": setting.module, "action": operation},
        )
        event_type = "approval_chain.deleted" if action == ActionType.DELETE else "approval_chain.updated"
        self._emit(event_type, setting, ctx, operation=operation)

    def _load_for_update(
        self,
        session: Session,
        ctx: AuthContext,
        setting_id: uuid.UUID,
        expected_row_version: int | None,
    ) -> ApprovalSetting:
        stmt = (
            select(ApprovalSetting)
            .where(and_(ApprovalSetting.id == setting_id, ApprovalSetting.deleted_at.is_(None)))
            .options(selectinload(ApprovalSetting.levels).selectinload(ApprovalLevel.approvers))
            .with_for_update()
        )
        setting = session.scalar(self.setting_repository.apply_scope_query(stmt, ctx))
        if setting is None:
            raise ApprovalSettingNotFound("approval setting not found", details={"setting_id": str(setting_id)})
        if expected_row_version is not None and expected_row_version != setting.row_version:
            raise ChainConcurrentlyModified(
                "row_version conflict",
                details={"expected": expected_row_version, "current": setting.row_version},
            )
        return setting

    @staticmethod
    def _bump_version(session: Session, setting: ApprovalSetting) -> None:
        seen_version = setting.row_version
        result = session.execute(
            update(ApprovalSetting)
            .where(and_(ApprovalSetting.id == setting.id, ApprovalSetting.row_version == seen_version))
            .values(
                row_version=ApprovalSetting.row_version + 1,
                level_count=len(setting.levels),
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise ChainConcurrentlyModified(
                "row_version conflict",
                details={"setting_id": str(setting.id), "seen": seen_version},
            )
        session.refresh(setting, attribute_names=["row_version", "level_count", "updated_at"])

    def _get_setting(
        self,
        session: Session,
        ctx: AuthContext,
        setting_id: uuid.UUID,
        *,
        include_deleted: bool = False,
    ) -> ApprovalSetting:
        stmt = (
            select(ApprovalSetting)
            .where(ApprovalSetting.id == setting_id)
            .options(selectinload(ApprovalSetting.levels).selectinload(ApprovalLevel.approvers))
        )
        if not include_deleted:
            stmt = stmt.where(ApprovalSetting.deleted_at.is_(None))
        setting = session.scalar(self.setting_repository.apply_scope_query(stmt, ctx))
        if setting is None:
            raise ApprovalSettingNotFound("approval setting not found", details={"setting_id": str(setting_id)})
        return setting

    @staticmethod
    def _setting_id_for_level(session: Session, level_id: uuid.UUID) -> uuid.UUID:
        setting_id = session.scalar(select(ApprovalLevel.setting_id).where(ApprovalLevel.id == level_id))
        if setting_id is None:
            raise ApprovalSettingNotFound("approval level not found", details={"level_id": str(level_id)})
        return setting_id

    @staticmethod
    def _insert_levels(setting: ApprovalSetting, drafts: Iterable[LevelDraft]) -> None:
        for draft in drafts:
            level = ApprovalLevel(rank=draft.rank)
            level.approvers = [ApprovalUser(approver_id=approver_id) for approver_id in draft.real_approvers]
            setting.levels.append(level)

    @staticmethod
    def _find_level(setting: ApprovalSetting, level_id: uuid.UUID) -> ApprovalLevel:
        level = next((item for item in setting.levels if item.id == level_id), None)
        if level is None:
            raise ApprovalSettingNotFound("approval level not found", details={"level_id": str(level_id)})
        return level

    def _append_approver(self, setting: ApprovalSetting, level_id: uuid.UUID, approver_id: str) -> None:
        level = self._find_level(setting, level_id)
        approver_id = approver_id.strip()
        if not approver_id:
            raise NoApproverAssigned("approver id cannot be blank")
        if any(user.approver_id == approver_id for user in level.approvers):
            raise DuplicateApproverInLevel(
                f"approver {approver_id} is already assigned to level {level.rank}",
                details={"level_id": str(level.id), "approver_id": approver_id},
            )
        level.approvers.append(ApprovalUser(approver_id=approver_id))

    @staticmethod
    def _drop_approver(setting: ApprovalSetting, approver_row_id: uuid.UUID) -> None:
        for level in setting.levels:
            row = next((user for user in level.approvers if user.id == approver_row_id), None)
            if row is None:
                continue
            if len(level.approvers) <= 1:
                raise LastApproverInLevel(
                    f"level {level.rank} must keep at least one approver",
                    details={"level_id": str(level.id), "approver_row_id": str(approver_row_id)},
                )
            level.approvers.remove(row)
            return
        raise ApprovalSettingNotFound("approver assignment not found", details={"approver_row_id": str(approver_row_id)})

    def _drop_level(self, session: Session, setting: ApprovalSetting, level_id: uuid.UUID) -> None:
        level = self._find_level(setting, level_id)
        if len(setting.levels) <= 1:
            raise LastLevelInSetting(
                "an approval chain must keep at least one level",
                details={"level_id": str(level_id)},
            )
        slots = renumber([LevelSlot(key=item.id, rank=item.rank) for item in setting.levels], level.rank)
        setting.levels.remove(level)
        session.flush()
        self._apply_ranks(session, setting, slots, descending=False)

    def _insert_level_at(self, session: Session, setting: ApprovalSetting, position: int, approver_ids: list[str]) -> None:
        approvers = LevelDraft(rank=position, approver_ids=tuple(approver_ids)).real_approvers
        if not approvers:
            raise NoApproverAssigned("a new level needs at least one approver")
        slots = shift_for_insert([LevelSlot(key=item.id, rank=item.rank) for item in setting.levels], position)
        self._apply_ranks(session, setting, slots, descending=True)
        level = ApprovalLevel(rank=position)
        level.approvers = [ApprovalUser(approver_id=approver_id) for approver_id in approvers]
        setting.levels.append(level)
        session.flush()

    @staticmethod
    def _revalidate(setting: ApprovalSetting) -> None:
        validate_chain(
            ApprovalLevelInput(rank=level.rank, approver_ids=[user.approver_id for user in level.approvers])
            for level in setting.levels
        )

    @staticmethod
    def _apply_ranks(session: Session, setting: ApprovalSetting, slots: list[LevelSlot], *, descending: bool) -> None:
        # one flush per row so UNIQUE(setting_id, rank) never sees two levels on the same rank
        by_id = {level.id: level for level in setting.levels}
        for slot in sorted(slots, key=lambda item: item.rank, reverse=descending):
            level = by_id[slot.key]
            if level.rank != slot.rank:
                level.rank = slot.rank
                session.flush()
        setting.levels.sort(key=lambda item: item.rank)

    def _assign_slot(
        self,
        session: Session,
        ctx: AuthContext,
        module: ApprovalModule,
        setting: ApprovalSetting,
    ) -> ApprovalDefault:
        if setting.module != module.value or setting.scope != ApprovalScope.GLOBAL:
            raise ScopeMismatch(
                f"only a global {module.value} chain can fill the {module.value} default slot",
                details={"setting_id": str(setting.id), "module": setting.module, "scope": setting.scope},
            )
        slot = session.scalar(
            self.default_repository.apply_scope_query(
                select(ApprovalDefault).where(ApprovalDefault.module == module.value),
                ctx,
            )
        )
        previous = slot.setting_id if slot is not None else None
        if slot is None:
            slot = ApprovalDefault(tenant_id=ctx.tenant_id, module=module.value, setting_id=setting.id, assigned_by=ctx.user_id)
            session.add(slot)
        else:
            slot.setting_id = setting.id
            slot.assigned_by = ctx.user_id
            slot.assigned_at = utcnow()
        session.flush()
        if previous != setting.id:
            self.recorder.record(
                session,
                tenant_id=ctx.tenant_id,
                entity_kind=EntityKind.APPROVAL_SETTING,
                entity_id=setting.id,
                actor_id=ctx.user_id,
                action=ActionType.UPDATE,
                before={"global_default_for": None, "replaces_setting_id": None},
                after={"global_default_for": module.value, "replaces_setting_id": previous},
            )
        return slot

    def _audit(
        self,
        session: Session,
        ctx: AuthContext,
        setting: ApprovalSetting,
        action: ActionType,
        *,
        before: dict[str, Any] | None,
        after: dict[str, Any] | None,
    ) -> None:
        self.recorder.record(
            session,
            tenant_id=setting.tenant_id,
            entity_kind=EntityKind.APPROVAL_SETTING,
            entity_id=setting.id,
            actor_id=ctx.user_id,
            action=action,
            before=before,
            after=after,
            label=setting.name if action == ActionType.DELETE else None,
        )

    @staticmethod
    def _emit(event_type: str, setting: ApprovalSetting, ctx: AuthContext, *, operation: str) -> None:
        events.publish(
            {
                "event_type": event_type,
                "tenant_id": setting.tenant_id,
                "setting_id": str(setting.id),
                "module": setting.module,
                "operation": operation,
                "level_count": setting.level_count,
                "row_version": setting.row_version,
                "actor_id": ctx.user_id,
                "correlation_id": ctx.correlation_id,
            }
        )

    @staticmethod
    def _to_setting_read(setting: ApprovalSetting) -> ApprovalSettingRead:
        payload = {
            "id": setting.id,
            "tenant_id": setting.tenant_id,
            "name": setting.name,
            "module": setting.module,
            "scope": setting.scope,
            "level_count": setting.level_count,
            "row_version": setting.row_version,
            "created_by": setting.created_by,
            "created_at": setting.created_at,
            "updated_at": setting.updated_at,
            "deleted_at": setting.deleted_at,
            "levels": [
                {
                    "id": level.id,
                    "setting_id": level.setting_id,
                    "rank": level.rank,
                    "approvers": [
                        {
                            "id": user.id,
                            "level_id": user.level_id,
                            "approver_id": user.approver_id,
                            "created_at": user.created_at,
                        }
                        for user in level.approvers
                    ],
                }
                for level in sorted(setting.levels, key=lambda item: item.rank)
            ],
        }
        return ApprovalSettingRead.model_validate(payload)


approval_chain_store = ApprovalChainStore()
