from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Literal, assert_never

from sqlalchemy import and_, select
from sqlalchemy.orm import Session

from staffdesk.approvals.capability import Approvable, ApprovalOwner
from staffdesk.approvals.errors import NoApplicableChain
from staffdesk.approvals.models import ApprovalDefault, ApprovalSetting
from staffdesk.metrics import observe_chain_resolution
from staffdesk.platform.kinds import ApprovalModule, approval_module_for
from staffdesk.records.models import Company


logger = logging.getLogger("staffdesk.approvals.resolver")

ResolutionSource = Literal["record", "owner", "global"]


@dataclass(slots=True)
class ResolvedChain:
    setting: ApprovalSetting
    source: ResolutionSource


def owner_setting_id(owner: ApprovalOwner, module: ApprovalModule) -> uuid.UUID | None:
    match module:
        case ApprovalModule.TIMESHEET:
            return owner.timesheet_approval_id
        case ApprovalModule.INVOICE:
            return owner.invoice_approval_id
        case ApprovalModule.EXPENSE:
            return owner.expense_approval_id
        case ApprovalModule.SELF_SERVICE:
            return owner.self_service_approval_id
        case _:
            assert_never(module)


def owner_setting_field(module: ApprovalModule) -> str:
    match module:
        case ApprovalModule.TIMESHEET:
            return "timesheet_approval_id"
        case ApprovalModule.INVOICE:
            return "invoice_approval_id"
        case ApprovalModule.EXPENSE:
            return "expense_approval_id"
        case ApprovalModule.SELF_SERVICE:
            return "self_service_approval_id"
        case _:
            assert_never(module)


@dataclass(slots=True)
class ApprovalConfigResolver:
    """Read-only lookup of the chain governing a record.

    Precedence is record override, then the owning company's reference for
    the module, then the tenant's global slot. The first usable setting wins.
    """

    def resolve(self, session: Session, entity: Approvable) -> ResolvedChain:
        module = approval_module_for(entity.entity_kind)

        if entity.approval_setting_id is not None:
            setting = self._usable_setting(session, entity.approval_setting_id, entity.tenant_id, module, "record")
            if setting is not None:
                return self._resolved(setting, "record", module)

        if entity.company_id is not None:
            company = session.scalar(
                select(Company).where(
                    and_(
                        Company.id == entity.company_id,
                        Company.tenant_id == entity.tenant_id,
                        Company.deleted_at.is_(None),
                    )
                )
            )
            reference = owner_setting_id(company, module) if company is not None else None
            if reference is not None:
                setting = self._usable_setting(session, reference, entity.tenant_id, module, "owner")
                if setting is not None:
                    return self._resolved(setting, "owner", module)

        setting = self.global_default(session, entity.tenant_id, module)
        if setting is not None:
            return self._resolved(setting, "global", module)

        logger.error(
            "approval_chain_unresolved",
            extra={"approval_module": module.value, "entity_kind": entity.entity_kind.value, "entity_id": str(entity.id)},
        )
        raise NoApplicableChain(
            f"no approval chain configured for module '{module.value}'",
            module=module.value,
            tenant_id=entity.tenant_id,
        )

    def global_default(self, session: Session, tenant_id: str, module: ApprovalModule) -> ApprovalSetting | None:
        slot = session.scalar(
            select(ApprovalDefault).where(
                and_(ApprovalDefault.tenant_id == tenant_id, ApprovalDefault.module == module.value)
            )
        )
        if slot is None:
            return None
        return self._usable_setting(session, slot.setting_id, tenant_id, module, "global")

    def missing_global_defaults(self, session: Session, tenant_ids: Iterable[str]) -> list[tuple[str, ApprovalModule]]:
        missing: list[tuple[str, ApprovalModule]] = []
        for tenant_id in tenant_ids:
            for module in ApprovalModule:
                if self.global_default(session, tenant_id, module) is None:
                    missing.append((tenant_id, module))
        return missing

    def verify_global_defaults(self, session: Session, tenant_ids: Iterable[str], *, strict: bool) -> list[tuple[str, ApprovalModule]]:
        missing = self.missing_global_defaults(session, tenant_ids)
        for tenant_id, module in missing:
            logger.error(
                "approval_global_default_missing",
                extra={"approval_module": module.value, "error": f"tenant {tenant_id} has no global chain"},
            )
        if missing and strict:
            tenant_id, module = missing[0]
            raise NoApplicableChain(
                f"{len(missing)} global approval slots are not seeded",
                module=module.value,
                tenant_id=tenant_id,
                details={"missing": [{"tenant_id": tenant, "module": mod.value} for tenant, mod in missing]},
            )
        return missing

    @staticmethod
    def _usable_setting(
        session: Session,
        setting_id: uuid.UUID,
        tenant_id: str,
        module: ApprovalModule,
        source: ResolutionSource,
    ) -> ApprovalSetting | None:
        setting = session.get(ApprovalSetting, setting_id)
        reason = None
        if setting is None:
            reason = "missing"
        elif setting.deleted_at is not None:
            reason = "deleted"
        elif setting.tenant_id != tenant_id:
            reason = "other tenant"
        elif setting.module != module.value:
            reason = f"governs {setting.module}"
        if reason is None:
            return setting

        logger.warning(
            "approval_setting_skipped",
            extra={"setting_id": str(setting_id), "approval_module": module.value, "action": source, "error": reason},
        )
        return None

    @staticmethod
    def _resolved(setting: ApprovalSetting, source: ResolutionSource, module: ApprovalModule) -> ResolvedChain:
        observe_chain_resolution(module.value, source)
        return ResolvedChain(setting=setting, source=source)


approval_config_resolver = ApprovalConfigResolver()
