from __future__ import annotations

from sqlalchemy.orm import Session

from staffdesk.approvals.resolver import approval_config_resolver
from staffdesk.approvals.schemas import ApprovalChainCreate, ApprovalLevelInput, ApprovalSettingRead
from staffdesk.approvals.store import approval_chain_store
from staffdesk.platform.kinds import ApprovalModule
from staffdesk.platform.security.context import AuthContext


def seed_global_default(
    session: Session,
    *,
    tenant_id: str,
    module: ApprovalModule,
    approver_ids: list[str],
    name: str | None = None,
    actor_user_id: str = "system",
) -> ApprovalSettingRead:
    """Fill the tenant's global slot for ``module`` with a one-level chain unless it is already filled."""

    ctx = AuthContext(user_id=actor_user_id, tenant_id=tenant_id, is_super_admin=True)
    existing = approval_config_resolver.global_default(session, tenant_id, module)
    if existing is not None:
        return approval_chain_store.get_chain(session, ctx, existing.id)
    return approval_chain_store.create_chain(
        session,
        ctx,
        ApprovalChainCreate(
            name=name or f"Default {module.value} approval",
            module=module,
            scope="global",
            levels=[ApprovalLevelInput(rank=1, approver_ids=approver_ids)],
        ),
    )


def seed_all_global_defaults(
    session: Session,
    *,
    tenant_id: str,
    approver_ids: list[str],
    actor_user_id: str = "system",
) -> list[ApprovalSettingRead]:
    return [
        seed_global_default(
            session,
            tenant_id=tenant_id,
            module=module,
            approver_ids=approver_ids,
            actor_user_id=actor_user_id,
        )
        for module in ApprovalModule
    ]
