from __future__ import annotations

import uuid
from collections.abc import Generator
from datetime import date

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from staffdesk import events
from staffdesk.approvals.errors import NoApplicableChain
from staffdesk.approvals.resolver import ApprovalConfigResolver
from staffdesk.approvals.schemas import ApprovalChainCreate, ApprovalLevelInput
from staffdesk.approvals.seed import seed_global_default
from staffdesk.approvals.store import ApprovalChainStore
from staffdesk.core.database import Base
from staffdesk.platform.kinds import ApprovalModule
from staffdesk.platform.security.context import AuthContext
from staffdesk.records.models import Company, Expense, Timesheet


TENANT = "tenant-a"


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def reset_globals() -> Generator[None, None, None]:
    events.published_events.clear()
    yield
    events.published_events.clear()


@pytest.fixture()
def ctx() -> AuthContext:
    return AuthContext(user_id="admin-1", tenant_id=TENANT)


@pytest.fixture()
def resolver() -> ApprovalConfigResolver:
    return ApprovalConfigResolver()


def _chain(session: Session, ctx: AuthContext, scope: str, module: ApprovalModule = ApprovalModule.TIMESHEET) -> uuid.UUID:
    payload = ApprovalChainCreate(
        name=f"{scope} chain",
        module=module,
        scope=scope,
        levels=[ApprovalLevelInput(rank=1, approver_ids=[f"{scope}-approver"])],
    )
    return ApprovalChainStore().create_chain(session, ctx, payload).id


def _timesheet(session: Session, *, company_id: uuid.UUID | None = None, setting_id: uuid.UUID | None = None) -> Timesheet:
    timesheet = Timesheet(
        tenant_id=TENANT,
        company_id=company_id,
        approval_setting_id=setting_id,
        placement_ref="PL-1",
        period_start=date(2024, 1, 1),
        period_end=date(2024, 1, 7),
        created_by="user-1",
    )
    session.add(timesheet)
    session.commit()
    return timesheet


def _company(session: Session, **references: uuid.UUID) -> Company:
    company = Company(tenant_id=TENANT, name="Acme", code=f"ACME-{uuid.uuid4().hex[:6]}", created_by="admin-1", **references)
    session.add(company)
    session.commit()
    return company


def test_record_override_wins_over_owner_and_global(
    db_session: Session, ctx: AuthContext, resolver: ApprovalConfigResolver
) -> None:
    _chain(db_session, ctx, "global")
    owner_id = _chain(db_session, ctx, "owner")
    record_id = _chain(db_session, ctx, "record")
    company = _company(db_session, timesheet_approval_id=owner_id)
    timesheet = _timesheet(db_session, company_id=company.id, setting_id=record_id)

    resolved = resolver.resolve(db_session, timesheet)

    assert resolved.source == "record"
    assert resolved.setting.id == record_id


def test_owner_reference_used_without_record_override(
    db_session: Session, ctx: AuthContext, resolver: ApprovalConfigResolver
) -> None:
    _chain(db_session, ctx, "global")
    owner_id = _chain(db_session, ctx, "owner")
    company = _company(db_session, timesheet_approval_id=owner_id)
    timesheet = _timesheet(db_session, company_id=company.id)

    resolved = resolver.resolve(db_session, timesheet)

    assert resolved.source == "owner"
    assert resolved.setting.id == owner_id


def test_global_slot_is_the_fallback(db_session: Session, ctx: AuthContext, resolver: ApprovalConfigResolver) -> None:
    global_id = _chain(db_session, ctx, "global")
    company = _company(db_session)
    timesheet = _timesheet(db_session, company_id=company.id)

    resolved = resolver.resolve(db_session, timesheet)

    assert resolved.source == "global"
    assert resolved.setting.id == global_id


def test_deleted_record_chain_falls_through(db_session: Session, ctx: AuthContext, resolver: ApprovalConfigResolver) -> None:
    global_id = _chain(db_session, ctx, "global")
    record_id = _chain(db_session, ctx, "record")
    ApprovalChainStore().delete_chain(db_session, ctx, record_id)
    timesheet = _timesheet(db_session, setting_id=record_id)

    resolved = resolver.resolve(db_session, timesheet)

    assert resolved.source == "global"
    assert resolved.setting.id == global_id


def test_owner_chain_for_other_module_is_ignored(
    db_session: Session, ctx: AuthContext, resolver: ApprovalConfigResolver
) -> None:
    expense_global = _chain(db_session, ctx, "global", ApprovalModule.EXPENSE)
    timesheet_owner = _chain(db_session, ctx, "owner")
    company = _company(db_session, expense_approval_id=timesheet_owner)
    expense = Expense(
        tenant_id=TENANT,
        company_id=company.id,
        employee_id="emp-1",
        expense_type="travel",
        expense_date=date(2024, 1, 3),
        created_by="user-1",
    )
    db_session.add(expense)
    db_session.commit()

    resolved = resolver.resolve(db_session, expense)

    assert resolved.source == "global"
    assert resolved.setting.id == expense_global


def test_missing_global_slot_raises_no_applicable_chain(
    db_session: Session, resolver: ApprovalConfigResolver
) -> None:
    timesheet = _timesheet(db_session)

    with pytest.raises(NoApplicableChain) as exc_info:
        resolver.resolve(db_session, timesheet)

    assert exc_info.value.module == "timesheet"
    assert exc_info.value.tenant_id == TENANT
    assert exc_info.value.status_code == 500


def test_verify_global_defaults_reports_unseeded_modules(
    db_session: Session, ctx: AuthContext, resolver: ApprovalConfigResolver
) -> None:
    _chain(db_session, ctx, "global")

    missing = resolver.verify_global_defaults(db_session, [TENANT], strict=False)

    assert sorted(module.value for _, module in missing) == ["expense", "invoice", "self_service"]
    with pytest.raises(NoApplicableChain):
        resolver.verify_global_defaults(db_session, [TENANT], strict=True)


def test_seed_global_default_is_idempotent(db_session: Session, resolver: ApprovalConfigResolver) -> None:
    first = seed_global_default(db_session, tenant_id=TENANT, module=ApprovalModule.INVOICE, approver_ids=["fin-1"])
    second = seed_global_default(db_session, tenant_id=TENANT, module=ApprovalModule.INVOICE, approver_ids=["fin-2"])

    assert first.id == second.id
    setting = resolver.global_default(db_session, TENANT, ApprovalModule.INVOICE)
    assert setting is not None
    assert setting.id == first.id
