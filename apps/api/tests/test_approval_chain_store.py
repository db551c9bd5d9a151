from __future__ import annotations

from collections.abc import Generator
from pathlib import Path

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from staffdesk import events
from staffdesk.approvals.errors import (
    ApprovalSettingNotFound,
    ChainConcurrentlyModified,
    DuplicateApproverInLevel,
    LastApproverInLevel,
    LastLevelInSetting,
    NoApproverAssigned,
    RankCountMismatch,
    ScopeMismatch,
)
from staffdesk.approvals.models import ApprovalDefault, ApprovalLevel, ApprovalUser
from staffdesk.approvals.schemas import (
    AddLevelRequest,
    ApprovalChainCreate,
    ApprovalChainReplace,
    ApprovalLevelInput,
    ChainEditRequest,
    LevelApproverAdd,
)
from staffdesk.approvals.store import ApprovalChainStore
from staffdesk.audit_trail.models import ActivityTrack
from staffdesk.core.database import Base
from staffdesk.platform.kinds import ApprovalModule
from staffdesk.platform.security.context import AuthContext


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
def store() -> ApprovalChainStore:
    return ApprovalChainStore()


@pytest.fixture()
def ctx() -> AuthContext:
    return AuthContext(user_id="admin-1", tenant_id="tenant-a")


def _create(
    store: ApprovalChainStore,
    session: Session,
    ctx: AuthContext,
    *levels: list[str],
    scope: str = "record",
    module: ApprovalModule = ApprovalModule.TIMESHEET,
):
    payload = ApprovalChainCreate(
        name="Chain",
        module=module,
        scope=scope,
        levels=[ApprovalLevelInput(rank=index, approver_ids=ids) for index, ids in enumerate(levels, start=1)],
    )
    return store.create_chain(session, ctx, payload)


def test_create_chain_persists_levels_and_audits(store: ApprovalChainStore, db_session: Session, ctx: AuthContext) -> None:
    chain = _create(store, db_session, ctx, ["u1"], ["u2", "u3"])

    assert chain.level_count == 2
    assert chain.row_version == 1
    assert [level.rank for level in chain.levels] == [1, 2]
    assert sorted(user.approver_id for user in chain.levels[1].approvers) == ["u2", "u3"]

    track = db_session.scalar(select(ActivityTrack).where(ActivityTrack.entity_id == chain.id))
    assert track is not None
    assert track.action == "create"
    assert track.actor_id == "admin-1"
    assert any(item["event_type"] == "approval_chain.created" for item in events.published_events)


def test_create_chain_with_duplicate_rank_writes_nothing(
    store: ApprovalChainStore, db_session: Session, ctx: AuthContext
) -> None:
    payload = ApprovalChainCreate(
        module=ApprovalModule.TIMESHEET,
        scope="record",
        levels=[ApprovalLevelInput(rank=1, approver_ids=["u1"]), ApprovalLevelInput(rank=1, approver_ids=["u2"])],
    )

    with pytest.raises(RankCountMismatch):
        store.create_chain(db_session, ctx, payload)

    assert db_session.scalars(select(ApprovalLevel)).all() == []


def test_placeholder_level_is_stored_without_approvers(
    store: ApprovalChainStore, db_session: Session, ctx: AuthContext
) -> None:
    chain = _create(store, db_session, ctx, [], ["u2"])

    assert chain.level_count == 2
    assert chain.levels[0].approvers == []


def test_removing_only_approver_of_level_is_refused(store: ApprovalChainStore, db_session: Session, ctx: AuthContext) -> None:
    chain = _create(store, db_session, ctx, ["u1"], ["u2", "u3"])
    only_approver = chain.levels[0].approvers[0]

    with pytest.raises(LastApproverInLevel):
        store.remove_approver(db_session, ctx, only_approver.id)

    unchanged = store.get_chain(db_session, ctx, chain.id)
    assert unchanged.row_version == 1
    assert [user.approver_id for user in unchanged.levels[0].approvers] == ["u1"]
    assert db_session.get(ApprovalUser, only_approver.id) is not None


def test_removing_one_of_several_approvers_bumps_version(
    store: ApprovalChainStore, db_session: Session, ctx: AuthContext
) -> None:
    chain = _create(store, db_session, ctx, ["u1"], ["u2", "u3"])
    target = next(user for user in chain.levels[1].approvers if user.approver_id == "u3")

    updated = store.remove_approver(db_session, ctx, target.id, expected_row_version=1)

    assert updated.row_version == 2
    assert [user.approver_id for user in updated.levels[1].approvers] == ["u2"]
    updates = db_session.scalars(
        select(ActivityTrack).where(ActivityTrack.entity_id == chain.id, ActivityTrack.action == "update")
    ).all()
    assert len(updates) == 1
    assert [(change.field_name, change.old_value, change.new_value) for change in updates[0].changes] == [
        ("level_2", "u2,u3", "u2")
    ]


def test_removing_last_level_is_refused(store: ApprovalChainStore, db_session: Session, ctx: AuthContext) -> None:
    chain = _create(store, db_session, ctx, ["u1"])

    with pytest.raises(LastLevelInSetting):
        store.remove_level(db_session, ctx, chain.levels[0].id)

    assert store.get_chain(db_session, ctx, chain.id).level_count == 1


def test_removing_the_only_staffed_level_is_refused(
    store: ApprovalChainStore, db_session: Session, ctx: AuthContext
) -> None:
    chain = _create(store, db_session, ctx, [], ["u1"])

    with pytest.raises(NoApproverAssigned):
        store.remove_level(db_session, ctx, chain.levels[1].id)

    unchanged = store.get_chain(db_session, ctx, chain.id)
    assert unchanged.row_version == 1
    assert [(level.rank, [user.approver_id for user in level.approvers]) for level in unchanged.levels] == [
        (1, []),
        (2, ["u1"]),
    ]

def test_removing_middle_level_renumbers_the_rest(store: ApprovalChainStore, db_session: Session, ctx: AuthContext) -> None:
    chain = _create(store, db_session, ctx, ["u1"], ["u2"], ["u3"])

    updated = store.remove_level(db_session, ctx, chain.levels[1].id)

    assert updated.level_count == 2
    assert [(level.rank, level.approvers[0].approver_id) for level in updated.levels] == [(1, "u1"), (2, "u3")]


def test_add_level_at_front_shifts_existing_levels(store: ApprovalChainStore, db_session: Session, ctx: AuthContext) -> None:
    chain = _create(store, db_session, ctx, ["u1"], ["u2"])

    updated = store.add_level(db_session, ctx, chain.id, AddLevelRequest(position=1, approver_ids=["u0"]))

    assert updated.level_count == 3
    assert [(level.rank, level.approvers[0].approver_id) for level in updated.levels] == [
        (1, "u0"),
        (2, "u1"),
        (3, "u2"),
    ]


def test_duplicate_approver_in_level_is_refused(store: ApprovalChainStore, db_session: Session, ctx: AuthContext) -> None:
    chain = _create(store, db_session, ctx, ["u1"])

    with pytest.raises(DuplicateApproverInLevel):
        store.add_approver(db_session, ctx, chain.levels[0].id, "u1")


def test_stale_row_version_is_a_conflict(store: ApprovalChainStore, db_session: Session, ctx: AuthContext) -> None:
    chain = _create(store, db_session, ctx, ["u1"])
    store.add_approver(db_session, ctx, chain.levels[0].id, "u2", expected_row_version=1)

    with pytest.raises(ChainConcurrentlyModified):
        store.add_approver(db_session, ctx, chain.levels[0].id, "u3", expected_row_version=1)

    assert [user.approver_id for user in store.get_chain(db_session, ctx, chain.id).levels[0].approvers] == ["u1", "u2"]


def test_replace_levels_swaps_the_whole_chain(store: ApprovalChainStore, db_session: Session, ctx: AuthContext) -> None:
    chain = _create(store, db_session, ctx, ["u1"], ["u2"])

    updated = store.replace_levels(
        db_session,
        ctx,
        chain.id,
        ApprovalChainReplace(row_version=1, levels=[ApprovalLevelInput(rank=1, approver_ids=["u9"])]),
    )

    assert updated.level_count == 1
    assert updated.levels[0].approvers[0].approver_id == "u9"


def test_apply_edits_is_all_or_nothing(store: ApprovalChainStore, db_session: Session, ctx: AuthContext) -> None:
    chain = _create(store, db_session, ctx, ["u1"], ["u2", "u3"])
    level_two = chain.levels[1]
    u3 = next(user for user in level_two.approvers if user.approver_id == "u3")

    edit = ChainEditRequest(
        remove_approver_ids=[u3.id],
        add_approvers=[LevelApproverAdd(level_id=level_two.id, approver_id="u2")],
    )
    with pytest.raises(DuplicateApproverInLevel):
        store.apply_edits(db_session, ctx, chain.id, edit)

    unchanged = store.get_chain(db_session, ctx, chain.id)
    assert unchanged.row_version == 1
    assert sorted(user.approver_id for user in unchanged.levels[1].approvers) == ["u2", "u3"]


def test_apply_edits_batch_succeeds(store: ApprovalChainStore, db_session: Session, ctx: AuthContext) -> None:
    chain = _create(store, db_session, ctx, ["u1"], ["u2"])

    updated = store.apply_edits(
        db_session,
        ctx,
        chain.id,
        ChainEditRequest(
            row_version=1,
            remove_level_ids=[chain.levels[0].id],
            add_levels=[AddLevelRequest(position=2, approver_ids=["u4"])],
            add_approvers=[LevelApproverAdd(level_id=chain.levels[1].id, approver_id="u5")],
        ),
    )

    assert updated.row_version == 2
    assert [(level.rank, sorted(user.approver_id for user in level.approvers)) for level in updated.levels] == [
        (1, ["u2", "u5"]),
        (2, ["u4"]),
    ]


def test_global_chain_fills_default_slot(store: ApprovalChainStore, db_session: Session, ctx: AuthContext) -> None:
    first = _create(store, db_session, ctx, ["u1"], scope="global")
    second = _create(store, db_session, ctx, ["u2"], scope="global")

    slots = db_session.scalars(select(ApprovalDefault)).all()
    assert len(slots) == 1
    assert slots[0].setting_id == second.id

    reassigned = store.assign_global_default(db_session, ctx, ApprovalModule.TIMESHEET, first.id)
    assert reassigned.setting_id == first.id
    assert events.published_events[-1]["event_type"] == "approval_default.assigned"


def test_default_slot_refuses_other_module_or_scope(
    store: ApprovalChainStore, db_session: Session, ctx: AuthContext
) -> None:
    record_chain = _create(store, db_session, ctx, ["u1"])
    expense_chain = _create(store, db_session, ctx, ["u1"], scope="global", module=ApprovalModule.EXPENSE)

    with pytest.raises(ScopeMismatch):
        store.assign_global_default(db_session, ctx, ApprovalModule.TIMESHEET, record_chain.id)
    with pytest.raises(ScopeMismatch):
        store.assign_global_default(db_session, ctx, ApprovalModule.TIMESHEET, expense_chain.id)


def test_delete_chain_is_soft_and_labelled(store: ApprovalChainStore, db_session: Session, ctx: AuthContext) -> None:
    chain = _create(store, db_session, ctx, ["u1"])

    deleted = store.delete_chain(db_session, ctx, chain.id)

    assert deleted.deleted_at is not None
    assert store.list_chains(db_session, ctx) == []
    assert len(store.list_chains(db_session, ctx, include_deleted=True)) == 1
    track = db_session.scalar(
        select(ActivityTrack).where(ActivityTrack.entity_id == chain.id, ActivityTrack.action == "delete")
    )
    assert track is not None
    assert track.label == "Chain"
    assert events.published_events[-1]["event_type"] == "approval_chain.deleted"

    with pytest.raises(ApprovalSettingNotFound):
        store.add_approver(db_session, ctx, chain.levels[0].id, "u2")


def test_chains_are_invisible_to_other_tenants(store: ApprovalChainStore, db_session: Session, ctx: AuthContext) -> None:
    chain = _create(store, db_session, ctx, ["u1"])
    other = AuthContext(user_id="admin-2", tenant_id="tenant-b")

    with pytest.raises(ApprovalSettingNotFound):
        store.get_chain(db_session, other, chain.id)
    assert store.list_chains(db_session, other) == []


def test_sole_approver_levels_lists_levels_that_would_be_orphaned(
    store: ApprovalChainStore, db_session: Session, ctx: AuthContext
) -> None:
    solo = _create(store, db_session, ctx, ["u1"], ["u1", "u2"])
    _create(store, db_session, ctx, ["u2"])

    levels = store.sole_approver_levels(db_session, ctx, "u1")

    assert [(item.setting_id, item.rank) for item in levels] == [(solo.id, 1)]


@pytest.fixture()
def file_sessions(tmp_path: Path) -> Generator[sessionmaker, None, None]:
    engine = create_engine(f"sqlite+pysqlite:///{tmp_path / 'chains.db'}", connect_args={"check_same_thread": False})
    Base.metadata.create_all(bind=engine)
    try:
        yield sessionmaker(bind=engine, autocommit=False, autoflush=False)
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


def test_concurrent_level_edits_let_only_one_through(
    store: ApprovalChainStore, file_sessions: sessionmaker, ctx: AuthContext
) -> None:
    with file_sessions() as setup:
        chain = _create(store, setup, ctx, ["u1"], ["u2"])

    first = file_sessions()
    second = file_sessions()
    try:
        stale = store.get_chain(second, ctx, chain.id)

        added = store.add_level(first, ctx, chain.id, AddLevelRequest(position=1, approver_ids=["u9"]))
        assert added.row_version == 2

        with pytest.raises(ChainConcurrentlyModified):
            store.remove_level(second, ctx, stale.levels[1].id)
    finally:
        first.close()
        second.close()

    with file_sessions() as check:
        current = store.get_chain(check, ctx, chain.id)
        assert current.row_version == 2
        assert [(level.rank, level.approvers[0].approver_id) for level in current.levels] == [
            (1, "u9"),
            (2, "u1"),
            (3, "u2"),
        ]
