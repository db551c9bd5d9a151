from __future__ import annotations

import uuid
from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from staffdesk import events
from staffdesk.audit_trail.models import ActivityTrack
from staffdesk.core.auth import AuthUser, get_current_user
from staffdesk.core.config import get_settings
from staffdesk.core.database import Base, get_db
from staffdesk.main import app
from staffdesk.middleware.rate_limit import reset_rate_limiter


HEADERS = {"x-tenant-id": "tenant-a"}
TIMESHEET_FIELDS = {
    "placement_ref": "PL-100",
    "period_start": "2024-03-04",
    "period_end": "2024-03-10",
    "total_hours": "37.5",
    "documents": [{"id": "doc-1", "filename": "week10.pdf"}],
}


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
def setup_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("RATE_LIMIT_DISABLED", "true")
    get_settings.cache_clear()
    reset_rate_limiter()
    events.published_events.clear()
    yield
    events.published_events.clear()
    get_settings.cache_clear()
    reset_rate_limiter()


@pytest.fixture()
def acting_user() -> dict[str, str]:
    return {"sub": "admin-1"}


@pytest.fixture()
def client(db_session: Session, acting_user: dict[str, str]) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_get_current_user() -> AuthUser:
        return AuthUser(sub=acting_user["sub"], roles=["user"])

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _create_chain(client: TestClient, *levels: list[str], scope: str, module: str = "timesheet") -> dict:
    response = client.post(
        "/api/approvals/chains",
        json={
            "module": module,
            "scope": scope,
            "levels": [{"rank": index, "approver_ids": ids} for index, ids in enumerate(levels, start=1)],
        },
        headers=HEADERS,
    )
    assert response.status_code == 201, response.text
    return response.json()


def _create_timesheet(client: TestClient, **extra: object) -> dict:
    response = client.post("/api/records/timesheet", json={"fields": TIMESHEET_FIELDS, **extra}, headers=HEADERS)
    assert response.status_code == 201, response.text
    return response.json()


def test_timesheet_approval_walkthrough(client: TestClient, acting_user: dict[str, str]) -> None:
    _create_chain(client, ["u1"], ["u2"], scope="global")
    timesheet = _create_timesheet(client)
    base = f"/api/records/timesheet/{timesheet['id']}"

    submitted = client.post(f"{base}/submit", headers=HEADERS)
    assert submitted.status_code == 200
    assert submitted.json()["current_approval_level"] == 1

    acting_user["sub"] = "u2"
    wrong_approver = client.post(f"{base}/approve", headers=HEADERS)
    assert wrong_approver.status_code == 403
    assert wrong_approver.json()["code"] == "not_authorized_approver"

    acting_user["sub"] = "u1"
    advanced = client.post(f"{base}/approve", json={"expected_level": 1, "comment": "ok"}, headers=HEADERS)
    assert advanced.status_code == 200
    assert advanced.json()["status"] == "APPROVAL_IN_PROGRESS"

    acting_user["sub"] = "u2"
    approved = client.post(f"{base}/approve", headers=HEADERS)
    assert approved.status_code == 200
    assert approved.json()["status"] == "APPROVED"

    acting_user["sub"] = "u1"
    late = client.post(f"{base}/approve", headers=HEADERS)
    assert late.status_code == 409
    assert late.json()["code"] == "invalid_state_transition"
    assert late.json()["details"] == {"current": "APPROVED", "attempted": "APPROVED"}

    state = client.get(f"{base}/approval", headers=HEADERS).json()
    assert [level["approver_ids"] for level in state["path"]] == [["u1"], ["u2"]]


def test_submit_without_global_chain_returns_configuration_error(client: TestClient) -> None:
    timesheet = _create_timesheet(client)

    response = client.post(f"/api/records/timesheet/{timesheet['id']}/submit", headers=HEADERS)

    assert response.status_code == 500
    assert response.json()["code"] == "no_applicable_chain"
    assert response.json()["details"]["module"] == "timesheet"


def test_company_chain_governs_its_records(client: TestClient, acting_user: dict[str, str]) -> None:
    _create_chain(client, ["global-approver"], scope="global")
    owner_chain = _create_chain(client, ["account-manager"], scope="owner")
    company = client.post("/api/companies", json={"name": "Acme", "code": "acme"}, headers=HEADERS)
    assert company.status_code == 201
    assert company.json()["code"] == "ACME"

    assigned = client.put(
        f"/api/companies/{company.json()['id']}/approval-settings/timesheet",
        json={"setting_id": owner_chain["id"], "row_version": 1},
        headers=HEADERS,
    )
    assert assigned.status_code == 200
    assert assigned.json()["timesheet_approval_id"] == owner_chain["id"]

    timesheet = _create_timesheet(client, company_id=company.json()["id"])
    submitted = client.post(f"/api/records/timesheet/{timesheet['id']}/submit", headers=HEADERS)
    assert submitted.json()["resolved_approval_setting_id"] == owner_chain["id"]

    acting_user["sub"] = "account-manager"
    approved = client.post(f"/api/records/timesheet/{timesheet['id']}/approve", headers=HEADERS)
    assert approved.json()["status"] == "APPROVED"


def test_owner_chain_for_wrong_module_is_refused(client: TestClient) -> None:
    expense_chain = _create_chain(client, ["u1"], scope="owner", module="expense")
    company = client.post("/api/companies", json={"name": "Beta", "code": "BETA"}, headers=HEADERS).json()

    response = client.put(
        f"/api/companies/{company['id']}/approval-settings/timesheet",
        json={"setting_id": expense_chain["id"]},
        headers=HEADERS,
    )

    assert response.status_code == 409
    assert response.json()["code"] == "approval_scope_mismatch"


def test_record_update_is_audited_field_by_field(client: TestClient, db_session: Session) -> None:
    timesheet = _create_timesheet(client)

    response = client.patch(
        f"/api/records/timesheet/{timesheet['id']}",
        json={
            "row_version": timesheet["row_version"],
            "fields": {"placement_ref": "PL-200", "documents": [{"id": "doc-1"}, {"id": "doc-2"}]},
        },
        headers=HEADERS,
    )
    assert response.status_code == 200, response.text
    assert response.json()["row_version"] == 2
    assert response.json()["fields"]["placement_ref"] == "PL-200"

    track = db_session.scalar(
        select(ActivityTrack).where(ActivityTrack.entity_id == uuid.UUID(response.json()["id"]), ActivityTrack.action == "update")
    )
    assert track is not None
    assert track.is_document_modified is True
    assert {change.field_name for change in track.changes} == {"placement_ref", "documents"}

    stale = client.patch(
        f"/api/records/timesheet/{timesheet['id']}",
        json={"row_version": 1, "fields": {"placement_ref": "PL-300"}},
        headers=HEADERS,
    )
    assert stale.status_code == 409
    assert stale.json()["code"] == "row_version_conflict"


def test_invalid_fields_are_rejected(client: TestClient) -> None:
    response = client.post(
        "/api/records/timesheet",
        json={"fields": {**TIMESHEET_FIELDS, "period_end": "2024-03-01"}},
        headers=HEADERS,
    )
    assert response.status_code == 422
    assert response.json()["code"] == "invalid_record_payload"

    unknown = client.post(
        "/api/records/timesheet",
        json={"fields": {**TIMESHEET_FIELDS, "colour": "blue"}},
        headers=HEADERS,
    )
    assert unknown.status_code == 422


def test_in_flight_record_cannot_be_edited_or_deleted(client: TestClient) -> None:
    _create_chain(client, ["u1"], scope="global")
    timesheet = _create_timesheet(client)
    base = f"/api/records/timesheet/{timesheet['id']}"
    client.post(f"{base}/submit", headers=HEADERS)

    edit = client.patch(base, json={"row_version": 2, "fields": {"placement_ref": "PL-9"}}, headers=HEADERS)
    assert edit.status_code == 409
    assert edit.json()["code"] == "invalid_state_transition"

    custom_chain = _create_chain(client, ["u7"], scope="record")
    reassign = client.put(f"{base}/approval-setting", json={"setting_id": custom_chain["id"]}, headers=HEADERS)
    assert reassign.status_code == 409

    delete = client.delete(base, headers=HEADERS)
    assert delete.status_code == 409


def test_reject_and_resubmit_through_api(client: TestClient, acting_user: dict[str, str]) -> None:
    _create_chain(client, ["u1"], scope="global")
    timesheet = _create_timesheet(client)
    base = f"/api/records/timesheet/{timesheet['id']}"
    client.post(f"{base}/submit", headers=HEADERS)

    acting_user["sub"] = "u1"
    rejected = client.post(f"{base}/reject", json={"reason": "missing hours"}, headers=HEADERS)
    assert rejected.status_code == 200
    assert rejected.json()["reject_reason"] == "missing hours"

    acting_user["sub"] = "admin-1"
    current = client.get(base, headers=HEADERS).json()
    edited = client.patch(
        base,
        json={"row_version": current["row_version"], "fields": {"total_hours": "40"}},
        headers=HEADERS,
    )
    assert edited.status_code == 200

    resubmitted = client.post(f"{base}/submit", headers=HEADERS)
    assert resubmitted.json()["submission_cycle"] == 2
    assert resubmitted.json()["current_approval_level"] == 1


def test_ledger_void_action(client: TestClient, acting_user: dict[str, str]) -> None:
    _create_chain(client, ["fin-1"], scope="global", module="invoice")
    created = client.post(
        "/api/records/ledger",
        json={"fields": {"reference_number": "INV-1", "ledger_date": "2024-03-01", "amount": "120.00"}},
        headers=HEADERS,
    )
    assert created.status_code == 201
    base = f"/api/records/ledger/{created.json()['id']}"
    client.post(f"{base}/submit", headers=HEADERS)
    acting_user["sub"] = "fin-1"
    client.post(f"{base}/approve", headers=HEADERS)

    voided = client.post(f"{base}/actions/void", headers=HEADERS)
    assert voided.status_code == 200
    assert voided.json()["status"] == "VOID"

    again = client.post(f"{base}/actions/write_off", headers=HEADERS)
    assert again.status_code == 409


def test_deleted_record_is_gone(client: TestClient) -> None:
    timesheet = _create_timesheet(client)
    base = f"/api/records/timesheet/{timesheet['id']}"

    assert client.delete(base, params={"row_version": 1}, headers=HEADERS).status_code == 204
    missing = client.get(base, headers=HEADERS)
    assert missing.status_code == 404
    assert missing.json()["code"] == "record_not_found"


def test_recurrence_endpoints(client: TestClient) -> None:
    created = client.post(
        "/api/records/ledger",
        json={"fields": {"reference_number": "INV-R", "ledger_date": "2024-01-15"}},
        headers=HEADERS,
    ).json()

    configuration = client.post(
        "/api/recurrences",
        json={
            "subject_kind": "ledger",
            "subject_id": created["id"],
            "cycle_type": "month",
            "start_date": "2024-01-15",
            "end_date": "2024-03-01",
        },
        headers=HEADERS,
    )
    assert configuration.status_code == 201, configuration.text

    preview = client.get(
        f"/api/recurrences/{configuration.json()['id']}/next",
        params={"today": "2024-02-20"},
        headers=HEADERS,
    )
    assert preview.status_code == 200
    assert preview.json() == {
        "configuration_id": configuration.json()["id"],
        "next_on": "2024-02-15",
        "is_due": True,
        "exhausted": False,
    }
