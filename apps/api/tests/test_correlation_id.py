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
from staffdesk.core.context import route_group_for
from staffdesk.core.database import Base, get_db
from staffdesk.main import app
from staffdesk.middleware.rate_limit import reset_rate_limiter


HEADERS = {"x-tenant-id": "tenant-a"}


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
def clear_stubs() -> Generator[None, None, None]:
    events.published_events.clear()
    reset_rate_limiter()
    get_settings.cache_clear()
    yield
    events.published_events.clear()
    reset_rate_limiter()
    get_settings.cache_clear()


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_get_current_user() -> AuthUser:
        return AuthUser(sub="user-1", roles=["user"])

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _create_chain(client: TestClient, correlation_id: str) -> dict:
    response = client.post(
        "/api/approvals/chains",
        json={"module": "expense", "scope": "record", "levels": [{"rank": 1, "approver_ids": ["u1"]}]},
        headers={**HEADERS, "X-Correlation-Id": correlation_id},
    )
    assert response.status_code == 201
    return response.json()


def test_generated_correlation_id_returned_in_header_and_error_envelope(client: TestClient) -> None:
    response = client.get(f"/api/approvals/chains/{uuid.uuid4()}", headers=HEADERS)
    assert response.status_code == 404
    header_value = response.headers.get("x-correlation-id")
    assert header_value
    body = response.json()
    assert body["correlation_id"] == header_value


def test_correlation_id_respected_when_provided(client: TestClient) -> None:
    response = client.get(
        f"/api/approvals/chains/{uuid.uuid4()}",
        headers={**HEADERS, "X-Correlation-Id": "abc-123"},
    )
    assert response.status_code == 404
    assert response.headers.get("x-correlation-id") == "abc-123"
    assert response.json()["correlation_id"] == "abc-123"


def test_malformed_correlation_id_is_replaced(client: TestClient) -> None:
    response = client.get("/health", headers={"X-Correlation-Id": "bad id with spaces"})

    assert response.status_code == 200
    assert response.headers.get("x-correlation-id") != "bad id with spaces"


def test_audit_uses_request_correlation_id(client: TestClient, db_session: Session) -> None:
    chain = _create_chain(client, "corr-audit-1")

    track = db_session.scalar(select(ActivityTrack).where(ActivityTrack.entity_id == uuid.UUID(chain["id"])))
    assert track is not None
    assert track.correlation_id == "corr-audit-1"


def test_event_envelope_includes_correlation_id(client: TestClient) -> None:
    _create_chain(client, "corr-event-1")

    created_events = [item for item in events.published_events if item.get("event_type") == "approval_chain.created"]
    assert created_events
    assert created_events[-1].get("correlation_id") == "corr-event-1"
    assert created_events[-1].get("actor_id") == "user-1"


def test_rate_limited_response_includes_correlation_id(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("RATE_LIMIT_DISABLED", "false")
    monkeypatch.setenv("RATE_LIMIT_MUTATIONS_PER_MINUTE", "1")
    get_settings.cache_clear()
    reset_rate_limiter()

    _create_chain(client, "corr-rate-1")

    second = client.post(
        "/api/approvals/chains",
        json={"module": "expense", "scope": "record", "levels": [{"rank": 1, "approver_ids": ["u2"]}]},
        headers={**HEADERS, "X-Correlation-Id": "corr-rate-1"},
    )
    assert second.status_code == 429
    payload = second.json()
    assert payload["correlation_id"] == "corr-rate-1"
    assert second.headers.get("x-correlation-id") == "corr-rate-1"


def test_request_context_normalizes_tenant_and_echoes_request_id(client: TestClient) -> None:
    chain = client.post(
        "/api/approvals/chains",
        json={"module": "expense", "scope": "record", "levels": [{"rank": 1, "approver_ids": ["u1"]}]},
        headers={"x-tenant-id": "  tenant-a  ", "X-Correlation-Id": "ctx-corr-1"},
    )
    assert chain.status_code == 201
    assert chain.headers.get("x-request-id") == "ctx-corr-1"

    listed = client.get("/api/approvals/chains", headers=HEADERS)
    assert [item["id"] for item in listed.json()] == [chain.json()["id"]]

    blank = client.get("/api/approvals/chains", headers={"x-tenant-id": "   "})
    assert blank.status_code == 400


def test_route_groups_follow_the_api_prefix() -> None:
    assert route_group_for("/api/approvals/chains/abc") == "approvals"
    assert route_group_for("/api/records/timesheet") == "records"
    assert route_group_for("/health") == "api"
