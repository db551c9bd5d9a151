from __future__ import annotations

from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from staffdesk.core.auth import AuthUser, get_current_user
from staffdesk.core.config import get_settings
from staffdesk.core.database import Base, get_db
from staffdesk.main import app
from staffdesk.middleware.rate_limit import TokenBucketLimiter, reset_rate_limiter


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
def configure_rate_limiter_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("RATE_LIMIT_DISABLED", "false")
    monkeypatch.setenv("RATE_LIMIT_MUTATIONS_PER_MINUTE", "3")
    get_settings.cache_clear()
    reset_rate_limiter()
    yield
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


def _chain_payload(index: int) -> dict:
    return {"module": "expense", "scope": "record", "levels": [{"rank": 1, "approver_ids": [f"u{index}"]}]}


def test_mutating_endpoints_are_rate_limited(client: TestClient) -> None:
    responses = [client.post("/api/approvals/chains", json=_chain_payload(index), headers=HEADERS) for index in range(5)]

    limited = [response for response in responses if response.status_code == 429]
    assert limited
    assert [response.status_code for response in responses[:3]] == [201, 201, 201]

    first_limited = limited[0]
    body = first_limited.json()
    assert body["code"] == "rate_limited"
    assert body["message"] == "Too many requests"
    assert body["correlation_id"] is not None
    assert first_limited.headers.get("Retry-After") is not None


def test_get_endpoints_are_not_rate_limited(client: TestClient) -> None:
    create = client.post("/api/approvals/chains", json=_chain_payload(1), headers=HEADERS)
    assert create.status_code == 201

    responses = [client.get("/api/approvals/chains", headers=HEADERS) for _ in range(10)]
    assert all(response.status_code != 429 for response in responses)


def test_route_groups_have_separate_buckets(client: TestClient) -> None:
    for index in range(3):
        assert client.post("/api/approvals/chains", json=_chain_payload(index), headers=HEADERS).status_code == 201

    record = client.post(
        "/api/records/timesheet",
        json={"fields": {"placement_ref": "PL-R", "period_start": "2024-01-01", "period_end": "2024-01-07"}},
        headers=HEADERS,
    )
    assert record.status_code == 201


def test_bucket_refuses_zero_capacity() -> None:
    limiter = TokenBucketLimiter()

    allowed, retry_after = limiter.take("user-1", "approvals", capacity=0, window_seconds=60)

    assert allowed is False
    assert retry_after == 60
