from __future__ import annotations

from datetime import date

from staffdesk.context import reset_actor_id, set_actor_id
from staffdesk.core.celery_app import celery_app
from staffdesk.core.database import SessionLocal
from staffdesk.recurrence.service import SYSTEM_ACTOR, recurrence_service


@celery_app.task(name="staffdesk.tasks.materialize_recurrences")
def materialize_recurrences(today: str | None = None) -> dict[str, int]:
    run_date = date.fromisoformat(today) if today else date.today()
    token = set_actor_id(SYSTEM_ACTOR)
    session = SessionLocal()
    try:
        summary = recurrence_service.materialize_due(session, run_date)
    finally:
        session.close()
        reset_actor_id(token)
    return summary.model_dump()
