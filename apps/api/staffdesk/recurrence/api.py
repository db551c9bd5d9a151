from __future__ import annotations

import uuid
from datetime import date

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from staffdesk.core.database import get_db
from staffdesk.platform.security.context import AuthContext
from staffdesk.platform.security.dependencies import get_auth_context
from staffdesk.recurrence.schemas import RecurrenceCreate, RecurrencePreview, RecurrenceRead
from staffdesk.recurrence.service import recurrence_service


router = APIRouter(prefix="/recurrences", tags=["recurrences"])


@router.post("", response_model=RecurrenceRead, status_code=status.HTTP_201_CREATED)
def create_configuration(
    payload: RecurrenceCreate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> RecurrenceRead:
    return recurrence_service.create_configuration(db, ctx, payload)


@router.get("/{config_id}", response_model=RecurrenceRead)
def get_configuration(
    config_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> RecurrenceRead:
    return recurrence_service.get_configuration(db, ctx, config_id)


@router.get("/{config_id}/next", response_model=RecurrencePreview)
def preview_next(
    config_id: uuid.UUID,
    today: date | None = Query(default=None),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> RecurrencePreview:
    return recurrence_service.preview_next(db, ctx, config_id, today or date.today())
