from contextlib import asynccontextmanager, contextmanager
import logging

from fastapi import FastAPI
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

from staffdesk.api.errors import domain_error_handler
from staffdesk.api.routes import router as api_router
from staffdesk.approvals.resolver import approval_config_resolver
from staffdesk.core.config import get_settings
from staffdesk.core.context import RequestContextMiddleware
from staffdesk.core.database import SessionLocal, get_db
from staffdesk.core.errors import DomainError
from staffdesk.core.events import InternalEvent, event_bus
from staffdesk.logging import configure_logging
from staffdesk.middleware.correlation_id import CorrelationIdMiddleware
from staffdesk.middleware.rate_limit import MutationRateLimitMiddleware
from staffdesk.middleware.request_logging import RequestLoggingMiddleware
from staffdesk.otel import get_fastapi_server_request_hook, setup_otel


configure_logging()
logger = logging.getLogger("staffdesk.lifecycle")
_subscriptions_registered = False

NOTIFICATION_EVENT_TYPES = [
    "approval.submitted",
    "approval.advanced",
    "approval.approved",
    "approval.rejected",
    "approval.voided",
    "approval.written_off",
    "approval.drafted",
    "approval.closed",
    "approval.reopened",
    "approval.cancelled",
    "approval_chain.created",
    "approval_chain.updated",
    "approval_chain.deleted",
    "approval_default.assigned",
    "recurrence.occurrence_due",
    "recurrence.completed",
]


def _on_system_started(event: InternalEvent) -> None:
    logger.info("system_event", extra={"event_name": event.name})


def _on_notification_event(event: InternalEvent) -> None:
    payload = event.payload if isinstance(event.payload, dict) else {}
    logger.info(
        "notification_dispatched",
        extra={
            "event_name": event.name,
            "entity_kind": payload.get("entity_kind") or payload.get("subject_kind"),
            "entity_id": payload.get("entity_id") or payload.get("subject_id"),
            "setting_id": payload.get("setting_id"),
            "approval_module": payload.get("module"),
            "status": payload.get("status"),
        },
    )


@contextmanager
def _session_scope():
    override = app.dependency_overrides.get(get_db) if "app" in globals() else None
    if override is None:
        session = SessionLocal()
        try:
            yield session
        finally:
            session.close()
        return

    generator = override()
    session = next(generator)
    try:
        yield session
    finally:
        next(generator, None)


def _verify_global_defaults() -> None:
    settings = get_settings()
    if not settings.approval_default_tenants:
        return
    with _session_scope() as session:
        approval_config_resolver.verify_global_defaults(
            session,
            settings.approval_default_tenants,
            strict=settings.approval_require_global_defaults,
        )


@asynccontextmanager
async def lifespan(app: FastAPI):
    global _subscriptions_registered
    if not _subscriptions_registered:
        event_bus.subscribe("system.started", _on_system_started)
        for event_name in NOTIFICATION_EVENT_TYPES:
            event_bus.subscribe(event_name, _on_notification_event)
        _subscriptions_registered = True
    _verify_global_defaults()
    event_bus.publish("system.started", {"service": "api"})
    yield


app = FastAPI(title="Staffdesk API", version="0.1.0", lifespan=lifespan)
app.add_exception_handler(DomainError, domain_error_handler)
app.add_middleware(MutationRateLimitMiddleware)
app.add_middleware(RequestContextMiddleware)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(CorrelationIdMiddleware)
app.include_router(api_router)

settings = get_settings()
if settings.otel_enabled:
    setup_otel("staffdesk-api", True)

if not getattr(app, "_is_instrumented_by_opentelemetry", False):
    FastAPIInstrumentor().instrument_app(app, server_request_hook=get_fastapi_server_request_hook())
