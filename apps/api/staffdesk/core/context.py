from dataclasses import dataclass

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from staffdesk.context import get_correlation_id


MUTATING_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})


@dataclass
class RequestContext:
    """What is known about a call before authentication runs."""

    correlation_id: str
    tenant_id: str | None
    route_group: str
    is_mutation: bool
    user_id: str | None = None


def tenant_from_header(raw: str | None) -> str | None:
    value = (raw or "").strip()
    return value or None


def route_group_for(path: str) -> str:
    # /api/<group>/... ; approvals, records, companies and recurrences each get their own bucket
    parts = [part for part in path.split("/") if part]
    if len(parts) < 2:
        return "api"
    return parts[1]


def get_request_context(request: Request) -> RequestContext:
    context = getattr(request.state, "context", None)
    if context is None:
        context = RequestContext(
            correlation_id=get_correlation_id() or getattr(request.state, "correlation_id", None) or "",
            tenant_id=tenant_from_header(request.headers.get("x-tenant-id")),
            route_group=route_group_for(request.url.path),
            is_mutation=request.method.upper() in MUTATING_METHODS,
        )
        request.state.context = context
    return context


class RequestContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        context = get_request_context(request)
        response = await call_next(request)
        response.headers["x-request-id"] = context.correlation_id
        return response
