from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(slots=True)
class AuthContext:
    """Caller identity and tenant for one request or job."""

    user_id: str
    tenant_id: str
    correlation_id: str | None = None
    is_super_admin: bool = False
    roles: list[str] = field(default_factory=list)

    def has_role(self, role: str) -> bool:
        return self.is_super_admin or role.lower() in {item.lower() for item in self.roles}
