"""The authenticated customer principal kept in a conversation's session."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Final

from partner_bot.auth.clock import Clock, default_clock

CUSTOMER_PRINCIPAL_KEY: Final[str] = "CustomerPrincipal"


@dataclass(frozen=True, slots=True)
class RoleModel:
    """Directory role or partner agent group the subject belongs to."""

    display_name: str
    description: str | None = None


@dataclass(slots=True)
class OperationContext:
    """Downstream tenant the user is currently working on."""

    customer_id: str | None = None


@dataclass(slots=True)
class CustomerPrincipal:
    access_token: str
    expires_on: int
    customer_id: str
    object_id: str
    name: str | None = None
    roles: list[RoleModel] = field(default_factory=list)
    available_capabilities: list[str] = field(default_factory=list)
    operation: OperationContext = field(default_factory=OperationContext)

    def is_expired(self, *, clock: Clock = default_clock) -> bool:
        return clock() >= self.expires_on

    def can(self, capability: str) -> bool:
        return str(capability) in self.available_capabilities

    def role_names(self) -> set[str]:
        return {role.display_name for role in self.roles}

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CustomerPrincipal":
        return cls(
            access_token=data["access_token"],
            expires_on=int(data["expires_on"]),
            customer_id=data["customer_id"],
            object_id=data["object_id"],
            name=data.get("name"),
            roles=[RoleModel(**role) for role in data.get("roles", [])],
            available_capabilities=list(data.get("available_capabilities", [])),
            operation=OperationContext(**(data.get("operation") or {})),
        )
