"""Bot capabilities and the registry that gates them by directory role.

A capability is one thing the bot can do for a signed-in user (list the
partner's customers, list a customer's subscriptions, switch the customer
being worked on).  Each declares the roles allowed to use it; when a user
signs in, the principal records the names of the capabilities whose roles
match the user's directory roles, and the registry refuses anything else.

Partner Center calls go through the narrow :class:`PartnerOperations`
protocol; the SDK behind it is not part of this package.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass, field
from typing import Iterable, Mapping, Protocol, runtime_checkable

from partner_bot.auth.errors import NotAuthorizedError, assert_not_none
from partner_bot.auth.principal import CustomerPrincipal

_LOG = logging.getLogger("partner-bot.capabilities")


class UserRoles(enum.Flag):
    NONE = 0
    ADMIN_AGENTS = enum.auto()
    HELPDESK_AGENT = enum.auto()
    GLOBAL_ADMIN = enum.auto()
    BILLING_ADMIN = enum.auto()
    USER_ADMIN = enum.auto()


# Directory display names of each role (partner agent groups first).
ROLE_DISPLAY_NAMES: Mapping[UserRoles, str] = {
    UserRoles.ADMIN_AGENTS: "AdminAgents",
    UserRoles.HELPDESK_AGENT: "HelpdeskAgents",
    UserRoles.GLOBAL_ADMIN: "Company Administrator",
    UserRoles.BILLING_ADMIN: "Billing Administrator",
    UserRoles.USER_ADMIN: "User Account Administrator",
}


def role_names(roles: UserRoles) -> list[str]:
    """Display names of every role set in *roles*."""
    return [name for role, name in ROLE_DISPLAY_NAMES.items() if role in roles]


class CapabilityName(str, enum.Enum):
    LIST_CUSTOMERS = "ListCustomers"
    LIST_SUBSCRIPTIONS = "ListSubscriptions"
    SELECT_CUSTOMER = "SelectCustomer"

    def __str__(self) -> str:
        return self.value


# --------------------------------------------------------------------------- #
# Partner operations                                                          #
# --------------------------------------------------------------------------- #
class CustomerNotFoundError(LookupError):
    """The partner has no relationship with the requested customer tenant."""


@dataclass(frozen=True, slots=True)
class CustomerSummary:
    id: str
    company_name: str


@dataclass(frozen=True, slots=True)
class SubscriptionSummary:
    id: str
    friendly_name: str


@runtime_checkable
class PartnerOperations(Protocol):
    def list_customers(self) -> list[CustomerSummary]: ...

    def get_customer(self, customer_id: str) -> CustomerSummary:
        """Raise :class:`CustomerNotFoundError` when no relationship exists."""
        ...

    def list_subscriptions(self, customer_id: str) -> list[SubscriptionSummary]: ...


# --------------------------------------------------------------------------- #
# Capability contract                                                         #
# --------------------------------------------------------------------------- #
@dataclass(frozen=True, slots=True)
class SuggestedAction:
    title: str
    value: str


@dataclass(slots=True)
class CapabilityRequest:
    principal: CustomerPrincipal
    entities: dict[str, str] = field(default_factory=dict)


@dataclass(slots=True)
class CapabilityReply:
    text: str = ""
    actions: list[SuggestedAction] = field(default_factory=list)
    principal_changed: bool = False


class Capability(Protocol):
    name: CapabilityName
    help_text: str
    required_roles: UserRoles

    async def execute(self, request: CapabilityRequest) -> CapabilityReply: ...


class ListCustomers:
    name = CapabilityName.LIST_CUSTOMERS
    help_text = "Lists the customers you have a relationship with."
    required_roles = UserRoles.ADMIN_AGENTS | UserRoles.HELPDESK_AGENT

    def __init__(self, operations: PartnerOperations) -> None:
        self._operations = operations

    async def execute(self, request: CapabilityRequest) -> CapabilityReply:
        customers = await asyncio.to_thread(self._operations.list_customers)
        return CapabilityReply(
            text="Here are your customers",
            actions=[SuggestedAction(c.company_name, f"select customer {c.id}") for c in customers],
        )


class ListSubscriptions:
    name = CapabilityName.LIST_SUBSCRIPTIONS
    help_text = "Lists the subscriptions of the selected customer."
    required_roles = UserRoles.ADMIN_AGENTS | UserRoles.HELPDESK_AGENT | UserRoles.GLOBAL_ADMIN

    def __init__(self, operations: PartnerOperations, partner_tenant_id: str) -> None:
        self._operations = operations
        self._partner_tenant_id = partner_tenant_id

    async def execute(self, request: CapabilityRequest) -> CapabilityReply:
        principal = request.principal
        name = "the partner"
        if principal.customer_id.lower() == self._partner_tenant_id.lower():
            customer_id = principal.operation.customer_id
            if not customer_id:
                return CapabilityReply(text="Please select a customer first.")
            customer = await asyncio.to_thread(self._operations.get_customer, customer_id)
            name = customer.company_name
        else:
            customer_id = principal.customer_id

        subscriptions = await asyncio.to_thread(self._operations.list_subscriptions, customer_id)
        return CapabilityReply(
            text=f"Here are the subscriptions for {name}",
            actions=[SuggestedAction(s.friendly_name, f"select subscription {s.id}") for s in subscriptions],
        )


class SelectCustomer:
    name = CapabilityName.SELECT_CUSTOMER
    help_text = ""
    required_roles = UserRoles.ADMIN_AGENTS | UserRoles.HELPDESK_AGENT

    def __init__(self, operations: PartnerOperations) -> None:
        self._operations = operations

    async def execute(self, request: CapabilityRequest) -> CapabilityReply:
        customer_id = request.entities.get("customer", "").replace(" ", "")
        if not customer_id:
            return CapabilityReply(text="Unable to locate the requested customer.")

        request.principal.operation.customer_id = customer_id
        try:
            customer = await asyncio.to_thread(self._operations.get_customer, customer_id)
        except CustomerNotFoundError:
            return CapabilityReply(text="Unable to locate the requested customer.", principal_changed=True)
        return CapabilityReply(
            text=f"Customer context is now configured for {customer.company_name}",
            principal_changed=True,
        )


# --------------------------------------------------------------------------- #
# Registry                                                                    #
# --------------------------------------------------------------------------- #
class CapabilityRegistry:
    """Table of capabilities keyed by :class:`CapabilityName`."""

    def __init__(self, capabilities: Iterable[Capability] = ()) -> None:
        self._capabilities: dict[CapabilityName, Capability] = {}
        for capability in capabilities:
            self.register(capability)

    def register(self, capability: Capability) -> None:
        assert_not_none(capability, "capability")
        self._capabilities[capability.name] = capability

    def get(self, name: CapabilityName | str) -> Capability | None:
        try:
            return self._capabilities.get(CapabilityName(str(name)))
        except ValueError:
            return None

    def __iter__(self):
        return iter(self._capabilities.values())

    def __len__(self) -> int:
        return len(self._capabilities)

    def authorized_for(self, roles: Iterable[str]) -> list[Capability]:
        """Capabilities for which at least one required role is in *roles*."""
        held = set(roles)
        return [c for c in self._capabilities.values() if held.intersection(role_names(c.required_roles))]

    def help_text(self, principal: CustomerPrincipal) -> list[str]:
        return [
            f"{c.name.value}: {c.help_text}"
            for c in self._capabilities.values()
            if principal.can(c.name) and c.help_text
        ]

    async def execute(self, name: CapabilityName | str, request: CapabilityRequest) -> CapabilityReply:
        """Run capability *name* for the request's principal.

        Raises
        ------
        NotAuthorizedError
            The capability is unknown or was not granted to the principal.
        """
        capability = self.get(name)
        if capability is None or not request.principal.can(capability.name):
            _LOG.info("Refused capability %s for tenant=%s", name, request.principal.customer_id[:8])
            raise NotAuthorizedError(
                tenant_id=request.principal.customer_id,
                message="You are not authorized to perform this operation.",
            )
        return await capability.execute(request)


def default_registry(operations: PartnerOperations, partner_tenant_id: str) -> CapabilityRegistry:
    return CapabilityRegistry(
        [
            ListCustomers(operations),
            ListSubscriptions(operations, partner_tenant_id),
            SelectCustomer(operations),
        ]
    )
