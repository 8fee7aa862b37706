"""
Unit tests for capabilities and the role-gated registry.

Coverage:
* Role flags map to directory display names
* authorized_for matches on any shared role
* execute refuses unknown or ungranted capabilities
* ListCustomers / ListSubscriptions / SelectCustomer replies
* CustomerPrincipal serialisation survives a session round trip
"""

from __future__ import annotations

import pytest

from partner_bot.auth.errors import NotAuthorizedError
from partner_bot.auth.principal import CustomerPrincipal, RoleModel
from partner_bot.capabilities import (
    CapabilityName,
    CapabilityRegistry,
    CapabilityRequest,
    CustomerNotFoundError,
    CustomerSummary,
    SubscriptionSummary,
    UserRoles,
    default_registry,
    role_names,
)

PARTNER_TENANT = "tenant-partner"


class FakePartnerOperations:
    def __init__(self) -> None:
        self.customers = {
            "c-1": CustomerSummary("c-1", "Contoso"),
            "c-2": CustomerSummary("c-2", "Fabrikam"),
        }
        self.subscription_requests: list[str] = []

    def list_customers(self) -> list[CustomerSummary]:
        return list(self.customers.values())

    def get_customer(self, customer_id: str) -> CustomerSummary:
        if customer_id not in self.customers:
            raise CustomerNotFoundError(customer_id)
        return self.customers[customer_id]

    def list_subscriptions(self, customer_id: str) -> list[SubscriptionSummary]:
        self.subscription_requests.append(customer_id)
        return [SubscriptionSummary(f"{customer_id}-sub", "Azure plan")]


@pytest.fixture
def operations() -> FakePartnerOperations:
    return FakePartnerOperations()


@pytest.fixture
def registry(operations) -> CapabilityRegistry:
    return default_registry(operations, PARTNER_TENANT)


def _principal(registry: CapabilityRegistry, *roles: str, tenant: str = PARTNER_TENANT) -> CustomerPrincipal:
    granted = registry.authorized_for(roles)
    return CustomerPrincipal(
        access_token="at",
        expires_on=2_000_000_000,
        customer_id=tenant,
        object_id="oid-1",
        name="Ada",
        roles=[RoleModel(r) for r in roles],
        available_capabilities=[c.name.value for c in granted],
    )


# --------------------------------------------------------------------------- #
# Roles                                                                       #
# --------------------------------------------------------------------------- #
def test_role_names() -> None:
    assert role_names(UserRoles.ADMIN_AGENTS | UserRoles.GLOBAL_ADMIN) == ["AdminAgents", "Company Administrator"]
    assert role_names(UserRoles.NONE) == []


def test_authorized_for(registry) -> None:
    helpdesk = {c.name for c in registry.authorized_for(["HelpdeskAgents"])}
    admin = {c.name for c in registry.authorized_for(["Company Administrator"])}
    billing = registry.authorized_for(["Billing Administrator"])

    assert helpdesk == {
        CapabilityName.LIST_CUSTOMERS,
        CapabilityName.LIST_SUBSCRIPTIONS,
        CapabilityName.SELECT_CUSTOMER,
    }
    assert admin == {CapabilityName.LIST_SUBSCRIPTIONS}
    assert billing == []


def test_registry_lookup(registry) -> None:
    assert len(registry) == 3
    assert registry.get("ListCustomers") is registry.get(CapabilityName.LIST_CUSTOMERS)
    assert registry.get("Unknown") is None


def test_help_text_lists_only_granted_capabilities(registry) -> None:
    lines = registry.help_text(_principal(registry, "Company Administrator"))
    assert lines == ["ListSubscriptions: Lists the subscriptions of the selected customer."]


# --------------------------------------------------------------------------- #
# Execution                                                                   #
# --------------------------------------------------------------------------- #
@pytest.mark.anyio
async def test_ungranted_capability_is_refused(registry) -> None:
    principal = _principal(registry, "Company Administrator", tenant="c-1")
    with pytest.raises(NotAuthorizedError):
        await registry.execute(CapabilityName.LIST_CUSTOMERS, CapabilityRequest(principal))


@pytest.mark.anyio
async def test_unknown_capability_is_refused(registry) -> None:
    principal = _principal(registry, "AdminAgents")
    with pytest.raises(NotAuthorizedError):
        await registry.execute("DeleteEverything", CapabilityRequest(principal))


@pytest.mark.anyio
async def test_list_customers(registry) -> None:
    reply = await registry.execute("ListCustomers", CapabilityRequest(_principal(registry, "AdminAgents")))
    assert [(a.title, a.value) for a in reply.actions] == [
        ("Contoso", "select customer c-1"),
        ("Fabrikam", "select customer c-2"),
    ]


@pytest.mark.anyio
async def test_list_subscriptions_for_customer_user(registry, operations) -> None:
    principal = _principal(registry, "Company Administrator", tenant="c-2")
    reply = await registry.execute(CapabilityName.LIST_SUBSCRIPTIONS, CapabilityRequest(principal))

    assert operations.subscription_requests == ["c-2"]
    assert reply.actions[0].value == "select subscription c-2-sub"


@pytest.mark.anyio
async def test_partner_user_must_select_customer_first(registry, operations) -> None:
    principal = _principal(registry, "AdminAgents")
    reply = await registry.execute(CapabilityName.LIST_SUBSCRIPTIONS, CapabilityRequest(principal))

    assert reply.text == "Please select a customer first."
    assert operations.subscription_requests == []


@pytest.mark.anyio
async def test_select_customer_then_list_subscriptions(registry, operations) -> None:
    principal = _principal(registry, "AdminAgents")

    reply = await registry.execute(
        CapabilityName.SELECT_CUSTOMER, CapabilityRequest(principal, {"customer": " c- 1 "})
    )
    assert reply.principal_changed is True
    assert reply.text == "Customer context is now configured for Contoso"
    assert principal.operation.customer_id == "c-1"

    reply = await registry.execute(CapabilityName.LIST_SUBSCRIPTIONS, CapabilityRequest(principal))
    assert reply.text == "Here are the subscriptions for Contoso"
    assert operations.subscription_requests == ["c-1"]


@pytest.mark.anyio
async def test_select_unknown_customer(registry) -> None:
    principal = _principal(registry, "HelpdeskAgents")
    reply = await registry.execute(
        CapabilityName.SELECT_CUSTOMER, CapabilityRequest(principal, {"customer": "nope"})
    )
    assert reply.text == "Unable to locate the requested customer."


# --------------------------------------------------------------------------- #
# Principal                                                                   #
# --------------------------------------------------------------------------- #
def test_principal_round_trip(registry, clock) -> None:
    principal = _principal(registry, "AdminAgents")
    principal.operation.customer_id = "c-1"

    restored = CustomerPrincipal.from_dict(principal.to_dict())

    assert restored == principal
    assert restored.can(CapabilityName.SELECT_CUSTOMER)
    assert restored.is_expired(clock=clock) is False
    assert restored.is_expired(clock=lambda: 2_000_000_000) is True
