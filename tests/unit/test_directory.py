"""
Unit tests for the Graph directory role lookup.

Coverage:
* directoryRole entries are returned for every tenant
* AdminAgents / HelpdeskAgents groups count only in the partner tenant
* ``@odata.nextLink`` pagination
* HTTP and transport failures raise DirectoryLookupError
"""

from __future__ import annotations

from types import SimpleNamespace

import pytest
import requests

from partner_bot.auth.errors import DirectoryLookupError
from partner_bot.directory import GraphDirectoryClient

GRAPH = "https://graph.example.test"
PARTNER_TENANT = "tenant-partner"


def _page(entries: list[dict], next_link: str | None = None, status: int = 200) -> SimpleNamespace:
    payload: dict = {"value": entries}
    if next_link:
        payload["@odata.nextLink"] = next_link
    return SimpleNamespace(ok=status < 400, status_code=status, text="", json=lambda: payload)


@pytest.fixture
def pages(monkeypatch):
    """Serve the given pages in order from ``requests.get``."""

    def _install(*responses: SimpleNamespace) -> list[tuple[str, dict]]:
        queue = list(responses)
        seen: list[tuple[str, dict]] = []

        def fake_get(url, headers=None, timeout=None):
            seen.append((url, headers))
            return queue.pop(0)

        monkeypatch.setattr(requests, "get", fake_get)
        return seen

    return _install


@pytest.fixture
def client() -> GraphDirectoryClient:
    return GraphDirectoryClient(GRAPH + "/", PARTNER_TENANT)


def test_roles_and_groups_in_partner_tenant(client, pages) -> None:
    seen = pages(
        _page(
            [
                {"@odata.type": "#microsoft.graph.directoryRole", "displayName": "Company Administrator"},
                {"@odata.type": "#microsoft.graph.group", "displayName": "AdminAgents", "description": "Agents"},
                {"@odata.type": "#microsoft.graph.group", "displayName": "Marketing"},
            ]
        )
    )

    roles = client.get_directory_roles("graph-token", PARTNER_TENANT.upper(), "oid-1")

    assert [r.display_name for r in roles] == ["Company Administrator", "AdminAgents"]
    assert roles[1].description == "Agents"
    url, headers = seen[0]
    assert url == f"{GRAPH}/v1.0/users/oid-1/memberOf"
    assert headers["Authorization"] == "Bearer graph-token"


def test_agent_groups_ignored_in_customer_tenant(client, pages) -> None:
    pages(
        _page(
            [
                {"@odata.type": "#microsoft.graph.directoryRole", "displayName": "Billing Administrator"},
                {"@odata.type": "#microsoft.graph.group", "displayName": "AdminAgents"},
            ]
        )
    )

    roles = client.get_directory_roles("graph-token", "tenant-customer", "oid-1")

    assert [r.display_name for r in roles] == ["Billing Administrator"]


def test_pagination_follows_next_link(client, pages) -> None:
    seen = pages(
        _page(
            [{"@odata.type": "#microsoft.graph.directoryRole", "displayName": "Company Administrator"}],
            next_link=f"{GRAPH}/v1.0/users/oid-1/memberOf?$skiptoken=abc",
        ),
        _page([{"@odata.type": "#microsoft.graph.directoryRole", "displayName": "User Account Administrator"}]),
    )

    roles = client.get_directory_roles("graph-token", "tenant-customer", "oid-1")

    assert [r.display_name for r in roles] == ["Company Administrator", "User Account Administrator"]
    assert seen[1][0].endswith("$skiptoken=abc")


def test_http_error_raises(client, pages) -> None:
    pages(_page([], status=403))

    with pytest.raises(DirectoryLookupError) as exc_info:
        client.get_directory_roles("graph-token", "tenant-customer", "oid-1")
    assert exc_info.value.status_code == 403


def test_transport_error_raises(client, monkeypatch) -> None:
    def _boom(*args, **kwargs):
        raise requests.Timeout("read timed out")

    monkeypatch.setattr(requests, "get", _boom)

    with pytest.raises(DirectoryLookupError):
        client.get_directory_roles("graph-token", "tenant-customer", "oid-1")
