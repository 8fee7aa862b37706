"""Directory role lookup against the Graph ``memberOf`` endpoint."""

from __future__ import annotations

import logging
from typing import Any, Iterator

import requests

from partner_bot.auth.errors import DirectoryLookupError, assert_not_empty
from partner_bot.auth.principal import RoleModel

_LOG = logging.getLogger("partner-bot.directory")

DIRECTORY_ROLE_TYPE = "#microsoft.graph.directoryRole"
GROUP_TYPE = "#microsoft.graph.group"
PARTNER_AGENT_GROUPS = ("AdminAgents", "HelpdeskAgents")

_MAX_PAGES = 100


class GraphDirectoryClient:
    """Lists the directory roles (and partner agent groups) of a user.

    Parameters
    ----------
    graph_endpoint:
        Base URL of the Graph API, e.g. ``https://graph.microsoft.com``.
    partner_tenant_id:
        Tenant of the partner itself; only there are the ``AdminAgents`` and
        ``HelpdeskAgents`` groups meaningful.
    """

    def __init__(
        self,
        graph_endpoint: str,
        partner_tenant_id: str,
        *,
        timeout: tuple[float, float] = (5, 20),
    ) -> None:
        assert_not_empty(graph_endpoint, "graph_endpoint")
        self._graph_endpoint = graph_endpoint.rstrip("/")
        self._partner_tenant_id = partner_tenant_id or ""
        self._timeout = timeout

    def get_directory_roles(self, access_token: str, tenant_id: str, object_id: str) -> list[RoleModel]:
        assert_not_empty(access_token, "access_token")
        assert_not_empty(tenant_id, "tenant_id")
        assert_not_empty(object_id, "object_id")

        include_groups = tenant_id.lower() == self._partner_tenant_id.lower()
        roles: list[RoleModel] = []
        for entry in self._member_of(access_token, object_id):
            kind = entry.get("@odata.type")
            name = entry.get("displayName")
            if not name:
                continue
            if kind == DIRECTORY_ROLE_TYPE or (
                include_groups and kind == GROUP_TYPE and name in PARTNER_AGENT_GROUPS
            ):
                roles.append(RoleModel(display_name=name, description=entry.get("description")))

        _LOG.info("Resolved %d directory roles tenant=%s", len(roles), tenant_id[:8])
        return roles

    def _member_of(self, access_token: str, object_id: str) -> Iterator[dict[str, Any]]:
        url: str | None = f"{self._graph_endpoint}/v1.0/users/{object_id}/memberOf"
        headers = {"Authorization": f"Bearer {access_token}", "Accept": "application/json"}
        pages = 0
        while url:
            pages += 1
            if pages > _MAX_PAGES:
                raise DirectoryLookupError("memberOf pagination did not terminate")
            try:
                resp = requests.get(url, headers=headers, timeout=self._timeout)
            except requests.RequestException as exc:
                raise DirectoryLookupError(f"memberOf request failed: {exc.__class__.__name__}") from exc
            if not resp.ok:
                raise DirectoryLookupError(
                    f"memberOf returned {resp.status_code}", status_code=resp.status_code
                )
            try:
                data = resp.json()
            except ValueError as exc:
                raise DirectoryLookupError("memberOf returned invalid JSON") from exc

            yield from data.get("value", [])
            url = data.get("@odata.nextLink")
