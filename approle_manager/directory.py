import logging
from typing import List, Dict, Optional
from urllib.parse import quote
from .graph_client import GraphClient, GraphAPIError
from .config import GRAPH_BASE
from .models import (
    AppRoleAssignment,
    Principal,
    ServicePrincipal,
    GROUP,
    USER,
)

USER_SELECT = "id,displayName,userPrincipalName,onPremisesSamAccountName,accountEnabled"
GROUP_SELECT = "id,displayName,mail,mailNickname,securityEnabled"
# Graph caps $top at 999 for directory objects
MAX_PAGE_SIZE = 999


def odata_quote(value: str) -> str:
    """Escape a value for use inside a single-quoted OData string literal."""
    return (value or "").replace("'", "''")


def _collection(kind: str) -> str:
    return "groups" if kind == GROUP else "users"


class DirectoryService:
    """
    Thin domain layer over the Graph endpoints this tool needs.

    Everything returned is a model object; raw JSON stays in here.
    """

    def __init__(self, client: GraphClient):
        self.client = client

    # --------------------------------------------------------
    # Principals
    # --------------------------------------------------------
    def search_principals(self, odata_filter: str, kind: str = USER, top: int = 50) -> List[Principal]:
        select = GROUP_SELECT if kind == GROUP else USER_SELECT
        items = self.client.paged_get(
            f"{GRAPH_BASE}/{_collection(kind)}",
            params={"$filter": odata_filter, "$select": select, "$top": min(top, MAX_PAGE_SIZE)},
            limit=top,
        )
        return [Principal.from_graph(i, kind=kind) for i in items]

    def list_principals(self, kind: str = USER, limit: int = 100) -> List[Principal]:
        select = GROUP_SELECT if kind == GROUP else USER_SELECT
        items = self.client.paged_get(
            f"{GRAPH_BASE}/{_collection(kind)}",
            params={"$select": select, "$top": min(limit, MAX_PAGE_SIZE)},
            limit=limit,
        )
        return [Principal.from_graph(i, kind=kind) for i in items]

    def get_user(self, key: str) -> Optional[Principal]:
        """Fetch a user by object id or userPrincipalName; None when it does not exist."""
        try:
            obj = self.client.get(
                f"{GRAPH_BASE}/users/{quote(key, safe='@')}",
                params={"$select": USER_SELECT},
            )
        except GraphAPIError as e:
            if e.status_code in (400, 404):
                logging.warning(f"User {key!r} not found: {e}")
                return None
            raise
        return Principal.from_graph(obj, kind=USER)

    def get_group(self, group_id: str) -> Optional[Principal]:
        try:
            obj = self.client.get(
                f"{GRAPH_BASE}/groups/{group_id}",
                params={"$select": GROUP_SELECT},
            )
        except GraphAPIError as e:
            if e.status_code == 404:
                logging.warning(f"Group {group_id} not found: {e}")
                return None
            raise
        return Principal.from_graph(obj, kind=GROUP)

    def list_group_members(self, group_id: str) -> List[Dict]:
        return self.client.paged_get(
            f"{GRAPH_BASE}/groups/{group_id}/members",
            params={"$select": USER_SELECT},
        )

    # --------------------------------------------------------
    # Service principals
    # --------------------------------------------------------
    def find_service_principal(self, display_name: str) -> Optional[ServicePrincipal]:
        resp = self.client.get(
            f"{GRAPH_BASE}/servicePrincipals",
            params={
                "$filter": f"displayName eq '{odata_quote(display_name)}'",
                "$select": "id,appId,displayName,appRoles",
            },
        )
        matches = resp.get("value") or []
        if not matches:
            return None
        if len(matches) > 1:
            logging.warning(
                f"{len(matches)} service principals named {display_name!r}; using {matches[0].get('id')}"
            )
        return ServicePrincipal.from_graph(matches[0])

    # --------------------------------------------------------
    # App role assignments
    # --------------------------------------------------------
    def list_assignments(self, principal: Principal, resource_id: str) -> List[AppRoleAssignment]:
        items = self.client.paged_get(
            f"{GRAPH_BASE}/{_collection(principal.kind)}/{principal.id}/appRoleAssignments",
            params={"$filter": f"resourceId eq {resource_id}"},
        )
        return [AppRoleAssignment.from_graph(i) for i in items]

    def create_assignment(self, principal_id: str, resource_id: str, app_role_id: str) -> AppRoleAssignment:
        obj = self.client.post(
            f"{GRAPH_BASE}/servicePrincipals/{resource_id}/appRoleAssignedTo",
            {"principalId": principal_id, "resourceId": resource_id, "appRoleId": app_role_id},
        )
        if not obj.get("id"):
            return AppRoleAssignment(id="", principal_id=principal_id, resource_id=resource_id, app_role_id=app_role_id)
        return AppRoleAssignment.from_graph(obj)

    def delete_assignment(self, resource_id: str, assignment_id: str) -> None:
        self.client.delete(f"{GRAPH_BASE}/servicePrincipals/{resource_id}/appRoleAssignedTo/{assignment_id}")
