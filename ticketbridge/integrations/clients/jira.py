"""Jira REST API clients.

Two protocol versions are supported:

- REST v2 (``/rest/api/2``) on Server and Data Center. Free text fields are
  plain strings (wiki markup) and users are addressed by username.
- REST v3 (``/rest/api/3``) on Cloud. Free text fields use the Atlassian
  Document Format and users are addressed by account id.

Boards and sprints come from the agile API (``/rest/agile/1.0``) and are
only offered when the profile declares ``agile_endpoints``.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from types import MappingProxyType
from typing import Any, ClassVar
from urllib.parse import quote

from ticketbridge.integrations.clients.base import BackendClient
from ticketbridge.integrations.documents import WireDocument, WireKind
from ticketbridge.integrations.errors import MalformedResponseError
from ticketbridge.integrations.models import (
    BackendField,
    ClientKind,
    MetadataItem,
    MetadataKind,
    SearchQuery,
    TicketInput,
    TicketUpdate,
    Transition,
)

logger = logging.getLogger(__name__)

AGILE_API_ROOT = "/rest/agile/1.0"

# Fields requested by searches; mapped custom fields are appended
SEARCH_FIELDS: tuple[str, ...] = (
    "summary",
    "description",
    "issuetype",
    "status",
    "priority",
    "assignee",
    "reporter",
    "project",
    "labels",
    "created",
    "updated",
    "duedate",
)

DEFAULT_ISSUE_TYPE = "Task"
DEFAULT_ORDER_BY = "ORDER BY updated DESC"
# Cloud rejects unbounded JQL on the enhanced search endpoint
UNBOUNDED_JQL = "project IS NOT EMPTY"
CURRENT_USER_ALIASES = frozenset({"me", "currentuser()"})


def quote_jql(value: str) -> str:
    """Quote a JQL string literal."""
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def _in_clause(field: str, values: Iterable[str]) -> str:
    return f"{field} in ({', '.join(quote_jql(v) for v in values)})"


def build_jql(query: SearchQuery) -> str:
    """Translate a SearchQuery into JQL ordered by last update."""
    conditions: list[str] = []
    if query.project_keys:
        conditions.append(_in_clause("project", query.project_keys))
    if query.ticket_types:
        conditions.append(_in_clause("issuetype", query.ticket_types))
    if query.statuses:
        conditions.append(_in_clause("status", query.statuses))
    if query.assignee:
        if query.assignee.strip().lower() in CURRENT_USER_ALIASES:
            conditions.append("assignee = currentUser()")
        else:
            conditions.append(f"assignee = {quote_jql(query.assignee)}")
    if query.labels:
        conditions.append(_in_clause("labels", query.labels))
    if query.text:
        conditions.append(f"text ~ {quote_jql(query.text)}")

    jql = " AND ".join(conditions) or UNBOUNDED_JQL
    return f"{jql} {DEFAULT_ORDER_BY}"


def _items(payload: Any, key: str = "values") -> list[dict[str, Any]]:
    """Accept both paginated (``{"values": [...]}``) and bare list responses."""
    if isinstance(payload, dict):
        payload = payload.get(key, [])
    if not isinstance(payload, list):
        return []
    return [item for item in payload if isinstance(item, dict)]


def _metadata_item(raw: dict[str, Any], *, key: str = "", **extra: Any) -> MetadataItem:
    return MetadataItem(
        id=str(raw.get("id", "")),
        name=str(raw.get("name", "")),
        key=key,
        extra={k: v for k, v in extra.items() if v is not None},
    )


class JiraRestClient(BackendClient):
    """Operations shared by both Jira REST versions.

    Subclasses set ``api_root`` and the handful of behaviors that differ
    between versions: the search endpoint, user references and the
    well-known custom field ids.
    """

    api_root: ClassVar[str]
    well_known: ClassVar[tuple[BackendField, ...]]
    unscoped_search_fields = ("*navigable",)

    def _api(self, path: str) -> str:
        return f"{self.profile.base_url}{self.api_root}{path}"

    def _agile(self, path: str) -> str:
        return f"{self.profile.base_url}{AGILE_API_ROOT}{path}"

    def browse_url(self, key: str) -> str:
        return f"{self.profile.base_url}/browse/{key}"

    # ------------------------------------------------------------------
    # Tickets
    # ------------------------------------------------------------------

    async def get_ticket_raw(self, ticket_id: str) -> dict[str, Any]:
        url = self._api(f"/issue/{quote(ticket_id)}")
        data = await self._get(url, resource_id=ticket_id)
        if not isinstance(data, dict):
            raise MalformedResponseError(url, "issue is not an object")
        return data

    async def search_raw(
        self, query: SearchQuery, extra_fields: Sequence[str] = ()
    ) -> list[dict[str, Any]]:
        jql = build_jql(query)
        fields = list(dict.fromkeys([*SEARCH_FIELDS, *extra_fields]))
        logger.debug("Searching %s with JQL: %s", self.profile.base_url, jql)
        data = await self._search(jql, fields, query)
        return _items(data, "issues")

    async def _search(self, jql: str, fields: list[str], query: SearchQuery) -> Any:
        return await self._post(
            self._api("/search"),
            {
                "jql": jql,
                "startAt": query.start_at,
                "maxResults": query.max_results,
                "fields": fields,
            },
        )

    async def create_raw(
        self,
        ticket: TicketInput,
        description: WireDocument,
        custom_fields: Mapping[str, Any],
    ) -> str:
        fields: dict[str, Any] = {
            "project": {"key": ticket.project_key},
            "summary": ticket.title,
            "issuetype": {"name": ticket.ticket_type or DEFAULT_ISSUE_TYPE},
        }
        if not ticket.description.is_empty:
            fields["description"] = description.content
        if ticket.priority:
            fields["priority"] = {"name": ticket.priority}
        if ticket.assignee:
            fields["assignee"] = self._user_ref(ticket.assignee)
        if ticket.labels:
            fields["labels"] = list(ticket.labels)
        if ticket.due_date:
            fields["duedate"] = ticket.due_date.isoformat()
        if ticket.parent_key:
            fields["parent"] = {"key": ticket.parent_key}
        fields.update(custom_fields)

        url = self._api("/issue")
        created = await self._post(url, {"fields": fields})
        if not isinstance(created, dict) or not created.get("key"):
            raise MalformedResponseError(url, "create response has no issue key")
        key = str(created["key"])
        logger.info("Created Jira issue %s", key)
        return key

    async def update_raw(
        self,
        ticket_id: str,
        changes: TicketUpdate,
        description: WireDocument | None,
        custom_fields: Mapping[str, Any],
    ) -> None:
        fields: dict[str, Any] = {}
        if changes.title is not None:
            fields["summary"] = changes.title
        if changes.description is not None and description is not None:
            fields["description"] = None if changes.description.is_empty else description.content
        if changes.priority is not None:
            fields["priority"] = {"name": changes.priority}
        if changes.assignee is not None:
            fields["assignee"] = self._user_ref(changes.assignee) if changes.assignee else None
        if changes.labels is not None:
            fields["labels"] = list(changes.labels)
        if changes.due_date is not None:
            fields["duedate"] = changes.due_date.isoformat()
        fields.update(custom_fields)

        await self._put(
            self._api(f"/issue/{quote(ticket_id)}"), {"fields": fields}, resource_id=ticket_id
        )
        logger.info("Updated Jira issue %s: %s", ticket_id, ", ".join(sorted(fields)))

    def _user_ref(self, user: str) -> dict[str, str]:
        return {"name": user}

    # ------------------------------------------------------------------
    # Workflow and comments
    # ------------------------------------------------------------------

    async def list_transitions(self, ticket_id: str) -> list[Transition]:
        data = await self._get(
            self._api(f"/issue/{quote(ticket_id)}/transitions"), resource_id=ticket_id
        )
        transitions: list[Transition] = []
        for raw in _items(data, "transitions"):
            target = raw.get("to") if isinstance(raw.get("to"), dict) else {}
            transitions.append(
                Transition(
                    id=str(raw.get("id", "")),
                    name=str(raw.get("name", "")),
                    target_state=str(target.get("name", "")),
                    target_state_id=str(target.get("id", "")),
                )
            )
        return transitions

    async def apply_transition(self, ticket_id: str, transition: Transition) -> None:
        await self._post(
            self._api(f"/issue/{quote(ticket_id)}/transitions"),
            {"transition": {"id": transition.id}},
            resource_id=ticket_id,
        )
        logger.info("Moved %s to %s", ticket_id, transition.target_state or transition.name)

    async def add_comment(self, ticket_id: str, body: WireDocument) -> None:
        await self._post(
            self._api(f"/issue/{quote(ticket_id)}/comment"),
            {"body": body.content},
            resource_id=ticket_id,
        )

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------

    async def list_metadata(
        self,
        kind: MetadataKind,
        project_key: str | None = None,
        board_id: str | None = None,
    ) -> list[MetadataItem]:
        if kind is MetadataKind.PROJECTS:
            return await self._projects()
        if kind is MetadataKind.TICKET_TYPES:
            return await self._issue_types(project_key)
        if kind is MetadataKind.PRIORITIES:
            data = await self._get(self._api("/priority"))
            return [_metadata_item(raw) for raw in _items(data)]
        if kind is MetadataKind.STATUSES:
            return await self._statuses(project_key)
        if kind is MetadataKind.USERS:
            return await self._users(project_key)
        if kind is MetadataKind.BOARDS:
            return await self._boards(project_key)
        if kind is MetadataKind.SPRINTS:
            return await self._sprints(board_id)
        raise self.unsupported(f"list {kind.value}")

    async def _projects(self) -> list[MetadataItem]:
        data = await self._get(self._api("/project"))
        return [
            _metadata_item(raw, key=str(raw.get("key", ""))) for raw in _items(data)
        ]

    async def _issue_types(self, project_key: str | None) -> list[MetadataItem]:
        if project_key:
            project = await self._get(
                self._api(f"/project/{quote(project_key)}"), resource_id=project_key
            )
            raw_types = _items(project, "issueTypes")
        else:
            raw_types = _items(await self._get(self._api("/issuetype")))
        return [_metadata_item(raw, subtask=raw.get("subtask")) for raw in raw_types]

    async def _statuses(self, project_key: str | None) -> list[MetadataItem]:
        if not project_key:
            data = await self._get(self._api("/status"))
            return [self._status_item(raw) for raw in _items(data)]

        data = await self._get(
            self._api(f"/project/{quote(project_key)}/statuses"), resource_id=project_key
        )
        # Statuses are listed per issue type; flatten and keep the first occurrence
        seen: dict[str, MetadataItem] = {}
        for issue_type in _items(data):
            for raw in _items(issue_type, "statuses"):
                item = self._status_item(raw)
                seen.setdefault(item.id, item)
        return list(seen.values())

    @staticmethod
    def _status_item(raw: dict[str, Any]) -> MetadataItem:
        category = raw.get("statusCategory")
        category_key = category.get("key") if isinstance(category, dict) else None
        return _metadata_item(raw, category=category_key)

    async def _users(self, project_key: str | None) -> list[MetadataItem]:
        if not project_key:
            raise ValueError("project_key is required to list Jira users")
        data = await self._get(
            self._api("/user/assignable/search"),
            params=self._user_search_params(project_key),
        )
        return [self._user_item(raw) for raw in _items(data)]

    def _user_search_params(self, project_key: str) -> dict[str, Any]:
        return {"project": project_key, "maxResults": 100}

    def _user_item(self, raw: dict[str, Any]) -> MetadataItem:
        return MetadataItem(
            id=str(raw.get("name") or raw.get("key") or ""),
            name=str(raw.get("displayName", "")),
            extra={"email": raw.get("emailAddress"), "active": raw.get("active")},
        )

    def _require_agile(self) -> None:
        if not self.profile.capabilities.agile_endpoints:
            raise self.unsupported("agile boards and sprints")

    async def _boards(self, project_key: str | None) -> list[MetadataItem]:
        self._require_agile()
        params = {"projectKeyOrId": project_key} if project_key else None
        data = await self._get(self._agile("/board"), params=params)
        return [_metadata_item(raw, type=raw.get("type")) for raw in _items(data)]

    async def _sprints(self, board_id: str | None) -> list[MetadataItem]:
        self._require_agile()
        if not board_id:
            raise ValueError("board_id is required to list sprints")
        data = await self._get(
            self._agile(f"/board/{quote(str(board_id))}/sprint"), resource_id=board_id
        )
        return [
            _metadata_item(
                raw,
                state=raw.get("state"),
                start_date=raw.get("startDate"),
                end_date=raw.get("endDate"),
            )
            for raw in _items(data)
        ]

    # ------------------------------------------------------------------
    # Fields
    # ------------------------------------------------------------------

    async def list_project_fields(self, project_key: str) -> list[BackendField]:
        """List create-screen fields across every issue type of a project.

        Uses the paginated createmeta endpoints; fields keep the order of
        first appearance.
        """
        types_url = self._api(f"/issue/createmeta/{quote(project_key)}/issuetypes")
        types_data = await self._get(types_url, resource_id=project_key)
        issue_types = _items(types_data, "issueTypes") or _items(types_data)

        fields: dict[str, BackendField] = {}
        for issue_type in issue_types:
            type_id = str(issue_type.get("id", ""))
            if not type_id:
                continue
            data = await self._get(f"{types_url}/{quote(type_id)}", resource_id=project_key)
            for raw in _items(data, "fields") or _items(data):
                field_id = str(raw.get("fieldId") or raw.get("key") or "")
                if not field_id or field_id in fields:
                    continue
                schema = raw.get("schema") if isinstance(raw.get("schema"), dict) else {}
                fields[field_id] = BackendField(
                    id=field_id,
                    name=str(raw.get("name", field_id)),
                    schema_type=schema.get("type"),
                )
        logger.debug("Project %s declares %d fields", project_key, len(fields))
        return list(fields.values())

    def well_known_fields(self) -> list[BackendField]:
        return list(self.well_known)


class RestClientV2(JiraRestClient):
    """Jira Server / Data Center, REST API v2."""

    kind = ClientKind.REST_V2
    wire_target = WireKind.PLAIN_TEXT
    api_root = "/rest/api/2"
    # Default ids on a fresh self-managed install with Jira Software
    well_known = (
        BackendField("customfield_10000", "Epic Link", "any"),
        BackendField("customfield_10001", "Sprint", "array"),
        BackendField("customfield_10002", "Story Points", "number"),
    )

    def _user_search_params(self, project_key: str) -> dict[str, Any]:
        # v2 requires a username filter; "." matches every user
        return {"project": project_key, "username": ".", "maxResults": 100}


class RestClientV3(JiraRestClient):
    """Jira Cloud, REST API v3."""

    kind = ClientKind.REST_V3
    wire_target = WireKind.PLAIN_TEXT
    api_root = "/rest/api/3"
    well_known = (
        BackendField("customfield_10014", "Epic Link", "any"),
        BackendField("customfield_10016", "Story Points", "number"),
        BackendField("customfield_10020", "Sprint", "array"),
    )

    async def _search(self, jql: str, fields: list[str], query: SearchQuery) -> Any:
        # The enhanced search endpoint pages by token, not by offset
        if query.start_at:
            logger.warning("start_at is not supported by Jira Cloud search; ignoring it")
        return await self._post(
            self._api("/search/jql"),
            {"jql": jql, "maxResults": query.max_results, "fields": fields},
        )

    async def _projects(self) -> list[MetadataItem]:
        data = await self._get(self._api("/project/search"), params={"maxResults": 100})
        return [
            _metadata_item(raw, key=str(raw.get("key", ""))) for raw in _items(data)
        ]

    def _user_ref(self, user: str) -> dict[str, str]:
        return {"accountId": user}

    def _user_item(self, raw: dict[str, Any]) -> MetadataItem:
        return MetadataItem(
            id=str(raw.get("accountId", "")),
            name=str(raw.get("displayName", "")),
            extra={"email": raw.get("emailAddress"), "active": raw.get("active")},
        )


JIRA_CLIENTS: MappingProxyType[ClientKind, type[JiraRestClient]] = MappingProxyType(
    {ClientKind.REST_V2: RestClientV2, ClientKind.REST_V3: RestClientV3}
)

__all__ = [
    "DEFAULT_ISSUE_TYPE",
    "JIRA_CLIENTS",
    "JiraRestClient",
    "RestClientV2",
    "RestClientV3",
    "SEARCH_FIELDS",
    "build_jql",
    "quote_jql",
]
