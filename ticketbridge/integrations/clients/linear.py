"""Linear GraphQL API client.

Linear API Reference:
    https://developers.linear.app/docs/graphql/working-with-the-graphql-api

Every operation is a POST to the single GraphQL endpoint. The ``issue``
query accepts either the issue UUID or its team-scoped identifier
(``ENG-42``); mutations that take an ``issueId`` are given the UUID.

Linear has no issue types and no boards. Its workflow is per team: an
issue may move to any other state of its team. Cycles are listed as
sprints.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping, Sequence
from types import MappingProxyType
from typing import Any

from ticketbridge.integrations.clients.base import BackendClient
from ticketbridge.integrations.documents import WireDocument, WireKind
from ticketbridge.integrations.errors import (
    MalformedResponseError,
    TicketNotFoundError,
    ValidationError,
)
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

# Linear caps page size at 250
MAX_PAGE_SIZE = 250

# Linear reports unknown ids as a GraphQL error rather than a null issue
ENTITY_NOT_FOUND = "Entity not found"

_UUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE
)

# Linear priority values: 0 = none, 1 = urgent ... 4 = low
PRIORITY_VALUES: MappingProxyType[str, int] = MappingProxyType(
    {
        "no priority": 0,
        "none": 0,
        "urgent": 1,
        "high": 2,
        "medium": 3,
        "normal": 3,
        "low": 4,
    }
)

ISSUE_FIELDS = """
    id
    identifier
    title
    description
    url
    priority
    priorityLabel
    estimate
    dueDate
    createdAt
    updatedAt
    state { id name type }
    assignee { id name email }
    labels { nodes { name } }
    team { id key name }
    cycle { id number name }
    parent { id identifier }
"""

ISSUE_QUERY = f"""
query GetIssue($id: String!) {{
  issue(id: $id) {{{ISSUE_FIELDS}  }}
}}
"""

SEARCH_QUERY = f"""
query SearchIssues($filter: IssueFilter, $first: Int!) {{
  issues(filter: $filter, first: $first, orderBy: updatedAt) {{
    nodes {{{ISSUE_FIELDS}    }}
  }}
}}
"""

ISSUE_STATES_QUERY = """
query IssueStates($id: String!) {
  issue(id: $id) {
    id
    state { id name }
    team { states { nodes { id name type position } } }
  }
}
"""

ISSUE_ID_QUERY = """
query IssueId($id: String!) {
  issue(id: $id) { id }
}
"""

TEAM_BY_KEY_QUERY = """
query TeamByKey($key: String!) {
  teams(filter: { key: { eq: $key } }) { nodes { id key name } }
}
"""

USER_LOOKUP_QUERY = """
query FindUser($value: String!) {
  users(filter: { or: [{ email: { eq: $value } }, { displayName: { eq: $value } }] }) {
    nodes { id }
  }
}
"""

LABEL_LOOKUP_QUERY = """
query FindLabels($names: [String!]) {
  issueLabels(filter: { name: { in: $names } }) { nodes { id name } }
}
"""

CREATE_MUTATION = """
mutation CreateIssue($input: IssueCreateInput!) {
  issueCreate(input: $input) {
    success
    issue { id identifier }
  }
}
"""

UPDATE_MUTATION = """
mutation UpdateIssue($id: String!, $input: IssueUpdateInput!) {
  issueUpdate(id: $id, input: $input) { success }
}
"""

UPDATE_STATE_MUTATION = """
mutation MoveIssue($id: String!, $stateId: String!) {
  issueUpdate(id: $id, input: { stateId: $stateId }) { success }
}
"""

COMMENT_MUTATION = """
mutation AddComment($issueId: String!, $body: String!) {
  commentCreate(input: { issueId: $issueId, body: $body }) { success }
}
"""

TEAMS_QUERY = """
query Teams { teams(first: 100) { nodes { id key name } } }
"""

PROJECTS_QUERY = """
query Projects { projects(first: 100) { nodes { id name state } } }
"""

USERS_QUERY = """
query Users { users(first: 100) { nodes { id name displayName email active } } }
"""

PRIORITIES_QUERY = """
query Priorities { issuePriorityValues { priority label } }
"""

STATES_QUERY = """
query States($filter: WorkflowStateFilter) {
  workflowStates(filter: $filter, first: 100) { nodes { id name type position } }
}
"""

CYCLES_QUERY = """
query Cycles($filter: CycleFilter) {
  cycles(filter: $filter, first: 50) { nodes { id number name startsAt endsAt } }
}
"""


def is_uuid(value: str) -> bool:
    return bool(_UUID_PATTERN.match(value))


def build_issue_filter(query: SearchQuery) -> dict[str, Any]:
    """Translate a SearchQuery into a Linear ``IssueFilter``."""
    issue_filter: dict[str, Any] = {}
    if query.project_keys:
        issue_filter["team"] = {"key": {"in": list(query.project_keys)}}
    if query.statuses:
        issue_filter["state"] = {"name": {"in": list(query.statuses)}}
    if query.assignee:
        if query.assignee.strip().lower() == "me":
            issue_filter["assignee"] = {"isMe": {"eq": True}}
        else:
            issue_filter["assignee"] = {
                "or": [
                    {"email": {"eq": query.assignee}},
                    {"displayName": {"eq": query.assignee}},
                ]
            }
    if query.labels:
        issue_filter["labels"] = {"some": {"name": {"in": list(query.labels)}}}
    if query.text:
        issue_filter["or"] = [
            {"title": {"containsIgnoreCase": query.text}},
            {"description": {"containsIgnoreCase": query.text}},
        ]
    if query.ticket_types:
        logger.debug("Linear has no issue types; ignoring ticket_types filter")
    return issue_filter


def _nodes(data: Mapping[str, Any], key: str) -> list[dict[str, Any]]:
    container = data.get(key)
    if not isinstance(container, dict):
        return []
    nodes = container.get("nodes")
    if not isinstance(nodes, list):
        return []
    return [node for node in nodes if isinstance(node, dict)]


class LinearGraphClient(BackendClient):
    """Client for the Linear GraphQL API."""

    kind = ClientKind.GRAPH
    wire_target = WireKind.MARKDOWN

    @property
    def api_url(self) -> str:
        return self.profile.base_url

    async def _query(
        self, query: str, variables: Mapping[str, Any] | None = None
    ) -> dict[str, Any]:
        return await self.transport.graphql(
            self.api_url, query, variables, auth=self.profile.negotiated_auth
        )

    # ------------------------------------------------------------------
    # Tickets
    # ------------------------------------------------------------------

    async def get_ticket_raw(self, ticket_id: str) -> dict[str, Any]:
        return await self._issue_query(ISSUE_QUERY, ticket_id)

    async def _issue_query(self, query: str, ticket_id: str) -> dict[str, Any]:
        try:
            data = await self._query(query, {"id": ticket_id})
        except ValidationError as e:
            if any(ENTITY_NOT_FOUND in detail for detail in e.details):
                raise TicketNotFoundError(ticket_id) from e
            raise
        return self._extract_issue(data, ticket_id)

    @staticmethod
    def _extract_issue(data: dict[str, Any], ticket_id: str) -> dict[str, Any]:
        issue = data.get("issue")
        if issue is None:
            raise TicketNotFoundError(ticket_id)
        result: dict[str, Any] = issue
        return result

    async def search_raw(
        self, query: SearchQuery, extra_fields: Sequence[str] = ()
    ) -> list[dict[str, Any]]:
        # Linear pages by cursor; an offset is emulated within one page
        first = min(query.start_at + query.max_results, MAX_PAGE_SIZE)
        if query.start_at + query.max_results > MAX_PAGE_SIZE:
            logger.warning("Linear search is limited to the first %d issues", MAX_PAGE_SIZE)
        variables: dict[str, Any] = {"first": first}
        issue_filter = build_issue_filter(query)
        if issue_filter:
            variables["filter"] = issue_filter
        data = await self._query(SEARCH_QUERY, variables)
        return _nodes(data, "issues")[query.start_at : query.start_at + query.max_results]

    async def create_raw(
        self,
        ticket: TicketInput,
        description: WireDocument,
        custom_fields: Mapping[str, Any],
    ) -> str:
        issue_input: dict[str, Any] = {
            "teamId": await self._team_id(ticket.project_key),
            "title": ticket.title,
        }
        if not ticket.description.is_empty:
            issue_input["description"] = description.content
        if ticket.priority:
            issue_input["priority"] = self._priority_value(ticket.priority)
        if ticket.assignee:
            issue_input["assigneeId"] = await self._user_id(ticket.assignee)
        if ticket.labels:
            issue_input["labelIds"] = await self._label_ids(ticket.labels)
        if ticket.due_date:
            issue_input["dueDate"] = ticket.due_date.isoformat()
        if ticket.parent_key:
            issue_input["parentId"] = await self._issue_id(ticket.parent_key)
        if ticket.ticket_type:
            logger.debug("Linear has no issue types; ignoring %r", ticket.ticket_type)

        await self._apply_custom_fields(issue_input, custom_fields)

        data = await self._query(CREATE_MUTATION, {"input": issue_input})
        result = data.get("issueCreate") or {}
        issue = result.get("issue") if isinstance(result, dict) else None
        if not isinstance(issue, dict) or not issue.get("identifier"):
            raise MalformedResponseError(self.api_url, "issueCreate returned no issue")
        identifier = str(issue["identifier"])
        logger.info("Created Linear issue %s", identifier)
        return identifier

    async def update_raw(
        self,
        ticket_id: str,
        changes: TicketUpdate,
        description: WireDocument | None,
        custom_fields: Mapping[str, Any],
    ) -> None:
        issue_id = await self._issue_id(ticket_id)
        issue_input: dict[str, Any] = {}
        if changes.title is not None:
            issue_input["title"] = changes.title
        if description is not None:
            issue_input["description"] = description.content
        if changes.priority is not None:
            issue_input["priority"] = self._priority_value(changes.priority)
        if changes.assignee is not None:
            issue_input["assigneeId"] = (
                await self._user_id(changes.assignee) if changes.assignee else None
            )
        if changes.labels is not None:
            issue_input["labelIds"] = (
                await self._label_ids(changes.labels) if changes.labels else []
            )
        if changes.due_date is not None:
            issue_input["dueDate"] = changes.due_date.isoformat()
        await self._apply_custom_fields(issue_input, custom_fields)

        data = await self._query(UPDATE_MUTATION, {"id": issue_id, "input": issue_input})
        self._require_success(data, "issueUpdate")
        logger.info("Updated Linear issue %s: %s", ticket_id, ", ".join(sorted(issue_input)))

    async def _apply_custom_fields(
        self, issue_input: dict[str, Any], custom_fields: Mapping[str, Any]
    ) -> None:
        for field_id, value in custom_fields.items():
            if field_id == "parentId" and isinstance(value, str):
                value = await self._issue_id(value)
            issue_input[field_id] = value

    @staticmethod
    def _priority_value(priority: str) -> int:
        if priority.isdigit() and int(priority) in PRIORITY_VALUES.values():
            return int(priority)
        try:
            return PRIORITY_VALUES[priority.strip().lower()]
        except KeyError:
            raise ValidationError(
                400, [f"Unknown Linear priority '{priority}'"]
            ) from None

    async def _team_id(self, team_key: str) -> str:
        data = await self._query(TEAM_BY_KEY_QUERY, {"key": team_key})
        teams = _nodes(data, "teams")
        if not teams:
            raise ValidationError(400, [f"Unknown Linear team '{team_key}'"])
        return str(teams[0]["id"])

    async def _user_id(self, user: str) -> str:
        if is_uuid(user):
            return user
        users = _nodes(await self._query(USER_LOOKUP_QUERY, {"value": user}), "users")
        if not users:
            raise ValidationError(400, [f"Unknown Linear user '{user}'"])
        return str(users[0]["id"])

    async def _label_ids(self, names: Sequence[str]) -> list[str]:
        data = await self._query(LABEL_LOOKUP_QUERY, {"names": list(names)})
        found = {str(node.get("name")): str(node.get("id")) for node in _nodes(data, "issueLabels")}
        missing = [name for name in names if name not in found]
        if missing:
            raise ValidationError(400, [f"Unknown Linear labels: {', '.join(missing)}"])
        return [found[name] for name in names]

    async def _issue_id(self, ticket_id: str) -> str:
        """Resolve an identifier such as ``ENG-42`` to the issue UUID."""
        if is_uuid(ticket_id):
            return ticket_id
        issue = await self._issue_query(ISSUE_ID_QUERY, ticket_id)
        return str(issue["id"])

    # ------------------------------------------------------------------
    # Workflow and comments
    # ------------------------------------------------------------------

    async def list_transitions(self, ticket_id: str) -> list[Transition]:
        issue = await self._issue_query(ISSUE_STATES_QUERY, ticket_id)
        current = issue.get("state") or {}
        team = issue.get("team") or {}
        states = sorted(
            _nodes(team, "states"), key=lambda state: float(state.get("position") or 0)
        )
        return [
            Transition(
                id=str(state["id"]),
                name=str(state.get("name", "")),
                target_state=str(state.get("name", "")),
                target_state_id=str(state["id"]),
            )
            for state in states
            if state.get("id") and state.get("id") != current.get("id")
        ]

    async def apply_transition(self, ticket_id: str, transition: Transition) -> None:
        issue_id = await self._issue_id(ticket_id)
        data = await self._query(
            UPDATE_STATE_MUTATION, {"id": issue_id, "stateId": transition.target_state_id}
        )
        self._require_success(data, "issueUpdate")
        logger.info("Moved %s to %s", ticket_id, transition.target_state)

    async def add_comment(self, ticket_id: str, body: WireDocument) -> None:
        issue_id = await self._issue_id(ticket_id)
        data = await self._query(COMMENT_MUTATION, {"issueId": issue_id, "body": body.content})
        self._require_success(data, "commentCreate")

    def _require_success(self, data: dict[str, Any], mutation: str) -> None:
        result = data.get(mutation)
        if not isinstance(result, dict) or not result.get("success"):
            raise ValidationError(200, [f"{mutation} did not succeed"])

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------

    async def list_metadata(
        self,
        kind: MetadataKind,
        project_key: str | None = None,
        board_id: str | None = None,
    ) -> list[MetadataItem]:
        if kind is MetadataKind.TEAMS:
            data = await self._query(TEAMS_QUERY)
            return [
                MetadataItem(
                    id=str(n["id"]), name=str(n.get("name", "")), key=str(n.get("key", ""))
                )
                for n in _nodes(data, "teams")
            ]
        if kind is MetadataKind.PROJECTS:
            data = await self._query(PROJECTS_QUERY)
            return [
                MetadataItem(
                    id=str(n["id"]), name=str(n.get("name", "")), extra={"state": n.get("state")}
                )
                for n in _nodes(data, "projects")
            ]
        if kind is MetadataKind.USERS:
            data = await self._query(USERS_QUERY)
            return [
                MetadataItem(
                    id=str(n["id"]),
                    name=str(n.get("displayName") or n.get("name") or ""),
                    extra={"email": n.get("email"), "active": n.get("active")},
                )
                for n in _nodes(data, "users")
            ]
        if kind is MetadataKind.PRIORITIES:
            data = await self._query(PRIORITIES_QUERY)
            values = data.get("issuePriorityValues") or []
            return [
                MetadataItem(id=str(v.get("priority")), name=str(v.get("label", "")))
                for v in values
                if isinstance(v, dict)
            ]
        if kind is MetadataKind.STATUSES:
            data = await self._query(STATES_QUERY, self._team_filter(project_key))
            return [
                MetadataItem(
                    id=str(n["id"]), name=str(n.get("name", "")), extra={"type": n.get("type")}
                )
                for n in _nodes(data, "workflowStates")
            ]
        if kind is MetadataKind.SPRINTS:
            data = await self._query(CYCLES_QUERY, self._team_filter(project_key))
            return [
                MetadataItem(
                    id=str(n["id"]),
                    name=str(n.get("name") or f"Cycle {n.get('number')}"),
                    extra={"starts_at": n.get("startsAt"), "ends_at": n.get("endsAt")},
                )
                for n in _nodes(data, "cycles")
            ]
        raise self.unsupported(f"list {kind.value}")

    @staticmethod
    def _team_filter(team_key: str | None) -> dict[str, Any] | None:
        if not team_key:
            return None
        return {"filter": {"team": {"key": {"eq": team_key}}}}

    # ------------------------------------------------------------------
    # Fields
    # ------------------------------------------------------------------

    async def list_project_fields(self, project_key: str) -> list[BackendField]:
        # Linear's issue schema is fixed; there is nothing per team to discover
        return self.well_known_fields()

    def well_known_fields(self) -> list[BackendField]:
        return [
            BackendField("estimate", "Estimate", "number"),
            BackendField("cycleId", "Cycle", "sprint"),
            BackendField("parentId", "Parent Issue", "issuelink"),
        ]


__all__ = [
    "LinearGraphClient",
    "PRIORITY_VALUES",
    "build_issue_filter",
    "is_uuid",
]
