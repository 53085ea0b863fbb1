"""Tests for ticketbridge.integrations.clients.linear module.

Tests cover:
- IssueFilter construction
- Issue lookup by identifier, missing issues
- Search paging emulation
- issueCreate input resolution (team, user, labels, priority, parent)
- issueUpdate input, unassigning and clearing labels
- Workflow states as transitions, comments
- Metadata lists and fixed field set
"""

import logging

import httpx
import pytest

from ticketbridge.integrations.clients.linear import (
    MAX_PAGE_SIZE,
    LinearGraphClient,
    build_issue_filter,
    is_uuid,
)
from ticketbridge.integrations.credentials import CredentialSet
from ticketbridge.integrations.documents import Document, WireDocument, WireKind
from ticketbridge.integrations.errors import (
    MalformedResponseError,
    TicketNotFoundError,
    UnsupportedOperationError,
    ValidationError,
)
from ticketbridge.integrations.models import (
    MetadataKind,
    SearchQuery,
    TicketInput,
    TicketUpdate,
    Transition,
)

ISSUE_UUID = "0f8e6c55-6a4d-4c51-9a47-5d8a1e2b3c4d"
USER_UUID = "9b2c1d3e-4f5a-4b6c-8d7e-0a1b2c3d4e5f"


def markdown(text):
    return WireDocument(WireKind.MARKDOWN, text)


def graphql_error(message, code="INVALID_INPUT"):
    return httpx.Response(
        200, json={"data": None, "errors": [{"message": message, "extensions": {"code": code}}]}
    )


@pytest.fixture
def client(make_transport, linear_profile):
    return LinearGraphClient(make_transport(CredentialSet.of(api_key="lin_api_1")), linear_profile)


class TestBuildIssueFilter:
    """Tests for build_issue_filter."""

    def test_empty_query(self):
        assert build_issue_filter(SearchQuery()) == {}

    def test_filters(self):
        query = SearchQuery(
            project_keys=("ENG",), statuses=("Todo",), assignee="me", labels=("bug",), text="crash"
        )

        issue_filter = build_issue_filter(query)

        assert issue_filter["team"] == {"key": {"in": ["ENG"]}}
        assert issue_filter["state"] == {"name": {"in": ["Todo"]}}
        assert issue_filter["assignee"] == {"isMe": {"eq": True}}
        assert issue_filter["labels"] == {"some": {"name": {"in": ["bug"]}}}
        assert issue_filter["or"][0] == {"title": {"containsIgnoreCase": "crash"}}

    def test_named_assignee(self):
        issue_filter = build_issue_filter(SearchQuery(assignee="bob@example.com"))
        assert {"email": {"eq": "bob@example.com"}} in issue_filter["assignee"]["or"]

    def test_ticket_types_are_ignored(self):
        assert build_issue_filter(SearchQuery(ticket_types=("Bug",))) == {}


def test_is_uuid():
    assert is_uuid(ISSUE_UUID)
    assert not is_uuid("ENG-42")


# =============================================================================
# Tickets
# =============================================================================


class TestTickets:
    """Tests for get, search and create."""

    @pytest.mark.asyncio
    async def test_get_by_identifier(self, fake_backend, client):
        fake_backend.add_graphql("GetIssue", {"issue": {"id": ISSUE_UUID, "identifier": "ENG-42"}})

        raw = await client.get_ticket_raw("ENG-42")

        request = fake_backend.requests[0]
        assert raw["identifier"] == "ENG-42"
        assert fake_backend.variables(request) == {"id": "ENG-42"}
        assert request.headers["Authorization"] == "lin_api_1"
        assert request.url.host == "api.linear.app"

    @pytest.mark.asyncio
    async def test_null_issue_is_not_found(self, fake_backend, client):
        fake_backend.add_graphql("GetIssue", {"issue": None})

        with pytest.raises(TicketNotFoundError):
            await client.get_ticket_raw("ENG-404")

    @pytest.mark.asyncio
    async def test_entity_not_found_error(self, fake_backend, client):
        fake_backend.add("GRAPHQL", "GetIssue", graphql_error("Entity not found: Issue"))

        with pytest.raises(TicketNotFoundError) as exc_info:
            await client.get_ticket_raw("ENG-404")

        assert exc_info.value.ticket_id == "ENG-404"

    @pytest.mark.asyncio
    async def test_other_graphql_errors_propagate(self, fake_backend, client):
        fake_backend.add("GRAPHQL", "GetIssue", graphql_error("Argument invalid"))

        with pytest.raises(ValidationError, match="Argument invalid"):
            await client.get_ticket_raw("ENG-1")

    @pytest.mark.asyncio
    async def test_search_emulates_offset(self, fake_backend, client):
        nodes = [{"identifier": f"ENG-{n}"} for n in range(6)]
        fake_backend.add_graphql("SearchIssues", {"issues": {"nodes": nodes}})

        query = SearchQuery(project_keys=("ENG",), max_results=2, start_at=3)

        issues = await client.search_raw(query)

        variables = fake_backend.variables(fake_backend.requests[0])
        assert [i["identifier"] for i in issues] == ["ENG-3", "ENG-4"]
        assert variables["first"] == 5
        assert variables["filter"] == {"team": {"key": {"in": ["ENG"]}}}

    @pytest.mark.asyncio
    async def test_search_window_is_capped(self, fake_backend, client, caplog):
        fake_backend.add_graphql("SearchIssues", {"issues": {"nodes": []}})

        with caplog.at_level(logging.WARNING):
            await client.search_raw(SearchQuery(max_results=200, start_at=100))

        variables = fake_backend.variables(fake_backend.requests[0])
        assert variables["first"] == MAX_PAGE_SIZE
        assert "filter" not in variables
        assert "limited to the first 250" in caplog.text

    @pytest.mark.asyncio
    async def test_create_resolves_references(self, fake_backend, client):
        fake_backend.add_graphql("TeamByKey", {"teams": {"nodes": [{"id": "team-1"}]}})
        fake_backend.add_graphql("FindUser", {"users": {"nodes": [{"id": USER_UUID}]}})
        fake_backend.add_graphql(
            "FindLabels",
            {"issueLabels": {"nodes": [{"id": "l-2", "name": "ui"}, {"id": "l-1", "name": "bug"}]}},
        )
        fake_backend.add_graphql("IssueId", {"issue": {"id": ISSUE_UUID}})
        fake_backend.add_graphql(
            "CreateIssue",
            {"issueCreate": {"success": True, "issue": {"id": "new", "identifier": "ENG-43"}}},
        )
        ticket = TicketInput(
            project_key="ENG",
            title="Crash on save",
            description=Document.from_text("Steps"),
            priority="High",
            assignee="bob@example.com",
            labels=("bug", "ui"),
            parent_key="ENG-42",
        )

        identifier = await client.create_raw(ticket, markdown("Steps"), {"estimate": 3})

        create = fake_backend.requests_to("GRAPHQL", "CreateIssue")[0]
        assert identifier == "ENG-43"
        assert fake_backend.variables(create)["input"] == {
            "teamId": "team-1",
            "title": "Crash on save",
            "description": "Steps",
            "priority": 2,
            "assigneeId": USER_UUID,
            "labelIds": ["l-1", "l-2"],
            "parentId": ISSUE_UUID,
            "estimate": 3,
        }

    @pytest.mark.asyncio
    async def test_create_with_uuid_assignee_skips_lookup(self, fake_backend, client):
        fake_backend.add_graphql("TeamByKey", {"teams": {"nodes": [{"id": "team-1"}]}})
        fake_backend.add_graphql(
            "CreateIssue", {"issueCreate": {"success": True, "issue": {"identifier": "ENG-1"}}}
        )

        await client.create_raw(TicketInput("ENG", "T", assignee=USER_UUID), markdown(""), {})

        assert fake_backend.requests_to("GRAPHQL", "FindUser") == []
        create = fake_backend.requests_to("GRAPHQL", "CreateIssue")[0]
        assert "description" not in fake_backend.variables(create)["input"]

    @pytest.mark.asyncio
    async def test_unknown_team(self, fake_backend, client):
        fake_backend.add_graphql("TeamByKey", {"teams": {"nodes": []}})

        with pytest.raises(ValidationError, match="Unknown Linear team 'NOPE'"):
            await client.create_raw(TicketInput("NOPE", "T"), markdown(""), {})

    @pytest.mark.asyncio
    async def test_unknown_labels(self, fake_backend, client):
        fake_backend.add_graphql("TeamByKey", {"teams": {"nodes": [{"id": "team-1"}]}})
        fake_backend.add_graphql("FindLabels", {"issueLabels": {"nodes": []}})

        with pytest.raises(ValidationError, match="Unknown Linear labels: bug"):
            await client.create_raw(TicketInput("ENG", "T", labels=("bug",)), markdown(""), {})

    @pytest.mark.asyncio
    async def test_unknown_priority(self, fake_backend, client):
        fake_backend.add_graphql("TeamByKey", {"teams": {"nodes": [{"id": "team-1"}]}})

        with pytest.raises(ValidationError, match="Unknown Linear priority"):
            await client.create_raw(TicketInput("ENG", "T", priority="Blocker"), markdown(""), {})

    @pytest.mark.asyncio
    async def test_create_without_issue(self, fake_backend, client):
        fake_backend.add_graphql("TeamByKey", {"teams": {"nodes": [{"id": "team-1"}]}})
        fake_backend.add_graphql("CreateIssue", {"issueCreate": {"success": False}})

        with pytest.raises(MalformedResponseError):
            await client.create_raw(TicketInput("ENG", "T"), markdown(""), {})

    @pytest.mark.asyncio
    async def test_update_resolves_references(self, fake_backend, client):
        fake_backend.add_graphql("IssueId", {"issue": {"id": ISSUE_UUID}})
        fake_backend.add_graphql("FindUser", {"users": {"nodes": [{"id": USER_UUID}]}})
        fake_backend.add_graphql(
            "FindLabels", {"issueLabels": {"nodes": [{"id": "l-1", "name": "bug"}]}}
        )
        fake_backend.add_graphql("UpdateIssue", {"issueUpdate": {"success": True}})
        changes = TicketUpdate(
            title="Crash on save",
            description=Document.from_text("Steps"),
            priority="Low",
            assignee="bob@example.com",
            labels=("bug",),
        )

        await client.update_raw("ENG-42", changes, markdown("Steps"), {"estimate": 5})

        update = fake_backend.requests_to("GRAPHQL", "UpdateIssue")[0]
        assert fake_backend.variables(update) == {
            "id": ISSUE_UUID,
            "input": {
                "title": "Crash on save",
                "description": "Steps",
                "priority": 4,
                "assigneeId": USER_UUID,
                "labelIds": ["l-1"],
                "estimate": 5,
            },
        }

    @pytest.mark.asyncio
    async def test_update_can_unassign_and_clear_labels(self, fake_backend, client):
        fake_backend.add_graphql("UpdateIssue", {"issueUpdate": {"success": True}})

        await client.update_raw(ISSUE_UUID, TicketUpdate(assignee="", labels=()), None, {})

        update = fake_backend.requests_to("GRAPHQL", "UpdateIssue")[0]
        assert fake_backend.variables(update)["input"] == {"assigneeId": None, "labelIds": []}
        assert fake_backend.requests_to("GRAPHQL", "IssueId") == []
        assert fake_backend.requests_to("GRAPHQL", "FindLabels") == []

    @pytest.mark.asyncio
    async def test_failed_update(self, fake_backend, client):
        fake_backend.add_graphql("UpdateIssue", {"issueUpdate": {"success": False}})

        with pytest.raises(ValidationError, match="issueUpdate did not succeed"):
            await client.update_raw(ISSUE_UUID, TicketUpdate(title="T"), None, {})


# =============================================================================
# Workflow and comments
# =============================================================================


class TestWorkflow:
    """Tests for workflow states and comments."""

    @pytest.mark.asyncio
    async def test_transitions_are_other_team_states(self, fake_backend, client):
        states = [
            {"id": "s-done", "name": "Done", "position": 3},
            {"id": "s-todo", "name": "Todo", "position": 1},
            {"id": "s-prog", "name": "In Progress", "position": 2},
        ]
        fake_backend.add_graphql(
            "IssueStates",
            {
                "issue": {
                    "id": ISSUE_UUID,
                    "state": {"id": "s-todo", "name": "Todo"},
                    "team": {"states": {"nodes": states}},
                }
            },
        )

        transitions = await client.list_transitions("ENG-42")

        assert [t.target_state for t in transitions] == ["In Progress", "Done"]
        assert transitions[0].target_state_id == "s-prog"

    @pytest.mark.asyncio
    async def test_apply_transition_uses_uuid(self, fake_backend, client):
        fake_backend.add_graphql("IssueId", {"issue": {"id": ISSUE_UUID}})
        fake_backend.add_graphql("MoveIssue", {"issueUpdate": {"success": True}})

        await client.apply_transition("ENG-42", Transition("s-done", "Done", "Done", "s-done"))

        move = fake_backend.requests_to("GRAPHQL", "MoveIssue")[0]
        assert fake_backend.variables(move) == {"id": ISSUE_UUID, "stateId": "s-done"}

    @pytest.mark.asyncio
    async def test_failed_mutation(self, fake_backend, client):
        fake_backend.add_graphql("MoveIssue", {"issueUpdate": {"success": False}})

        with pytest.raises(ValidationError, match="issueUpdate did not succeed"):
            await client.apply_transition(ISSUE_UUID, Transition("s", "Done", "Done", "s"))

        assert fake_backend.requests_to("GRAPHQL", "IssueId") == []

    @pytest.mark.asyncio
    async def test_add_comment(self, fake_backend, client):
        fake_backend.add_graphql("IssueId", {"issue": {"id": ISSUE_UUID}})
        fake_backend.add_graphql("AddComment", {"commentCreate": {"success": True}})

        await client.add_comment("ENG-42", markdown("**done**"))

        comment = fake_backend.requests_to("GRAPHQL", "AddComment")[0]
        assert fake_backend.variables(comment) == {"issueId": ISSUE_UUID, "body": "**done**"}

    @pytest.mark.asyncio
    async def test_comment_on_missing_issue(self, fake_backend, client):
        fake_backend.add("GRAPHQL", "IssueId", graphql_error("Entity not found: Issue"))

        with pytest.raises(TicketNotFoundError):
            await client.add_comment("ENG-404", markdown("hi"))


# =============================================================================
# Metadata and fields
# =============================================================================


class TestMetadata:
    """Tests for list_metadata and fields."""

    @pytest.mark.asyncio
    async def test_teams(self, fake_backend, client):
        team = {"id": "t", "key": "ENG", "name": "Eng"}
        fake_backend.add_graphql("Teams", {"teams": {"nodes": [team]}})

        items = await client.list_metadata(MetadataKind.TEAMS)

        assert [(i.id, i.key, i.name) for i in items] == [("t", "ENG", "Eng")]

    @pytest.mark.asyncio
    async def test_priorities(self, fake_backend, client):
        fake_backend.add_graphql(
            "Priorities",
            {
                "issuePriorityValues": [
                    {"priority": 0, "label": "No priority"},
                    {"priority": 1, "label": "Urgent"},
                ]
            },
        )

        items = await client.list_metadata(MetadataKind.PRIORITIES)

        assert [(i.id, i.name) for i in items] == [("0", "No priority"), ("1", "Urgent")]

    @pytest.mark.asyncio
    async def test_statuses_filtered_by_team(self, fake_backend, client):
        fake_backend.add_graphql(
            "States",
            {"workflowStates": {"nodes": [{"id": "s", "name": "Todo", "type": "unstarted"}]}},
        )

        items = await client.list_metadata(MetadataKind.STATUSES, project_key="ENG")

        variables = fake_backend.variables(fake_backend.requests[0])
        assert variables == {"filter": {"team": {"key": {"eq": "ENG"}}}}
        assert items[0].extra["type"] == "unstarted"

    @pytest.mark.asyncio
    async def test_cycles_are_sprints(self, fake_backend, client):
        fake_backend.add_graphql(
            "Cycles", {"cycles": {"nodes": [{"id": "c1", "number": 7, "name": None}]}}
        )

        items = await client.list_metadata(MetadataKind.SPRINTS)

        assert items[0].name == "Cycle 7"
        assert "variables" not in fake_backend.json_body(fake_backend.requests[0])

    @pytest.mark.asyncio
    @pytest.mark.parametrize("kind", [MetadataKind.BOARDS, MetadataKind.TICKET_TYPES])
    async def test_unsupported_lists(self, fake_backend, client, kind):
        with pytest.raises(UnsupportedOperationError):
            await client.list_metadata(kind)
        assert fake_backend.requests == []

    @pytest.mark.asyncio
    async def test_fields_are_fixed(self, fake_backend, client):
        fields = await client.list_project_fields("ENG")

        assert [f.id for f in fields] == ["estimate", "cycleId", "parentId"]
        assert fake_backend.requests == []
