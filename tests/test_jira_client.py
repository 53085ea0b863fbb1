"""Tests for ticketbridge.integrations.clients.jira module.

Tests cover:
- JQL construction and quoting
- REST v2 and v3 request shapes (search, create, transitions, comments)
- Metadata listing including agile endpoints
- Create-screen field introspection and well-known fallbacks
"""

import dataclasses
import logging
from datetime import date

import httpx
import pytest

from ticketbridge.integrations.clients.jira import (
    JIRA_CLIENTS,
    SEARCH_FIELDS,
    RestClientV2,
    RestClientV3,
    build_jql,
    quote_jql,
)
from ticketbridge.integrations.documents import Document, WireDocument, WireKind
from ticketbridge.integrations.errors import (
    MalformedResponseError,
    TicketNotFoundError,
    UnsupportedOperationError,
)
from ticketbridge.integrations.models import (
    ClientKind,
    MetadataKind,
    SearchQuery,
    TicketInput,
    TicketUpdate,
    Transition,
)


def plain(text):
    return WireDocument(WireKind.PLAIN_TEXT, text)


@pytest.fixture
def v2_client(make_transport, basic_credentials, jira_server_profile):
    return RestClientV2(make_transport(basic_credentials), jira_server_profile)


@pytest.fixture
def v3_client(make_transport, basic_credentials, jira_cloud_profile):
    return RestClientV3(make_transport(basic_credentials), jira_cloud_profile)


# =============================================================================
# JQL
# =============================================================================


class TestBuildJql:
    """Tests for build_jql and quote_jql."""

    def test_empty_query_is_bounded(self):
        assert build_jql(SearchQuery()) == "project IS NOT EMPTY ORDER BY updated DESC"

    def test_all_filters(self):
        query = SearchQuery(
            project_keys=("A", "B"),
            ticket_types=("Bug",),
            statuses=("To Do",),
            assignee="me",
            labels=("backend",),
            text="login",
        )

        assert build_jql(query) == (
            'project in ("A", "B") AND issuetype in ("Bug") AND status in ("To Do") '
            'AND assignee = currentUser() AND labels in ("backend") AND text ~ "login" '
            "ORDER BY updated DESC"
        )

    def test_named_assignee_is_quoted(self):
        jql = build_jql(SearchQuery(assignee="bob"))
        assert jql.startswith('assignee = "bob"')

    def test_quote_escapes(self):
        assert quote_jql('say "hi"') == '"say \\"hi\\""'
        assert quote_jql("back\\slash") == '"back\\\\slash"'


def test_client_registry():
    assert JIRA_CLIENTS[ClientKind.REST_V2] is RestClientV2
    assert JIRA_CLIENTS[ClientKind.REST_V3] is RestClientV3


# =============================================================================
# Tickets
# =============================================================================


class TestTickets:
    """Tests for fetching, searching and creating issues."""

    @pytest.mark.asyncio
    async def test_get_ticket(self, fake_backend, v2_client):
        fake_backend.add_json("GET", "/rest/api/2/issue/PROJ-1", {"key": "PROJ-1", "fields": {}})

        raw = await v2_client.get_ticket_raw("PROJ-1")

        assert raw["key"] == "PROJ-1"
        assert fake_backend.requests[0].url.host == "jira.example.com"

    @pytest.mark.asyncio
    async def test_get_missing_ticket(self, fake_backend, v2_client):
        with pytest.raises(TicketNotFoundError) as exc_info:
            await v2_client.get_ticket_raw("PROJ-404")

        assert exc_info.value.ticket_id == "PROJ-404"

    @pytest.mark.asyncio
    async def test_get_ticket_must_be_object(self, fake_backend, v2_client):
        fake_backend.add_json("GET", "/rest/api/2/issue/PROJ-1", ["not", "an", "issue"])

        with pytest.raises(MalformedResponseError):
            await v2_client.get_ticket_raw("PROJ-1")

    @pytest.mark.asyncio
    async def test_v2_search(self, fake_backend, v2_client):
        fake_backend.add_json("POST", "/rest/api/2/search", {"issues": [{"key": "PROJ-1"}]})
        query = SearchQuery(project_keys=("PROJ",), max_results=10, start_at=20)

        issues = await v2_client.search_raw(query, extra_fields=["customfield_10002", "summary"])

        body = fake_backend.json_body(fake_backend.requests[0])
        assert issues == [{"key": "PROJ-1"}]
        assert body["jql"] == 'project in ("PROJ") ORDER BY updated DESC'
        assert body["startAt"] == 20
        assert body["maxResults"] == 10
        assert body["fields"] == [*SEARCH_FIELDS, "customfield_10002"]

    @pytest.mark.asyncio
    async def test_v3_search_uses_enhanced_endpoint(self, fake_backend, v3_client, caplog):
        fake_backend.add_json("POST", "/rest/api/3/search/jql", {"issues": []})

        with caplog.at_level(logging.WARNING):
            issues = await v3_client.search_raw(SearchQuery(start_at=5))

        body = fake_backend.json_body(fake_backend.requests[0])
        assert issues == []
        assert "startAt" not in body
        assert "start_at is not supported" in caplog.text

    @pytest.mark.asyncio
    async def test_v2_create(self, fake_backend, v2_client):
        fake_backend.add_json("POST", "/rest/api/2/issue", {"id": "10", "key": "PROJ-2"})
        ticket = TicketInput(
            project_key="PROJ",
            title="Fix login",
            description=Document.from_text("Body"),
            priority="High",
            assignee="alice",
            labels=("auth",),
            due_date=date(2024, 5, 1),
            parent_key="PROJ-0",
        )

        key = await v2_client.create_raw(ticket, plain("Body"), {"customfield_10002": 5})

        assert key == "PROJ-2"
        assert fake_backend.json_body(fake_backend.requests[0]) == {
            "fields": {
                "project": {"key": "PROJ"},
                "summary": "Fix login",
                "issuetype": {"name": "Task"},
                "description": "Body",
                "priority": {"name": "High"},
                "assignee": {"name": "alice"},
                "labels": ["auth"],
                "duedate": "2024-05-01",
                "parent": {"key": "PROJ-0"},
                "customfield_10002": 5,
            }
        }

    @pytest.mark.asyncio
    async def test_v3_create_uses_account_id(self, fake_backend, v3_client):
        fake_backend.add_json("POST", "/rest/api/3/issue", {"key": "CLOUD-1"})
        ticket = TicketInput(
            project_key="CLOUD", title="Story", ticket_type="Story", assignee="5b10a2844c20"
        )

        await v3_client.create_raw(ticket, plain(""), {})

        fields = fake_backend.json_body(fake_backend.requests[0])["fields"]
        assert fields["assignee"] == {"accountId": "5b10a2844c20"}
        assert fields["issuetype"] == {"name": "Story"}
        assert "description" not in fields

    @pytest.mark.asyncio
    async def test_create_without_key_in_response(self, fake_backend, v2_client):
        fake_backend.add_json("POST", "/rest/api/2/issue", {"id": "10"})

        with pytest.raises(MalformedResponseError, match="no issue key"):
            await v2_client.create_raw(TicketInput("PROJ", "Title"), plain(""), {})

    @pytest.mark.asyncio
    async def test_v2_update(self, fake_backend, v2_client):
        fake_backend.add("PUT", "/rest/api/2/issue/PROJ-1", httpx.Response(204))
        changes = TicketUpdate(
            title="Renamed",
            description=Document.from_text("New body"),
            priority="Low",
            assignee="bob",
            labels=("auth", "ui"),
            due_date=date(2024, 6, 1),
        )

        await v2_client.update_raw("PROJ-1", changes, plain("New body"), {"customfield_10002": 8})

        put = fake_backend.requests_to("PUT", "/rest/api/2/issue/PROJ-1")[0]
        assert fake_backend.json_body(put) == {
            "fields": {
                "summary": "Renamed",
                "description": "New body",
                "priority": {"name": "Low"},
                "assignee": {"name": "bob"},
                "labels": ["auth", "ui"],
                "duedate": "2024-06-01",
                "customfield_10002": 8,
            }
        }

    @pytest.mark.asyncio
    async def test_v3_update_sends_adf_and_account_id(self, fake_backend, v3_client):
        fake_backend.add("PUT", "/rest/api/3/issue/CLOUD-1", httpx.Response(204))
        adf = {"type": "doc", "version": 1, "content": []}
        changes = TicketUpdate(description=Document.from_text("Body"), assignee="5b10a2844c20")

        await v3_client.update_raw("CLOUD-1", changes, WireDocument(WireKind.ADF, adf), {})

        fields = fake_backend.json_body(fake_backend.requests[0])["fields"]
        assert fields == {"description": adf, "assignee": {"accountId": "5b10a2844c20"}}

    @pytest.mark.asyncio
    async def test_update_can_unassign_and_clear_description(self, fake_backend, v2_client):
        fake_backend.add("PUT", "/rest/api/2/issue/PROJ-1", httpx.Response(204))
        changes = TicketUpdate(description=Document.from_text(""), assignee="")

        await v2_client.update_raw("PROJ-1", changes, plain(""), {})

        fields = fake_backend.json_body(fake_backend.requests[0])["fields"]
        assert fields == {"description": None, "assignee": None}

    @pytest.mark.asyncio
    async def test_update_missing_ticket(self, fake_backend, v2_client):
        fake_backend.add("PUT", "/rest/api/2/issue/PROJ-404", httpx.Response(404))

        with pytest.raises(TicketNotFoundError):
            await v2_client.update_raw("PROJ-404", TicketUpdate(title="New"), None, {})


# =============================================================================
# Workflow and comments
# =============================================================================


class TestWorkflow:
    """Tests for transitions and comments."""

    @pytest.mark.asyncio
    async def test_list_transitions(self, fake_backend, v2_client):
        fake_backend.add_json(
            "GET",
            "/rest/api/2/issue/PROJ-1/transitions",
            {
                "transitions": [
                    {"id": "21", "name": "Start", "to": {"id": "3", "name": "In Progress"}},
                    {"id": "31", "name": "Close"},
                ]
            },
        )

        transitions = await v2_client.list_transitions("PROJ-1")

        assert transitions == [
            Transition("21", "Start", "In Progress", "3"),
            Transition("31", "Close", "", ""),
        ]

    @pytest.mark.asyncio
    async def test_apply_transition(self, fake_backend, v2_client):
        fake_backend.add("POST", "/rest/api/2/issue/PROJ-1/transitions", httpx.Response(204))

        await v2_client.apply_transition("PROJ-1", Transition("21", "Start", "In Progress"))

        body = fake_backend.json_body(fake_backend.requests[0])
        assert body == {"transition": {"id": "21"}}

    @pytest.mark.asyncio
    async def test_add_comment(self, fake_backend, v3_client):
        fake_backend.add_json("POST", "/rest/api/3/issue/CLOUD-1/comment", {"id": "100"})
        adf = WireDocument(WireKind.ADF, {"type": "doc", "version": 1, "content": []})

        await v3_client.add_comment("CLOUD-1", adf)

        body = fake_backend.json_body(fake_backend.requests[0])
        assert body == {"body": {"type": "doc", "version": 1, "content": []}}

    @pytest.mark.asyncio
    async def test_comment_on_missing_issue(self, fake_backend, v2_client):
        with pytest.raises(TicketNotFoundError) as exc_info:
            await v2_client.add_comment("GONE-1", plain("hi"))

        assert exc_info.value.ticket_id == "GONE-1"


# =============================================================================
# Metadata
# =============================================================================


class TestMetadata:
    """Tests for list_metadata."""

    @pytest.mark.asyncio
    async def test_v2_projects(self, fake_backend, v2_client):
        fake_backend.add_json("GET", "/rest/api/2/project", [{"id": "1", "key": "P", "name": "P"}])

        items = await v2_client.list_metadata(MetadataKind.PROJECTS)

        assert [(i.id, i.key, i.name) for i in items] == [("1", "P", "P")]

    @pytest.mark.asyncio
    async def test_v3_projects_are_paginated(self, fake_backend, v3_client):
        fake_backend.add_json(
            "GET", "/rest/api/3/project/search", {"values": [{"id": "2", "key": "C", "name": "C"}]}
        )

        items = await v3_client.list_metadata(MetadataKind.PROJECTS)

        assert items[0].key == "C"
        assert fake_backend.requests[0].url.params["maxResults"] == "100"

    @pytest.mark.asyncio
    async def test_ticket_types_for_project(self, fake_backend, v2_client):
        fake_backend.add_json(
            "GET",
            "/rest/api/2/project/PROJ",
            {"issueTypes": [{"id": "1", "name": "Bug", "subtask": False}]},
        )

        items = await v2_client.list_metadata(MetadataKind.TICKET_TYPES, project_key="PROJ")

        assert items[0].name == "Bug"
        assert items[0].extra["subtask"] is False

    @pytest.mark.asyncio
    async def test_priorities(self, fake_backend, v2_client):
        fake_backend.add_json("GET", "/rest/api/2/priority", [{"id": "2", "name": "High"}])

        items = await v2_client.list_metadata(MetadataKind.PRIORITIES)

        assert [i.name for i in items] == ["High"]

    @pytest.mark.asyncio
    async def test_project_statuses_are_deduplicated(self, fake_backend, v2_client):
        todo = {"id": "1", "name": "To Do", "statusCategory": {"key": "new"}}
        done = {"id": "3", "name": "Done", "statusCategory": {"key": "done"}}
        fake_backend.add_json(
            "GET",
            "/rest/api/2/project/PROJ/statuses",
            [{"name": "Bug", "statuses": [todo, done]}, {"name": "Task", "statuses": [todo]}],
        )

        items = await v2_client.list_metadata(MetadataKind.STATUSES, project_key="PROJ")

        assert [i.name for i in items] == ["To Do", "Done"]
        assert items[1].extra["category"] == "done"

    @pytest.mark.asyncio
    async def test_v2_users(self, fake_backend, v2_client):
        fake_backend.add_json(
            "GET",
            "/rest/api/2/user/assignable/search",
            [{"name": "alice", "displayName": "Alice", "emailAddress": "a@x", "active": True}],
        )

        items = await v2_client.list_metadata(MetadataKind.USERS, project_key="PROJ")

        params = fake_backend.requests[0].url.params
        assert params["username"] == "."
        assert params["project"] == "PROJ"
        assert items[0].id == "alice"
        assert items[0].extra["email"] == "a@x"

    @pytest.mark.asyncio
    async def test_v3_users_use_account_id(self, fake_backend, v3_client):
        fake_backend.add_json(
            "GET",
            "/rest/api/3/user/assignable/search",
            [{"accountId": "abc", "displayName": "Alice"}],
        )

        items = await v3_client.list_metadata(MetadataKind.USERS, project_key="CLOUD")

        assert items[0].id == "abc"
        assert "username" not in fake_backend.requests[0].url.params

    @pytest.mark.asyncio
    async def test_users_need_a_project(self, fake_backend, v2_client):
        with pytest.raises(ValueError, match="project_key is required"):
            await v2_client.list_metadata(MetadataKind.USERS)
        assert fake_backend.requests == []

    @pytest.mark.asyncio
    async def test_boards_and_sprints(self, fake_backend, v2_client):
        fake_backend.add_json(
            "GET", "/rest/agile/1.0/board", {"values": [{"id": 7, "name": "B", "type": "scrum"}]}
        )
        fake_backend.add_json(
            "GET",
            "/rest/agile/1.0/board/7/sprint",
            {"values": [{"id": 12, "name": "Sprint 3", "state": "active"}]},
        )

        boards = await v2_client.list_metadata(MetadataKind.BOARDS, project_key="PROJ")
        sprints = await v2_client.list_metadata(MetadataKind.SPRINTS, board_id=boards[0].id)

        assert boards[0].id == "7"
        assert boards[0].extra["type"] == "scrum"
        assert fake_backend.requests[0].url.params["projectKeyOrId"] == "PROJ"
        assert sprints[0].name == "Sprint 3"
        assert sprints[0].extra == {"state": "active"}

    @pytest.mark.asyncio
    async def test_sprints_need_a_board(self, v2_client):
        with pytest.raises(ValueError, match="board_id is required"):
            await v2_client.list_metadata(MetadataKind.SPRINTS)

    @pytest.mark.asyncio
    async def test_agile_unavailable(self, fake_backend, make_transport, jira_server_profile):
        capabilities = dataclasses.replace(
            jira_server_profile.capabilities, agile_endpoints=False
        )
        profile = dataclasses.replace(jira_server_profile, capabilities=capabilities)
        client = RestClientV2(make_transport(), profile)

        with pytest.raises(UnsupportedOperationError) as exc_info:
            await client.list_metadata(MetadataKind.BOARDS)

        assert exc_info.value.backend == "jira server"
        assert fake_backend.requests == []

    @pytest.mark.asyncio
    async def test_teams_are_unsupported(self, v2_client):
        with pytest.raises(UnsupportedOperationError):
            await v2_client.list_metadata(MetadataKind.TEAMS)


# =============================================================================
# Fields
# =============================================================================


class TestProjectFields:
    """Tests for list_project_fields and well_known_fields."""

    @pytest.mark.asyncio
    async def test_fields_across_issue_types(self, fake_backend, v2_client):
        base = "/rest/api/2/issue/createmeta/PROJ/issuetypes"
        summary = {"fieldId": "summary", "name": "Summary", "schema": {"type": "string"}}
        fake_backend.add_json("GET", base, {"values": [{"id": "1"}, {"id": "2"}]})
        fake_backend.add_json(
            "GET",
            f"{base}/1",
            {
                "values": [
                    summary,
                    {
                        "fieldId": "customfield_10002",
                        "name": "Story Points",
                        "schema": {"type": "number"},
                    },
                ]
            },
        )
        fake_backend.add_json(
            "GET",
            f"{base}/2",
            {"fields": [summary, {"fieldId": "customfield_10001", "name": "Sprint"}]},
        )

        fields = await v2_client.list_project_fields("PROJ")

        assert [f.id for f in fields] == ["summary", "customfield_10002", "customfield_10001"]
        assert fields[1].schema_type == "number"
        assert fields[2].schema_type is None

    @pytest.mark.asyncio
    async def test_unknown_project(self, fake_backend, v2_client):
        with pytest.raises(TicketNotFoundError):
            await v2_client.list_project_fields("NOPE")

    def test_well_known_fields_differ_by_version(self, v2_client, v3_client):
        v2_ids = {f.name: f.id for f in v2_client.well_known_fields()}
        v3_ids = {f.name: f.id for f in v3_client.well_known_fields()}

        assert v2_ids["Story Points"] == "customfield_10002"
        assert v3_ids["Story Points"] == "customfield_10016"
        assert v3_ids["Sprint"] == "customfield_10020"
