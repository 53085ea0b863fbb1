"""Tests for ticketbridge.integrations.providers normalizers.

Tests cover:
- Jira issue payloads (v2 and v3 shapes), status mapping, custom fields
- Sprint field parsing (objects and serialized Server strings)
- Linear issue nodes, state mapping, cycle and parent fields
- Timestamp parsing and defensive handling of malformed payloads
"""

from datetime import UTC, datetime

import pytest

from ticketbridge.integrations.capabilities import BackendFamily
from ticketbridge.integrations.documents import Document, plain_text
from ticketbridge.integrations.models import FieldMapping, SemanticField, TicketStatus
from ticketbridge.integrations.providers import (
    JiraNormalizer,
    LinearNormalizer,
    TicketNormalizer,
    normalizer_for,
)
from ticketbridge.integrations.providers.jira import parse_sprint


def decode_text(raw):
    return Document.from_text(raw if isinstance(raw, str) else "")


JIRA_MAPPING = FieldMapping(
    "PROJ",
    {
        SemanticField.STORY_POINTS: "customfield_10002",
        SemanticField.SPRINT: "customfield_10001",
        SemanticField.EPIC_LINK: "customfield_10000",
    },
)

LINEAR_MAPPING = FieldMapping(
    "ENG",
    {
        SemanticField.STORY_POINTS: "estimate",
        SemanticField.SPRINT: "cycleId",
        SemanticField.EPIC_LINK: "parentId",
    },
)


def jira_issue(**fields):
    base = {
        "summary": "Fix login",
        "description": "Users cannot log in",
        "status": {"name": "In Progress", "statusCategory": {"key": "indeterminate"}},
        "priority": {"name": "High"},
        "assignee": {"name": "alice", "displayName": "Alice Example"},
        "project": {"key": "PROJ"},
        "issuetype": {"name": "Bug"},
        "labels": ["auth", ""],
        "created": "2024-03-01T10:15:00.000+0000",
        "updated": "2024-03-02T08:00:00.000Z",
    }
    base.update(fields)
    return {"id": "10001", "key": "PROJ-1", "fields": base}


def linear_issue(**overrides):
    base = {
        "id": "uuid-1",
        "identifier": "ENG-42",
        "title": "Crash on save",
        "description": "**Steps**",
        "url": "https://linear.app/acme/issue/ENG-42",
        "priorityLabel": "Urgent",
        "estimate": 3,
        "createdAt": "2024-03-01T10:15:00.000Z",
        "updatedAt": "2024-03-01T11:00:00.000Z",
        "state": {"id": "s", "name": "In Progress", "type": "started"},
        "assignee": {"id": "u", "name": "Bob", "email": "bob@example.com"},
        "labels": {"nodes": [{"name": "bug"}, {"name": " "}]},
        "team": {"id": "t", "key": "ENG", "name": "Engineering"},
        "cycle": {"id": "c", "number": 7, "name": None},
        "parent": {"id": "p", "identifier": "ENG-1"},
    }
    base.update(overrides)
    return base


def test_normalizer_registry():
    normalizer = normalizer_for(BackendFamily.JIRA, "https://jira.example.com/")

    assert isinstance(normalizer, JiraNormalizer)
    assert normalizer.base_url == "https://jira.example.com"
    assert isinstance(normalizer_for(BackendFamily.LINEAR), LinearNormalizer)


# =============================================================================
# Jira
# =============================================================================


class TestJiraNormalizer:
    """Tests for JiraNormalizer."""

    def test_normalize(self):
        ticket = JiraNormalizer("https://jira.example.com").normalize(jira_issue(), decode_text)

        assert ticket.id == "10001"
        assert ticket.display_key == "PROJ-1"
        assert ticket.title == "Fix login"
        assert plain_text(ticket.description) == "Users cannot log in"
        assert ticket.status == "In Progress"
        assert ticket.status_category is TicketStatus.IN_PROGRESS
        assert ticket.assignee == "Alice Example"
        assert ticket.priority == "High"
        assert ticket.project_key == "PROJ"
        assert ticket.ticket_type == "Bug"
        assert ticket.labels == ("auth",)
        assert ticket.url == "https://jira.example.com/browse/PROJ-1"
        assert ticket.created_at == datetime(2024, 3, 1, 10, 15, tzinfo=UTC)
        assert ticket.updated_at == datetime(2024, 3, 2, 8, 0, tzinfo=UTC)
        assert ticket.custom_fields == {}

    def test_missing_key(self):
        with pytest.raises(ValueError, match="'key' field is missing"):
            JiraNormalizer().normalize({"fields": {}}, decode_text)

    def test_sparse_payload(self):
        ticket = JiraNormalizer().normalize({"key": "ABC-9", "fields": None}, decode_text)

        assert ticket.project_key == "ABC"
        assert ticket.status_category is TicketStatus.UNKNOWN
        assert ticket.assignee is None
        assert ticket.url == ""
        assert ticket.description.is_empty

    @pytest.mark.parametrize(
        "status,expected",
        [
            ({"name": "To Do"}, TicketStatus.OPEN),
            ({"name": "Code Review"}, TicketStatus.REVIEW),
            ({"name": "Won't Do"}, TicketStatus.CLOSED),
            ({"name": "Triaged", "statusCategory": {"key": "done"}}, TicketStatus.DONE),
            ({"name": "Triaged"}, TicketStatus.UNKNOWN),
        ],
    )
    def test_status_mapping(self, status, expected):
        raw = jira_issue(status=status)
        assert JiraNormalizer().map_status(raw) is expected

    def test_custom_fields(self):
        raw = jira_issue(
            customfield_10002=5.0,
            customfield_10001=[{"id": 1, "name": "Sprint 1", "state": "closed"}],
            customfield_10000="PROJ-100",
        )

        ticket = JiraNormalizer().normalize(raw, decode_text, JIRA_MAPPING)

        assert ticket.custom_fields == {
            SemanticField.STORY_POINTS: 5.0,
            SemanticField.SPRINT: "Sprint 1",
            SemanticField.EPIC_LINK: "PROJ-100",
        }

    def test_absent_custom_fields_are_omitted(self):
        ticket = JiraNormalizer().normalize(jira_issue(), decode_text, JIRA_MAPPING)
        assert ticket.custom_fields == {}

    def test_epic_link_object(self):
        raw = jira_issue(customfield_10000={"key": "PROJ-7", "id": "7"})
        ticket = JiraNormalizer().normalize(raw, decode_text, JIRA_MAPPING)
        assert ticket.custom_fields[SemanticField.EPIC_LINK] == "PROJ-7"


class TestParseSprint:
    """Tests for parse_sprint."""

    def test_active_sprint_wins(self):
        value = [
            {"name": "Sprint 1", "state": "closed"},
            {"name": "Sprint 2", "state": "active"},
            {"name": "Sprint 3", "state": "future"},
        ]
        assert parse_sprint(value) == "Sprint 2"

    def test_latest_when_none_active(self):
        value = [{"name": "Sprint 1", "state": "closed"}, {"name": "Sprint 2", "state": "closed"}]
        assert parse_sprint(value) == "Sprint 2"

    def test_serialized_server_format(self):
        value = [
            "com.atlassian.greenhopper.service.sprint.Sprint@1a2b[id=4,rapidViewId=1,"
            "state=ACTIVE,name=Team Sprint 4,startDate=2024-03-01T10:00:00.000Z]"
        ]
        assert parse_sprint(value) == "Team Sprint 4"

    @pytest.mark.parametrize("value", [None, [], "Sprint 1", [{"state": "active"}]])
    def test_unusable_values(self, value):
        assert parse_sprint(value) is None


# =============================================================================
# Linear
# =============================================================================


class TestLinearNormalizer:
    """Tests for LinearNormalizer."""

    def test_normalize(self):
        ticket = LinearNormalizer().normalize(linear_issue(), decode_text, LINEAR_MAPPING)

        assert ticket.id == "uuid-1"
        assert ticket.display_key == "ENG-42"
        assert ticket.title == "Crash on save"
        assert ticket.status == "In Progress"
        assert ticket.status_category is TicketStatus.IN_PROGRESS
        assert ticket.assignee == "Bob"
        assert ticket.priority == "Urgent"
        assert ticket.project_key == "ENG"
        assert ticket.ticket_type == ""
        assert ticket.labels == ("bug",)
        assert ticket.url == "https://linear.app/acme/issue/ENG-42"
        assert ticket.custom_fields == {
            SemanticField.STORY_POINTS: 3,
            SemanticField.SPRINT: "Cycle 7",
            SemanticField.EPIC_LINK: "ENG-1",
        }

    def test_missing_identifier(self):
        with pytest.raises(ValueError, match="'identifier' field is missing"):
            LinearNormalizer().normalize({"id": "x"}, decode_text)

    @pytest.mark.parametrize(
        "state,expected",
        [
            ({"name": "In Review", "type": "started"}, TicketStatus.REVIEW),
            ({"name": "Todo", "type": "unstarted"}, TicketStatus.OPEN),
            ({"name": "Shipped", "type": "completed"}, TicketStatus.DONE),
            ({"name": "Duplicate", "type": "canceled"}, TicketStatus.CLOSED),
            (None, TicketStatus.UNKNOWN),
        ],
    )
    def test_state_mapping(self, state, expected):
        assert LinearNormalizer().map_status(linear_issue(state=state)) is expected

    def test_missing_relations(self):
        raw = linear_issue(team=None, cycle=None, parent=None, assignee=None, labels=None)

        ticket = LinearNormalizer().normalize(raw, decode_text, LINEAR_MAPPING)

        assert ticket.project_key == "ENG"
        assert ticket.assignee is None
        assert ticket.labels == ()
        assert ticket.custom_fields == {SemanticField.STORY_POINTS: 3}

    def test_named_cycle(self):
        raw = linear_issue(cycle={"number": 7, "name": "Polish"})
        assert LinearNormalizer().custom_value(raw, SemanticField.SPRINT, "cycleId") == "Polish"


class TestTimestamps:
    """Tests for TicketNormalizer.parse_timestamp."""

    @pytest.mark.parametrize("value", [None, "", 12, "yesterday"])
    def test_invalid(self, value):
        assert TicketNormalizer.parse_timestamp(value) is None

    def test_offset_without_colon(self):
        parsed = TicketNormalizer.parse_timestamp("2024-03-01T12:00:00.000+0200")
        assert parsed is not None
        assert parsed.utcoffset().total_seconds() == 7200
