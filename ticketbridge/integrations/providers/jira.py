"""Jira issue normalizer (REST v2 and v3 payloads)."""

from __future__ import annotations

import re
from types import MappingProxyType
from typing import Any

from ticketbridge.integrations.capabilities import BackendFamily
from ticketbridge.integrations.models import FieldMapping, SemanticField, Ticket, TicketStatus
from ticketbridge.integrations.providers.base import DocumentDecoder, TicketNormalizer

# Status mapping: Jira status name → TicketStatus
STATUS_MAPPING: MappingProxyType[str, TicketStatus] = MappingProxyType(
    {
        # Open states
        "to do": TicketStatus.OPEN,
        "open": TicketStatus.OPEN,
        "backlog": TicketStatus.OPEN,
        "new": TicketStatus.OPEN,
        "reopened": TicketStatus.OPEN,
        "selected for development": TicketStatus.OPEN,
        # In Progress states
        "in progress": TicketStatus.IN_PROGRESS,
        "in development": TicketStatus.IN_PROGRESS,
        "in review": TicketStatus.REVIEW,
        "code review": TicketStatus.REVIEW,
        "review": TicketStatus.REVIEW,
        "testing": TicketStatus.REVIEW,
        "qa": TicketStatus.REVIEW,
        # Done states
        "done": TicketStatus.DONE,
        "resolved": TicketStatus.DONE,
        "completed": TicketStatus.DONE,
        # Closed states
        "closed": TicketStatus.CLOSED,
        "won't do": TicketStatus.CLOSED,
        # Blocked states
        "blocked": TicketStatus.BLOCKED,
        "on hold": TicketStatus.BLOCKED,
        "waiting": TicketStatus.BLOCKED,
    }
)

# Fallback on the status category when the name is not recognized
STATUS_CATEGORY_MAPPING: MappingProxyType[str, TicketStatus] = MappingProxyType(
    {
        "new": TicketStatus.OPEN,
        "indeterminate": TicketStatus.IN_PROGRESS,
        "done": TicketStatus.DONE,
    }
)

# Server returns sprints as serialized objects: "...Sprint@1a2b[id=1,state=ACTIVE,name=S1,...]"
_SERIALIZED_SPRINT_FIELD = re.compile(r"(\w+)=([^,\]]*)")


def parse_sprint(value: Any) -> str | None:
    """Name of the active sprint (else the most recent one) of a sprint field value."""
    if not isinstance(value, list) or not value:
        return None

    sprints: list[dict[str, str]] = []
    for entry in value:
        if isinstance(entry, dict):
            sprints.append({k: str(v) for k, v in entry.items() if v is not None})
        elif isinstance(entry, str):
            sprints.append(dict(_SERIALIZED_SPRINT_FIELD.findall(entry)))

    named = [sprint for sprint in sprints if sprint.get("name")]
    if not named:
        return None
    for sprint in named:
        if sprint.get("state", "").lower() == "active":
            return sprint["name"]
    return named[-1]["name"]


class JiraNormalizer(TicketNormalizer):
    """Builds Tickets from Jira issue payloads."""

    family = BackendFamily.JIRA

    def normalize(
        self,
        raw: dict[str, Any],
        decode: DocumentDecoder,
        mapping: FieldMapping | None = None,
    ) -> Ticket:
        key = raw.get("key", "")
        if not key or not isinstance(key, str) or not key.strip():
            raise ValueError("Cannot normalize Jira issue: 'key' field is missing or empty")
        key = key.strip()

        fields = raw.get("fields") if isinstance(raw.get("fields"), dict) else {}
        labels = fields.get("labels") if isinstance(fields.get("labels"), list) else []
        assignee = fields.get("assignee")

        return Ticket(
            id=str(raw.get("id") or key),
            display_key=key,
            title=str(fields.get("summary") or ""),
            description=decode(fields.get("description")),
            status=self.safe_nested_get(fields.get("status"), "name"),
            status_category=self.map_status(raw),
            assignee=(
                self.safe_nested_get(assignee, "displayName")
                or self.safe_nested_get(assignee, "name")
                or None
            ),
            priority=self.safe_nested_get(fields.get("priority"), "name") or None,
            project_key=self.project_key_of(raw),
            custom_fields=self.custom_fields(raw, mapping),
            ticket_type=self.safe_nested_get(fields.get("issuetype"), "name"),
            labels=tuple(str(label) for label in labels if label),
            url=f"{self.base_url}/browse/{key}" if self.base_url else "",
            created_at=self.parse_timestamp(fields.get("created")),
            updated_at=self.parse_timestamp(fields.get("updated")),
        )

    def project_key_of(self, raw: dict[str, Any]) -> str:
        fields = raw.get("fields")
        project_key = self.safe_nested_get(
            fields.get("project") if isinstance(fields, dict) else None, "key"
        )
        if project_key:
            return project_key
        # Fall back to the key prefix: PROJ-123 -> PROJ
        key = str(raw.get("key") or "")
        return key.rsplit("-", 1)[0] if "-" in key else ""

    def map_status(self, raw: dict[str, Any]) -> TicketStatus:
        fields = raw.get("fields") if isinstance(raw.get("fields"), dict) else {}
        status_obj = fields.get("status")
        status = self.lookup_status(self.safe_nested_get(status_obj, "name"), STATUS_MAPPING)
        if status is not TicketStatus.UNKNOWN:
            return status
        category = status_obj.get("statusCategory") if isinstance(status_obj, dict) else None
        return self.lookup_status(self.safe_nested_get(category, "key"), STATUS_CATEGORY_MAPPING)

    def custom_value(self, raw: dict[str, Any], semantic: SemanticField, backend_id: str) -> Any:
        fields = raw.get("fields") if isinstance(raw.get("fields"), dict) else {}
        value = fields.get(backend_id)
        if value is None:
            return None
        if semantic is SemanticField.SPRINT:
            return parse_sprint(value)
        if semantic is SemanticField.EPIC_LINK and isinstance(value, dict):
            return value.get("key")
        return value


__all__ = [
    "JiraNormalizer",
    "STATUS_CATEGORY_MAPPING",
    "STATUS_MAPPING",
    "parse_sprint",
]
