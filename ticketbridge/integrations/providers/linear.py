"""Linear issue normalizer."""

from __future__ import annotations

from types import MappingProxyType
from typing import Any

from ticketbridge.integrations.capabilities import BackendFamily
from ticketbridge.integrations.models import FieldMapping, SemanticField, Ticket, TicketStatus
from ticketbridge.integrations.providers.base import DocumentDecoder, TicketNormalizer

# Status mapping: Linear state.type → TicketStatus
STATUS_TYPE_MAPPING: MappingProxyType[str, TicketStatus] = MappingProxyType(
    {
        "triage": TicketStatus.OPEN,
        "backlog": TicketStatus.OPEN,
        "unstarted": TicketStatus.OPEN,
        "started": TicketStatus.IN_PROGRESS,
        "completed": TicketStatus.DONE,
        "canceled": TicketStatus.CLOSED,
    }
)

# Checked before state.type: "In Review" usually has type "started"
STATE_NAME_MAPPING: MappingProxyType[str, TicketStatus] = MappingProxyType(
    {
        "in review": TicketStatus.REVIEW,
        "review": TicketStatus.REVIEW,
        "code review": TicketStatus.REVIEW,
        "pending review": TicketStatus.REVIEW,
        "blocked": TicketStatus.BLOCKED,
        "on hold": TicketStatus.BLOCKED,
    }
)


class LinearNormalizer(TicketNormalizer):
    """Builds Tickets from Linear issue nodes."""

    family = BackendFamily.LINEAR

    def normalize(
        self,
        raw: dict[str, Any],
        decode: DocumentDecoder,
        mapping: FieldMapping | None = None,
    ) -> Ticket:
        identifier = raw.get("identifier", "")
        if not identifier or not isinstance(identifier, str) or not identifier.strip():
            raise ValueError(
                "Cannot normalize Linear issue: 'identifier' field is missing or empty"
            )
        identifier = identifier.strip()

        assignee_obj = raw.get("assignee")
        return Ticket(
            id=str(raw.get("id") or identifier),
            display_key=identifier,
            title=str(raw.get("title") or ""),
            description=decode(raw.get("description")),
            status=self.safe_nested_get(raw.get("state"), "name"),
            status_category=self.map_status(raw),
            assignee=(
                self.safe_nested_get(assignee_obj, "name")
                or self.safe_nested_get(assignee_obj, "email")
                or None
            ),
            priority=raw.get("priorityLabel") or None,
            project_key=self.project_key_of(raw),
            custom_fields=self.custom_fields(raw, mapping),
            labels=tuple(self._extract_labels(raw.get("labels"))),
            url=str(raw.get("url") or ""),
            created_at=self.parse_timestamp(raw.get("createdAt")),
            updated_at=self.parse_timestamp(raw.get("updatedAt")),
        )

    def project_key_of(self, raw: dict[str, Any]) -> str:
        team_key = self.safe_nested_get(raw.get("team"), "key")
        if team_key:
            return team_key
        identifier = str(raw.get("identifier") or "")
        return identifier.rsplit("-", 1)[0] if "-" in identifier else ""

    def map_status(self, raw: dict[str, Any]) -> TicketStatus:
        state = raw.get("state")
        by_name = self.lookup_status(self.safe_nested_get(state, "name"), STATE_NAME_MAPPING)
        if by_name is not TicketStatus.UNKNOWN:
            return by_name
        return self.lookup_status(self.safe_nested_get(state, "type"), STATUS_TYPE_MAPPING)

    def custom_value(self, raw: dict[str, Any], semantic: SemanticField, backend_id: str) -> Any:
        # Linear exposes related objects, not the *Id input fields
        if backend_id == "cycleId":
            cycle = raw.get("cycle")
            if not isinstance(cycle, dict):
                return None
            return cycle.get("name") or (
                f"Cycle {cycle['number']}" if cycle.get("number") is not None else None
            )
        if backend_id == "parentId":
            return self.safe_nested_get(raw.get("parent"), "identifier") or None
        return raw.get(backend_id)

    def _extract_labels(self, labels_obj: Any) -> list[str]:
        """Label names from the nested ``{"nodes": [{"name": ...}]}`` structure."""
        if not isinstance(labels_obj, dict):
            return []
        nodes = labels_obj.get("nodes")
        if not isinstance(nodes, list):
            return []
        labels: list[str] = []
        for node in nodes:
            name = self.safe_nested_get(node, "name").strip()
            if name:
                labels.append(name)
        return labels


__all__ = ["LinearNormalizer", "STATE_NAME_MAPPING", "STATUS_TYPE_MAPPING"]
