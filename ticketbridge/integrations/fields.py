"""Per-project resolution of semantic fields to backend field ids.

Custom fields such as story points live under instance-specific ids
(``customfield_10016`` on one Jira, ``customfield_10002`` on another).
The resolver discovers them by display name:

1. Normalize each backend field name (lowercase, punctuation to spaces,
   collapsed whitespace).
2. A field is a candidate for a semantic field when its normalized name
   equals one of the aliases or contains an alias as a whole-word run,
   and its declared schema type (when known) is compatible.
3. One candidate is mapped. No candidate leaves the field unmapped. Several
   candidates map the first in declaration order and record an ambiguity
   warning; the choice is deterministic but not verified.

Mappings are cached per project key until explicitly invalidated.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Iterable, Sequence
from types import MappingProxyType
from typing import Protocol

from ticketbridge.integrations.capabilities import CapabilitySet
from ticketbridge.integrations.models import (
    BackendField,
    FieldMapping,
    FieldMappingIssue,
    FieldMappingWarning,
    SemanticField,
)

logger = logging.getLogger(__name__)

_PUNCTUATION = re.compile(r"[^\w\s]|_")
_WHITESPACE = re.compile(r"\s+")

FIELD_ALIASES: MappingProxyType[SemanticField, tuple[str, ...]] = MappingProxyType(
    {
        SemanticField.EPIC_LINK: ("epic link", "epic", "parent issue", "parent link"),
        SemanticField.STORY_POINTS: ("story points", "story point estimate", "points", "estimate"),
        SemanticField.SPRINT: ("sprint", "cycle", "iteration"),
    }
)

# Declared schema types a candidate may have; unknown types are not filtered
COMPATIBLE_SCHEMA_TYPES: MappingProxyType[SemanticField, frozenset[str]] = MappingProxyType(
    {
        SemanticField.EPIC_LINK: frozenset({"any", "epic", "issuelink"}),
        SemanticField.STORY_POINTS: frozenset({"number"}),
        SemanticField.SPRINT: frozenset({"array", "sprint"}),
    }
)


class FieldSource(Protocol):
    """What the resolver needs from a backend client."""

    async def list_project_fields(self, project_key: str) -> list[BackendField]: ...

    def well_known_fields(self) -> list[BackendField]: ...


def normalize_field_name(name: str) -> str:
    """Lowercase, turn punctuation into spaces and collapse whitespace."""
    return _WHITESPACE.sub(" ", _PUNCTUATION.sub(" ", name.lower())).strip()


def _contains_run(name: str, alias: str) -> bool:
    return f" {alias} " in f" {name} "


def _is_candidate(backend_field: BackendField, semantic: SemanticField) -> bool:
    schema_type = (backend_field.schema_type or "").lower()
    if schema_type and schema_type not in COMPATIBLE_SCHEMA_TYPES[semantic]:
        return False
    name = normalize_field_name(backend_field.name)
    return any(_contains_run(name, alias) for alias in FIELD_ALIASES[semantic])


def match_fields(project_key: str, backend_fields: Iterable[BackendField]) -> FieldMapping:
    """Build a mapping from declared fields using the alias table.

    Pure and deterministic: the same field list always yields the same
    mapping and warnings.
    """
    declared: Sequence[BackendField] = list(backend_fields)
    mapped: dict[SemanticField, str] = {}
    warnings: list[FieldMappingWarning] = []

    for semantic in SemanticField:
        candidates: list[str] = []
        for backend_field in declared:
            if backend_field.id not in candidates and _is_candidate(backend_field, semantic):
                candidates.append(backend_field.id)

        if not candidates:
            warnings.append(FieldMappingWarning(semantic, FieldMappingIssue.UNMAPPED))
            continue

        mapped[semantic] = candidates[0]
        if len(candidates) > 1:
            warning = FieldMappingWarning(
                semantic, FieldMappingIssue.AMBIGUOUS, tuple(candidates)
            )
            warnings.append(warning)
            logger.warning("Ambiguous field match in project %s: %s", project_key, warning)

    return FieldMapping(project_key=project_key, fields=mapped, warnings=tuple(warnings))


class FieldMappingResolver:
    """Caches one FieldMapping per project key, resolving each key only once.

    Concurrent ``resolve`` calls for the same key share a single shielded
    task; different keys resolve independently. Failed resolutions are not
    cached.
    """

    def __init__(self, source: FieldSource, capabilities: CapabilitySet) -> None:
        self._source = source
        self._capabilities = capabilities
        self._cache: dict[str, FieldMapping] = {}
        self._inflight: dict[str, asyncio.Task[FieldMapping]] = {}

    async def resolve(self, project_key: str) -> FieldMapping:
        """Return the mapping for a project, discovering it on first use."""
        cached = self._cache.get(project_key)
        if cached is not None:
            return cached

        task = self._inflight.get(project_key)
        if task is None:
            task = asyncio.get_running_loop().create_task(self._discover(project_key))
            self._inflight[project_key] = task
            task.add_done_callback(lambda done: self._settle(project_key, done))
        return await asyncio.shield(task)

    def cached(self, project_key: str) -> FieldMapping | None:
        return self._cache.get(project_key)

    def known_backend_ids(self) -> list[str]:
        """Backend ids of every field mapped in any cached project."""
        ids = (i for mapping in self._cache.values() for i in mapping.fields.values())
        return list(dict.fromkeys(ids))

    def invalidate(self, project_key: str) -> None:
        self._cache.pop(project_key, None)
        self._inflight.pop(project_key, None)

    def invalidate_all(self) -> None:
        self._cache.clear()
        self._inflight.clear()

    def _settle(self, project_key: str, task: asyncio.Task[FieldMapping]) -> None:
        # A task replaced by invalidation must not repopulate the cache
        if self._inflight.get(project_key) is not task:
            return
        del self._inflight[project_key]
        if task.cancelled():
            return
        if task.exception() is not None:
            logger.info("Field discovery for %s failed: %s", project_key, task.exception())
            return
        self._cache[project_key] = task.result()

    async def _discover(self, project_key: str) -> FieldMapping:
        if self._capabilities.field_schema_introspection:
            logger.debug("Introspecting fields for project %s", project_key)
            backend_fields = await self._source.list_project_fields(project_key)
        else:
            logger.debug("Using well-known fields for project %s", project_key)
            backend_fields = self._source.well_known_fields()
        return match_fields(project_key, backend_fields)


__all__ = [
    "COMPATIBLE_SCHEMA_TYPES",
    "FIELD_ALIASES",
    "FieldMappingResolver",
    "FieldSource",
    "match_fields",
    "normalize_field_name",
]
