"""Normalizers from backend payloads to the canonical Ticket."""

from types import MappingProxyType

from ticketbridge.integrations.capabilities import BackendFamily
from ticketbridge.integrations.providers.base import DocumentDecoder, TicketNormalizer
from ticketbridge.integrations.providers.jira import JiraNormalizer
from ticketbridge.integrations.providers.linear import LinearNormalizer

NORMALIZERS: MappingProxyType[BackendFamily, type[TicketNormalizer]] = MappingProxyType(
    {
        BackendFamily.JIRA: JiraNormalizer,
        BackendFamily.LINEAR: LinearNormalizer,
    }
)


def normalizer_for(family: BackendFamily, base_url: str = "") -> TicketNormalizer:
    return NORMALIZERS[family](base_url)


__all__ = [
    "DocumentDecoder",
    "JiraNormalizer",
    "LinearNormalizer",
    "NORMALIZERS",
    "TicketNormalizer",
    "normalizer_for",
]
