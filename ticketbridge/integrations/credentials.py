"""Credential material for a connection.

The provider never stores secrets itself. Credentials come from a
CredentialStore (an opaque key/value store owned by the host application)
and are frozen into a CredentialSet for the lifetime of one connection
attempt.

Canonical credential keys:
- token: personal access token or OAuth token (BEARER_TOKEN)
- api_key: raw API key (API_KEY, Linear)
- username / email: basic-auth identity
- password / api_token: basic-auth secret
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Protocol, runtime_checkable

from ticketbridge.integrations.capabilities import AuthMethod
from ticketbridge.utils.env_utils import expand_env_vars, is_sensitive_key

logger = logging.getLogger(__name__)

CREDENTIAL_KEYS: frozenset[str] = frozenset(
    {"token", "api_key", "username", "email", "password", "api_token"}
)

# Accepted spellings mapped to canonical keys
CREDENTIAL_ALIASES: Mapping[str, str] = MappingProxyType(
    {
        "pat": "token",
        "personal_access_token": "token",
        "bearer_token": "token",
        "key": "api_key",
        "apikey": "api_key",
        "user": "username",
        "login": "username",
    }
)

ENV_PREFIX = "TICKETBRIDGE"


def canonicalize_credentials(raw: Mapping[str, str]) -> dict[str, str]:
    """Lower-case keys and resolve aliases; canonical keys win over aliases."""
    result: dict[str, str] = {}
    for key, value in raw.items():
        normalized = key.strip().lower()
        canonical = CREDENTIAL_ALIASES.get(normalized, normalized)
        if canonical in result and normalized != canonical:
            continue
        result[canonical] = value
    return result


@dataclass(frozen=True)
class CredentialSet:
    """Read-only credential material for one connection.

    Empty values count as absent.
    """

    values: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))

    def __post_init__(self) -> None:
        cleaned = {k: v for k, v in canonicalize_credentials(self.values).items() if v}
        object.__setattr__(self, "values", MappingProxyType(cleaned))

    @classmethod
    def of(cls, **values: str) -> CredentialSet:
        return cls(values)

    def get(self, key: str) -> str | None:
        return self.values.get(key)

    def has(self, key: str) -> bool:
        return key in self.values

    @property
    def identity(self) -> str | None:
        """Basic-auth identity: username, else email."""
        return self.values.get("username") or self.values.get("email")

    @property
    def secret(self) -> str | None:
        """Basic-auth secret: password, else API token."""
        return self.values.get("password") or self.values.get("api_token")

    def has_material_for(self, method: AuthMethod) -> bool:
        """Whether this set holds everything ``method`` needs.

        Basic material never satisfies a token method and vice versa.
        """
        if method is AuthMethod.BEARER_TOKEN:
            return self.has("token")
        if method is AuthMethod.API_KEY:
            return self.has("api_key")
        return self.identity is not None and self.secret is not None

    def __repr__(self) -> str:
        shown = ", ".join(
            f"{key}={'***' if is_sensitive_key(key) else value}"
            for key, value in sorted(self.values.items())
        )
        return f"CredentialSet({shown})"


@runtime_checkable
class CredentialStore(Protocol):
    """Opaque secret storage owned by the host application."""

    def get(self, connection: str, key: str) -> str | None: ...

    def set(self, connection: str, key: str, value: str) -> None: ...

    def delete(self, connection: str, key: str) -> None: ...


class InMemoryCredentialStore:
    """Dictionary-backed store, for tests and short-lived sessions."""

    def __init__(self, initial: Mapping[str, Mapping[str, str]] | None = None) -> None:
        self._data: dict[tuple[str, str], str] = {}
        for connection, values in (initial or {}).items():
            for key, value in values.items():
                self.set(connection, key, value)

    def get(self, connection: str, key: str) -> str | None:
        return self._data.get((connection.lower(), key.lower()))

    def set(self, connection: str, key: str, value: str) -> None:
        self._data[(connection.lower(), key.lower())] = value

    def delete(self, connection: str, key: str) -> None:
        self._data.pop((connection.lower(), key.lower()), None)


class EnvironmentCredentialStore:
    """Read-only store backed by ``TICKETBRIDGE_<CONNECTION>_<KEY>`` variables.

    Values may reference other variables as ``${VAR}``.
    """

    def __init__(self, environ: Mapping[str, str] | None = None, prefix: str = ENV_PREFIX) -> None:
        self._environ = environ if environ is not None else os.environ
        self._prefix = prefix

    def _var_name(self, connection: str, key: str) -> str:
        return f"{self._prefix}_{connection}_{key}".upper().replace("-", "_")

    def get(self, connection: str, key: str) -> str | None:
        name = self._var_name(connection, key)
        value = self._environ.get(name)
        if value is None:
            return None
        return expand_env_vars(value, strict=True, context=name)

    def set(self, connection: str, key: str, value: str) -> None:
        raise NotImplementedError("Environment credentials are read-only")

    def delete(self, connection: str, key: str) -> None:
        raise NotImplementedError("Environment credentials are read-only")


def load_credentials(store: CredentialStore, connection: str) -> CredentialSet:
    """Collect every canonical credential key for a connection from a store."""
    found: dict[str, str] = {}
    for key in sorted(CREDENTIAL_KEYS):
        value = store.get(connection, key)
        if value:
            found[key] = value
    logger.debug("Loaded credential keys for %s: %s", connection, sorted(found))
    return CredentialSet(found)


__all__ = [
    "CREDENTIAL_ALIASES",
    "CREDENTIAL_KEYS",
    "CredentialSet",
    "CredentialStore",
    "EnvironmentCredentialStore",
    "InMemoryCredentialStore",
    "canonicalize_credentials",
    "load_credentials",
]
