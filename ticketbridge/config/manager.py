"""Configuration manager for ticketbridge.

This module provides the ConfigManager class for loading configuration
values with a cascading hierarchy:

    1. Environment Variables (highest priority)
    2. Local Config (.ticketbridge in project/parent directories)
    3. Global Config (~/.ticketbridge-config)
    4. Built-in Defaults (lowest priority)

Besides the fixed Settings keys, config files declare connections:

    CONNECTION_WORK_FAMILY="jira"
    CONNECTION_WORK_URL="https://jira.example.com"
    CONNECTION_WORK_DEPLOYMENT="data_center"
    CONNECTION_WORK_TOKEN="${JIRA_PAT}"
"""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path

from ticketbridge.config.performance import CacheConfig, TransportConfig
from ticketbridge.config.settings import CONFIG_FILE, Settings
from ticketbridge.integrations.capabilities import BackendFamily, DeploymentKind
from ticketbridge.integrations.credentials import CredentialSet, canonicalize_credentials
from ticketbridge.integrations.models import ConnectionDescriptor
from ticketbridge.utils.env_utils import EnvVarExpansionError, expand_env_vars, redact_mapping
from ticketbridge.utils.errors import ConfigurationError
from ticketbridge.utils.logging import log_message

logger = logging.getLogger(__name__)

CONNECTION_PREFIX = "CONNECTION_"

# Connection attributes that are not credentials, with their accepted aliases
_CONNECTION_ATTRIBUTES: dict[str, str] = {
    "FAMILY": "family",
    "URL": "url",
    "BASE_URL": "url",
    "DEPLOYMENT": "deployment",
}

_LINE_PATTERN = re.compile(r"^([a-zA-Z_][a-zA-Z0-9_]*)=(.*)$")


class ConfigValidationError(ConfigurationError):
    """A connection definition is incomplete or invalid."""

    def __init__(self, connection: str, problem: str, message: str | None = None) -> None:
        self.connection = connection
        self.problem = problem
        if message is None:
            message = f"Connection '{connection}': {problem}"
        super().__init__(message)


class ConfigManager:
    """Loads configuration with a cascading hierarchy.

    Configuration Precedence (highest to lowest):
    1. Environment Variables - CI/CD, temporary overrides
    2. Local Config (.ticketbridge) - Project-specific settings
    3. Global Config (~/.ticketbridge-config) - User defaults
    4. Built-in Defaults - Fallback values

    Files are parsed line by line as ``KEY=VALUE`` pairs; nothing is
    evaluated.

    Attributes:
        settings: Current settings instance
        global_config_path: Path to the global config file
        local_config_path: Path to the discovered local config file (after load)
    """

    LOCAL_CONFIG_NAME = ".ticketbridge"

    def __init__(
        self,
        global_config_path: Path | None = None,
        *,
        start_dir: Path | None = None,
        environ: dict[str, str] | None = None,
    ) -> None:
        """Initialize the configuration manager.

        Args:
            global_config_path: Custom path to the global config file
            start_dir: Directory where the local config search starts (default: CWD)
            environ: Environment mapping (default: os.environ)
        """
        self.global_config_path = global_config_path or CONFIG_FILE
        self.local_config_path: Path | None = None
        self.settings = Settings()
        self._start_dir = start_dir
        self._environ = environ if environ is not None else os.environ
        self._raw_values: dict[str, str] = {}
        self._config_sources: dict[str, str] = {}

    def load(self) -> Settings:
        """Load configuration from all sources with cascading precedence.

        Idempotent: each call starts again from clean defaults.
        """
        self.settings = Settings()
        self.local_config_path = None
        self._raw_values = {}
        self._config_sources = {}

        if self.global_config_path.exists():
            log_message(f"Loading global configuration from {self.global_config_path}")
            self._load_file(self.global_config_path, source="global")

        local_path = self._find_local_config()
        if local_path:
            self.local_config_path = local_path
            log_message(f"Loading local configuration from {local_path}")
            self._load_file(local_path, source=f"local ({local_path})")

        self._load_environment()

        for key, value in self._raw_values.items():
            self._apply_value_to_settings(key, value)

        log_message(f"Configuration loaded successfully ({len(self._raw_values)} keys)")
        return self.settings

    def _find_local_config(self) -> Path | None:
        """Find the local config by walking up from the start directory.

        Stops at the first config file, at a repository root (``.git``)
        or at the filesystem root.
        """
        current = self._start_dir or Path.cwd()
        while True:
            config_path = current / self.LOCAL_CONFIG_NAME
            if config_path.is_file():
                return config_path
            if (current / ".git").exists():
                break
            parent = current.parent
            if parent == current:
                break
            current = parent
        return None

    def _load_file(self, path: Path, source: str = "file") -> None:
        with path.open() as f:
            for line in f:
                line = line.strip()
                if not line or line.startswith("#"):
                    continue
                match = _LINE_PATTERN.match(line)
                if not match:
                    logger.debug("Ignoring malformed config line in %s", path)
                    continue
                key, value = match.groups()
                self._raw_values[key] = self._strip_quotes(value)
                self._config_sources[key] = source

    @staticmethod
    def _strip_quotes(value: str) -> str:
        # Double quotes support \" and \\ escapes; single quotes are literal
        if len(value) >= 2 and value.startswith('"') and value.endswith('"'):
            return value[1:-1].replace("\\\\", "\\").replace('\\"', '"')
        if len(value) >= 2 and value.startswith("'") and value.endswith("'"):
            return value[1:-1]
        return value

    def _load_environment(self) -> None:
        """Override with environment variables for known keys and connections."""
        known_keys = set(Settings.get_config_keys())
        for key, value in self._environ.items():
            if key in known_keys or key.startswith(CONNECTION_PREFIX):
                self._raw_values[key] = value
                self._config_sources[key] = "environment"

    def _apply_value_to_settings(self, key: str, value: str) -> None:
        attr = self.settings.get_attribute_for_key(key)
        if attr is None:
            return

        current_value = getattr(self.settings, attr)
        try:
            if isinstance(current_value, bool):
                setattr(self.settings, attr, value.lower() in ("true", "1", "yes"))
            elif isinstance(current_value, int):
                setattr(self.settings, attr, int(value))
            elif isinstance(current_value, float):
                setattr(self.settings, attr, float(value))
            else:
                setattr(self.settings, attr, value)
        except ValueError:
            logger.warning("Invalid %s value '%s', using default %s", key, value, current_value)

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    def get(self, key: str, default: str = "") -> str:
        return self._raw_values.get(key, default)

    def source_of(self, key: str) -> str | None:
        """Where a key's effective value came from (global, local, environment)."""
        return self._config_sources.get(key)

    def redacted_values(self) -> dict[str, str]:
        """All raw values with secrets masked, for display."""
        return redact_mapping(dict(sorted(self._raw_values.items())))

    def get_transport_config(self) -> TransportConfig:
        return TransportConfig(
            timeout_seconds=self.settings.timeout_seconds,
            max_attempts=self.settings.max_attempts,
            retry_base_delay_seconds=self.settings.retry_base_delay_seconds,
        )

    def get_cache_config(self) -> CacheConfig:
        return CacheConfig(
            ttl_seconds=self.settings.metadata_cache_ttl_seconds,
            max_size=self.settings.metadata_cache_max_size,
        )

    def list_connections(self) -> list[str]:
        """Names (lowercase) of every connection that declares a family."""
        names = {
            key[len(CONNECTION_PREFIX) : -len("_FAMILY")].lower()
            for key in self._raw_values
            if key.startswith(CONNECTION_PREFIX) and key.endswith("_FAMILY")
        }
        return sorted(name for name in names if name)

    def _connection_values(self, name: str) -> dict[str, str]:
        prefix = f"{CONNECTION_PREFIX}{name.upper()}_"
        return {
            key[len(prefix) :]: value
            for key, value in self._raw_values.items()
            if key.startswith(prefix) and key[len(prefix) :]
        }

    def get_connection(self, name: str | None = None) -> ConnectionDescriptor:
        """Build the descriptor for a named connection.

        Args:
            name: Connection name; defaults to DEFAULT_CONNECTION

        Raises:
            ConfigValidationError: If the connection is missing or incomplete
        """
        name = name or self.settings.default_connection
        if not name:
            raise ConfigurationError(
                "No connection given and DEFAULT_CONNECTION is not configured"
            )
        values = self._connection_values(name)
        attributes = {
            _CONNECTION_ATTRIBUTES[key]: value
            for key, value in values.items()
            if key in _CONNECTION_ATTRIBUTES
        }

        family_name = attributes.get("family", "").strip().lower()
        if not family_name:
            raise ConfigValidationError(
                name, f"{CONNECTION_PREFIX}{name.upper()}_FAMILY is not set"
            )
        try:
            family = BackendFamily(family_name)
        except ValueError:
            valid = ", ".join(f.value for f in BackendFamily)
            raise ConfigValidationError(
                name, f"unknown family '{family_name}' (expected one of: {valid})"
            ) from None

        hint: DeploymentKind | None = None
        deployment = attributes.get("deployment", "").strip().lower().replace("-", "_")
        if deployment:
            try:
                hint = DeploymentKind(deployment)
            except ValueError:
                raise ConfigValidationError(
                    name, f"unknown deployment '{deployment}'"
                ) from None

        try:
            url = expand_env_vars(attributes.get("url", ""), strict=True, context=name)
            return ConnectionDescriptor(
                name=name.lower(), family=family, base_url=url, deployment_hint=hint
            )
        except (EnvVarExpansionError, ValueError) as e:
            raise ConfigValidationError(name, str(e)) from e

    def get_credentials(self, name: str | None = None, strict: bool = True) -> CredentialSet:
        """Collect the credential material declared for a connection.

        ``${VAR}`` references are expanded; with ``strict`` a missing
        variable is an error instead of expanding to an empty string.

        Raises:
            ConfigValidationError: If an environment reference cannot be expanded
        """
        name = name or self.settings.default_connection
        raw: dict[str, str] = {}
        for key, value in self._connection_values(name).items():
            if key in _CONNECTION_ATTRIBUTES:
                continue
            try:
                raw[key.lower()] = expand_env_vars(
                    value, strict=strict, context=f"{CONNECTION_PREFIX}{name.upper()}_{key}"
                )
            except EnvVarExpansionError as e:
                raise ConfigValidationError(name, str(e)) from e

        credentials = CredentialSet(canonicalize_credentials(raw))
        logger.debug("Credential keys for %s: %s", name, sorted(credentials.values))
        return credentials


__all__ = [
    "CONNECTION_PREFIX",
    "ConfigManager",
    "ConfigValidationError",
]
