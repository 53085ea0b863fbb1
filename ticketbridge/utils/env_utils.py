"""Environment variable helpers for configuration values.

Connection credentials in config files are usually written as ``${VAR}``
references so that secrets stay in the environment. Keys that look like
secrets are never echoed into logs or error messages.
"""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Mapping

# Keys containing these substrings are considered sensitive and should not be logged
SENSITIVE_KEY_PATTERNS = ("TOKEN", "KEY", "SECRET", "PASSWORD", "PAT", "CREDENTIAL")

_VAR_PATTERN = re.compile(r"\$\{([^}]+)\}")

REDACTED = "<REDACTED>"

logger = logging.getLogger(__name__)


class EnvVarExpansionError(Exception):
    """Raised when environment variable expansion fails in strict mode."""

    pass


def is_sensitive_key(key: str) -> bool:
    """Check if a configuration key names secret material."""
    key_upper = key.upper()
    return any(pattern in key_upper for pattern in SENSITIVE_KEY_PATTERNS)


def expand_env_vars(value: str, strict: bool = False, context: str = "") -> str:
    """Replace ``${VAR}`` references in a config value.

    Args:
        value: Raw value from a config file
        strict: If True, raises EnvVarExpansionError for unset variables.
                If False, leaves the ``${VAR}`` text in place and logs a warning.
        context: Config key the value came from, used in messages unless
                 the key is sensitive

    Returns:
        The expanded value

    Raises:
        EnvVarExpansionError: If strict=True and a variable is not set
    """
    missing_vars: list[str] = []
    show_context = bool(context) and not is_sensitive_key(context)

    def replace(match: re.Match[str]) -> str:
        var_name = match.group(1)
        env_value = os.environ.get(var_name)
        if env_value is None:
            missing_vars.append(var_name)
            return match.group(0)
        return env_value

    result = _VAR_PATTERN.sub(replace, value)

    if missing_vars:
        where = f" in {context}" if show_context else ""
        if strict:
            raise EnvVarExpansionError(
                f"Missing environment variable(s): {', '.join(missing_vars)}{where}"
            )
        logger.warning("Environment variable(s) not set%s: %s", where, ", ".join(missing_vars))

    return result


def redact_mapping(values: Mapping[str, str]) -> dict[str, str]:
    """Copy a key/value mapping with sensitive values replaced for display."""
    return {key: (REDACTED if is_sensitive_key(key) else value) for key, value in values.items()}


__all__ = [
    "EnvVarExpansionError",
    "REDACTED",
    "SENSITIVE_KEY_PATTERNS",
    "expand_env_vars",
    "is_sensitive_key",
    "redact_mapping",
]
