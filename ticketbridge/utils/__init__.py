"""Utility modules for ticketbridge.

This package contains:
- console: Rich-based terminal output utilities
- env_utils: Environment variable expansion and redaction
- errors: Base exception and exit codes
- logging: Logging configuration
"""

from ticketbridge.utils.console import (
    console,
    print_error,
    print_header,
    print_info,
    print_success,
    print_warning,
)
from ticketbridge.utils.env_utils import (
    SENSITIVE_KEY_PATTERNS,
    EnvVarExpansionError,
    expand_env_vars,
    is_sensitive_key,
    redact_mapping,
)
from ticketbridge.utils.errors import (
    ConfigurationError,
    ExitCode,
    TicketBridgeError,
    UserCancelledError,
)
from ticketbridge.utils.logging import get_logger, log_message, setup_logging

__all__ = [
    # Console
    "console",
    "print_error",
    "print_header",
    "print_info",
    "print_success",
    "print_warning",
    # Env utils
    "SENSITIVE_KEY_PATTERNS",
    "EnvVarExpansionError",
    "expand_env_vars",
    "is_sensitive_key",
    "redact_mapping",
    # Errors
    "ConfigurationError",
    "ExitCode",
    "TicketBridgeError",
    "UserCancelledError",
    # Logging
    "get_logger",
    "log_message",
    "setup_logging",
]
