"""ticketbridge - one ticket contract over Linear and Jira.

This package provides a uniform async ticket provider that detects backend
versions and capabilities, negotiates authentication, and translates rich
text and custom fields between a semantic model and each backend's wire
format.
"""

__version__ = "0.0.0-dev"
SCRIPT_NAME = "ticketbridge"

__all__ = [
    "__version__",
    "SCRIPT_NAME",
]
