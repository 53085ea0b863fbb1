"""Version and capability detection.

Detection runs before authentication is negotiated. It asks the backend
to describe itself, parses the reported version and looks the capability
set up in the static tables. No capability set is ever assumed: if the
backend cannot be reached or its version cannot be established, detection
fails and the connection attempt stops there.
"""

from __future__ import annotations

import logging
from typing import Any

from ticketbridge.integrations.capabilities import (
    AuthMethod,
    BackendFamily,
    DeploymentKind,
    Version,
    lookup_capabilities,
    minimum_version,
)
from ticketbridge.integrations.errors import (
    AuthenticationRejected,
    DetectionError,
    MalformedResponseError,
    TicketNotFoundError,
    TransientNetworkError,
    UnsupportedVersionError,
    ValidationError,
)
from ticketbridge.integrations.models import ConnectionDescriptor, DetectedServer
from ticketbridge.integrations.transport import HttpTransport

logger = logging.getLogger(__name__)

JIRA_SERVER_INFO_PATH = "/rest/api/2/serverInfo"
JIRA_CLOUD_DEPLOYMENT = "cloud"
JIRA_DATA_CENTER_DEPLOYMENT = "datacenter"

LINEAR_API_URL = "https://api.linear.app/graphql"
LINEAR_API_VERSION = Version(1, 0, 0)

# Methods that may authenticate the self-description call after a 401/403
_JIRA_DETECTION_AUTH = (AuthMethod.BEARER_TOKEN, AuthMethod.BASIC)


class VersionDetector:
    """Establishes a backend's deployment kind, version and capabilities.

    Attributes:
        transport: Transport used for the self-description request
    """

    def __init__(self, transport: HttpTransport) -> None:
        self.transport = transport

    async def detect(self, connection: ConnectionDescriptor) -> DetectedServer:
        """Detect the backend behind a connection.

        Raises:
            DetectionError: If the backend is unreachable, its version is
                missing or unparseable, or older than every documented release
        """
        if connection.family is BackendFamily.LINEAR:
            return self._detect_linear()
        return await self._detect_jira(connection)

    def _detect_linear(self) -> DetectedServer:
        # Linear publishes one GraphQL schema; there is nothing to detect.
        capabilities = lookup_capabilities(
            BackendFamily.LINEAR, DeploymentKind.CLOUD, LINEAR_API_VERSION
        )
        assert capabilities is not None
        return DetectedServer(
            family=BackendFamily.LINEAR,
            deployment_kind=DeploymentKind.CLOUD,
            version=LINEAR_API_VERSION,
            capabilities=capabilities,
            base_url=LINEAR_API_URL,
            server_title="Linear",
        )

    async def _detect_jira(self, connection: ConnectionDescriptor) -> DetectedServer:
        base_url = connection.base_url
        info = await self._fetch_server_info(base_url)

        version = self._parse_version(base_url, info)
        kind = self._resolve_deployment_kind(connection, info)

        capabilities = lookup_capabilities(BackendFamily.JIRA, kind, version)
        if capabilities is None:
            raise UnsupportedVersionError(
                base_url=base_url,
                version=str(version),
                minimum=str(minimum_version(BackendFamily.JIRA, kind)),
            )

        server_title = info.get("serverTitle")
        logger.info("Detected Jira %s %s at %s", kind.value, version, base_url)
        return DetectedServer(
            family=BackendFamily.JIRA,
            deployment_kind=kind,
            version=version,
            capabilities=capabilities,
            base_url=base_url,
            server_title=server_title if isinstance(server_title, str) else "",
        )

    async def _fetch_server_info(self, base_url: str) -> dict[str, Any]:
        url = f"{base_url}{JIRA_SERVER_INFO_PATH}"
        try:
            try:
                info = await self.transport.request("GET", url)
            except AuthenticationRejected:
                # Some instances hide serverInfo from anonymous users
                method = self._detection_auth()
                if method is None:
                    raise
                logger.info("serverInfo requires authentication, retrying with %s", method.value)
                info = await self.transport.request("GET", url, auth=method)
        except TransientNetworkError as e:
            raise DetectionError(base_url, f"backend unreachable ({e})") from e
        except AuthenticationRejected as e:
            raise DetectionError(base_url, f"serverInfo refused ({e.status_code})") from e
        except (TicketNotFoundError, ValidationError) as e:
            raise DetectionError(base_url, f"serverInfo unavailable ({e})") from e
        except MalformedResponseError as e:
            raise DetectionError(base_url, "serverInfo is not JSON") from e

        if not isinstance(info, dict):
            raise DetectionError(base_url, "serverInfo is not a JSON object")
        return info

    def _detection_auth(self) -> AuthMethod | None:
        for method in _JIRA_DETECTION_AUTH:
            if self.transport.credentials.has_material_for(method):
                return method
        return None

    @staticmethod
    def _parse_version(base_url: str, info: dict[str, Any]) -> Version:
        numbers = info.get("versionNumbers")
        if isinstance(numbers, list):
            try:
                return Version.from_parts(numbers)
            except ValueError:
                logger.debug("Ignoring unusable versionNumbers %r", numbers)

        text = info.get("version")
        if not isinstance(text, str) or not text:
            raise DetectionError(base_url, "serverInfo has no version")
        try:
            return Version.parse(text)
        except ValueError as e:
            raise DetectionError(base_url, f"unparseable version {text!r}") from e

    @staticmethod
    def _resolve_deployment_kind(
        connection: ConnectionDescriptor, info: dict[str, Any]
    ) -> DeploymentKind:
        """The backend's own deploymentType wins over the configured hint."""
        reported = str(info.get("deploymentType") or "").strip().lower()
        if reported == JIRA_CLOUD_DEPLOYMENT:
            return DeploymentKind.CLOUD
        if reported == JIRA_DATA_CENTER_DEPLOYMENT:
            return DeploymentKind.DATA_CENTER

        hint = connection.deployment_hint
        if hint is DeploymentKind.DATA_CENTER:
            return DeploymentKind.DATA_CENTER
        if hint is DeploymentKind.CLOUD:
            logger.warning(
                "Connection '%s' is configured as cloud but the server reports '%s'; "
                "treating it as server",
                connection.name,
                reported or "unknown",
            )
        return DeploymentKind.SERVER


__all__ = [
    "JIRA_SERVER_INFO_PATH",
    "LINEAR_API_URL",
    "LINEAR_API_VERSION",
    "VersionDetector",
]
