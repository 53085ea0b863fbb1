"""HTTP transport shared by every component of one connection.

HttpTransport owns a single ``httpx.AsyncClient`` and applies one retry
policy to every request:
- Retries timeouts, network errors and server errors (5xx)
- Retries 429 Too Many Requests, honouring Retry-After
- Surfaces every other 4xx immediately as a typed error

Resource Management:
    Use as an async context manager, or call close() explicitly:

        async with HttpTransport(credentials) as transport:
            data = await transport.request("GET", "/rest/api/2/myself")

Testability:
    Inject a no-op ``sleeper`` and a zero ``jitter_generator`` for
    deterministic tests, and an ``httpx.MockTransport`` (or a ready-made
    client) to avoid real network traffic.
"""

from __future__ import annotations

import asyncio
import json
import logging
import random
import weakref
from collections.abc import Awaitable, Callable, Mapping
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from typing import Any

import httpx

from ticketbridge.config.performance import MAX_RETRY_DELAY_SECONDS, TransportConfig
from ticketbridge.integrations.capabilities import AuthMethod
from ticketbridge.integrations.credentials import CredentialSet
from ticketbridge.integrations.errors import (
    AuthenticationRejected,
    MalformedResponseError,
    TicketNotFoundError,
    TransientNetworkError,
    ValidationError,
)
from ticketbridge.utils.logging import log_request

logger = logging.getLogger(__name__)

HTTP_UNAUTHORIZED = 401
HTTP_FORBIDDEN = 403
HTTP_NOT_FOUND = 404
HTTP_TOO_MANY_REQUESTS = 429

# Maximum length for error response body in exception messages
MAX_ERROR_BODY_LENGTH = 200

# Maximum length for debug log messages
MAX_DEBUG_LOG_LENGTH = 1000

# GraphQL error extension codes that mean the credential was refused
GRAPHQL_AUTH_ERROR_CODES = frozenset({"AUTHENTICATION_ERROR", "UNAUTHENTICATED", "FORBIDDEN"})

AsyncSleeper = Callable[[float], Awaitable[None]]


def _default_jitter_generator(max_jitter: float) -> float:
    return random.uniform(0, max_jitter)


def truncate_error_body(body: str) -> str:
    """Truncate an error body for use in exception messages."""
    if len(body) <= MAX_ERROR_BODY_LENGTH:
        return body
    return body[:MAX_ERROR_BODY_LENGTH] + "... [truncated]"


def sanitize_debug_log(content: str) -> str:
    """Truncate content for DEBUG-level logging."""
    if len(content) <= MAX_DEBUG_LOG_LENGTH:
        return content
    return content[:MAX_DEBUG_LOG_LENGTH] + "... [truncated for security]"


def extract_error_details(payload: Any) -> list[str]:
    """Pull human-readable messages out of a Jira or GraphQL error body.

    Handles Jira's ``{"errorMessages": [...], "errors": {field: msg}}`` and
    GraphQL's ``{"errors": [{"message": ...}]}``.
    """
    if not isinstance(payload, dict):
        return []
    details: list[str] = []
    messages = payload.get("errorMessages")
    if isinstance(messages, list):
        details.extend(str(m) for m in messages if m)
    errors = payload.get("errors")
    if isinstance(errors, dict):
        details.extend(f"{key}: {value}" for key, value in errors.items())
    elif isinstance(errors, list):
        for error in errors:
            if isinstance(error, dict) and error.get("message"):
                details.append(str(error["message"]))
            elif isinstance(error, str):
                details.append(error)
    message = payload.get("message")
    if not details and isinstance(message, str) and message:
        details.append(message)
    return details


def graphql_error_codes(payload: Any) -> set[str]:
    """Collect ``extensions.code`` values from a GraphQL error list."""
    codes: set[str] = set()
    if not isinstance(payload, dict) or not isinstance(payload.get("errors"), list):
        return codes
    for error in payload["errors"]:
        if not isinstance(error, dict):
            continue
        extensions = error.get("extensions")
        if isinstance(extensions, dict) and extensions.get("code"):
            codes.add(str(extensions["code"]).upper())
    return codes


class HttpTransport:
    """Retrying HTTP client bound to one connection's credentials.

    Attributes:
        base_url: Prefix for relative request paths
        credentials: Credential material used to build auth headers
        config: Timeout and retry settings
        request_count: Number of HTTP requests sent, retries included
    """

    def __init__(
        self,
        credentials: CredentialSet | None = None,
        config: TransportConfig | None = None,
        *,
        base_url: str = "",
        sleeper: AsyncSleeper | None = None,
        jitter_generator: Callable[[float], float] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the transport.

        Args:
            credentials: Credential material (empty set when omitted)
            config: Timeout and retry settings (defaults when omitted)
            base_url: Prefix for relative request paths
            sleeper: Async sleep callable (defaults to asyncio.sleep)
            jitter_generator: Jitter callable (defaults to random.uniform)
            transport: Low-level httpx transport for the owned client
            http_client: Pre-built client; the transport still closes it
        """
        self.base_url = base_url.rstrip("/")
        self.credentials = credentials or CredentialSet()
        self.config = config or TransportConfig()
        self.request_count = 0

        self._http_client: httpx.AsyncClient | None = http_client
        self._client_lock = asyncio.Lock()
        self._httpx_transport = transport

        self._sleeper: AsyncSleeper = sleeper if sleeper is not None else asyncio.sleep
        self._jitter_generator = (
            jitter_generator if jitter_generator is not None else _default_jitter_generator
        )

        self._closed = False
        self._ensure_cleanup_warning()

    def _ensure_cleanup_warning(self) -> None:
        """Warn through logging if the transport is collected without close().

        The finalizer must not reference ``self``; it only reads a shared flag.
        """
        instance_id = id(self)
        closed_flag: list[bool] = [False]
        self._closed_flag = closed_flag

        def _warn_on_gc() -> None:
            if not closed_flag[0]:
                logger.warning(
                    "HttpTransport (id=%s) was garbage collected without close() being called. "
                    "Use 'async with' or call close() explicitly.",
                    instance_id,
                )

        weakref.finalize(self, _warn_on_gc)

    async def __aenter__(self) -> HttpTransport:
        await self._get_http_client()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    @property
    def closed(self) -> bool:
        return self._closed

    async def close(self) -> None:
        """Close the shared HTTP client. Safe to call multiple times."""
        self._closed = True
        self._closed_flag[0] = True
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    async def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create the shared HTTP client (double-checked under a lock)."""
        if self._http_client is None:
            async with self._client_lock:
                if self._http_client is None:
                    kwargs: dict[str, Any] = {
                        "timeout": httpx.Timeout(self.config.timeout_seconds),
                        "headers": {"Accept": "application/json"},
                    }
                    if self._httpx_transport is not None:
                        kwargs["transport"] = self._httpx_transport
                    self._http_client = httpx.AsyncClient(**kwargs)
        return self._http_client

    def auth_kwargs(self, method: AuthMethod | None) -> dict[str, Any]:
        """Build httpx request arguments that authenticate with ``method``.

        Raises:
            ValueError: If the credential set lacks material for ``method``
        """
        if method is None:
            return {}
        if not self.credentials.has_material_for(method):
            raise ValueError(f"No credential material for {method.value}")
        if method is AuthMethod.BEARER_TOKEN:
            return {"headers": {"Authorization": f"Bearer {self.credentials.get('token')}"}}
        if method is AuthMethod.API_KEY:
            # Linear expects the raw key, without a Bearer prefix
            return {"headers": {"Authorization": str(self.credentials.get("api_key"))}}
        identity, secret = str(self.credentials.identity), str(self.credentials.secret)
        return {"auth": httpx.BasicAuth(identity, secret)}

    def url_for(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return f"{self.base_url}{path}"

    async def request(
        self,
        method: str,
        path: str,
        *,
        auth: AuthMethod | None = None,
        params: Mapping[str, Any] | None = None,
        json_data: Any = None,
        headers: Mapping[str, str] | None = None,
        resource_id: str | None = None,
    ) -> Any:
        """Send a request with retries and return the decoded JSON body.

        Args:
            method: HTTP method
            path: Absolute URL or path relative to ``base_url``
            auth: Authentication method to apply, or None for anonymous
            params: Query parameters
            json_data: JSON request body
            headers: Extra request headers
            resource_id: Identifier reported by TicketNotFoundError on 404

        Returns:
            Decoded JSON body, or None for an empty response

        Raises:
            AuthenticationRejected: On 401/403
            TicketNotFoundError: On 404
            ValidationError: On any other non-retryable 4xx
            TransientNetworkError: When retryable failures exhaust all attempts
            MalformedResponseError: When a 2xx body is not valid JSON
        """
        url = self.url_for(path)
        response = await self._send_with_retry(
            method,
            url,
            auth=auth,
            params=params,
            json_data=json_data,
            headers=headers,
            resource_id=resource_id,
        )
        if not response.content:
            return None
        try:
            return response.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.debug("Non-JSON response from %s: %s", url, sanitize_debug_log(response.text))
            raise MalformedResponseError(url, "response is not valid JSON") from e

    async def graphql(
        self,
        url: str,
        query: str,
        variables: Mapping[str, Any] | None = None,
        *,
        auth: AuthMethod | None = None,
    ) -> dict[str, Any]:
        """Run a GraphQL operation and return its ``data`` object.

        A response carrying ``errors`` is never retried: authentication codes
        raise AuthenticationRejected, anything else ValidationError.
        """
        payload: dict[str, Any] = {"query": query}
        if variables:
            payload["variables"] = dict(variables)
        body = await self.request("POST", url, auth=auth, json_data=payload)
        if not isinstance(body, dict):
            raise MalformedResponseError(url, "GraphQL response is not an object")
        if body.get("errors"):
            details = extract_error_details(body)
            if graphql_error_codes(body) & GRAPHQL_AUTH_ERROR_CODES:
                raise AuthenticationRejected(
                    HTTP_UNAUTHORIZED,
                    message=f"Authentication rejected: {'; '.join(details)}",
                )
            raise ValidationError(200, details)
        data = body.get("data")
        if not isinstance(data, dict):
            raise MalformedResponseError(url, "GraphQL response contains null data")
        return data

    async def _send_with_retry(
        self,
        method: str,
        url: str,
        *,
        auth: AuthMethod | None,
        params: Mapping[str, Any] | None,
        json_data: Any,
        headers: Mapping[str, str] | None,
        resource_id: str | None,
    ) -> httpx.Response:
        """Execute a request with exponential backoff.

        Retry Policy:
            - Retries on timeouts, network errors and server errors (5xx)
            - Retries on 429 Too Many Requests (respects Retry-After header)
            - Does NOT retry on other client errors (4xx except 429)

        Delays are capped at MAX_RETRY_DELAY_SECONDS.
        """
        http_client = await self._get_http_client()
        max_attempts = self.config.max_attempts

        kwargs: dict[str, Any] = self.auth_kwargs(auth)
        if headers:
            kwargs["headers"] = {**kwargs.get("headers", {}), **headers}
        if params:
            kwargs["params"] = dict(params)
        if json_data is not None:
            kwargs["json"] = json_data

        last_error: BaseException | None = None
        last_status: int | None = None

        for attempt in range(max_attempts):
            retry_delay: float | None = None
            self.request_count += 1
            try:
                response = await http_client.request(method, url, **kwargs)
            except httpx.TimeoutException as e:
                last_error, last_status = e, None
                log_request(method, url, None, attempt + 1)
                logger.warning(
                    "Timeout calling %s (attempt %d/%d): %s", url, attempt + 1, max_attempts, e
                )
            except httpx.HTTPError as e:
                last_error, last_status = e, None
                log_request(method, url, None, attempt + 1)
                logger.warning(
                    "Network error calling %s (attempt %d/%d): %s",
                    url,
                    attempt + 1,
                    max_attempts,
                    e,
                )
            else:
                status_code = response.status_code
                log_request(method, url, status_code, attempt + 1)
                if status_code < 400:
                    return response

                if status_code == HTTP_TOO_MANY_REQUESTS:
                    last_error, last_status = None, status_code
                    retry_delay = self._get_retry_after_delay(response, attempt)
                    logger.warning(
                        "Rate limited by %s (attempt %d/%d), waiting %.1fs",
                        url,
                        attempt + 1,
                        max_attempts,
                        retry_delay,
                    )
                elif status_code >= 500:
                    last_error, last_status = None, status_code
                    logger.warning(
                        "Server error from %s (attempt %d/%d): status=%d",
                        url,
                        attempt + 1,
                        max_attempts,
                        status_code,
                    )
                else:
                    self._raise_for_client_error(response, url, resource_id)

            if attempt < max_attempts - 1:
                if retry_delay is None:
                    calculated_delay = self.config.retry_base_delay_seconds * (2**attempt)
                    capped_delay = min(calculated_delay, MAX_RETRY_DELAY_SECONDS)
                    retry_delay = capped_delay + self._jitter_generator(capped_delay * 0.1)
                await self._sleeper(retry_delay)

        raise TransientNetworkError(
            attempts=max_attempts,
            last_error=last_error,
            status_code=last_status,
        ) from last_error

    def _raise_for_client_error(
        self, response: httpx.Response, url: str, resource_id: str | None
    ) -> None:
        """Map a non-retryable 4xx response to a typed error."""
        status_code = response.status_code
        body_text = response.text
        logger.debug(
            "Error response %d from %s: %s",
            status_code,
            url,
            sanitize_debug_log(body_text),
        )
        try:
            payload = response.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            payload = None

        if status_code in (HTTP_UNAUTHORIZED, HTTP_FORBIDDEN) or (
            graphql_error_codes(payload) & GRAPHQL_AUTH_ERROR_CODES
        ):
            raise AuthenticationRejected(status_code)
        if status_code == HTTP_NOT_FOUND:
            raise TicketNotFoundError(resource_id or httpx.URL(url).path)

        details = extract_error_details(payload)
        if not details and body_text:
            details = [truncate_error_body(body_text)]
        raise ValidationError(status_code, details)

    def _get_retry_after_delay(self, response: httpx.Response, attempt: int) -> float:
        """Extract the Retry-After delay (seconds or HTTP-date), or fall back to backoff."""
        retry_after = response.headers.get("Retry-After")
        if retry_after:
            try:
                return min(max(0.0, float(retry_after)), MAX_RETRY_DELAY_SECONDS)
            except ValueError:
                pass

            try:
                retry_date = parsedate_to_datetime(retry_after)
                http_date_delay: float = (retry_date - datetime.now(UTC)).total_seconds()
                return min(max(0.0, http_date_delay), MAX_RETRY_DELAY_SECONDS)
            except (ValueError, TypeError) as e:
                logger.warning(
                    "Failed to parse Retry-After header '%s': %s. "
                    "Falling back to exponential backoff.",
                    retry_after,
                    e,
                )

        default_delay: float = self.config.retry_base_delay_seconds * (2**attempt)
        return min(default_delay, MAX_RETRY_DELAY_SECONDS)


__all__ = [
    "AsyncSleeper",
    "HttpTransport",
    "MAX_ERROR_BODY_LENGTH",
    "extract_error_details",
    "graphql_error_codes",
    "sanitize_debug_log",
    "truncate_error_body",
]
