"""
Microsoft Graph sign-in log client with failure classification and paging.

This module provides an async client for the directory audit endpoint
(/auditLogs/signIns). Each call fetches exactly one page; throttling and
permission failures are raised immediately as classified errors so the
caller decides whether and when to retry.
"""

import httpx
import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Dict, List, Any, Tuple
import logging

from signin_sync.services.errors import (
    ForbiddenError,
    ThrottledError,
    TransientError,
)

logger = logging.getLogger(__name__)

GRAPH_SCOPE = "https://graph.microsoft.com/.default"

SIGNIN_SELECT_FIELDS = [
    "id",
    "createdDateTime",
    "appDisplayName",
    "resourceDisplayName",
    "userDisplayName",
    "userPrincipalName",
    "userId",
    "clientAppUsed",
    "ipAddress",
    "deviceDetail",
    "location",
    "status",
    "riskState",
    "riskDetail",
    "conditionalAccessStatus",
    "correlationId",
    "isInteractive",
]


def parse_graph_timestamp(value: str) -> datetime:
    """
    Parse a Graph DateTimeOffset string into a naive UTC datetime.

    Graph emits up to seven fractional digits, which are trimmed to
    microseconds before parsing.

    Raises:
        ValueError: If the value is not an ISO-8601 timestamp
    """
    text = value.strip().replace("Z", "+00:00")
    if "." in text:
        head, _, rest = text.partition(".")
        digits = ""
        while rest and rest[0].isdigit():
            digits, rest = digits + rest[0], rest[1:]
        text = f"{head}.{digits[:6].ljust(6, '0')}{rest}"
    dt = datetime.fromisoformat(text)
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def format_graph_timestamp(dt: datetime) -> str:
    """Format a naive UTC datetime the way Graph filters and cursors expect."""
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt.isoformat() + "Z"


@dataclass
class SignInPage:
    """One page of sign-in events in ascending createdDateTime order."""

    records: List[Dict[str, Any]] = field(default_factory=list)
    next_link: Optional[str] = None
    latest_occurred_at: Optional[datetime] = None

    @property
    def has_more(self) -> bool:
        return bool(self.next_link)


class GraphSignInClient:
    """Async client for the Graph sign-in audit log."""

    SIGNINS_ENDPOINT = "/auditLogs/signIns"
    MAX_PAGE_SIZE = 100
    TOKEN_EXPIRY_MARGIN = 60  # seconds

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        authority_host: str = "https://login.microsoftonline.com",
        base_url: str = "https://graph.microsoft.com/v1.0",
        timeout: float = 120.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize Graph client.

        Args:
            client_id: Application (client) ID of the app registration
            client_secret: Client secret for the app registration
            authority_host: OAuth authority used for token requests
            base_url: Graph API base URL
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        self.client_id = client_id
        self.client_secret = client_secret
        self.authority_host = authority_host.rstrip("/")
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

        # Token cache: tenant_id -> (access_token, expires_at monotonic)
        self._tokens: Dict[str, Tuple[str, float]] = {}
        self._token_lock = asyncio.Lock()

        # HTTP client
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    async def __aenter__(self):
        """Async context manager entry."""
        await self._ensure_client()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()

    async def _ensure_client(self):
        """Ensure HTTP client is initialized."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                headers={"Accept": "application/json"},
                timeout=self.timeout,
                transport=self._transport,
            )

    async def close(self):
        """Close HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _get_token(self, tenant_id: str) -> str:
        """
        Acquire an app-only access token for a tenant.

        Tokens are cached until shortly before they expire.

        Raises:
            ForbiddenError: If the authority rejects the app credentials
            ThrottledError: If the authority rate limits the request
            TransientError: On network or server failures
        """
        if not tenant_id:
            raise ForbiddenError(
                "Tenant ID is required",
                hint="Connect a Microsoft Entra tenant in Account Settings.",
            )

        async with self._token_lock:
            cached = self._tokens.get(tenant_id)
            if cached and cached[1] > time.monotonic():
                return cached[0]

            await self._ensure_client()
            url = f"{self.authority_host}/{tenant_id}/oauth2/v2.0/token"
            try:
                response = await self._client.post(
                    url,
                    data={
                        "client_id": self.client_id,
                        "client_secret": self.client_secret,
                        "scope": GRAPH_SCOPE,
                        "grant_type": "client_credentials",
                    },
                )
            except httpx.RequestError as e:
                logger.error(f"Token request failed for tenant {tenant_id}: {e}")
                raise TransientError(
                    "Unable to reach the Microsoft identity platform",
                    hint="Please check your internet connection and try again.",
                ) from e

            if response.status_code == 429:
                raise ThrottledError(retry_after=_retry_after(response))
            if response.status_code >= 500:
                raise TransientError(
                    "Microsoft identity platform server error",
                    hint="This is a temporary issue. Please try again later.",
                    status_code=response.status_code,
                )
            if response.status_code >= 400:
                logger.warning(
                    f"Token request rejected for tenant {tenant_id}: "
                    f"HTTP {response.status_code}"
                )
                raise ForbiddenError(
                    "Authentication failed with Microsoft Graph",
                    hint="Please reconnect your Microsoft Entra integration in Account Settings.",
                    status_code=response.status_code,
                )

            payload = response.json()
            token = payload["access_token"]
            expires_in = int(payload.get("expires_in", 3600))
            self._tokens[tenant_id] = (
                token,
                time.monotonic() + max(0, expires_in - self.TOKEN_EXPIRY_MARGIN),
            )
            return token

    async def _request(
        self,
        method: str,
        url: str,
        tenant_id: str,
        **kwargs
    ) -> Dict[str, Any]:
        """
        Make one authenticated request. No retries.

        Args:
            method: HTTP method
            url: Absolute URL (endpoint or @odata.nextLink)
            tenant_id: Directory tenant the token is issued for
            **kwargs: Additional arguments to pass to httpx request

        Returns:
            JSON response as dictionary

        Raises:
            ThrottledError: HTTP 429
            ForbiddenError: HTTP 401/403
            TransientError: Server errors, other HTTP errors, network errors
        """
        await self._ensure_client()
        token = await self._get_token(tenant_id)

        headers = dict(kwargs.pop("headers", {}) or {})
        headers["Authorization"] = f"Bearer {token}"

        try:
            response = await self._client.request(method, url, headers=headers, **kwargs)
        except httpx.TimeoutException as e:
            logger.error(f"Request timed out on {url}: {e}")
            raise TransientError(
                "Microsoft Graph API request timed out",
                hint=(
                    "Large datasets or slow connections can cause timeouts. "
                    "Try again, or consider syncing during off-peak hours."
                ),
            ) from e
        except httpx.RequestError as e:
            logger.error(f"Request error on {url}: {e}")
            raise TransientError(
                "Unable to connect to Microsoft Graph API",
                hint="Please check your internet connection and try again.",
            ) from e

        if response.status_code == 429:
            retry_after = _retry_after(response)
            logger.warning(
                f"Rate limited by Graph for tenant {tenant_id}. "
                f"Retry after {retry_after} seconds"
            )
            raise ThrottledError(retry_after=retry_after)

        if response.status_code == 401:
            self._tokens.pop(tenant_id, None)
            raise ForbiddenError(
                "Authentication failed with Microsoft Graph",
                hint="Please reconnect your Microsoft Entra integration in Account Settings.",
                status_code=401,
            )

        if response.status_code == 403:
            raise ForbiddenError(
                "Permission denied: AuditLog.Read.All requires admin consent",
                hint=(
                    "Go to Azure Portal > App Registrations > Your App > "
                    "API Permissions > Grant admin consent for your organization"
                ),
                status_code=403,
            )

        if response.status_code >= 500:
            logger.error(f"Server error {response.status_code} on {url}")
            raise TransientError(
                "Microsoft Graph API server error",
                hint="This is a temporary issue with Microsoft's servers. Please try again later.",
                status_code=response.status_code,
            )

        if response.status_code >= 400:
            logger.error(
                f"HTTP error {response.status_code} on {url}: {response.text[:500]}"
            )
            raise TransientError(
                f"HTTP {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )

        return response.json()

    async def fetch_page(
        self,
        tenant_id: str,
        since: datetime,
        page_size: int = 100,
        next_link: Optional[str] = None,
    ) -> SignInPage:
        """
        Fetch one page of sign-in events with createdDateTime >= since.

        Args:
            tenant_id: Directory tenant ID
            since: Watermark (naive UTC); older events are dropped
            page_size: Records per page (clamped to 1-100)
            next_link: Continuation link from a previous page of the same run

        Returns:
            SignInPage with events sorted ascending by createdDateTime

        Example:
            >>> page = await client.fetch_page("contoso-tenant-id", since)
            >>> while page.has_more:
            ...     page = await client.fetch_page(tenant, since, next_link=page.next_link)
        """
        page_size = max(1, min(self.MAX_PAGE_SIZE, int(page_size)))
        headers = {
            "ConsistencyLevel": "eventual",
            "Prefer": f"odata.maxpagesize={page_size}",
        }

        if next_link:
            response = await self._request("GET", next_link, tenant_id, headers=headers)
        else:
            params = {
                "$filter": f"createdDateTime ge {format_graph_timestamp(since)}",
                "$orderby": "createdDateTime asc",
                "$top": page_size,
                "$select": ",".join(SIGNIN_SELECT_FIELDS),
            }
            response = await self._request(
                "GET",
                f"{self.base_url}{self.SIGNINS_ENDPOINT}",
                tenant_id,
                params=params,
                headers=headers,
            )

        keyed = []
        for position, event in enumerate(response.get("value") or []):
            if not isinstance(event, dict) or not event.get("id") or not event.get("createdDateTime"):
                continue
            try:
                occurred_at = parse_graph_timestamp(event["createdDateTime"])
            except ValueError:
                logger.warning(f"Skipping sign-in {event['id']} with bad timestamp")
                continue
            if occurred_at < since:
                continue
            keyed.append((occurred_at, position, event))

        keyed.sort(key=lambda item: (item[0], item[1]))
        records = [event for _, _, event in keyed]
        latest = keyed[-1][0] if keyed else None

        page = SignInPage(
            records=records,
            next_link=response.get("@odata.nextLink"),
            latest_occurred_at=latest,
        )
        logger.info(
            f"Fetched {len(records)} sign-ins for tenant {tenant_id} "
            f"(more: {page.has_more})"
        )
        return page


def _retry_after(response: httpx.Response) -> Optional[float]:
    value = response.headers.get("Retry-After")
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


_graph_client: Optional[GraphSignInClient] = None


def get_graph_client() -> GraphSignInClient:
    """
    Return the process-wide Graph client configured from settings.

    A single instance is shared so app tokens are cached across syncs.

    Example:
        >>> client = get_graph_client()
        >>> page = await client.fetch_page(tenant_id, since)
    """
    global _graph_client
    if _graph_client is None:
        from signin_sync.config import settings

        _graph_client = GraphSignInClient(
            client_id=settings.GRAPH_CLIENT_ID,
            client_secret=settings.GRAPH_CLIENT_SECRET,
            authority_host=settings.GRAPH_AUTHORITY_HOST,
            base_url=settings.GRAPH_API_BASE_URL,
            timeout=settings.GRAPH_REQUEST_TIMEOUT_SECONDS,
        )
    return _graph_client
