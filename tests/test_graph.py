"""
Tests for the Graph sign-in client.

Tests cover:
- Timestamp parsing and formatting
- Query parameters for the first page and nextLink continuation
- Filtering and ordering of returned events
- Token caching
- Failure classification (throttled, forbidden, transient)
"""

import pytest
from datetime import datetime
from urllib.parse import parse_qs, urlparse
import httpx

from signin_sync.services.errors import (
    FORBIDDEN,
    THROTTLED,
    TRANSIENT,
    ForbiddenError,
    ThrottledError,
    TransientError,
)
from signin_sync.services.graph import (
    GraphSignInClient,
    format_graph_timestamp,
    parse_graph_timestamp,
)

TENANT_ID = "11111111-2222-3333-4444-555555555555"

TOKEN_URL = f"https://login.example.test/{TENANT_ID}/oauth2/v2.0/token"


def token_response() -> httpx.Response:
    return httpx.Response(
        200, json={"access_token": "test-token", "token_type": "Bearer", "expires_in": 3600}
    )


def build_client(handler) -> GraphSignInClient:
    return GraphSignInClient(
        client_id="client-id",
        client_secret="client-secret",
        authority_host="https://login.example.test",
        base_url="https://graph.example.test/v1.0",
        timeout=5,
        transport=httpx.MockTransport(handler),
    )


class TestTimestamps:
    """Graph DateTimeOffset handling."""

    def test_parse_trims_seven_fraction_digits(self):
        assert parse_graph_timestamp("2024-01-15T10:30:00.1234567Z") == datetime(
            2024, 1, 15, 10, 30, 0, 123456
        )

    def test_parse_without_fraction(self):
        assert parse_graph_timestamp("2024-01-15T10:30:00Z") == datetime(2024, 1, 15, 10, 30)

    def test_parse_converts_offset_to_utc(self):
        assert parse_graph_timestamp("2024-01-15T12:30:00+02:00") == datetime(2024, 1, 15, 10, 30)

    def test_parse_rejects_garbage(self):
        with pytest.raises(ValueError):
            parse_graph_timestamp("yesterday")

    def test_format(self):
        assert format_graph_timestamp(datetime(2024, 1, 15, 10, 30)) == "2024-01-15T10:30:00Z"


class TestClientConfiguration:

    def test_client_initialization(self):
        client = build_client(lambda request: token_response())

        assert client.base_url == "https://graph.example.test/v1.0"
        assert client.MAX_PAGE_SIZE == 100
        assert client.is_configured is True

    def test_missing_credentials(self):
        assert GraphSignInClient(client_id="", client_secret="").is_configured is False


@pytest.mark.asyncio
@pytest.mark.graph
class TestGraphSignInClient:
    """Test suite for GraphSignInClient."""

    async def test_context_manager(self):
        """Test async context manager functionality."""
        client = build_client(lambda request: token_response())

        async with client as c:
            assert c._client is not None

        # Client should be closed after context
        assert client._client is None

    async def test_fetch_first_page_query(self):
        """First page filters on the watermark and asks for ascending order."""
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/token"):
                return token_response()
            seen["url"] = request.url
            seen["headers"] = request.headers
            return httpx.Response(200, json={"value": []})

        since = datetime(2024, 1, 15, 10, 0, 0)
        async with build_client(handler) as client:
            page = await client.fetch_page(TENANT_ID, since, page_size=50)

        query = parse_qs(urlparse(str(seen["url"])).query)
        assert seen["url"].path == "/v1.0/auditLogs/signIns"
        assert query["$filter"] == ["createdDateTime ge 2024-01-15T10:00:00Z"]
        assert query["$orderby"] == ["createdDateTime asc"]
        assert query["$top"] == ["50"]
        assert "createdDateTime" in query["$select"][0]
        assert seen["headers"]["Authorization"] == "Bearer test-token"
        assert seen["headers"]["Prefer"] == "odata.maxpagesize=50"
        assert page.records == []
        assert page.has_more is False
        assert page.latest_occurred_at is None

    async def test_fetch_page_clamps_page_size(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/token"):
                return token_response()
            seen["query"] = parse_qs(urlparse(str(request.url)).query)
            return httpx.Response(200, json={"value": []})

        async with build_client(handler) as client:
            await client.fetch_page(TENANT_ID, datetime(2024, 1, 1), page_size=500)

        assert seen["query"]["$top"] == ["100"]

    async def test_fetch_follows_next_link_verbatim(self):
        next_link = "https://graph.example.test/v1.0/auditLogs/signIns?$skiptoken=abc"
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/token"):
                return token_response()
            seen.append(str(request.url))
            return httpx.Response(200, json={"value": []})

        async with build_client(handler) as client:
            await client.fetch_page(TENANT_ID, datetime(2024, 1, 1), next_link=next_link)

        assert len(seen) == 1
        assert "skiptoken=abc" in seen[0]
        assert "filter" not in seen[0]

    async def test_fetch_sorts_and_filters_events(self, signin_event_factory):
        """Events are returned ascending; malformed and too-old ones are dropped."""
        since = datetime(2024, 1, 15, 10, 0, 0)
        newer = signin_event_factory(datetime(2024, 1, 15, 10, 5), event_id="b")
        older = signin_event_factory(datetime(2024, 1, 15, 10, 1), event_id="a")
        too_old = signin_event_factory(datetime(2024, 1, 15, 9, 0), event_id="old")
        no_id = signin_event_factory(datetime(2024, 1, 15, 10, 2), event_id="x")
        no_id["id"] = None
        bad_time = signin_event_factory(datetime(2024, 1, 15, 10, 3), event_id="bad")
        bad_time["createdDateTime"] = "not-a-date"

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/token"):
                return token_response()
            return httpx.Response(
                200,
                json={
                    "value": [newer, too_old, no_id, older, bad_time],
                    "@odata.nextLink": "https://graph.example.test/next",
                },
            )

        async with build_client(handler) as client:
            page = await client.fetch_page(TENANT_ID, since)

        assert [r["id"] for r in page.records] == ["a", "b"]
        assert page.latest_occurred_at == datetime(2024, 1, 15, 10, 5)
        assert page.has_more is True
        assert page.next_link == "https://graph.example.test/next"

    async def test_token_is_cached(self):
        calls = {"token": 0, "signins": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/token"):
                calls["token"] += 1
                return token_response()
            calls["signins"] += 1
            return httpx.Response(200, json={"value": []})

        async with build_client(handler) as client:
            await client.fetch_page(TENANT_ID, datetime(2024, 1, 1))
            await client.fetch_page(TENANT_ID, datetime(2024, 1, 1))

        assert calls == {"token": 1, "signins": 2}

    async def test_rate_limit_is_throttled(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/token"):
                return token_response()
            return httpx.Response(429, headers={"Retry-After": "30"})

        async with build_client(handler) as client:
            with pytest.raises(ThrottledError) as exc_info:
                await client.fetch_page(TENANT_ID, datetime(2024, 1, 1))

        assert exc_info.value.classification == THROTTLED
        assert exc_info.value.retry_after == 30.0
        assert exc_info.value.retryable is True

    async def test_missing_consent_is_forbidden(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/token"):
                return token_response()
            return httpx.Response(403, json={"error": {"code": "Authorization_RequestDenied"}})

        async with build_client(handler) as client:
            with pytest.raises(ForbiddenError) as exc_info:
                await client.fetch_page(TENANT_ID, datetime(2024, 1, 1))

        error = exc_info.value.to_dict()
        assert error["classification"] == FORBIDDEN
        assert "AuditLog.Read.All" in error["message"]
        assert "Grant admin consent" in error["hint"]
        assert error["retryable"] is False

    async def test_unauthorized_drops_cached_token(self):
        calls = {"token": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/token"):
                calls["token"] += 1
                return token_response()
            return httpx.Response(401)

        async with build_client(handler) as client:
            with pytest.raises(ForbiddenError):
                await client.fetch_page(TENANT_ID, datetime(2024, 1, 1))
            with pytest.raises(ForbiddenError):
                await client.fetch_page(TENANT_ID, datetime(2024, 1, 1))

        assert calls["token"] == 2

    async def test_rejected_credentials_are_forbidden(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert str(request.url) == TOKEN_URL
            return httpx.Response(400, json={"error": "invalid_client"})

        async with build_client(handler) as client:
            with pytest.raises(ForbiddenError) as exc_info:
                await client.fetch_page(TENANT_ID, datetime(2024, 1, 1))

        assert exc_info.value.message == "Authentication failed with Microsoft Graph"

    async def test_server_error_is_transient(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/token"):
                return token_response()
            return httpx.Response(503)

        async with build_client(handler) as client:
            with pytest.raises(TransientError) as exc_info:
                await client.fetch_page(TENANT_ID, datetime(2024, 1, 1))

        assert exc_info.value.classification == TRANSIENT
        assert exc_info.value.status_code == 503

    async def test_network_error_is_transient(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/token"):
                return token_response()
            raise httpx.ConnectError("connection refused", request=request)

        async with build_client(handler) as client:
            with pytest.raises(TransientError):
                await client.fetch_page(TENANT_ID, datetime(2024, 1, 1))

    async def test_request_timeout_is_transient(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/token"):
                return token_response()
            raise httpx.ReadTimeout("timed out", request=request)

        async with build_client(handler) as client:
            with pytest.raises(TransientError) as exc_info:
                await client.fetch_page(TENANT_ID, datetime(2024, 1, 1))

        assert "timed out" in exc_info.value.message

    async def test_missing_tenant_is_forbidden(self):
        async with build_client(lambda request: token_response()) as client:
            with pytest.raises(ForbiddenError):
                await client.fetch_page("", datetime(2024, 1, 1))
