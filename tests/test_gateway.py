"""Unit tests for the HubSpot contacts gateway.

The HubSpot SDK client is a MagicMock; responses are SimpleNamespace objects
shaped like the SDK's models. Covers paging, batch read/create request
construction, 207 partial results, retry policy, and the request limiter.
"""

from __future__ import annotations

import asyncio
import threading
import time
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from hubspot.crm.contacts import ApiException

from src.crm_bridge.contacts.sync.gateway import ContactsApi, HubSpotGateway, RequestLimiter
from src.crm_bridge.core.errors import AuthorizationRequiredError


def _obj(remote_id: int, email: str | None, **props) -> SimpleNamespace:
    return SimpleNamespace(id=remote_id, properties={"email": email, **props})


def _page(results, after: str | None = None) -> SimpleNamespace:
    paging = SimpleNamespace(next=SimpleNamespace(after=after)) if after else None
    return SimpleNamespace(results=results, paging=paging)


@pytest.fixture
def sdk_client() -> MagicMock:
    return MagicMock()


@pytest.fixture
def api(sdk_client) -> ContactsApi:
    return ContactsApi(sdk_client, RequestLimiter(max_concurrent=6, min_interval=0))


# ── Listing ──────────────────────────────────────────────────────────────────


class TestListAll:
    async def test_follows_paging_cursor(self, api, sdk_client):
        get_page = sdk_client.crm.contacts.basic_api.get_page
        get_page.side_effect = [
            _page([_obj(1, "a@x.com"), _obj(2, "b@x.com")], after="cursor-2"),
            _page([_obj(3, None, firstname="Anon")]),
        ]

        contacts = await api.list_all()

        assert [c.id for c in contacts] == ["1", "2", "3"]
        assert contacts[2].email is None
        assert get_page.call_count == 2
        first, second = get_page.call_args_list
        assert first.kwargs["after"] is None
        assert first.kwargs["limit"] == 100
        assert first.kwargs["properties"] == ["email", "firstname", "lastname"]
        assert first.kwargs["archived"] is False
        assert second.kwargs["after"] == "cursor-2"

    async def test_retries_rate_limited_page(self, api, sdk_client):
        get_page = sdk_client.crm.contacts.basic_api.get_page
        get_page.side_effect = [
            ApiException(status=429, reason="Too Many Requests"),
            _page([_obj(1, "a@x.com")]),
        ]

        contacts = await api.list_all()

        assert len(contacts) == 1
        assert get_page.call_count == 2

    async def test_client_error_is_not_retried(self, api, sdk_client):
        get_page = sdk_client.crm.contacts.basic_api.get_page
        get_page.side_effect = ApiException(status=401, reason="Unauthorized")

        with pytest.raises(ApiException):
            await api.list_all()
        assert get_page.call_count == 1


# ── Batch Read ───────────────────────────────────────────────────────────────


class TestBatchRead:
    async def test_reads_by_email_id_property(self, api, sdk_client):
        read = sdk_client.crm.contacts.batch_api.read
        read.return_value = SimpleNamespace(results=[_obj(42, "a@x.com")])

        result = await api.batch_read(["a@x.com", "b@x.com", "a@x.com"])

        assert [c.id for c in result.results] == ["42"]
        request = read.call_args.kwargs["batch_read_input_simple_public_object_id"]
        assert request.id_property == "email"
        assert [i.id for i in request.inputs] == ["a@x.com", "b@x.com"]
        assert read.call_args.kwargs["archived"] is False

    async def test_empty_input_skips_call(self, api, sdk_client):
        result = await api.batch_read([])

        assert result.results == []
        sdk_client.crm.contacts.batch_api.read.assert_not_called()

    async def test_rejects_more_than_100_inputs(self, api, sdk_client):
        with pytest.raises(ValueError):
            await api.batch_read([f"u{i}@x.com" for i in range(101)])
        sdk_client.crm.contacts.batch_api.read.assert_not_called()


# ── Batch Create ─────────────────────────────────────────────────────────────


class TestBatchCreate:
    async def test_partial_success_keeps_both_halves(self, api, sdk_client):
        create = sdk_client.crm.contacts.batch_api.create
        error = MagicMock()
        error.to_dict.return_value = {"status": "error", "message": "Property values were not valid"}
        create.return_value = SimpleNamespace(
            status="COMPLETE",
            results=[_obj(7, "a@x.com", firstname="Ada")],
            errors=[error],
        )

        result = await api.batch_create(
            [{"email": "a@x.com", "firstname": "Ada"}, {"email": "bad"}]
        )

        assert [c.id for c in result.results] == ["7"]
        assert result.errors == [{"status": "error", "message": "Property values were not valid"}]
        request = create.call_args.kwargs["batch_input_simple_public_object_input_for_create"]
        assert [i.properties for i in request.inputs] == [
            {"email": "a@x.com", "firstname": "Ada"},
            {"email": "bad"},
        ]

    async def test_server_error_is_not_retried(self, api, sdk_client):
        create = sdk_client.crm.contacts.batch_api.create
        create.side_effect = ApiException(status=503, reason="Service Unavailable")

        with pytest.raises(ApiException):
            await api.batch_create([{"email": "a@x.com"}])
        assert create.call_count == 1


# ── Gateway ──────────────────────────────────────────────────────────────────


class TestHubSpotGateway:
    async def test_connect_builds_client_with_fresh_token(self):
        provider = AsyncMock()
        provider.get_access_token.return_value = "token-abc"
        factory = MagicMock()

        gateway = HubSpotGateway(provider, customer_id="1", client_factory=factory)
        api = await gateway.connect()

        assert isinstance(api, ContactsApi)
        provider.get_access_token.assert_awaited_once_with("1")
        factory.assert_called_once_with(access_token="token-abc")

    async def test_connect_propagates_authorization_errors(self):
        provider = AsyncMock()
        provider.get_access_token.side_effect = AuthorizationRequiredError("1")
        factory = MagicMock()

        with pytest.raises(AuthorizationRequiredError):
            await HubSpotGateway(provider, customer_id="1", client_factory=factory).connect()
        factory.assert_not_called()


# ── Request Limiter ──────────────────────────────────────────────────────────


class TestRequestLimiter:
    async def test_bounds_concurrent_requests(self):
        limiter = RequestLimiter(max_concurrent=2, min_interval=0)
        lock = threading.Lock()
        in_flight = 0
        peak = 0

        def blocking_call():
            nonlocal in_flight, peak
            with lock:
                in_flight += 1
                peak = max(peak, in_flight)
            time.sleep(0.05)
            with lock:
                in_flight -= 1

        await asyncio.gather(*(limiter.run(blocking_call) for _ in range(6)))

        assert 0 < peak <= 2

    async def test_spaces_request_starts(self):
        limiter = RequestLimiter(max_concurrent=6, min_interval=0.05)
        started = time.monotonic()

        await asyncio.gather(*(limiter.run(lambda: None) for _ in range(3)))

        # Three starts need at least two full intervals
        assert time.monotonic() - started >= 0.09

    async def test_passes_arguments_through(self):
        limiter = RequestLimiter(min_interval=0)
        assert await limiter.run(lambda a, b=0: a + b, 2, b=3) == 5
