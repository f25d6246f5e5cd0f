"""HubSpot contacts gateway -- rate-limited async access to the HubSpot SDK.

The SDK is synchronous, so every call runs in a worker thread via
asyncio.to_thread, gated by a RequestLimiter (bounded in-flight requests and
a minimum spacing between request starts).

HubSpotGateway.connect() fetches a current access token and returns a
short-lived ContactsApi carrying its own SDK client. Callers re-connect
whenever they need fresh credentials; no client is shared or mutated.

Idempotent reads (listing pages, batch reads) are retried with tenacity on
429 and 5xx responses. Batch creates are never retried: a retry after a
timed-out create could duplicate contacts in HubSpot.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable, Iterable, Sequence
from typing import Any, Protocol

import structlog
from hubspot import HubSpot
from hubspot.crm.contacts import (
    ApiException,
    BatchInputSimplePublicObjectInputForCreate,
    BatchReadInputSimplePublicObjectId,
    SimplePublicObjectId,
    SimplePublicObjectInputForCreate,
)
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from src.crm_bridge.contacts.schemas import (
    CONTACT_PROPERTIES,
    BatchCreateResult,
    BatchReadResult,
    RemoteContact,
)
from src.crm_bridge.contacts.sync.batching import MAX_BATCH_SIZE

logger = structlog.get_logger(__name__)

PAGE_SIZE = 100


class TokenProvider(Protocol):
    async def get_access_token(self, customer_id: str) -> str: ...


def _is_retryable(exc: BaseException) -> bool:
    """Retry rate limiting and server-side failures only."""
    if not isinstance(exc, ApiException):
        return False
    status = exc.status or 0
    return status == 429 or status >= 500


_hubspot_read_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception(_is_retryable),
    reraise=True,
)


# ── Rate Limiting ───────────────────────────────────────────────────────────


class RequestLimiter:
    """Bound concurrent HubSpot requests and space out their start times.

    Args:
        max_concurrent: Maximum requests in flight at once.
        min_interval: Minimum seconds between two request starts.
    """

    def __init__(self, max_concurrent: int = 6, min_interval: float = 1 / 9) -> None:
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._min_interval = min_interval
        self._lock = asyncio.Lock()
        self._last_start = 0.0

    async def run(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Run a blocking SDK call in a thread once the limiter allows it."""
        async with self._semaphore:
            async with self._lock:
                wait = self._last_start + self._min_interval - time.monotonic()
                if wait > 0:
                    await asyncio.sleep(wait)
                self._last_start = time.monotonic()
            return await asyncio.to_thread(fn, *args, **kwargs)


# ── Response Conversion ─────────────────────────────────────────────────────


def _to_remote_contact(obj: Any) -> RemoteContact:
    return RemoteContact(id=str(obj.id), properties=dict(obj.properties or {}))


def _error_to_dict(error: Any) -> dict[str, Any]:
    if hasattr(error, "to_dict"):
        return error.to_dict()
    if isinstance(error, dict):
        return error
    return {"message": str(error)}


def _unique(values: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(values))


# ── Contacts API ────────────────────────────────────────────────────────────


class ContactsApi:
    """Authenticated HubSpot contacts client for one unit of work.

    Args:
        client: SDK client constructed with a current access token.
        limiter: Shared request limiter.
    """

    def __init__(self, client: HubSpot, limiter: RequestLimiter) -> None:
        self._client = client
        self._limiter = limiter

    @property
    def _contacts(self) -> Any:
        return self._client.crm.contacts

    @_hubspot_read_retry
    async def _get_page(self, after: str | None, properties: Sequence[str]) -> Any:
        return await self._limiter.run(
            self._contacts.basic_api.get_page,
            limit=PAGE_SIZE,
            after=after,
            properties=list(properties),
            archived=False,
        )

    async def list_all(
        self, properties: Sequence[str] = CONTACT_PROPERTIES
    ) -> list[RemoteContact]:
        """Fetch every non-archived contact, following the paging cursor.

        Any failure (after retries) propagates: a partial listing is never
        returned.
        """
        contacts: list[RemoteContact] = []
        after: str | None = None
        pages = 0

        while True:
            page = await self._get_page(after, properties)
            pages += 1
            contacts.extend(_to_remote_contact(obj) for obj in page.results or [])

            paging = getattr(page, "paging", None)
            next_page = getattr(paging, "next", None) if paging else None
            after = getattr(next_page, "after", None) if next_page else None
            if not after:
                break

        logger.info("hubspot.list_all_complete", contacts=len(contacts), pages=pages)
        return contacts

    @_hubspot_read_retry
    async def batch_read(
        self,
        emails: Sequence[str],
        properties: Sequence[str] = CONTACT_PROPERTIES,
    ) -> BatchReadResult:
        """Look up existing HubSpot contacts by email.

        Emails HubSpot does not know are simply absent from the results.
        """
        ids = _unique(emails)
        if not ids:
            return BatchReadResult()
        if len(ids) > MAX_BATCH_SIZE:
            raise ValueError(f"batch_read accepts at most {MAX_BATCH_SIZE} inputs, got {len(ids)}")

        request = BatchReadInputSimplePublicObjectId(
            id_property="email",
            inputs=[SimplePublicObjectId(id=email) for email in ids],
            properties=list(properties),
            properties_with_history=[],
        )
        response = await self._limiter.run(
            self._contacts.batch_api.read,
            batch_read_input_simple_public_object_id=request,
            archived=False,
        )
        return BatchReadResult(
            results=[_to_remote_contact(obj) for obj in response.results or []]
        )

    async def batch_create(self, inputs: Sequence[dict[str, str]]) -> BatchCreateResult:
        """Create contacts from property dicts in a single call.

        A 207 multi-status response is returned as-is: successful records in
        ``results``, per-record failures in ``errors``.
        """
        if len(inputs) > MAX_BATCH_SIZE:
            raise ValueError(f"batch_create accepts at most {MAX_BATCH_SIZE} inputs, got {len(inputs)}")

        request = BatchInputSimplePublicObjectInputForCreate(
            inputs=[
                SimplePublicObjectInputForCreate(properties=dict(props), associations=[])
                for props in inputs
            ]
        )
        response = await self._limiter.run(
            self._contacts.batch_api.create,
            batch_input_simple_public_object_input_for_create=request,
        )
        return BatchCreateResult(
            status=str(getattr(response, "status", "COMPLETE")),
            results=[_to_remote_contact(obj) for obj in response.results or []],
            errors=[_error_to_dict(e) for e in getattr(response, "errors", None) or []],
        )


# ── Gateway ─────────────────────────────────────────────────────────────────


class HubSpotGateway:
    """Factory for authenticated ContactsApi instances.

    Args:
        token_provider: Supplies a currently valid access token or raises.
        customer_id: Customer whose HubSpot portal is targeted.
        limiter: Request limiter shared by every ContactsApi.
        client_factory: Builds an SDK client from an access token.
    """

    def __init__(
        self,
        token_provider: TokenProvider,
        customer_id: str,
        limiter: RequestLimiter | None = None,
        client_factory: Callable[..., HubSpot] = HubSpot,
    ) -> None:
        self._token_provider = token_provider
        self._customer_id = customer_id
        self._limiter = limiter or RequestLimiter()
        self._client_factory = client_factory

    async def connect(self) -> ContactsApi:
        """Fetch a current token and return a client bound to it."""
        access_token = await self._token_provider.get_access_token(self._customer_id)
        client = self._client_factory(access_token=access_token)
        return ContactsApi(client, self._limiter)
