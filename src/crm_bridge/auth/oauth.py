"""HubSpot OAuth: install URL, code redemption, and access token supply.

Two token providers implement ``get_access_token(customer_id)``:
- StoredTokenProvider: reads tokens persisted by the install flow and
  refreshes them with the refresh token once they expire.
- OAuthServiceTokenProvider: asks an external token service
  (``GET {base_url}/api/get-token?customerId=...``).

Network calls use httpx with tenacity retries on connection errors and
timeouts only. HubSpot rejections, and transport failures that outlast the
retries, are surfaced as TokenExchangeError.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from urllib.parse import urlencode

import httpx
import structlog
from pydantic import BaseModel
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from src.crm_bridge.auth.repository import CredentialRepository, StoredCredentials
from src.crm_bridge.config import Settings
from src.crm_bridge.core.errors import AuthorizationRequiredError, TokenExchangeError

logger = structlog.get_logger(__name__)

HUBSPOT_AUTHORIZE_URL = "https://app.hubspot.com/oauth/authorize"
HUBSPOT_API_BASE = "https://api.hubapi.com"

# Refresh slightly before HubSpot's expiry so a token never lapses mid-cohort
EXPIRY_MARGIN = timedelta(seconds=60)

_oauth_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type((httpx.ConnectError, httpx.TimeoutException)),
    reraise=True,
)


class TokenGrant(BaseModel):
    access_token: str
    refresh_token: str
    expires_in: int


def expires_at(expires_in: int, now: datetime | None = None) -> datetime:
    """Absolute expiry for a token valid for ``expires_in`` seconds."""
    now = now or datetime.now(timezone.utc)
    return now + timedelta(seconds=expires_in)


class HubSpotOAuthClient:
    """Thin async client for HubSpot's OAuth and account-info endpoints.

    Args:
        client_id: HubSpot app client id.
        client_secret: HubSpot app client secret.
        redirect_uri: Callback URL registered with the app.
        scopes: OAuth scopes requested at install.
    """

    TIMEOUT = 10.0

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        scopes: list[str],
        api_base: str = HUBSPOT_API_BASE,
    ) -> None:
        self._client_id = client_id
        self._client_secret = client_secret
        self._redirect_uri = redirect_uri
        self._scopes = scopes
        self._api_base = api_base

    @classmethod
    def from_settings(cls, settings: Settings) -> HubSpotOAuthClient:
        return cls(
            client_id=settings.HUBSPOT_CLIENT_ID,
            client_secret=settings.HUBSPOT_CLIENT_SECRET,
            redirect_uri=settings.HUBSPOT_REDIRECT_URI,
            scopes=settings.hubspot_scopes,
        )

    def authorization_url(self) -> str:
        """URL a HubSpot admin visits to install the app."""
        query = urlencode(
            {
                "client_id": self._client_id,
                "redirect_uri": self._redirect_uri,
                "scope": " ".join(self._scopes),
            }
        )
        return f"{HUBSPOT_AUTHORIZE_URL}?{query}"

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self._api_base, timeout=self.TIMEOUT)

    async def exchange(
        self,
        grant_type: str,
        code: str | None = None,
        refresh_token: str | None = None,
    ) -> TokenGrant:
        """Exchange an authorization code or refresh token for a token pair."""
        form = {
            "grant_type": grant_type,
            "client_id": self._client_id,
            "client_secret": self._client_secret,
            "redirect_uri": self._redirect_uri,
        }
        if code is not None:
            form["code"] = code
        if refresh_token is not None:
            form["refresh_token"] = refresh_token

        try:
            response = await self._post_token(form)
        except httpx.HTTPError as exc:
            logger.error("oauth.exchange_unreachable", grant_type=grant_type, error=str(exc))
            raise TokenExchangeError(
                f"Error exchanging {grant_type} for access token: {exc}"
            ) from exc

        if response.is_error:
            logger.error(
                "oauth.exchange_failed",
                grant_type=grant_type,
                status_code=response.status_code,
            )
            raise TokenExchangeError(
                f"Error exchanging {grant_type} for access token: "
                f"{response.status_code} {response.text}"
            )
        return TokenGrant.model_validate(response.json())

    async def get_portal_id(self, access_token: str) -> str:
        """Return the HubSpot portal (hub) id the token belongs to."""
        try:
            response = await self._get_account_details(access_token)
        except httpx.HTTPError as exc:
            logger.error("oauth.account_details_unreachable", error=str(exc))
            raise TokenExchangeError(f"Error reading HubSpot account details: {exc}") from exc

        if response.is_error:
            logger.error("oauth.account_details_failed", status_code=response.status_code)
            raise TokenExchangeError(
                f"Error reading HubSpot account details: {response.status_code} {response.text}"
            )
        return str(response.json()["portalId"])

    @_oauth_retry
    async def _post_token(self, form: dict[str, str]) -> httpx.Response:
        async with self._client() as client:
            return await client.post("/oauth/v1/token", data=form)

    @_oauth_retry
    async def _get_account_details(self, access_token: str) -> httpx.Response:
        async with self._client() as client:
            return await client.get(
                "/account-info/v3/details",
                headers={"Authorization": f"Bearer {access_token}"},
            )


class StoredTokenProvider:
    """Serves tokens from the credential store, refreshing expired ones.

    Args:
        oauth: HubSpot OAuth client.
        credentials: Credential persistence.
    """

    def __init__(self, oauth: HubSpotOAuthClient, credentials: CredentialRepository) -> None:
        self._oauth = oauth
        self._credentials = credentials

    async def redeem_code(self, customer_id: str, code: str) -> StoredCredentials:
        """Complete the install flow: trade the code for tokens and store them."""
        grant = await self._oauth.exchange("authorization_code", code=code)
        return await self._store(customer_id, grant)

    async def get_access_token(self, customer_id: str) -> str:
        """Return a valid access token for the customer.

        Raises:
            AuthorizationRequiredError: No credentials stored; install the app.
            TokenExchangeError: The refresh was rejected.
        """
        current = await self._credentials.get(customer_id)
        if current is None:
            raise AuthorizationRequiredError(customer_id)

        if current.expires_at > datetime.now(timezone.utc) + EXPIRY_MARGIN:
            return current.access_token

        logger.info("oauth.refreshing_token", customer_id=customer_id)
        grant = await self._oauth.exchange("refresh_token", refresh_token=current.refresh_token)
        refreshed = await self._store(customer_id, grant, portal_id=current.hs_portal_id)
        return refreshed.access_token

    async def _store(
        self, customer_id: str, grant: TokenGrant, portal_id: str | None = None
    ) -> StoredCredentials:
        if portal_id is None:
            portal_id = await self._oauth.get_portal_id(grant.access_token)
        return await self._credentials.save(
            StoredCredentials(
                customer_id=customer_id,
                hs_portal_id=portal_id,
                access_token=grant.access_token,
                refresh_token=grant.refresh_token,
                expires_in=grant.expires_in,
                expires_at=expires_at(grant.expires_in),
            )
        )


class OAuthServiceTokenProvider:
    """Fetches tokens from an external OAuth token service.

    Args:
        base_url: Root URL of the token service.
    """

    TIMEOUT = 10.0

    def __init__(self, base_url: str) -> None:
        self._base_url = base_url.rstrip("/")

    async def get_access_token(self, customer_id: str) -> str:
        try:
            response = await self._fetch(customer_id)
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("oauth_service.unreachable", customer_id=customer_id, error=str(exc))
            raise TokenExchangeError(f"Failed to get access token: {exc}") from exc

        token = data.get("accessToken")
        if token:
            return token

        logger.error(
            "oauth_service.token_unavailable",
            customer_id=customer_id,
            status_code=response.status_code,
        )
        raise TokenExchangeError(data.get("errorMessage") or "Failed to get access token")

    @_oauth_retry
    async def _fetch(self, customer_id: str) -> httpx.Response:
        async with httpx.AsyncClient(timeout=self.TIMEOUT) as client:
            return await client.get(
                f"{self._base_url}/api/get-token",
                params={"customerId": customer_id},
            )
