"""HubSpot app install flow.

GET /api/install returns the HubSpot authorization URL. After the admin
approves, HubSpot redirects to /oauth-callback?code=..., where the code is
redeemed and the token pair stored for the configured customer. Any failure
sends the admin back to / with the reason in errMessage.
"""

from __future__ import annotations

from urllib.parse import urlencode

import structlog
from fastapi import APIRouter, Depends, Query
from fastapi.responses import PlainTextResponse, RedirectResponse

from src.crm_bridge.api.deps import get_oauth_client, get_stored_token_provider
from src.crm_bridge.auth.oauth import HubSpotOAuthClient, StoredTokenProvider
from src.crm_bridge.config import get_settings
from src.crm_bridge.core.errors import BridgeError

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["oauth"])


@router.get("/api/install", response_class=PlainTextResponse)
async def install(oauth: HubSpotOAuthClient = Depends(get_oauth_client)) -> str:
    """Return the URL that installs the app into a HubSpot portal."""
    return oauth.authorization_url()


@router.get("/oauth-callback")
async def oauth_callback(
    code: str | None = Query(None),
    provider: StoredTokenProvider = Depends(get_stored_token_provider),
) -> RedirectResponse:
    settings = get_settings()
    if not code:
        return RedirectResponse(
            f"/?{urlencode({'errMessage': 'Missing authorization code'})}", status_code=302
        )

    try:
        credentials = await provider.redeem_code(settings.CUSTOMER_ID, code)
    except Exception as exc:
        logger.error(
            "oauth.callback_failed",
            customer_id=settings.CUSTOMER_ID,
            error=str(exc),
            exc_info=not isinstance(exc, BridgeError),
        )
        return RedirectResponse(f"/?{urlencode({'errMessage': str(exc)})}", status_code=302)

    logger.info(
        "oauth.app_installed",
        customer_id=settings.CUSTOMER_ID,
        hs_portal_id=credentials.hs_portal_id,
    )
    return RedirectResponse(settings.HUBSPOT_POST_INSTALL_REDIRECT, status_code=302)
