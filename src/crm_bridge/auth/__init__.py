"""HubSpot OAuth install flow and access token providers."""

from src.crm_bridge.auth.oauth import (
    HubSpotOAuthClient,
    OAuthServiceTokenProvider,
    StoredTokenProvider,
    TokenGrant,
)
from src.crm_bridge.auth.repository import CredentialRepository, StoredCredentials

__all__ = [
    "HubSpotOAuthClient",
    "OAuthServiceTokenProvider",
    "StoredTokenProvider",
    "TokenGrant",
    "CredentialRepository",
    "StoredCredentials",
]
