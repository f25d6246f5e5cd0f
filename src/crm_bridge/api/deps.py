"""FastAPI dependencies resolving services wired onto app.state at startup."""

from __future__ import annotations

import asyncio
from typing import Any

from fastapi import HTTPException, Request, status

from src.crm_bridge.auth.oauth import HubSpotOAuthClient, StoredTokenProvider
from src.crm_bridge.contacts.repository import ContactRepository
from src.crm_bridge.contacts.sync.inbound import InboundReconciler
from src.crm_bridge.contacts.sync.outbound import OutboundReconciler


def _from_state(request: Request, name: str) -> Any:
    """Retrieve a service from app.state, 503 if startup did not provide it."""
    service = getattr(request.app.state, name, None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{name.replace('_', ' ').capitalize()} not initialized",
        )
    return service


def get_contact_repository(request: Request) -> ContactRepository:
    return _from_state(request, "contact_repository")


def get_inbound_reconciler(request: Request) -> InboundReconciler:
    return _from_state(request, "inbound_reconciler")


def get_outbound_reconciler(request: Request) -> OutboundReconciler:
    return _from_state(request, "outbound_reconciler")


def get_outbound_lock(request: Request) -> asyncio.Lock:
    return _from_state(request, "outbound_lock")


def get_oauth_client(request: Request) -> HubSpotOAuthClient:
    return _from_state(request, "oauth_client")


def get_stored_token_provider(request: Request) -> StoredTokenProvider:
    """The install flow only applies when tokens are stored locally."""
    return _from_state(request, "stored_token_provider")
