"""Contact listing and sync trigger endpoints.

- GET /contacts: every local contact
- GET /sync-contacts: push contacts without a HubSpot id to HubSpot
- GET /initial-contacts-sync?verbose=<bool>: pull all HubSpot contacts locally

Only one outbound run may be active per process; a second request while one
is running gets 409.
"""

from __future__ import annotations

import asyncio

from fastapi import APIRouter, Depends, HTTPException, Query, status

from src.crm_bridge.api.deps import (
    get_contact_repository,
    get_inbound_reconciler,
    get_outbound_lock,
    get_outbound_reconciler,
)
from src.crm_bridge.contacts.repository import ContactRepository
from src.crm_bridge.contacts.schemas import ContactRead, InboundReport, OutboundReport
from src.crm_bridge.contacts.sync.inbound import InboundReconciler
from src.crm_bridge.contacts.sync.outbound import OutboundReconciler

router = APIRouter(tags=["contacts"])


@router.get("/contacts", response_model=list[ContactRead])
async def list_contacts(
    repo: ContactRepository = Depends(get_contact_repository),
) -> list[ContactRead]:
    """List all local contacts."""
    return await repo.list_contacts()


@router.get("/sync-contacts", response_model=OutboundReport)
async def sync_contacts_to_hubspot(
    reconciler: OutboundReconciler = Depends(get_outbound_reconciler),
    lock: asyncio.Lock = Depends(get_outbound_lock),
) -> OutboundReport:
    """Create HubSpot contacts for every local contact lacking a HubSpot id.

    Results are also recorded in the sync_jobs table.
    """
    if lock.locked():
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="An outbound contact sync is already running",
        )
    async with lock:
        return await reconciler.run()


@router.get("/initial-contacts-sync", response_model=InboundReport)
async def sync_contacts_from_hubspot(
    verbose: bool = Query(
        False,
        description="Create first and fall back to update, reporting created vs updated",
    ),
    reconciler: InboundReconciler = Depends(get_inbound_reconciler),
) -> InboundReport:
    """Import every HubSpot contact into the local store."""
    return await reconciler.run(verbose=verbose)
