"""Inbound contact sync: pull every HubSpot contact into the local store.

Two interchangeable strategies reconcile a single remote contact; one is
chosen per run:

- UpsertStrategy (default): one upsert keyed on email. An existing local
  contact only gets its hs_object_id set, local names are never overwritten.
  Contacts without an email are always created.
- VerboseStrategy: create first; on a unique-email conflict fall back to an
  id-only update. Slower, but reports exactly which contacts were new. Store
  failures are classified into the outcome instead of raised.

A failure while listing HubSpot contacts aborts the whole run.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

import structlog

from src.crm_bridge.contacts.repository import ContactRepository
from src.crm_bridge.contacts.schemas import (
    ContactCreate,
    ContactRead,
    InboundOutcome,
    InboundReport,
    InboundResults,
    ReconcileResult,
    RemoteContact,
)
from src.crm_bridge.contacts.sync.gateway import HubSpotGateway
from src.crm_bridge.core.errors import ContactStoreError, DuplicateEmailError
from src.crm_bridge.core.monitoring import track_sync_run

logger = structlog.get_logger(__name__)


def _create_payload(remote: RemoteContact) -> ContactCreate:
    return ContactCreate(
        email=remote.email,
        first_name=remote.first_name,
        last_name=remote.last_name,
        hs_object_id=remote.id,
    )


def _placeholder(remote: RemoteContact) -> ContactRead:
    """Describe a remote contact that could not be written locally."""
    return ContactRead(
        id=None,
        email=remote.email,
        first_name=remote.first_name,
        last_name=remote.last_name,
        hs_object_id=remote.id,
    )


# ── Strategies ──────────────────────────────────────────────────────────────


class ReconcileStrategy(ABC):
    """Reconciles one remote contact into the local store."""

    name: str

    def __init__(self, contacts: ContactRepository) -> None:
        self._contacts = contacts

    @abstractmethod
    async def reconcile_one(self, remote: RemoteContact) -> ReconcileResult:
        ...


class UpsertStrategy(ReconcileStrategy):
    """Single upsert per contact; store errors propagate."""

    name = "upsert"

    async def reconcile_one(self, remote: RemoteContact) -> ReconcileResult:
        email = remote.email
        if email:
            record = await self._contacts.upsert_remote_id(email, _create_payload(remote))
            return ReconcileResult(record=record, outcome=InboundOutcome.UPSERT.value)

        record = await self._contacts.create(
            ContactCreate(
                first_name=remote.first_name,
                last_name=remote.last_name,
                hs_object_id=remote.id,
            )
        )
        return ReconcileResult(record=record, outcome=InboundOutcome.CREATED.value)


class VerboseStrategy(ReconcileStrategy):
    """Create, falling back to an id-only update on email conflict. Never raises."""

    name = "verbose"

    async def reconcile_one(self, remote: RemoteContact) -> ReconcileResult:
        try:
            record = await self._contacts.create(_create_payload(remote))
            return ReconcileResult(record=record, outcome=InboundOutcome.CREATED.value)
        except DuplicateEmailError:
            return await self._update_existing(remote)
        except ContactStoreError as exc:
            logger.warning(
                "inbound.create_failed",
                hs_object_id=remote.id,
                code=exc.code,
                error=str(exc),
            )
            return ReconcileResult(record=_placeholder(remote), outcome=exc.code)
        except Exception as exc:
            logger.error(
                "inbound.create_failed",
                hs_object_id=remote.id,
                error=str(exc),
                exc_info=True,
            )
            return ReconcileResult(record=_placeholder(remote), outcome=InboundOutcome.FAILED.value)

    async def _update_existing(self, remote: RemoteContact) -> ReconcileResult:
        # Conflict implies an email is present
        email = remote.email or ""
        try:
            record = await self._contacts.update_remote_id(email, remote.id)
        except ContactStoreError as exc:
            logger.warning(
                "inbound.id_update_failed",
                hs_object_id=remote.id,
                code=exc.code,
                error=str(exc),
            )
            return ReconcileResult(record=_placeholder(remote), outcome=exc.code)
        except Exception as exc:
            logger.error(
                "inbound.id_update_failed",
                hs_object_id=remote.id,
                error=str(exc),
                exc_info=True,
            )
            return ReconcileResult(record=_placeholder(remote), outcome=InboundOutcome.FAILED.value)
        return ReconcileResult(record=record, outcome=InboundOutcome.HS_ID_UPDATED.value)


# ── Reconciler ──────────────────────────────────────────────────────────────


class InboundReconciler:
    """Pulls the full HubSpot contact list into the local store.

    Args:
        contacts: Local contact store.
        gateway: Source of authenticated HubSpot clients.
    """

    def __init__(self, contacts: ContactRepository, gateway: HubSpotGateway) -> None:
        self._contacts = contacts
        self._gateway = gateway

    def strategy_for(self, verbose: bool) -> ReconcileStrategy:
        """Select the per-contact strategy for a run."""
        if verbose:
            return VerboseStrategy(self._contacts)
        return UpsertStrategy(self._contacts)

    async def run(self, verbose: bool = False) -> InboundReport:
        """Fetch every HubSpot contact and reconcile each one locally."""
        strategy = self.strategy_for(verbose)

        async with track_sync_run("inbound"):
            logger.info("inbound.started", strategy=strategy.name)

            api = await self._gateway.connect()
            remote_contacts = await api.list_all()

            logger.info("inbound.contacts_fetched", total=len(remote_contacts))

            results = InboundResults()
            for remote in remote_contacts:
                results.add(await strategy.reconcile_one(remote))

        logger.info(
            "inbound.complete",
            strategy=strategy.name,
            total=len(remote_contacts),
            upsert=results.upsert.count,
            created=results.created.count,
            hs_id_updated=results.hs_id_updated.count,
            failed=results.failed.count,
            errors=results.errors.count,
        )
        return InboundReport(total=len(remote_contacts), results=results)
