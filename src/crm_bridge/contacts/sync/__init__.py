"""Contact reconciliation between the local store and HubSpot.

- HubSpotGateway / ContactsApi: rate-limited HubSpot contacts access
- Cohort / chunked: bounded outbound working sets
- InboundReconciler: pull all HubSpot contacts into the local store
- OutboundReconciler: push contacts without a HubSpot id to HubSpot
"""

from src.crm_bridge.contacts.sync.batching import MAX_BATCH_SIZE, Cohort, chunked
from src.crm_bridge.contacts.sync.gateway import ContactsApi, HubSpotGateway, RequestLimiter
from src.crm_bridge.contacts.sync.inbound import (
    InboundReconciler,
    ReconcileStrategy,
    UpsertStrategy,
    VerboseStrategy,
)
from src.crm_bridge.contacts.sync.outbound import OutboundReconciler

__all__ = [
    "MAX_BATCH_SIZE",
    "Cohort",
    "chunked",
    "ContactsApi",
    "HubSpotGateway",
    "RequestLimiter",
    "InboundReconciler",
    "ReconcileStrategy",
    "UpsertStrategy",
    "VerboseStrategy",
    "OutboundReconciler",
]
