"""Pydantic schemas for contacts and contact sync.

Defines the structured types exchanged between the store, the HubSpot
gateway, and the two reconcilers:
- Local contacts: ContactCreate, ContactRead
- Remote contacts: RemoteContact, BatchReadResult, BatchCreateResult
- Inbound sync: InboundOutcome, ReconcileResult, OutcomeBucket, InboundResults, InboundReport
- Outbound sync: CohortError, CohortResult, OutboundResults, OutboundReport
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

# HubSpot property names exchanged for every contact
CONTACT_PROPERTIES: tuple[str, ...] = ("email", "firstname", "lastname")


# ── Local Contacts ──────────────────────────────────────────────────────────


class ContactCreate(BaseModel):
    """Fields for a new local contact."""

    email: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    hs_object_id: str | None = None


class ContactRead(BaseModel):
    """A local contact as stored.

    ``id`` is None only for placeholder records describing a failed write.
    """

    model_config = ConfigDict(from_attributes=True)

    id: int | None
    email: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    hs_object_id: str | None = None

    def hubspot_properties(self) -> dict[str, str]:
        """Return the non-empty HubSpot creation properties for this contact."""
        candidates = {
            "email": self.email,
            "firstname": self.first_name,
            "lastname": self.last_name,
        }
        return {name: value for name, value in candidates.items() if value}


# ── Remote Contacts ─────────────────────────────────────────────────────────


class RemoteContact(BaseModel):
    """A contact as known to HubSpot: its object id plus requested properties."""

    id: str
    properties: dict[str, Any] = Field(default_factory=dict)

    @property
    def email(self) -> str | None:
        return self.properties.get("email") or None

    @property
    def first_name(self) -> str | None:
        return self.properties.get("firstname")

    @property
    def last_name(self) -> str | None:
        return self.properties.get("lastname")


class BatchReadResult(BaseModel):
    """Contacts HubSpot already knows, returned by a batch read."""

    results: list[RemoteContact] = Field(default_factory=list)


class BatchCreateResult(BaseModel):
    """Outcome of a batch create.

    A partial success (HTTP 207) carries both ``results`` and ``errors``.
    """

    status: str = "COMPLETE"
    results: list[RemoteContact] = Field(default_factory=list)
    errors: list[dict[str, Any]] = Field(default_factory=list)


# ── Inbound Sync ────────────────────────────────────────────────────────────


class InboundOutcome(str, Enum):
    """Classification of a single inbound reconcile."""

    UPSERT = "upsert"
    CREATED = "created"
    HS_ID_UPDATED = "hsID_updated"
    FAILED = "failed"


class ReconcileResult(BaseModel):
    """Result of reconciling one remote contact into the local store.

    ``outcome`` is an InboundOutcome value, or the store error code when the
    verbose strategy hit an unclassified database error.
    """

    record: ContactRead
    outcome: str


class OutcomeBucket(BaseModel):
    count: int = 0
    records: list[ReconcileResult] = Field(default_factory=list)


class InboundResults(BaseModel):
    """Per-outcome tallies for an inbound run."""

    model_config = ConfigDict(populate_by_name=True)

    upsert: OutcomeBucket = Field(default_factory=OutcomeBucket)
    created: OutcomeBucket = Field(default_factory=OutcomeBucket)
    hs_id_updated: OutcomeBucket = Field(default_factory=OutcomeBucket, alias="hsID_updated")
    failed: OutcomeBucket = Field(default_factory=OutcomeBucket)
    errors: OutcomeBucket = Field(default_factory=OutcomeBucket)

    def add(self, result: ReconcileResult) -> None:
        """File a result under its outcome; unknown outcomes count as errors."""
        buckets = {
            InboundOutcome.UPSERT.value: self.upsert,
            InboundOutcome.CREATED.value: self.created,
            InboundOutcome.HS_ID_UPDATED.value: self.hs_id_updated,
            InboundOutcome.FAILED.value: self.failed,
        }
        bucket = buckets.get(result.outcome, self.errors)
        bucket.count += 1
        bucket.records.append(result)


class InboundReport(BaseModel):
    total: int
    results: InboundResults


# ── Outbound Sync ───────────────────────────────────────────────────────────


class CohortError(BaseModel):
    """An error recorded against a cohort without aborting the run.

    ``stage`` is one of batch_read, batch_create, batch_create_record,
    or write_back. A run that aborts records a final run_aborted entry.
    """

    stage: str
    message: str
    details: dict[str, Any] = Field(default_factory=dict)


class CohortResult(BaseModel):
    """Everything one cohort produced, passed back to the run loop."""

    size: int
    read: BatchReadResult = Field(default_factory=BatchReadResult)
    created: BatchCreateResult | None = None
    errors: list[CohortError] = Field(default_factory=list)
    written: int = 0


class OutboundResults(BaseModel):
    success: list[dict[str, Any]] = Field(default_factory=list)
    errors: list[dict[str, Any]] = Field(default_factory=list)


class OutboundReport(BaseModel):
    sync_job_id: int
    results: OutboundResults
