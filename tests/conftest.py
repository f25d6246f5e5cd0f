"""Test fixtures for contact sync.

Provides in-memory test doubles so no database or HubSpot portal is needed:
- InMemoryContactRepository: enforces case-insensitive unique email like the real table
- InMemorySyncJobRepository: records ledger entries
- FakeContactsApi / FakeGateway: a scripted HubSpot contacts backend
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

import pytest

from src.crm_bridge.contacts.schemas import (
    BatchCreateResult,
    BatchReadResult,
    ContactCreate,
    ContactRead,
    RemoteContact,
)
from src.crm_bridge.core.errors import ContactNotFoundError, DuplicateEmailError


# ── In-Memory Test Doubles ───────────────────────────────────────────────────


class InMemoryContactRepository:
    """In-memory ContactRepository for testing without database."""

    def __init__(self) -> None:
        self._contacts: dict[int, ContactRead] = {}
        self._next_id = 1
        self.update_calls: list[tuple[str, str]] = []

    def add(self, **fields: Any) -> ContactRead:
        contact = ContactRead(id=self._next_id, **fields)
        self._contacts[contact.id] = contact
        self._next_id += 1
        return contact

    def get(self, contact_id: int) -> ContactRead:
        return self._contacts[contact_id]

    def by_email(self, email: str) -> ContactRead | None:
        for contact in self._contacts.values():
            if contact.email and contact.email.lower() == email.lower():
                return contact
        return None

    async def list_contacts(self) -> list[ContactRead]:
        return sorted(self._contacts.values(), key=lambda c: c.id)

    async def list_missing_remote_id(self) -> list[ContactRead]:
        return [c for c in await self.list_contacts() if c.hs_object_id is None]

    async def create(self, data: ContactCreate) -> ContactRead:
        if data.email and self.by_email(data.email) is not None:
            raise DuplicateEmailError(data.email)
        return self.add(**data.model_dump())

    async def update_remote_id(self, email: str, hs_object_id: str) -> ContactRead:
        self.update_calls.append((email, hs_object_id))
        existing = self.by_email(email)
        if existing is None:
            raise ContactNotFoundError(email)
        updated = existing.model_copy(update={"hs_object_id": hs_object_id})
        self._contacts[updated.id] = updated
        return updated

    async def upsert_remote_id(self, email: str, data: ContactCreate) -> ContactRead:
        existing = self.by_email(email)
        if existing is None:
            return self.add(**data.model_dump(exclude={"email"}), email=email)
        updated = existing.model_copy(update={"hs_object_id": data.hs_object_id})
        self._contacts[updated.id] = updated
        return updated


class InMemorySyncJobRepository:
    """In-memory SyncJobRepository."""

    def __init__(self) -> None:
        self.jobs: dict[int, dict[str, Any]] = {}

    async def create(self, execution_time: datetime) -> int:
        job_id = len(self.jobs) + 1
        self.jobs[job_id] = {"execution_time": execution_time, "success": None, "failures": None}
        return job_id

    async def complete(self, job_id: int, success: list[dict], failures: list[dict]) -> None:
        self.jobs[job_id]["success"] = success
        self.jobs[job_id]["failures"] = failures


class FakeContactsApi:
    """Scripted HubSpot contacts backend.

    ``remote`` holds the contacts HubSpot knows, keyed by email. Like HubSpot
    it stores emails lowercased and matches reads without regard to case.
    Emails listed in ``reject_emails`` come back as per-record batch create errors. Calls
    numbered in ``fail_create_calls`` / ``fail_read_calls`` (1-based) raise.
    """

    def __init__(self) -> None:
        self.remote: dict[str, RemoteContact] = {}
        self.listing: list[RemoteContact] | None = None
        self.list_error: Exception | None = None
        self.reject_emails: set[str] = set()
        self.fail_read_calls: set[int] = set()
        self.fail_create_calls: set[int] = set()
        self.read_calls: list[list[str]] = []
        self.create_calls: list[list[dict[str, str]]] = []
        self._next_id = 1000

    def seed(self, email: str, **properties: str) -> RemoteContact:
        email = email.lower()
        remote = RemoteContact(id=str(self._next_id), properties={"email": email, **properties})
        self._next_id += 1
        self.remote[email] = remote
        return remote

    async def list_all(self, properties=None) -> list[RemoteContact]:
        if self.list_error is not None:
            raise self.list_error
        if self.listing is not None:
            return list(self.listing)
        return list(self.remote.values())

    async def batch_read(self, emails, properties=None) -> BatchReadResult:
        self.read_calls.append(list(emails))
        if len(self.read_calls) in self.fail_read_calls:
            raise RuntimeError("HubSpot batch read unavailable")
        keys = dict.fromkeys(e.lower() for e in emails)
        return BatchReadResult(results=[self.remote[k] for k in keys if k in self.remote])

    async def batch_create(self, inputs) -> BatchCreateResult:
        self.create_calls.append([dict(i) for i in inputs])
        if len(self.create_calls) in self.fail_create_calls:
            raise RuntimeError("HubSpot batch create timed out")

        results: list[RemoteContact] = []
        errors: list[dict[str, Any]] = []
        for props in inputs:
            email = props.get("email")
            if email in self.reject_emails:
                errors.append(
                    {"status": "error", "category": "VALIDATION_ERROR", "message": f"Invalid {email}"}
                )
                continue
            results.append(self.seed(email, **{k: v for k, v in props.items() if k != "email"}))
        return BatchCreateResult(
            status="COMPLETE" if not errors else "PARTIAL",
            results=results,
            errors=errors,
        )


class FakeGateway:
    """HubSpotGateway double handing out the same FakeContactsApi."""

    def __init__(self, api: FakeContactsApi) -> None:
        self.api = api
        self.connects = 0
        self.error: Exception | None = None

    async def connect(self) -> FakeContactsApi:
        self.connects += 1
        if self.error is not None:
            raise self.error
        return self.api


# ── Fixtures ─────────────────────────────────────────────────────────────────


@pytest.fixture
def contact_repo() -> InMemoryContactRepository:
    return InMemoryContactRepository()


@pytest.fixture
def sync_job_repo() -> InMemorySyncJobRepository:
    return InMemorySyncJobRepository()


@pytest.fixture
def hubspot() -> FakeContactsApi:
    return FakeContactsApi()


@pytest.fixture
def gateway(hubspot: FakeContactsApi) -> FakeGateway:
    return FakeGateway(hubspot)
