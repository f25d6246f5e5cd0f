"""Contact and sync job repositories -- async persistence for the reconcilers.

Uses the session_factory callable pattern: each method opens its own session,
commits, and converts models to Pydantic schemas before returning.

Database failures are translated into store errors carrying the PostgreSQL
SQLSTATE so callers can classify them without importing SQLAlchemy:
- 23505 (unique_violation) -> DuplicateEmailError
- anything else            -> ContactStoreError(code=<sqlstate or "failed">)
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable
from datetime import datetime
from typing import Any

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from src.crm_bridge.contacts.models import ContactModel, SyncJobModel
from src.crm_bridge.contacts.schemas import ContactCreate, ContactRead
from src.crm_bridge.core.errors import (
    ContactNotFoundError,
    ContactStoreError,
    DuplicateEmailError,
)

logger = structlog.get_logger(__name__)

SessionFactory = Callable[..., AsyncGenerator[AsyncSession, None]]


# ── Error Translation ───────────────────────────────────────────────────────


def sqlstate_of(exc: DBAPIError) -> str | None:
    """Extract the SQLSTATE reported by the driver, if any."""
    orig = getattr(exc, "orig", None)
    return getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)


def translate_store_error(exc: DBAPIError, email: str | None = None) -> ContactStoreError:
    """Map a SQLAlchemy DBAPI error onto the bridge's store error types."""
    code = sqlstate_of(exc)
    if code == DuplicateEmailError.SQLSTATE:
        return DuplicateEmailError(email)
    return ContactStoreError(str(exc.orig or exc), code=code or "failed")


def _model_to_contact(model: ContactModel) -> ContactRead:
    return ContactRead.model_validate(model)


# ── Contacts ────────────────────────────────────────────────────────────────


class ContactRepository:
    """Async CRUD for local contacts.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def list_contacts(self) -> list[ContactRead]:
        """Return every local contact ordered by id."""
        async for session in self._session_factory():
            result = await session.execute(select(ContactModel).order_by(ContactModel.id))
            return [_model_to_contact(m) for m in result.scalars().all()]
        return []

    async def list_missing_remote_id(self) -> list[ContactRead]:
        """Return the outbound backlog: contacts with no HubSpot id, oldest first."""
        async for session in self._session_factory():
            stmt = (
                select(ContactModel)
                .where(ContactModel.hs_object_id.is_(None))
                .order_by(ContactModel.id)
            )
            result = await session.execute(stmt)
            return [_model_to_contact(m) for m in result.scalars().all()]
        return []

    async def create(self, data: ContactCreate) -> ContactRead:
        """Insert a contact unconditionally.

        Raises:
            DuplicateEmailError: If another contact already has this email.
            ContactStoreError: For any other database failure.
        """
        async for session in self._session_factory():
            model = ContactModel(
                email=data.email,
                first_name=data.first_name,
                last_name=data.last_name,
                hs_object_id=data.hs_object_id,
            )
            session.add(model)
            try:
                await session.commit()
            except DBAPIError as exc:
                await session.rollback()
                raise translate_store_error(exc, data.email) from exc
            await session.refresh(model)
            return _model_to_contact(model)
        raise ContactStoreError("No database session available")

    async def update_remote_id(self, email: str, hs_object_id: str) -> ContactRead:
        """Set the HubSpot id on the contact with this email, touching nothing else.

        The email matches regardless of case.

        Raises:
            ContactNotFoundError: If no contact has this email.
            ContactStoreError: For any database failure.
        """
        async for session in self._session_factory():
            stmt = (
                update(ContactModel)
                .where(func.lower(ContactModel.email) == email.lower())
                .values(hs_object_id=hs_object_id)
                .returning(ContactModel)
            )
            try:
                result = await session.execute(stmt)
                model = result.scalar_one_or_none()
                await session.commit()
            except DBAPIError as exc:
                await session.rollback()
                raise translate_store_error(exc, email) from exc
            if model is None:
                raise ContactNotFoundError(email)
            return _model_to_contact(model)
        raise ContactStoreError("No database session available")

    async def upsert_remote_id(self, email: str, data: ContactCreate) -> ContactRead:
        """Create the contact, or on a case-insensitive email match only set its HubSpot id.

        Local name fields of an existing contact are never overwritten.
        """
        async for session in self._session_factory():
            stmt = (
                pg_insert(ContactModel)
                .values(
                    email=email,
                    first_name=data.first_name,
                    last_name=data.last_name,
                    hs_object_id=data.hs_object_id,
                )
                .on_conflict_do_update(
                    index_elements=[func.lower(ContactModel.email)],
                    set_={"hs_object_id": data.hs_object_id},
                )
                .returning(ContactModel)
            )
            try:
                result = await session.execute(stmt)
                model = result.scalar_one()
                await session.commit()
            except DBAPIError as exc:
                await session.rollback()
                raise translate_store_error(exc, email) from exc
            return _model_to_contact(model)
        raise ContactStoreError("No database session available")


# ── Sync Jobs ───────────────────────────────────────────────────────────────


class SyncJobRepository:
    """Ledger of outbound sync runs: stamped on start, completed once at the end."""

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def create(self, execution_time: datetime) -> int:
        """Open a ledger entry and return its id."""
        async for session in self._session_factory():
            model = SyncJobModel(execution_time=execution_time)
            session.add(model)
            await session.commit()
            await session.refresh(model)
            logger.info("sync_job.created", sync_job_id=model.id)
            return model.id
        raise ContactStoreError("No database session available")

    async def complete(
        self,
        job_id: int,
        success: list[dict[str, Any]],
        failures: list[dict[str, Any]],
    ) -> None:
        """Record the final success and failure payloads for a run."""
        async for session in self._session_factory():
            stmt = (
                update(SyncJobModel)
                .where(SyncJobModel.id == job_id)
                .values(success=success, failures=failures)
            )
            await session.execute(stmt)
            await session.commit()
            logger.info(
                "sync_job.completed",
                sync_job_id=job_id,
                successes=len(success),
                failures=len(failures),
            )
