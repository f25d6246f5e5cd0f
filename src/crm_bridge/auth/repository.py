"""Credential persistence for HubSpot OAuth tokens."""

from __future__ import annotations

from datetime import datetime

import structlog
from pydantic import BaseModel, ConfigDict
from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert

from src.crm_bridge.auth.models import AuthorizationModel
from src.crm_bridge.contacts.repository import SessionFactory

logger = structlog.get_logger(__name__)


class StoredCredentials(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    customer_id: str
    hs_portal_id: str | None = None
    access_token: str
    refresh_token: str
    expires_in: int
    expires_at: datetime


class CredentialRepository:
    """Reads and upserts the single authorization row per customer.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def get(self, customer_id: str) -> StoredCredentials | None:
        async for session in self._session_factory():
            stmt = select(AuthorizationModel).where(AuthorizationModel.customer_id == customer_id)
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            if model is None:
                return None
            return StoredCredentials.model_validate(model)
        return None

    async def save(self, credentials: StoredCredentials) -> StoredCredentials:
        """Insert or replace the customer's tokens."""
        values = credentials.model_dump()
        async for session in self._session_factory():
            updatable = {k: v for k, v in values.items() if k != "customer_id"}
            if credentials.hs_portal_id is None:
                updatable.pop("hs_portal_id")
            stmt = (
                pg_insert(AuthorizationModel)
                .values(**values)
                .on_conflict_do_update(
                    index_elements=[AuthorizationModel.customer_id],
                    set_=updatable,
                )
            )
            await session.execute(stmt)
            await session.commit()
            logger.info(
                "credentials.saved",
                customer_id=credentials.customer_id,
                expires_at=credentials.expires_at.isoformat(),
            )
        return credentials
