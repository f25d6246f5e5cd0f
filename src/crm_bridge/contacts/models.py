"""Contact persistence models.

Two SQLAlchemy models:
- ContactModel: local contact records, unique on lower(email) when present
- SyncJobModel: one ledger row per outbound sync run
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Index, Integer, String, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from src.crm_bridge.core.database import Base


class ContactModel(Base):
    """A person known to the business.

    ``hs_object_id`` stays NULL until the contact has a HubSpot counterpart;
    outbound sync selects its backlog on that column. Emails are unique
    regardless of case, matching how HubSpot compares them. PostgreSQL
    allows many NULL emails under the unique index, so contacts without an
    email can coexist.
    """

    __tablename__ = "contacts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    first_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    last_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    hs_object_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)


Index("uq_contacts_email_lower", func.lower(ContactModel.email), unique=True)


class SyncJobModel(Base):
    """Audit record of a single outbound sync run.

    Created when the run starts and updated once when it finishes with the
    per-cohort create results and errors.
    """

    __tablename__ = "sync_jobs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    execution_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    success: Mapped[list | None] = mapped_column(JSONB, nullable=True)
    failures: Mapped[list | None] = mapped_column(JSONB, nullable=True)
