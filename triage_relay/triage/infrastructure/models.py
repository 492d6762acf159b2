"""
Triage Infrastructure Models
=============================

SQLAlchemy ORM models for the triage module.
"""

from datetime import datetime, timezone
from uuid import UUID, uuid4

from sqlalchemy import Boolean, DateTime, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from triage_relay.infrastructure.database import Base
from triage_relay.triage.domain import ProcessedRecord, ProviderName


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ProcessedTicketModel(Base):
    """
    Database model for ProcessedRecord entity.

    One row per ticket that reached a terminal pipeline state.
    """
    __tablename__ = "processed_tickets"

    # Primary key
    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    # Idempotency key; the unique constraint backs the upsert
    ticket_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)

    processed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        index=True
    )
    provider: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow
    )

    def to_entity(self) -> ProcessedRecord:
        return ProcessedRecord(
            ticket_id=self.ticket_id,
            processed_at=self.processed_at,
            provider=ProviderName(self.provider),
            success=self.success,
        )
