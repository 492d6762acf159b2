"""
Triage Infrastructure Repositories
====================================

SQLAlchemy implementation of the idempotency store.

Reads fail open and writes never raise: a storage outage may cause a
duplicate notification but never drops a new ticket.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import delete, func, select, text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from triage_relay.core import RepositoryException
from triage_relay.shared.infrastructure.logging import get_logger
from triage_relay.triage.application import IIdempotencyStore
from triage_relay.triage.domain import ProcessedRecord, ProviderName
from triage_relay.triage.infrastructure.models import ProcessedTicketModel

logger = get_logger(__name__)


def _upsert_statement(dialect_name: str, values: dict):
    """INSERT ... ON CONFLICT (ticket_id) DO UPDATE for the bound dialect."""
    if dialect_name == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect_name == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise RepositoryException(f"Upsert not supported for dialect '{dialect_name}'")

    stmt = insert(ProcessedTicketModel).values(**values)
    return stmt.on_conflict_do_update(
        index_elements=[ProcessedTicketModel.ticket_id],
        set_={
            "provider": stmt.excluded.provider,
            "success": stmt.excluded.success,
            "processed_at": stmt.excluded.processed_at,
            "updated_at": stmt.excluded.updated_at,
        }
    )


class SQLAlchemyIdempotencyStore(IIdempotencyStore):
    """SQLAlchemy implementation for processed-ticket records."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get_record(self, ticket_id: str) -> Optional[ProcessedRecord]:
        """Idempotency entry for a ticket, or None. Storage errors propagate."""
        async with self._session_factory() as session:
            stmt = select(ProcessedTicketModel).where(
                ProcessedTicketModel.ticket_id == ticket_id
            )
            model = (await session.execute(stmt)).scalar_one_or_none()
        return model.to_entity() if model is not None else None

    async def has_processed(self, ticket_id: str) -> bool:
        """Check if a ticket already reached a terminal state (fail-open)."""
        try:
            return await self.get_record(ticket_id) is not None
        except Exception as e:
            logger.error(
                "Idempotency check failed, treating ticket as unprocessed",
                extra={"ticket_id": ticket_id, "error": str(e)}
            )
            return False

    async def mark_processed(self, ticket_id: str, provider: ProviderName, success: bool) -> None:
        """Insert the record, or overwrite provider/success/timestamp if present."""
        now = datetime.now(timezone.utc)
        values = {
            "ticket_id": ticket_id,
            "provider": ProviderName(provider).value,
            "success": success,
            "processed_at": now,
            "created_at": now,
            "updated_at": now,
        }

        try:
            async with self._session_factory() as session:
                stmt = _upsert_statement(session.get_bind().dialect.name, values)
                await session.execute(stmt)
                await session.commit()
        except Exception as e:
            logger.error(
                "Failed to mark ticket as processed",
                extra={"ticket_id": ticket_id, "provider": values["provider"], "error": str(e)}
            )

    async def sweep(self, retention: timedelta, now: Optional[datetime] = None) -> int:
        """Delete records processed before ``now - retention``."""
        cutoff = (now or datetime.now(timezone.utc)) - retention

        try:
            async with self._session_factory() as session:
                stmt = delete(ProcessedTicketModel).where(
                    ProcessedTicketModel.processed_at < cutoff
                )
                result = await session.execute(stmt)
                await session.commit()
                deleted = result.rowcount or 0
        except Exception as e:
            logger.error("Retention sweep failed", extra={"error": str(e)})
            return 0

        logger.info(
            "Retention sweep completed",
            extra={"deleted": deleted, "cutoff": cutoff.isoformat()}
        )
        return deleted

    async def get_stats(self) -> dict:
        """Totals by provider and success rate; zeros when storage is down."""
        try:
            async with self._session_factory() as session:
                total = (await session.execute(
                    select(func.count(ProcessedTicketModel.id))
                )).scalar() or 0

                successes = (await session.execute(
                    select(func.count(ProcessedTicketModel.id)).where(
                        ProcessedTicketModel.success.is_(True)
                    )
                )).scalar() or 0

                rows = (await session.execute(
                    select(
                        ProcessedTicketModel.provider,
                        func.count(ProcessedTicketModel.id)
                    ).group_by(ProcessedTicketModel.provider)
                )).all()
        except Exception as e:
            logger.error("Failed to get processing stats", extra={"error": str(e)})
            return {"total": 0, "by_provider": [], "success_rate": 0.0}

        return {
            "total": total,
            "by_provider": [
                {"provider": provider, "count": count}
                for provider, count in sorted(rows)
            ],
            "success_rate": successes / total if total > 0 else 0.0,
        }

    async def check_health(self) -> bool:
        """Run ``SELECT 1`` against the store."""
        try:
            async with self._session_factory() as session:
                await session.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.error("Idempotency health check failed", extra={"error": str(e)})
            return False
