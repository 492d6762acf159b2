from datetime import datetime, timedelta, timezone

from sqlalchemy import select

from triage_relay.triage.domain import ProcessedRecord, ProviderName
from triage_relay.triage.infrastructure import ProcessedTicketModel, SQLAlchemyIdempotencyStore


def _broken_session_factory():
    raise ConnectionError("database unreachable")


async def test_unknown_ticket_is_not_processed(session_factory):
    store = SQLAlchemyIdempotencyStore(session_factory)
    assert await store.has_processed("T404") is False


async def test_mark_then_has_processed(session_factory):
    store = SQLAlchemyIdempotencyStore(session_factory)

    await store.mark_processed("T1", ProviderName.LOCAL, success=True)

    assert await store.has_processed("T1") is True
    assert await store.has_processed("T2") is False


async def test_get_record_returns_processed_entry(session_factory):
    store = SQLAlchemyIdempotencyStore(session_factory)

    await store.mark_processed("T1", ProviderName.FALLBACK, success=False)

    record = await store.get_record("T1")
    assert isinstance(record, ProcessedRecord)
    assert record.ticket_id == "T1"
    assert record.provider is ProviderName.FALLBACK
    assert record.success is False
    assert record.processed_at is not None
    assert await store.get_record("T2") is None


async def test_mark_processed_upserts_existing_record(session_factory):
    store = SQLAlchemyIdempotencyStore(session_factory)

    await store.mark_processed("T1", ProviderName.LOCAL, success=False)
    await store.mark_processed("T1", ProviderName.FALLBACK, success=True)

    async with session_factory() as session:
        rows = (await session.execute(select(ProcessedTicketModel))).scalars().all()

    assert len(rows) == 1
    assert rows[0].provider == "fallback"
    assert rows[0].success is True


async def test_sweep_removes_only_expired_records(session_factory):
    store = SQLAlchemyIdempotencyStore(session_factory)
    await store.mark_processed("T1", ProviderName.LOCAL, success=True)
    await store.mark_processed("T2", ProviderName.FALLBACK, success=False)

    now = datetime.now(timezone.utc)
    assert await store.sweep(timedelta(days=7), now=now) == 0
    assert await store.has_processed("T1") is True

    deleted = await store.sweep(timedelta(days=7), now=now + timedelta(days=8))

    assert deleted == 2
    assert await store.has_processed("T1") is False


async def test_stats_group_by_provider(session_factory):
    store = SQLAlchemyIdempotencyStore(session_factory)
    await store.mark_processed("T1", ProviderName.LOCAL, success=True)
    await store.mark_processed("T2", ProviderName.LOCAL, success=True)
    await store.mark_processed("T3", ProviderName.FALLBACK, success=True)
    await store.mark_processed("T4", ProviderName.FALLBACK, success=False)

    stats = await store.get_stats()

    assert stats["total"] == 4
    assert stats["by_provider"] == [
        {"provider": "fallback", "count": 2},
        {"provider": "local", "count": 2},
    ]
    assert stats["success_rate"] == 0.75


async def test_empty_stats(session_factory):
    stats = await SQLAlchemyIdempotencyStore(session_factory).get_stats()
    assert stats == {"total": 0, "by_provider": [], "success_rate": 0.0}


async def test_health_check(session_factory):
    assert await SQLAlchemyIdempotencyStore(session_factory).check_health() is True


async def test_unavailable_storage_fails_open():
    store = SQLAlchemyIdempotencyStore(_broken_session_factory)

    assert await store.has_processed("T1") is False
    await store.mark_processed("T1", ProviderName.LOCAL, success=True)
    assert await store.sweep(timedelta(days=7)) == 0
    assert (await store.get_stats())["total"] == 0
    assert await store.check_health() is False
