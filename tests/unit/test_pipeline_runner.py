import asyncio
from unittest.mock import AsyncMock

from conftest import make_ticket
from triage_relay.triage.application import TriagePipelineRunner
from triage_relay.triage.domain import PipelineOutcome, PipelineState


async def test_schedule_runs_pipeline_in_background():
    orchestrator = AsyncMock()
    orchestrator.process.return_value = PipelineOutcome(ticket_id="T1", state=PipelineState.COMMITTED)
    runner = TriagePipelineRunner(orchestrator)
    ticket = make_ticket("T1")

    task = runner.schedule(ticket)
    outcome = await task

    assert outcome.state is PipelineState.COMMITTED
    orchestrator.process.assert_awaited_once_with(ticket)
    assert runner.pending == 0


async def test_pipeline_crash_is_contained():
    orchestrator = AsyncMock()
    orchestrator.process.side_effect = RuntimeError("unexpected")
    runner = TriagePipelineRunner(orchestrator)

    outcome = await runner.schedule(make_ticket("T1"))

    assert outcome is None


async def test_tickets_run_independently():
    release = asyncio.Event()
    started = []

    async def process(ticket):
        started.append(ticket.ticket_id)
        if ticket.ticket_id == "slow":
            await release.wait()
        return PipelineOutcome(ticket_id=ticket.ticket_id, state=PipelineState.COMMITTED)

    orchestrator = AsyncMock()
    orchestrator.process.side_effect = process
    runner = TriagePipelineRunner(orchestrator)

    slow = runner.schedule(make_ticket("slow"))
    fast = runner.schedule(make_ticket("fast"))

    assert (await fast).ticket_id == "fast"
    assert not slow.done()
    assert runner.pending == 1

    release.set()
    await runner.drain(timeout=1)
    assert slow.done()
    assert started == ["slow", "fast"]


async def test_drain_gives_up_after_timeout():
    never = asyncio.Event()

    async def process(ticket):
        await never.wait()

    orchestrator = AsyncMock()
    orchestrator.process.side_effect = process
    runner = TriagePipelineRunner(orchestrator)
    task = runner.schedule(make_ticket("stuck"))

    await runner.drain(timeout=0.01)

    assert not task.done()
    task.cancel()
    await asyncio.gather(task, return_exceptions=True)
