"""
Triage Application Services
============================

Application services for the triage pipeline.

Orchestrates the idempotency check, primary/fallback inference, output
validation with bounded repair, notification and the idempotency commit.
"""

import asyncio
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Optional, Set, Tuple

from triage_relay.core import (
    ProviderException,
    ProvidersExhaustedException,
    RepairFailedException,
    TriageOutputError,
)
from triage_relay.shared.infrastructure.logging import get_logger, get_context_logger
from triage_relay.triage.domain import (
    Ticket,
    TriageResult,
    TriageNotice,
    FailureNotice,
    PipelineOutcome,
    PipelineState,
    FailureReason,
    ProviderName,
    TriagePromptBuilder,
    validate_triage_output,
)

logger = get_logger(__name__)


# ========== Collaborator Interfaces ==========

class IInferenceProvider(ABC):
    """One unreliable text-generation round trip. Never retries."""

    name: ProviderName

    @abstractmethod
    async def generate(self, ticket: Ticket, system_prompt: str) -> str:
        """
        Return the raw model text for ``ticket`` under ``system_prompt``.

        Raises:
            ProviderException: timeout, connection_failure, http_error or auth_failure
        """


class IIdempotencyStore(ABC):
    """Interface for processed-ticket tracking. Sole shared mutable state."""

    @abstractmethod
    async def has_processed(self, ticket_id: str) -> bool:
        """Point lookup. Returns False when storage is unavailable."""

    @abstractmethod
    async def mark_processed(self, ticket_id: str, provider: ProviderName, success: bool) -> None:
        """Atomic upsert. Storage errors are logged, never raised."""

    @abstractmethod
    async def sweep(self, retention: timedelta, now: Optional[datetime] = None) -> int:
        """Delete records older than ``retention``; returns the number removed."""

    @abstractmethod
    async def get_stats(self) -> dict:
        """Totals by provider and success rate."""

    @abstractmethod
    async def check_health(self) -> bool:
        """True if the backing store answers a trivial query."""


class INotifier(ABC):
    """Interface for relaying results to the team chat. Owns its own retries."""

    @abstractmethod
    async def notify_triage(self, notice: TriageNotice) -> bool:
        """Post a triage recommendation. Returns delivery success."""

    @abstractmethod
    async def notify_failure(self, notice: FailureNotice) -> bool:
        """Post a "triage failed" alert. Returns delivery success."""


# ========== Application Services ==========

class ValidationRepairService:
    """
    Turns raw provider text into a TriageResult.

    On a contract violation the same provider gets a corrective re-prompt
    carrying the violation. The number of corrective rounds is bounded by
    ``max_repair_attempts`` (one by default).
    """

    def __init__(self, max_repair_attempts: int = 1):
        if max_repair_attempts < 0:
            raise ValueError("max_repair_attempts must be >= 0")
        self._max_repair_attempts = max_repair_attempts

    async def resolve(
        self,
        raw_text: str,
        ticket: Ticket,
        provider: IInferenceProvider
    ) -> TriageResult:
        """
        Validate ``raw_text``, repairing through ``provider`` if needed.

        Args:
            raw_text: Output produced by ``provider``
            ticket: Ticket the output belongs to
            provider: Provider that produced ``raw_text``; repairs go to it only

        Returns:
            Validated TriageResult

        Raises:
            RepairFailedException: If output is still invalid after the
                allowed repair rounds, or a repair call itself fails
        """
        log = get_context_logger(__name__, ticket.request_id)

        try:
            return validate_triage_output(raw_text)
        except TriageOutputError as e:
            error = e

        last_raw = raw_text
        for attempt in range(1, self._max_repair_attempts + 1):
            log.warning(
                "Triage output violated contract, requesting repair",
                extra={
                    "ticket_id": ticket.ticket_id,
                    "provider": provider.name.value,
                    "error_kind": error.kind.value,
                    "error": error.description,
                    "attempt": attempt,
                    "state": PipelineState.REPAIRING.value,
                }
            )

            repair_prompt = TriagePromptBuilder.build_repair_prompt(ticket, error.description)
            try:
                last_raw = await provider.generate(ticket, repair_prompt)
            except ProviderException as pe:
                raise RepairFailedException(
                    provider.name.value,
                    f"{error.description}; repair call failed: {pe}",
                    last_raw
                )

            try:
                return validate_triage_output(last_raw)
            except TriageOutputError as e:
                error = e

        raise RepairFailedException(provider.name.value, error.description, last_raw)


class TriageOrchestrator:
    """
    Runs the triage pipeline for one ticket to a terminal state.

    Start -> DuplicateCheck -> (Skipped | Inferring -> Validating
    [-> Repairing] -> Notifying -> Committed | Failed).

    Every step is awaited in sequence; the primary and fallback providers are
    never called concurrently.
    """

    def __init__(
        self,
        primary: IInferenceProvider,
        fallback: IInferenceProvider,
        repair_service: ValidationRepairService,
        idempotency_store: IIdempotencyStore,
        notifier: INotifier
    ):
        self._primary = primary
        self._fallback = fallback
        self._repair = repair_service
        self._store = idempotency_store
        self._notifier = notifier

    async def process(self, ticket: Ticket) -> PipelineOutcome:
        """
        Process one ticket.

        Returns:
            PipelineOutcome in state SKIPPED, COMMITTED or FAILED
        """
        log = get_context_logger(__name__, ticket.request_id)
        log_extra = {"ticket_id": ticket.ticket_id}

        log.info("Triage pipeline started", extra={**log_extra, "state": PipelineState.DUPLICATE_CHECK.value})
        if await self._store.has_processed(ticket.ticket_id):
            log.info("Duplicate ticket skipped", extra={**log_extra, "state": PipelineState.SKIPPED.value})
            return PipelineOutcome(ticket_id=ticket.ticket_id, state=PipelineState.SKIPPED)

        system_prompt = TriagePromptBuilder.get_system_prompt()

        try:
            raw_text, provider = await self._infer(ticket, system_prompt)
        except ProvidersExhaustedException as e:
            return await self._fail(
                ticket,
                FailureReason.PROVIDERS_EXHAUSTED,
                tuple(e.descriptions),
                ProviderName.FALLBACK,
                raw_snippet=None
            )

        log.info(
            "Validating triage output",
            extra={**log_extra, "provider": provider.name.value, "state": PipelineState.VALIDATING.value}
        )
        try:
            result = await self._repair.resolve(raw_text, ticket, provider)
        except RepairFailedException as e:
            return await self._fail(
                ticket,
                FailureReason.REPAIR_FAILED,
                (e.description,),
                provider.name,
                raw_snippet=e.raw_snippet
            )

        log.info(
            "Sending triage notification",
            extra={
                **log_extra,
                "provider": provider.name.value,
                "priority": result.priority.value,
                "handling_mode": result.handling_mode.value,
                "confidence": result.confidence,
                "state": PipelineState.NOTIFYING.value,
            }
        )
        await self._attempt_notification(
            self._notifier.notify_triage,
            TriageNotice(ticket=ticket, result=result, provider=provider.name),
            ticket
        )

        await self._store.mark_processed(ticket.ticket_id, provider.name, success=True)
        log.info(
            "Triage pipeline committed",
            extra={**log_extra, "provider": provider.name.value, "state": PipelineState.COMMITTED.value}
        )
        return PipelineOutcome(
            ticket_id=ticket.ticket_id,
            state=PipelineState.COMMITTED,
            provider=provider.name
        )

    async def _infer(self, ticket: Ticket, system_prompt: str) -> Tuple[str, IInferenceProvider]:
        """Primary first; exactly one fallback call on any primary failure."""
        log = get_context_logger(__name__, ticket.request_id)

        log.info(
            "Calling primary provider",
            extra={"ticket_id": ticket.ticket_id, "state": PipelineState.INFERRING.value}
        )
        try:
            return await self._primary.generate(ticket, system_prompt), self._primary
        except ProviderException as e:
            primary_error = e
            log.warning(
                "Primary provider failed, using fallback",
                extra={
                    "ticket_id": ticket.ticket_id,
                    "error_kind": e.kind.value,
                    "status_code": e.status_code,
                    "error": str(e),
                }
            )

        try:
            return await self._fallback.generate(ticket, system_prompt), self._fallback
        except ProviderException as e:
            log.error(
                "Fallback provider failed",
                extra={
                    "ticket_id": ticket.ticket_id,
                    "error_kind": e.kind.value,
                    "status_code": e.status_code,
                    "error": str(e),
                }
            )
            raise ProvidersExhaustedException(primary_error, e)

    async def _fail(
        self,
        ticket: Ticket,
        reason: FailureReason,
        errors: Tuple[str, ...],
        provider: ProviderName,
        raw_snippet: Optional[str]
    ) -> PipelineOutcome:
        log = get_context_logger(__name__, ticket.request_id)
        log.error(
            "Triage pipeline failed",
            extra={
                "ticket_id": ticket.ticket_id,
                "failure_reason": reason.value,
                "provider": provider.value,
                "errors": list(errors),
                "state": PipelineState.FAILED.value,
            }
        )

        await self._attempt_notification(
            self._notifier.notify_failure,
            FailureNotice(
                ticket=ticket,
                reason=reason,
                errors=errors,
                provider=provider,
                raw_snippet=raw_snippet
            ),
            ticket
        )

        await self._store.mark_processed(ticket.ticket_id, provider, success=False)
        return PipelineOutcome(
            ticket_id=ticket.ticket_id,
            state=PipelineState.FAILED,
            provider=provider,
            failure_reason=reason,
            errors=errors
        )

    async def _attempt_notification(self, send, notice, ticket: Ticket) -> bool:
        """An attempt is enough to reach a terminal state, whatever its outcome."""
        log = get_context_logger(__name__, ticket.request_id)
        try:
            delivered = await send(notice)
        except Exception as e:
            log.error(
                "Notifier raised, continuing to commit",
                extra={"ticket_id": ticket.ticket_id, "error_type": type(e).__name__, "error": str(e)}
            )
            return False

        if not delivered:
            log.warning("Notification not delivered", extra={"ticket_id": ticket.ticket_id})
        return delivered


class TriagePipelineRunner:
    """
    Schedules one independent asyncio task per ticket.

    The webhook acknowledges before scheduling, so nothing raised here ever
    reaches the caller.
    """

    def __init__(self, orchestrator: TriageOrchestrator):
        self._orchestrator = orchestrator
        self._tasks: Set[asyncio.Task] = set()

    def schedule(self, ticket: Ticket) -> asyncio.Task:
        """Start the pipeline for ``ticket`` in the background."""
        task = asyncio.create_task(self._run(ticket), name=f"triage-{ticket.ticket_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, ticket: Ticket) -> Optional[PipelineOutcome]:
        try:
            return await self._orchestrator.process(ticket)
        except Exception:
            logger.exception(
                "Triage pipeline crashed",
                extra={"ticket_id": ticket.ticket_id, "correlation_id": ticket.request_id}
            )
            return None

    @property
    def pending(self) -> int:
        """Number of in-flight pipeline tasks."""
        return len(self._tasks)

    async def drain(self, timeout: float = 30.0) -> None:
        """Wait for in-flight pipelines during shutdown."""
        if not self._tasks:
            return

        logger.info("Waiting for in-flight triage pipelines", extra={"pending": len(self._tasks)})
        _, still_running = await asyncio.wait(set(self._tasks), timeout=timeout)
        if still_running:
            logger.warning(
                "Triage pipelines still running at shutdown",
                extra={"pending": len(still_running)}
            )
