"""
Triage External Service Adapters
==================================

Adapters between the triage pipeline and the outside world:
- InferenceProviderAdapter: ticket -> chat messages -> raw model text
- SlackNotifier: advisory triage messages and failure alerts (Block Kit)
- RetentionScheduler: periodic idempotency sweep on APScheduler
"""

import asyncio
import time
from datetime import timedelta
from enum import Enum
from typing import Any, Dict, List, Optional

import httpx
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from triage_relay.infrastructure.llm import ILLMClient
from triage_relay.shared.infrastructure.logging import get_context_logger, get_logger, log_latency
from triage_relay.triage.application import IIdempotencyStore, IInferenceProvider, INotifier
from triage_relay.triage.domain import (
    Ticket,
    TriageNotice,
    FailureNotice,
    ProviderName,
    TriagePromptBuilder,
)

logger = get_logger(__name__)


class InferenceProviderAdapter(IInferenceProvider):
    """
    Binds an LLM client to a provider slot (local or fallback).

    The client owns transport and error mapping; this adapter only shapes
    the conversation and records latency.
    """

    def __init__(self, name: ProviderName, client: ILLMClient):
        self.name = name
        self._client = client

    async def generate(self, ticket: Ticket, system_prompt: str) -> str:
        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": TriagePromptBuilder.build_user_prompt(ticket)}
        ]

        log = get_context_logger(__name__, ticket.request_id)
        with log_latency(log, f"{self.name.value}_llm_call", ticket_id=ticket.ticket_id):
            result = await self._client.chat_completion(messages)

        log.debug(
            "LLM response received",
            extra={
                "ticket_id": ticket.ticket_id,
                "provider": self.name.value,
                "model": result.model,
                "prompt_tokens": result.prompt_tokens,
                "completion_tokens": result.completion_tokens
            }
        )
        return result.content

    async def close(self) -> None:
        await self._client.close()


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Stops hammering Slack while it is down.

    ``failure_threshold`` consecutive failed deliveries open the circuit; once
    ``recovery_timeout`` seconds have passed a single probe is let through
    (half-open). A success closes it again.
    """

    def __init__(self, failure_threshold: int = 5, recovery_timeout: float = 60.0):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._opened_at: Optional[float] = None

    @property
    def state(self) -> CircuitState:
        cooled_down = (
            self._opened_at is not None
            and time.monotonic() - self._opened_at >= self.recovery_timeout
        )
        if self._state is CircuitState.OPEN and cooled_down:
            self._state = CircuitState.HALF_OPEN
        return self._state

    def allow_request(self) -> bool:
        return self.state is not CircuitState.OPEN

    def record_success(self) -> None:
        self._consecutive_failures = 0
        self._opened_at = None
        self._state = CircuitState.CLOSED

    def record_failure(self) -> None:
        self._consecutive_failures += 1
        if self._consecutive_failures < self.failure_threshold:
            return

        self._state = CircuitState.OPEN
        self._opened_at = time.monotonic()
        logger.warning(
            "Slack circuit opened",
            extra={
                "consecutive_failures": self._consecutive_failures,
                "recovery_timeout": self.recovery_timeout
            }
        )


# Slack Block Kit limits
SECTION_TEXT_LIMIT = 3000
FIELD_TEXT_LIMIT = 2000
HEADER_TEXT_LIMIT = 150

PRIORITY_EMOJI = {
    "critical": ":red_circle:",
    "high": ":large_orange_circle:",
    "medium": ":large_yellow_circle:",
    "low": ":white_circle:",
}


def _truncate(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[:limit - 3] + "..."


def _bullets(items) -> str:
    return "\n".join(f"• {item}" for item in items)


def _markdown(label: str, body: str, limit: int = SECTION_TEXT_LIMIT) -> Dict[str, str]:
    return {"type": "mrkdwn", "text": _truncate(f"*{label}:*\n{body}", limit)}


def _section(label: str, body: str) -> Dict[str, Any]:
    return {"type": "section", "text": _markdown(label, body)}


def _header(text: str) -> Dict[str, Any]:
    return {
        "type": "header",
        "text": {"type": "plain_text", "text": _truncate(text, HEADER_TEXT_LIMIT), "emoji": True}
    }


def _context(text: str) -> Dict[str, Any]:
    return {"type": "context", "elements": [{"type": "mrkdwn", "text": text}]}


class SlackNotifier(INotifier):
    """
    Posts triage results to a Slack incoming webhook.

    Delivery is retried with exponential backoff and guarded by a circuit
    breaker. Never raises: the return value says whether Slack accepted the
    message. Without a webhook URL every notification is skipped.
    """

    def __init__(
        self,
        webhook_url: Optional[str],
        channel: str,
        timeout_seconds: float = 5.0,
        max_retries: int = 3,
        backoff_base_seconds: float = 1.0,
        http_client: Optional[httpx.AsyncClient] = None
    ):
        self._webhook_url = webhook_url
        self._channel = channel
        self._timeout_seconds = timeout_seconds
        self._max_retries = max_retries
        self._backoff_base_seconds = backoff_base_seconds
        self._breaker = CircuitBreaker()
        self._http_client = http_client

    def _client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout_seconds)
        return self._http_client

    @staticmethod
    def _ticket_link(ticket: Ticket) -> str:
        if ticket.source_url:
            return f"<{ticket.source_url}|{ticket.ticket_id}>"
        return ticket.ticket_id

    def _build_triage_message(self, notice: TriageNotice) -> Dict[str, Any]:
        ticket, result = notice.ticket, notice.result
        emoji = PRIORITY_EMOJI.get(result.priority.value, ":white_circle:")

        blocks: List[Dict[str, Any]] = [
            _header(f"Ticket triage: {ticket.subject}"),
            {
                "type": "section",
                "fields": [
                    _markdown("Ticket", self._ticket_link(ticket), FIELD_TEXT_LIMIT),
                    _markdown("Priority", f"{emoji} {result.priority.value.title()}", FIELD_TEXT_LIMIT),
                    _markdown("Handling", result.handling_mode.value, FIELD_TEXT_LIMIT),
                    _markdown("Suggested action", result.recommended_internal_action.value, FIELD_TEXT_LIMIT),
                    _markdown("Ticket type hint", result.internal_ticket_type_hint.value, FIELD_TEXT_LIMIT),
                    _markdown("Confidence", f"{result.confidence:.0%}", FIELD_TEXT_LIMIT),
                ]
            },
            _section("Summary", result.customer_summary),
        ]

        if result.reply_draft is not None:
            blocks.append(_section("Reply draft", result.reply_draft))
        if result.questions_for_customer:
            blocks.append(_section("Questions for customer", _bullets(result.questions_for_customer)))
        if result.internal_notes:
            blocks.append(_section("Internal notes", _bullets(result.internal_notes)))

        footer = f"Provider: {notice.provider.value} | Advisory only, no action has been taken"
        if ticket.customer_tier:
            footer += f" | Tier: {ticket.customer_tier}"
        blocks.append(_context(footer))

        return {
            "channel": self._channel,
            "text": f"Triage for ticket {ticket.ticket_id}: {result.priority.value}",
            "blocks": blocks
        }

    def _build_failure_message(self, notice: FailureNotice) -> Dict[str, Any]:
        ticket = notice.ticket

        blocks: List[Dict[str, Any]] = [
            _header(":warning: Triage failed"),
            {
                "type": "section",
                "fields": [
                    _markdown("Ticket", self._ticket_link(ticket), FIELD_TEXT_LIMIT),
                    _markdown("Reason", notice.reason.value, FIELD_TEXT_LIMIT),
                    _markdown("Provider", notice.provider.value, FIELD_TEXT_LIMIT),
                    _markdown("Subject", ticket.subject, FIELD_TEXT_LIMIT),
                ]
            },
            _section("Errors", _bullets(notice.errors)),
        ]
        if notice.raw_snippet:
            blocks.append(_section("Last model output", f"```{notice.raw_snippet}```"))
        blocks.append(_context("Please triage this ticket manually."))

        return {
            "channel": self._channel,
            "text": f"Triage failed for ticket {ticket.ticket_id}: {notice.reason.value}",
            "blocks": blocks
        }

    async def notify_triage(self, notice: TriageNotice) -> bool:
        return await self._deliver(self._build_triage_message(notice), notice.ticket.ticket_id, "triage")

    async def notify_failure(self, notice: FailureNotice) -> bool:
        return await self._deliver(self._build_failure_message(notice), notice.ticket.ticket_id, "failure")

    async def _deliver(self, message: Dict[str, Any], ticket_id: str, kind: str) -> bool:
        context = {"ticket_id": ticket_id, "notification": kind}

        if not self._webhook_url:
            logger.warning("Slack webhook URL not configured, notification skipped", extra=context)
            return False
        if not self._breaker.allow_request():
            logger.warning("Slack circuit open, notification skipped", extra=context)
            return False

        for attempt in range(1, self._max_retries + 1):
            try:
                response = await self._client().post(self._webhook_url, json=message)
            except httpx.HTTPError as e:
                logger.warning(
                    "Slack delivery attempt failed",
                    extra={**context, "attempt": attempt, "error": str(e)}
                )
            else:
                if response.status_code == 200:
                    self._breaker.record_success()
                    logger.info("Slack notification delivered", extra={**context, "attempt": attempt})
                    return True
                logger.warning(
                    "Slack delivery attempt rejected",
                    extra={**context, "attempt": attempt, "status_code": response.status_code}
                )

            if attempt < self._max_retries:
                await asyncio.sleep(self._backoff_base_seconds * 2 ** (attempt - 1))

        self._breaker.record_failure()
        logger.error("Slack notification not delivered", extra={**context, "attempts": self._max_retries})
        return False

    async def close(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None


class RetentionScheduler:
    """
    Runs ``IIdempotencyStore.sweep`` on a fixed interval.

    One APScheduler job; overlapping sweeps are not allowed.
    """

    JOB_ID = "idempotency_retention_sweep"

    def __init__(self, store: IIdempotencyStore, retention: timedelta, interval_hours: int = 24):
        self._store = store
        self.retention = retention
        self.interval_hours = interval_hours
        self._scheduler: Optional[AsyncIOScheduler] = None

    async def run_sweep(self) -> int:
        return await self._store.sweep(self.retention)

    async def start(self) -> None:
        """Schedule the sweep job. Requires a running event loop."""
        if self.is_running:
            logger.warning("Retention scheduler already running")
            return

        scheduler = AsyncIOScheduler()
        scheduler.add_job(
            self.run_sweep,
            trigger="interval",
            hours=self.interval_hours,
            id=self.JOB_ID,
            name="Idempotency retention sweep",
            max_instances=1,
            coalesce=True,
            misfire_grace_time=300,
            replace_existing=True
        )
        scheduler.start()
        self._scheduler = scheduler

        logger.info(
            "Retention scheduler started",
            extra={"interval_hours": self.interval_hours, "retention_days": self.retention.days}
        )

    async def stop(self) -> None:
        if self._scheduler is None:
            return
        self._scheduler.shutdown(wait=False)
        self._scheduler = None
        logger.info("Retention scheduler stopped")

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None
