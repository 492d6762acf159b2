"""
Triage Domain Entities
======================

Domain entities for the ticket triage module.

Contains pure Python business objects: the inbound ticket, the validated
triage recommendation, idempotency records and pipeline outcomes.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Tuple


class Priority(str, Enum):
    """Ticket priority levels."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class HandlingMode(str, Enum):
    """How the support team should handle the ticket."""
    REPLY_ONLY = "reply_only"
    REPLY_AND_INTERNAL_FOLLOWUP = "reply_and_internal_followup"
    INTERNAL_FOLLOWUP_ONLY = "internal_followup_only"
    REQUEST_MORE_INFO = "request_more_info"
    NO_ACTION = "no_action"


class InternalAction(str, Enum):
    """Recommended internal action. Advisory, never executed."""
    CREATE_BUG_REPORT = "create_bug_report"
    CREATE_FEEDBACK_TICKET = "create_feedback_ticket"
    ESCALATE_ENGINEERING = "escalate_engineering"
    ESCALATE_SECURITY = "escalate_security"
    NONE = "none"


class InternalTicketType(str, Enum):
    """Work-tracker ticket type hint. Advisory, never executed."""
    BUG = "bug"
    FEEDBACK = "feedback"
    ESCALATION = "escalation"
    NONE = "none"


class ProviderName(str, Enum):
    """Inference provider slot."""
    LOCAL = "local"
    FALLBACK = "fallback"


class PipelineState(str, Enum):
    """States of the triage pipeline for one ticket."""
    START = "start"
    DUPLICATE_CHECK = "duplicate_check"
    SKIPPED = "skipped"
    INFERRING = "inferring"
    VALIDATING = "validating"
    REPAIRING = "repairing"
    NOTIFYING = "notifying"
    COMMITTED = "committed"
    FAILED = "failed"


class FailureReason(str, Enum):
    """Why a pipeline run ended in FAILED."""
    PROVIDERS_EXHAUSTED = "providers_exhausted"
    REPAIR_FAILED = "repair_failed"


MAX_SUMMARY_LENGTH = 300


@dataclass(frozen=True)
class Ticket:
    """
    Normalized inbound ticket.

    Lives for one pipeline run only; just its identifier is persisted.
    The body is untrusted customer input.
    """
    ticket_id: str
    subject: str
    body: str
    received_at: datetime
    customer_email: Optional[str] = None
    customer_name: Optional[str] = None
    customer_tier: Optional[str] = None
    product_area: Optional[str] = None
    source_url: Optional[str] = None
    request_id: Optional[str] = None


@dataclass(frozen=True)
class TriageResult:
    """
    Validated triage recommendation.

    Instances always satisfy the cross-field rules checked in
    ``__post_init__``; field-level shape is enforced by the output contract
    before construction.
    """
    priority: Priority
    handling_mode: HandlingMode
    recommended_internal_action: InternalAction
    internal_ticket_type_hint: InternalTicketType
    customer_summary: str
    reply_needed: bool
    reply_draft: Optional[str]
    questions_for_customer: Tuple[str, ...]
    internal_notes: Tuple[str, ...]
    confidence: float

    def __post_init__(self):
        """Validate cross-field invariants."""
        if len(self.customer_summary) > MAX_SUMMARY_LENGTH:
            raise ValueError(
                f"customer_summary must be at most {MAX_SUMMARY_LENGTH} characters "
                f"(got {len(self.customer_summary)})"
            )
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError("confidence must be between 0 and 1")
        if self.reply_needed and self.reply_draft is None:
            raise ValueError("reply_draft must be provided when reply_needed is true (got null)")
        if not self.reply_needed and self.reply_draft is not None:
            raise ValueError("reply_draft must be null when reply_needed is false (got a draft)")
        if self.handling_mode is HandlingMode.REQUEST_MORE_INFO and not self.questions_for_customer:
            raise ValueError(
                "questions_for_customer must not be empty when handling_mode is request_more_info"
            )


@dataclass(frozen=True)
class ProcessedRecord:
    """Idempotency entry: proof that a ticket reached a terminal state."""
    ticket_id: str
    processed_at: datetime
    provider: ProviderName
    success: bool


@dataclass(frozen=True)
class TriageNotice:
    """Notification payload for a successful triage."""
    ticket: Ticket
    result: TriageResult
    provider: ProviderName


@dataclass(frozen=True)
class FailureNotice:
    """Notification payload for the FAILED terminal state."""
    ticket: Ticket
    reason: FailureReason
    errors: Tuple[str, ...]
    provider: ProviderName
    raw_snippet: Optional[str] = None


@dataclass(frozen=True)
class PipelineOutcome:
    """Terminal result of one pipeline run."""
    ticket_id: str
    state: PipelineState
    provider: Optional[ProviderName] = None
    failure_reason: Optional[FailureReason] = None
    errors: Tuple[str, ...] = ()
    completed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_duplicate(self) -> bool:
        return self.state is PipelineState.SKIPPED
