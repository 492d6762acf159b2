"""
Triage Output Contract
======================

Parses raw model text into a ``TriageResult``.

The first violated rule is reported, never an aggregate: the description is
handed back to the model in a single repair round and must be actionable.
"""

import json
from typing import Any, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictStr, ValidationError, field_validator

from triage_relay.core import TriageOutputError, TriageOutputErrorKind
from triage_relay.triage.domain.entities import (
    TriageResult,
    Priority,
    HandlingMode,
    InternalAction,
    InternalTicketType,
    MAX_SUMMARY_LENGTH,
)


# ========== Type Aliases for Literals ==========
PriorityStr = Literal["low", "medium", "high", "critical"]
HandlingModeStr = Literal[
    "reply_only",
    "reply_and_internal_followup",
    "internal_followup_only",
    "request_more_info",
    "no_action",
]
InternalActionStr = Literal[
    "create_bug_report",
    "create_feedback_ticket",
    "escalate_engineering",
    "escalate_security",
    "none",
]
InternalTicketTypeStr = Literal["bug", "feedback", "escalation", "none"]


class TriageOutputSchema(BaseModel):
    """Field-level shape of the model output. Field order is check order."""

    model_config = ConfigDict(extra="ignore")

    priority: PriorityStr
    handling_mode: HandlingModeStr
    recommended_internal_action: InternalActionStr
    internal_ticket_type_hint: InternalTicketTypeStr
    customer_summary: StrictStr = Field(max_length=MAX_SUMMARY_LENGTH)
    reply_needed: StrictBool
    reply_draft: Optional[StrictStr] = None
    questions_for_customer: List[StrictStr]
    internal_notes: List[StrictStr]
    confidence: float = Field(ge=0.0, le=1.0)

    @field_validator("confidence", mode="before")
    @classmethod
    def confidence_must_be_number(cls, v: Any) -> Any:
        if isinstance(v, bool) or not isinstance(v, (int, float)):
            raise ValueError("confidence must be a number")
        return v

    def to_domain(self) -> TriageResult:
        """Convert to domain entity (raises ValueError on cross-field violations)."""
        return TriageResult(
            priority=Priority(self.priority),
            handling_mode=HandlingMode(self.handling_mode),
            recommended_internal_action=InternalAction(self.recommended_internal_action),
            internal_ticket_type_hint=InternalTicketType(self.internal_ticket_type_hint),
            customer_summary=self.customer_summary,
            reply_needed=self.reply_needed,
            reply_draft=self.reply_draft,
            questions_for_customer=tuple(self.questions_for_customer),
            internal_notes=tuple(self.internal_notes),
            confidence=float(self.confidence),
        )


# An oversized response is only searched for an embedded object in its head
MAX_EXTRACT_CHARS = 20_000


def _loads(text: str) -> Any:
    """``json.loads`` that reports nesting too deep for the decoder as a JSONDecodeError."""
    try:
        return json.loads(text)
    except RecursionError:
        raise json.JSONDecodeError("nesting too deep", text, 0)


def _balanced_spans(text: str) -> List[Tuple[int, int]]:
    """
    ``(start, end)`` of every balanced ``{...}`` span, ordered by start.

    One pass with a stack of open braces. Quotes only open a string inside
    an object, so stray quotes in surrounding prose are ignored.
    """
    spans = []
    opened: List[int] = []
    in_string = False
    escaped = False
    for index, char in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
        elif char == '"':
            in_string = bool(opened)
        elif char == "{":
            opened.append(index)
        elif char == "}" and opened:
            spans.append((opened.pop(), index + 1))
    spans.sort()
    return spans


def extract_json_object(text: str) -> Optional[str]:
    """
    Return the first balanced ``{...}`` substring of ``text`` that parses as JSON.

    Braces inside JSON strings are ignored while balancing. Only the first
    ``MAX_EXTRACT_CHARS`` characters are searched.
    """
    text = text[:MAX_EXTRACT_CHARS]
    for start, end in _balanced_spans(text):
        candidate = text[start:end]
        try:
            _loads(candidate)
        except json.JSONDecodeError:
            continue
        return candidate
    return None


def _preview(value: Any, limit: int = 80) -> str:
    rendered = repr(value)
    return rendered if len(rendered) <= limit else rendered[:limit] + "..."


def _describe_first_error(exc: ValidationError) -> str:
    error = exc.errors()[0]
    location = ".".join(str(part) for part in error["loc"]) or "<root>"
    if error["type"] == "missing":
        return f"Field '{location}' is required but missing"
    return f"Field '{location}': {error['msg']} (got {_preview(error.get('input'))})"


def parse_json_object(raw_text: str) -> dict:
    """
    Parse ``raw_text`` as a JSON object.

    Tries the whole text first, then the first balanced object literal
    embedded in it.

    Raises:
        TriageOutputError: kind PARSE_ERROR
    """
    text = (raw_text or "").strip()
    if not text:
        raise TriageOutputError(
            TriageOutputErrorKind.PARSE_ERROR,
            "Response was empty; expected a single JSON object"
        )

    try:
        data = _loads(text)
    except json.JSONDecodeError as e:
        candidate = extract_json_object(text)
        if candidate is None:
            raise TriageOutputError(
                TriageOutputErrorKind.PARSE_ERROR,
                f"Response is not valid JSON ({e.msg} at line {e.lineno} column {e.colno}) "
                "and contains no JSON object"
            )
        data = _loads(candidate)

    if not isinstance(data, dict):
        raise TriageOutputError(
            TriageOutputErrorKind.PARSE_ERROR,
            f"Expected a JSON object at the top level (got {type(data).__name__})"
        )
    return data


def validate_triage_output(raw_text: str) -> TriageResult:
    """
    Validate raw provider text against the triage output contract.

    Args:
        raw_text: Text returned by an inference provider

    Returns:
        TriageResult satisfying every field and cross-field rule

    Raises:
        TriageOutputError: PARSE_ERROR or SCHEMA_VIOLATION with the first
            violated rule as description
    """
    data = parse_json_object(raw_text)

    try:
        schema = TriageOutputSchema.model_validate(data)
    except ValidationError as e:
        raise TriageOutputError(TriageOutputErrorKind.SCHEMA_VIOLATION, _describe_first_error(e))

    try:
        return schema.to_domain()
    except ValueError as e:
        raise TriageOutputError(TriageOutputErrorKind.SCHEMA_VIOLATION, str(e))
