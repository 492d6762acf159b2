"""
Triage Domain Layer
===================

Domain layer for ticket triage module.

Contains:
- Entities: Core business objects (Ticket, TriageResult, ProcessedRecord, PipelineOutcome)
- Contract: Validation of raw model output into a TriageResult
- Prompts: System, user and repair prompt construction

This layer is framework-agnostic and contains pure business logic.
"""

from triage_relay.triage.domain.entities import (
    Ticket,
    TriageResult,
    ProcessedRecord,
    TriageNotice,
    FailureNotice,
    PipelineOutcome,
    Priority,
    HandlingMode,
    InternalAction,
    InternalTicketType,
    ProviderName,
    PipelineState,
    FailureReason,
    MAX_SUMMARY_LENGTH,
)
from triage_relay.triage.domain.contract import (
    TriageOutputSchema,
    validate_triage_output,
    parse_json_object,
    extract_json_object,
    MAX_EXTRACT_CHARS,
)
from triage_relay.triage.domain.prompts import TriagePromptBuilder, OUTPUT_SCHEMA

__all__ = [
    "Ticket",
    "TriageResult",
    "ProcessedRecord",
    "TriageNotice",
    "FailureNotice",
    "PipelineOutcome",
    "Priority",
    "HandlingMode",
    "InternalAction",
    "InternalTicketType",
    "ProviderName",
    "PipelineState",
    "FailureReason",
    "MAX_SUMMARY_LENGTH",
    "TriageOutputSchema",
    "validate_triage_output",
    "parse_json_object",
    "extract_json_object",
    "MAX_EXTRACT_CHARS",
    "TriagePromptBuilder",
    "OUTPUT_SCHEMA",
]
