"""
Core Exceptions
================

Custom exceptions for the application following clean architecture principles.

These exceptions define domain-specific errors that can be caught and handled
appropriately at the application boundaries. Operations that conceptually
return a result-or-error return the value and raise one of these for the error.
"""

from enum import Enum
from typing import Optional


class ApplicationException(Exception):
    """Base exception for all application errors."""

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class RepositoryException(ApplicationException):
    """Base exception for repository/data access errors."""


class ValidationException(ApplicationException):
    """Exception for validation errors."""


class ConfigurationException(ApplicationException):
    """Exception for configuration errors."""


class ExternalServiceException(ApplicationException):
    """Base exception for external service failures."""

    def __init__(
        self,
        service_name: str,
        message: str,
        details: Optional[dict] = None
    ):
        self.service_name = service_name
        super().__init__(f"{service_name}: {message}", details)


# ========== Inference ==========

class ProviderErrorKind(str, Enum):
    """Ways a single inference round trip can fail."""
    TIMEOUT = "timeout"
    CONNECTION_FAILURE = "connection_failure"
    HTTP_ERROR = "http_error"
    AUTH_FAILURE = "auth_failure"


class ProviderException(ExternalServiceException):
    """
    Failure of one inference provider call.

    Every kind is handled the same way by the orchestrator: a primary
    failure triggers the fallback, a fallback failure is terminal.
    """

    def __init__(
        self,
        provider: str,
        kind: ProviderErrorKind,
        message: str,
        status_code: Optional[int] = None
    ):
        self.provider = provider
        self.kind = kind
        self.status_code = status_code
        details = {"provider": provider, "kind": kind.value}
        if status_code is not None:
            details["status_code"] = status_code
        super().__init__(f"LLM provider '{provider}' [{kind.value}]", message, details)


class ProvidersExhaustedException(ExternalServiceException):
    """Both the primary and the fallback provider failed for one ticket."""

    def __init__(self, primary_error: ProviderException, fallback_error: ProviderException):
        self.primary_error = primary_error
        self.fallback_error = fallback_error
        super().__init__(
            "LLM providers",
            f"all providers failed ({primary_error.kind.value}, {fallback_error.kind.value})",
            {
                "primary": primary_error.details,
                "fallback": fallback_error.details,
            }
        )

    @property
    def descriptions(self) -> list[str]:
        return [str(self.primary_error), str(self.fallback_error)]


# ========== Output contract ==========

class TriageOutputErrorKind(str, Enum):
    """Validation-level failure kinds."""
    PARSE_ERROR = "parse_error"
    SCHEMA_VIOLATION = "schema_violation"


class TriageOutputError(ValidationException):
    """
    Raw model output does not satisfy the triage output contract.

    ``description`` names only the first violated rule; it is fed back to the
    model verbatim in the repair prompt.
    """

    def __init__(self, kind: TriageOutputErrorKind, description: str):
        self.kind = kind
        self.description = description
        super().__init__(description, {"kind": kind.value})


class RepairFailedException(ValidationException):
    """Output still violated the contract after the bounded repair rounds."""

    SNIPPET_LENGTH = 500

    def __init__(self, provider: str, description: str, raw_response: str):
        self.provider = provider
        self.description = description
        self.raw_snippet = (raw_response or "")[:self.SNIPPET_LENGTH]
        super().__init__(
            f"Repair failed for provider '{provider}': {description}",
            {"provider": provider, "raw_snippet": self.raw_snippet}
        )
