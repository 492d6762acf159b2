"""
Core Module
============

Shared core utilities and abstractions used across the application.

This module contains framework-agnostic code that defines the fundamental
building blocks of the system.
"""

from triage_relay.core.exceptions import (
    ApplicationException,
    RepositoryException,
    ValidationException,
    ConfigurationException,
    ExternalServiceException,
    ProviderErrorKind,
    ProviderException,
    ProvidersExhaustedException,
    TriageOutputErrorKind,
    TriageOutputError,
    RepairFailedException,
)

__all__ = [
    "ApplicationException",
    "RepositoryException",
    "ValidationException",
    "ConfigurationException",
    "ExternalServiceException",
    "ProviderErrorKind",
    "ProviderException",
    "ProvidersExhaustedException",
    "TriageOutputErrorKind",
    "TriageOutputError",
    "RepairFailedException",
]
