"""
Core Module
============

Shared core utilities and abstractions used across the application.

This module contains framework-agnostic code that defines the fundamental
building blocks of the system.
"""

from helpdesk_triage.core.exceptions import (
    ApplicationException,
    DomainException,
    ValidationException,
    NotFoundError,
    ClassificationError,
    RetrievalError,
    DraftError,
    PersistenceError,
    ConfigError,
    TriageInProgressError,
    TriageTimeoutError,
)

__all__ = [
    "ApplicationException",
    "DomainException",
    "ValidationException",
    "NotFoundError",
    "ClassificationError",
    "RetrievalError",
    "DraftError",
    "PersistenceError",
    "ConfigError",
    "TriageInProgressError",
    "TriageTimeoutError",
]
