"""
Core Exceptions
================

Custom exceptions for the triage service following clean architecture principles.

Every failure the pipeline can surface is distinguishable by its class, never
by the underlying library that raised it. Adapters translate driver/ORM errors
into these types at the boundary.
"""

from typing import Optional


class ApplicationException(Exception):
    """Base exception for all application errors."""

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class DomainException(ApplicationException):
    """Base exception for domain logic violations."""


class ValidationException(DomainException):
    """Exception for invalid state changes or input."""


class NotFoundError(ApplicationException):
    """Exception when a requested ticket, suggestion or article is missing."""

    def __init__(
        self,
        resource_type: str,
        resource_id: Optional[str] = None,
        details: Optional[dict] = None
    ):
        self.resource_type = resource_type
        self.resource_id = resource_id
        message = f"{resource_type}"
        if resource_id:
            message += f" with id '{resource_id}'"
        message += " not found"
        super().__init__(message, details)


class ClassificationError(ApplicationException):
    """Exception raised when a ticket cannot be classified."""


class RetrievalError(ApplicationException):
    """Exception raised when the knowledge base cannot be searched."""


class DraftError(ApplicationException):
    """Exception raised when a reply draft cannot be composed."""


class PersistenceError(ApplicationException):
    """Exception for repository/data access errors."""


class ConfigError(ApplicationException):
    """Exception for missing or invalid triage configuration."""


class TriageInProgressError(ApplicationException):
    """Exception raised when another triage run holds the ticket lock."""

    def __init__(self, ticket_id: str):
        self.ticket_id = ticket_id
        super().__init__(
            f"Triage already in progress for ticket {ticket_id}",
            {"ticket_id": ticket_id}
        )


class TriageTimeoutError(ApplicationException):
    """Exception raised when a triage run exceeds its time budget."""

    def __init__(self, ticket_id: str, timeout_seconds: float):
        self.ticket_id = ticket_id
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Triage for ticket {ticket_id} timed out after {timeout_seconds:g}s",
            {"ticket_id": ticket_id, "timeout_seconds": timeout_seconds}
        )
