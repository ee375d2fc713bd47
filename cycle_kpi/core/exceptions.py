"""
Core Exceptions
================

Custom exceptions for the application following clean architecture principles.

These exceptions define domain-specific errors that can be caught and handled
appropriately at the application boundaries. Failures scoped to one
(group, cycle) unit are caught by the KPI calculator and recorded on that
unit's result; everything else propagates to the HTTP layer.
"""

from typing import Optional, List


class ApplicationException(Exception):
    """Base exception for all application errors."""

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class DomainException(ApplicationException):
    """Base exception for domain logic violations."""


class RepositoryException(ApplicationException):
    """Base exception for repository/data access errors."""


class ValidationException(ApplicationException):
    """Exception for validation errors."""


class ResourceNotFoundException(ApplicationException):
    """Exception when a requested resource is not found."""

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


class ConfigurationException(ApplicationException):
    """Exception for configuration errors (missing or malformed files)."""


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


class TrackerException(ExternalServiceException):
    """Exception for work tracker API failures (network, HTTP or GraphQL)."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__("Work Tracker", message, details)


class LabelResolutionException(DomainException):
    """Raised when labels needed to detect cycle membership are not found upstream."""

    def __init__(self, label_names: List[str], details: Optional[dict] = None):
        self.label_names = label_names
        super().__init__(
            f"Label(s) not found upstream: {', '.join(label_names)}",
            details or {"labels": label_names}
        )


class FetchCancelledException(ApplicationException):
    """Raised to callers sharing a cached fetch whose owning task was cancelled."""

    def __init__(self, cache_key: str):
        self.cache_key = cache_key
        super().__init__(
            f"Shared fetch for '{cache_key}' was cancelled",
            {"cache_key": cache_key}
        )
