"""
Core Exceptions
================

Custom exceptions for the application following clean architecture principles.

These exceptions define domain-specific errors that can be caught and handled
appropriately at the application boundaries. The dispatch façade maps each of
them to an HTTP status code.
"""

from typing import Optional


class ApplicationException(Exception):
    """Base exception for all application errors."""

    status_code: int = 500

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class DomainException(ApplicationException):
    """Base exception for domain logic violations."""

    status_code = 400


class RepositoryException(ApplicationException):
    """Exception for persistence (read/write) failures."""


class ValidationException(DomainException):
    """Exception for invalid arguments: missing fields, empty queries, bad numbers."""


class NotFoundException(ApplicationException):
    """Exception for unknown routes."""

    status_code = 404

    def __init__(self, message: str = "Not found", details: Optional[dict] = None):
        super().__init__(message, details)


class ResourceNotFoundException(NotFoundException):
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


class UnauthorizedException(ApplicationException):
    """
    Exception for callers without the required privilege.

    401 when the caller is anonymous or the token is unknown,
    403 when the caller is authenticated but not an editor.
    """

    def __init__(
        self,
        message: str = "Unauthorized",
        status_code: int = 401,
        details: Optional[dict] = None
    ):
        self.status_code = status_code
        super().__init__(message, details)


class ConfigurationException(ApplicationException):
    """Exception for configuration errors."""


class ExternalServiceException(ApplicationException):
    """Base exception for external service failures."""

    status_code = 503

    def __init__(
        self,
        service_name: str,
        message: str,
        details: Optional[dict] = None
    ):
        self.service_name = service_name
        super().__init__(f"{service_name}: {message}", details)


class ProviderUnavailableException(ExternalServiceException):
    """Exception when the embedding provider fails or times out."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__("Embedding Provider", message, details)


class LLMException(ExternalServiceException):
    """Exception for chat completion failures."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__("LLM Service", message, details)
