"""
Core Module
============

Shared core utilities and abstractions used across the application.

This module contains framework-agnostic code that defines the fundamental
building blocks of the system.
"""

from helpdesk_kb.core.exceptions import (
    ApplicationException,
    DomainException,
    RepositoryException,
    ValidationException,
    NotFoundException,
    ResourceNotFoundException,
    UnauthorizedException,
    ConfigurationException,
    ExternalServiceException,
    ProviderUnavailableException,
    LLMException,
)

__all__ = [
    "ApplicationException",
    "DomainException",
    "RepositoryException",
    "ValidationException",
    "NotFoundException",
    "ResourceNotFoundException",
    "UnauthorizedException",
    "ConfigurationException",
    "ExternalServiceException",
    "ProviderUnavailableException",
    "LLMException",
]
