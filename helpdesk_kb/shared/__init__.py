"""
Shared Kernel Module
====================

This module contains shared infrastructure used across the application:
structured logging and HTTP middleware.

Architecture Pattern: Modular Monolith
- knowledge_base is the bounded context
- Shared kernel contains only generic infrastructure

DO NOT add knowledge-base business logic to the shared kernel.
"""

__version__ = "1.0.0"
