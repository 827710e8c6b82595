"""
Knowledge Base Interfaces Layer
===============================

API controllers for the knowledge-base module.
"""

from helpdesk_kb.knowledge_base.interfaces.controllers import router as knowledge_base_router

__all__ = ["knowledge_base_router"]
