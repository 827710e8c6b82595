"""
Helpdesk Knowledge Base
=======================

Embedding pipeline and semantic search engine for a customer-support
knowledge base.
"""

__version__ = "1.0.0"
