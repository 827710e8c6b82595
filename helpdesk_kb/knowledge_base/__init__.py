"""
Knowledge Base Module
=====================

Bounded Context for knowledge-base articles, their embeddings and semantic
search.

Responsibilities:
- Generate metadata and content embeddings for articles in the background
- Rank articles against free-text queries by cosine similarity
- Keep tags consistent as articles and their associations change
- Draft automatic first replies to new tickets from matching articles
"""

__version__ = "1.0.0"
