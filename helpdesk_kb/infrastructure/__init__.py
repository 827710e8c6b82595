"""
Infrastructure
==============

Technical building blocks used by the bounded contexts:
- database: async SQLAlchemy engine and sessions
- llm: embedding and chat completion providers
- tasks: supervised background job queue
"""
