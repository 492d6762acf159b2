"""
Infrastructure
==============

Technical adapters shared by the bounded contexts:
- database: async SQLAlchemy engine and sessions
- llm: inference providers (local Ollama, Groq fallback)
"""
