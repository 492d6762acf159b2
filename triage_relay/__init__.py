"""
Triage Relay
============

Receives support-ticket webhooks, asks an LLM for a structured triage
recommendation (local model first, cloud fallback), validates it against a
strict output contract and relays it to a team chat channel. Nothing is ever
sent to the customer or filed automatically.
"""

__version__ = "1.0.0"
