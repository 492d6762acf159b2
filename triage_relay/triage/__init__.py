"""
Triage Module
=============

Bounded Context for LLM-assisted ticket triage.

Responsibilities:
- Accept HubSpot ticket webhooks and acknowledge them immediately
- Produce a structured triage recommendation (local model, cloud fallback)
- Validate the recommendation against a strict output contract, with one repair round
- Relay the recommendation to Slack at most once per ticket

Nothing here replies to customers or files work items.
"""

__version__ = "1.0.0"
