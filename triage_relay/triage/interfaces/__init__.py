"""
Triage Interfaces Layer
========================

Interface adapters (controllers) for the ticket triage module.

Contains:
- Controllers: FastAPI route handlers
"""

from triage_relay.triage.interfaces.controllers import triage_router, webhook_router

__all__ = ["triage_router", "webhook_router"]
