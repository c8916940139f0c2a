"""
Triage Interfaces Layer
========================

Interface adapters (controllers) for ticket triage module.

Contains:
- Controllers: FastAPI route handlers for triage and audit
"""

from helpdesk_triage.triage.interfaces.controllers import audit_router, triage_router

__all__ = ["triage_router", "audit_router"]
