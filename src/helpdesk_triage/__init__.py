"""
Helpdesk Triage
===============

Automated first-line triage for helpdesk tickets.
"""

__version__ = "1.0.0"
