"""
Triage Module
=============

Bounded Context for first-line ticket triage and its audit trail.

Responsibilities:
- Classify tickets into billing, tech, shipping or other
- Retrieve and rank published knowledge articles
- Draft a templated reply citing the articles used
- Auto-close confident tickets, hand the rest to the least-loaded agent
- Record every step as an audit event under the run's trace ID
"""

__version__ = "1.0.0"
