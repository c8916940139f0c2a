"""
Infrastructure Layer
=====================

Process-wide technical resources:
- Database engine and sessions (SQLAlchemy async)
- Redis pool (arq)
"""
