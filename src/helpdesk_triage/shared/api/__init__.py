"""
Shared API Layer
================

Middleware and exception handlers for the FastAPI application.
"""
