"""
Order routers - /api/v1/orders/*
Staff-facing order lifecycle, timing and item edits.
"""

from .routes import router

__all__ = ["router"]
