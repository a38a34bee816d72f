"""
Refund routers - /api/v1/orders/{id}/refunds and /api/v1/refunds/*
"""

from .routes import router

__all__ = ["router"]
