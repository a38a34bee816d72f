"""
Daily closing routers - /api/v1/daily-closings/*
"""

from .routes import router

__all__ = ["router"]
