"""
Job queue routers - /api/v1/jobs/*
"""

from .routes import router

__all__ = ["router"]
