"""
Authentication routers - /api/v1/auth/*
Handles login, logout, token refresh, and user info.
"""

from .routes import router

__all__ = ["router"]
