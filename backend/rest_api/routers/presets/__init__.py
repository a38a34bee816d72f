"""
Menu preset routers - /api/v1/menu-presets/*
"""

from .routes import router

__all__ = ["router"]
