"""
Public routers - No authentication required.
- /api/v1/public/* - Menu view and order placement
- /api/v1/health - Health check
"""

from .health import router as health_router
from .menu import router as menu_router

__all__ = ["health_router", "menu_router"]
