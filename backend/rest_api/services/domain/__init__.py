"""
Domain Services - application layer.

Structure:
    Router (thin controller)
        ↓
    Service (business logic)  ← YOU ARE HERE
        ↓
    Repository (data access)
        ↓
    Model (entity)

Usage:
    from rest_api.services.domain import OrderService

    # In router
    service = OrderService(db, jobs, payments)
    order = service.start_preparing(principal, order_id)
"""

from .order_service import OrderService, RejectionOutcome, compute_totals
from .refund_service import RefundService, calculate_item_refund, rejection_refund_key
from .closing_service import ClosingService, local_day_bounds
from .preset_service import PresetService, validate_schedule, window_contains
from .menu_service import MenuService

__all__ = [
    "OrderService",
    "RejectionOutcome",
    "compute_totals",
    "RefundService",
    "calculate_item_refund",
    "rejection_refund_key",
    "ClosingService",
    "local_day_bounds",
    "PresetService",
    "validate_schedule",
    "window_contains",
    "MenuService",
]
