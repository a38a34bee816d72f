"""
Services module for business logic.

- domain/: application services (orders, refunds, daily closing, presets)
- crud/: repository pattern with branch scoping
- payments/: payment processor gateway and circuit breakers
- fiscal/: WEB-SRM fiscal reporting client
- jobs/: Redis-backed background job queues
- permissions/: principal and per-operation role table

Usage:
    from rest_api.services.domain import OrderService
"""

from .audit import log_change, serialize_model

__all__ = [
    "log_change",
    "serialize_model",
]
