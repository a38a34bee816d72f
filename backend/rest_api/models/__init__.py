"""
SQLAlchemy ORM Models Package.

Models are organized into domain-specific modules:
- base: Base class, AuditMixin, shared column types
- tenant: Chain, Branch
- user: User, BranchUser
- menu: MenuCategory, MenuItem, MenuPreset
- order: Order, OrderItem, RemovedItem, OrderRefund
- closing: DailyClosing
- audit: AuditLog
"""

# Base classes
from .base import Base, AuditMixin

# Core tenant models
from .tenant import Chain, Branch

# Users and branch roles
from .user import User, BranchUser

# Menu catalog and presets
from .menu import MenuCategory, MenuItem, MenuPreset

# Orders and refunds
from .order import Order, OrderItem, RemovedItem, OrderRefund

# Daily closing
from .closing import DailyClosing

# Audit trail
from .audit import AuditLog

__all__ = [
    "Base",
    "AuditMixin",
    "Chain",
    "Branch",
    "User",
    "BranchUser",
    "MenuCategory",
    "MenuItem",
    "MenuPreset",
    "Order",
    "OrderItem",
    "RemovedItem",
    "OrderRefund",
    "DailyClosing",
    "AuditLog",
]
