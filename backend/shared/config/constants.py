"""
Centralized constants for the backend application.
Avoids magic strings for roles, statuses, queues and limits.

Usage:
    from shared.config.constants import Roles, OrderStatus, ORDER_TRANSITIONS

    if status in OrderStatus.TERMINAL:
        ...
"""

from typing import Final


# =============================================================================
# User Roles
# =============================================================================


class Roles:
    """Branch user role constants."""

    CHAIN_OWNER: Final[str] = "chain_owner"
    BRANCH_MANAGER: Final[str] = "branch_manager"
    BRANCH_STAFF: Final[str] = "branch_staff"
    BRANCH_CASHIER: Final[str] = "branch_cashier"

    ALL: Final[list[str]] = [CHAIN_OWNER, BRANCH_MANAGER, BRANCH_STAFF, BRANCH_CASHIER]


# Higher number = more privilege
ROLE_HIERARCHY: Final[dict[str, int]] = {
    Roles.CHAIN_OWNER: 3,
    Roles.BRANCH_MANAGER: 2,
    Roles.BRANCH_STAFF: 1,
    Roles.BRANCH_CASHIER: 0,
}

ROLE_PERMISSIONS: Final[dict[str, list[str]]] = {
    Roles.CHAIN_OWNER: ["*"],
    Roles.BRANCH_MANAGER: [
        "branch:read", "branch:write",
        "menu:read", "menu:write",
        "orders:read", "orders:write",
        "reports:read",
        "users:read", "users:write",
        "settings:read", "settings:write",
    ],
    Roles.BRANCH_STAFF: [
        "branch:read",
        "menu:read",
        "orders:read", "orders:write",
        "reports:read",
    ],
    Roles.BRANCH_CASHIER: [
        "branch:read",
        "menu:read",
        "orders:read", "orders:write",
        "payments:read", "payments:write",
    ],
}

MANAGEMENT_ROLES: Final[frozenset[str]] = frozenset({Roles.CHAIN_OWNER, Roles.BRANCH_MANAGER})
ALL_BRANCH_ROLES: Final[frozenset[str]] = frozenset(Roles.ALL)


# =============================================================================
# Orders
# =============================================================================


class OrderStatus:
    """Order status constants."""

    SCHEDULED: Final[str] = "scheduled"
    PREPARING: Final[str] = "preparing"
    READY: Final[str] = "ready"
    COMPLETED: Final[str] = "completed"
    REJECTED: Final[str] = "rejected"
    CANCELLED: Final[str] = "cancelled"

    ALL: Final[list[str]] = [SCHEDULED, PREPARING, READY, COMPLETED, REJECTED, CANCELLED]
    ACTIVE: Final[list[str]] = [SCHEDULED, PREPARING, READY]
    TERMINAL: Final[list[str]] = [COMPLETED, REJECTED, CANCELLED]


# Valid order status transitions (from -> [allowed to states])
# scheduled -> preparing -> ready -> completed; reject before ready, cancel after
ORDER_TRANSITIONS: Final[dict[str, list[str]]] = {
    OrderStatus.SCHEDULED: [OrderStatus.PREPARING, OrderStatus.REJECTED],
    OrderStatus.PREPARING: [OrderStatus.READY, OrderStatus.COMPLETED, OrderStatus.REJECTED],
    OrderStatus.READY: [OrderStatus.COMPLETED, OrderStatus.CANCELLED],
    OrderStatus.COMPLETED: [],  # Terminal state
    OrderStatus.REJECTED: [],  # Terminal state
    OrderStatus.CANCELLED: [],  # Terminal state
}


class OrderSource:
    """Channel an order came from."""

    WEB: Final[str] = "web"
    QR_CODE: Final[str] = "qr_code"
    PHONE: Final[str] = "phone"
    UBER_EATS: Final[str] = "uber_eats"
    DOORDASH: Final[str] = "doordash"
    SKIPTHEDISHES: Final[str] = "skipthedishes"

    ALL: Final[list[str]] = [WEB, QR_CODE, PHONE, UBER_EATS, DOORDASH, SKIPTHEDISHES]
    # Channels customers can place orders through directly
    PUBLIC: Final[list[str]] = [WEB, QR_CODE]
    # Channels whose orders staff must complete by hand
    MANUAL_COMPLETION: Final[list[str]] = [PHONE, UBER_EATS, DOORDASH, SKIPTHEDISHES]


class OrderType:
    """Order fulfilment type constants."""

    DINE_IN: Final[str] = "dine_in"
    TAKEAWAY: Final[str] = "takeaway"
    PICKUP: Final[str] = "pickup"
    DELIVERY: Final[str] = "delivery"

    ALL: Final[list[str]] = [DINE_IN, TAKEAWAY, PICKUP, DELIVERY]


class PaymentMethod:
    """Payment method constants."""

    ONLINE: Final[str] = "online"
    CASH: Final[str] = "cash"
    CARD: Final[str] = "card"

    ALL: Final[list[str]] = [ONLINE, CASH, CARD]
    # Settled by staff at the counter, without the processor
    COUNTER: Final[list[str]] = [CASH, CARD]


class PaymentStatus:
    """Payment status constants."""

    PENDING: Final[str] = "pending"
    SUCCEEDED: Final[str] = "succeeded"
    FAILED: Final[str] = "failed"
    PARTIALLY_REFUNDED: Final[str] = "partially_refunded"
    REFUNDED: Final[str] = "refunded"

    ALL: Final[list[str]] = [PENDING, SUCCEEDED, FAILED, PARTIALLY_REFUNDED, REFUNDED]
    REFUNDABLE: Final[list[str]] = [SUCCEEDED, PARTIALLY_REFUNDED]
    # The money was taken, whatever has been refunded since
    CAPTURED: Final[list[str]] = [SUCCEEDED, PARTIALLY_REFUNDED, REFUNDED]


class RemovedItemReason:
    """Reason recorded when an order line is edited before payment."""

    REMOVED: Final[str] = "removed"
    QUANTITY_INCREASED: Final[str] = "quantity_increased"
    QUANTITY_DECREASED: Final[str] = "quantity_decreased"

    ALL: Final[list[str]] = [REMOVED, QUANTITY_INCREASED, QUANTITY_DECREASED]


# =============================================================================
# Refunds
# =============================================================================


class RefundReason:
    """Refund reasons accepted by the payment processor."""

    DUPLICATE: Final[str] = "duplicate"
    FRAUDULENT: Final[str] = "fraudulent"
    REQUESTED_BY_CUSTOMER: Final[str] = "requested_by_customer"

    ALL: Final[list[str]] = [DUPLICATE, FRAUDULENT, REQUESTED_BY_CUSTOMER]


class RefundMode:
    """How a refund amount was determined."""

    ITEMS: Final[str] = "items"
    CUSTOM: Final[str] = "custom"
    REJECTION: Final[str] = "rejection"

    ALL: Final[list[str]] = [ITEMS, CUSTOM, REJECTION]


# =============================================================================
# Daily closing
# =============================================================================


class ClosingStatus:
    """Daily closing status constants."""

    DRAFT: Final[str] = "draft"
    COMPLETED: Final[str] = "completed"
    CANCELLED: Final[str] = "cancelled"

    ALL: Final[list[str]] = [DRAFT, COMPLETED, CANCELLED]
    # Statuses that occupy the branch-date slot
    BLOCKING: Final[list[str]] = [DRAFT, COMPLETED]


CLOSING_TRANSITIONS: Final[dict[str, list[str]]] = {
    ClosingStatus.DRAFT: [ClosingStatus.COMPLETED, ClosingStatus.CANCELLED],
    ClosingStatus.COMPLETED: [],  # Irreversible once submitted
    ClosingStatus.CANCELLED: [],
}

DEFAULT_CANCELLATION_REASON: Final[str] = "No reason provided"


# =============================================================================
# Menu presets
# =============================================================================


class ScheduleType:
    """Menu preset schedule type constants."""

    ONE_TIME: Final[str] = "one_time"
    DAILY: Final[str] = "daily"

    ALL: Final[list[str]] = [ONE_TIME, DAILY]


# =============================================================================
# Background jobs
# =============================================================================


class QueueNames:
    """Redis-backed job queue names."""

    EMAIL: Final[str] = "email-queue"
    WEBHOOK: Final[str] = "webhook-queue"
    SYNC: Final[str] = "sync-queue"
    NOTIFICATION: Final[str] = "notification-queue"

    ALL: Final[list[str]] = [EMAIL, WEBHOOK, SYNC, NOTIFICATION]


class JobTypes:
    """Job type names, grouped by destination queue."""

    SEND_EMAIL: Final[str] = "send-email"
    SEND_ORDER_CONFIRMATION: Final[str] = "send-order-confirmation"
    SEND_ORDER_STATUS_UPDATE: Final[str] = "send-order-status-update"
    SEND_WELCOME_EMAIL: Final[str] = "send-welcome-email"
    SEND_PASSWORD_RESET: Final[str] = "send-password-reset"

    PROCESS_STRIPE_WEBHOOK: Final[str] = "process-stripe-webhook"
    PROCESS_THIRD_PARTY_WEBHOOK: Final[str] = "process-third-party-webhook"

    SYNC_UBER_EATS_ORDERS: Final[str] = "sync-uber-eats-orders"
    SYNC_DOORDASH_ORDERS: Final[str] = "sync-doordash-orders"
    SYNC_MENU_TO_THIRD_PARTY: Final[str] = "sync-menu-to-third-party"

    SEND_PUSH_NOTIFICATION: Final[str] = "send-push-notification"
    SEND_SMS_NOTIFICATION: Final[str] = "send-sms-notification"


JOB_QUEUES: Final[dict[str, str]] = {
    JobTypes.SEND_EMAIL: QueueNames.EMAIL,
    JobTypes.SEND_ORDER_CONFIRMATION: QueueNames.EMAIL,
    JobTypes.SEND_ORDER_STATUS_UPDATE: QueueNames.EMAIL,
    JobTypes.SEND_WELCOME_EMAIL: QueueNames.EMAIL,
    JobTypes.SEND_PASSWORD_RESET: QueueNames.EMAIL,
    JobTypes.PROCESS_STRIPE_WEBHOOK: QueueNames.WEBHOOK,
    JobTypes.PROCESS_THIRD_PARTY_WEBHOOK: QueueNames.WEBHOOK,
    JobTypes.SYNC_UBER_EATS_ORDERS: QueueNames.SYNC,
    JobTypes.SYNC_DOORDASH_ORDERS: QueueNames.SYNC,
    JobTypes.SYNC_MENU_TO_THIRD_PARTY: QueueNames.SYNC,
    JobTypes.SEND_PUSH_NOTIFICATION: QueueNames.NOTIFICATION,
    JobTypes.SEND_SMS_NOTIFICATION: QueueNames.NOTIFICATION,
}


# =============================================================================
# Audit actions
# =============================================================================


class AuditAction:
    """Audit log action names."""

    CREATE: Final[str] = "CREATE"
    UPDATE: Final[str] = "UPDATE"
    DELETE: Final[str] = "DELETE"
    STATUS_CHANGE: Final[str] = "STATUS_CHANGE"
    REFUND: Final[str] = "REFUND"
    CANCEL: Final[str] = "CANCEL"
    COMPLETE: Final[str] = "COMPLETE"


# =============================================================================
# Validation Constants
# =============================================================================


class Limits:
    """Validation limits."""

    MIN_QUANTITY: Final[int] = 1
    MAX_QUANTITY: Final[int] = 99

    MAX_NAME_LENGTH: Final[int] = 200
    MAX_DESCRIPTION_LENGTH: Final[int] = 2000
    MAX_REASON_LENGTH: Final[int] = 500

    # Pagination defaults
    DEFAULT_PAGE_SIZE: Final[int] = 20
    MAX_PAGE_SIZE: Final[int] = 100

    # Refund analytics look-back
    DEFAULT_ANALYTICS_DAYS: Final[int] = 30
    MAX_ANALYTICS_DAYS: Final[int] = 365
