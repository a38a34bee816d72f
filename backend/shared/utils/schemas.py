"""
Shared Pydantic schemas used across the application.

Money is Decimal dollars (serialized as strings in JSON).
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Generic, Literal, TypeVar

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from shared.config.constants import Limits


# =============================================================================
# Common Types
# =============================================================================

Role = Literal["chain_owner", "branch_manager", "branch_staff", "branch_cashier"]
OrderStatusName = Literal["scheduled", "preparing", "ready", "completed", "rejected", "cancelled"]
PublicOrderSource = Literal["web", "qr_code"]
OrderTypeName = Literal["dine_in", "takeaway", "pickup", "delivery"]
PaymentMethodName = Literal["online", "cash", "card"]
ClosingStatusName = Literal["draft", "completed", "cancelled"]
ScheduleTypeName = Literal["one_time", "daily"]

T = TypeVar("T")


class ORMModel(BaseModel):
    """Output schema read from SQLAlchemy attributes."""

    model_config = ConfigDict(from_attributes=True)


class Page(BaseModel, Generic[T]):
    """One page of results."""

    items: list[T]
    total: int
    page: int
    limit: int


# =============================================================================
# Authentication Schemas
# =============================================================================


class LoginRequest(BaseModel):
    """Login request body."""

    email: EmailStr
    password: str
    # Required when the user works at more than one branch
    branch_id: int | None = None


class UserInfo(BaseModel):
    """Caller identity included in auth responses."""

    id: int
    email: str
    chain_id: int
    branch_id: int | None
    branch_name: str | None = None
    role: Role
    permissions: list[str]


class LoginResponse(BaseModel):
    """Login response with JWT token."""

    access_token: str
    token_type: str = "Bearer"
    expires_in: int  # seconds
    user: UserInfo


# =============================================================================
# Public Menu Schemas
# =============================================================================


class PublicMenuItem(ORMModel):
    id: int
    name: str
    description: str | None
    price: Decimal


class PublicMenuCategory(BaseModel):
    id: int
    name: str
    display_order: int
    items: list[PublicMenuItem] = Field(default_factory=list)


class PublicMenu(BaseModel):
    """Currently orderable part of a branch menu."""

    branch_id: int
    branch_name: str
    categories: list[PublicMenuCategory] = Field(default_factory=list)
    uncategorized: list[PublicMenuItem] = Field(default_factory=list)


# =============================================================================
# Order Schemas
# =============================================================================


class OrderItemInput(BaseModel):
    menu_item_id: int
    quantity: int = Field(ge=Limits.MIN_QUANTITY, le=Limits.MAX_QUANTITY)
    variants: list[dict[str, Any]] = Field(default_factory=list)
    modifiers: list[dict[str, Any]] = Field(default_factory=list)
    notes: str | None = Field(default=None, max_length=200)


class CreateOrderRequest(BaseModel):
    """Order placed by a customer through a public channel."""

    source: PublicOrderSource = "web"
    order_type: OrderTypeName = "takeaway"
    customer_name: str | None = Field(default=None, max_length=Limits.MAX_NAME_LENGTH)
    customer_email: EmailStr | None = None
    customer_phone: str | None = Field(default=None, max_length=30)
    notes: str | None = Field(default=None, max_length=Limits.MAX_DESCRIPTION_LENGTH)
    items: list[OrderItemInput] = Field(min_length=1)

    payment_method: PaymentMethodName = "online"
    payment_intent_id: str | None = None

    # Pre-order; both or neither
    scheduled_date: date | None = None
    scheduled_time: str | None = None

    # Optional cross-check of the computed totals; each must match to the cent
    items_subtotal: Decimal | None = Field(default=None, ge=0)
    gst_amount: Decimal | None = Field(default=None, ge=0)
    qst_amount: Decimal | None = Field(default=None, ge=0)
    total_amount: Decimal | None = Field(default=None, ge=0)


class OrderItemOutput(ORMModel):
    id: int
    menu_item_id: int | None
    name: str
    unit_price: Decimal
    quantity: int
    refunded_quantity: int
    variants: list[dict[str, Any]]
    modifiers: list[dict[str, Any]]
    notes: str | None = None


class RemovedItemOutput(ORMModel):
    id: int
    order_item_id: int | None
    item_name: str
    unit_price: Decimal
    quantity: int
    reason: str
    removed_by_email: str | None
    created_at: datetime


class OrderOutput(ORMModel):
    id: int
    branch_id: int
    order_number: str
    status: str
    source: str
    order_type: str
    customer_name: str | None
    customer_email: str | None
    customer_phone: str | None
    notes: str | None
    items_subtotal: Decimal
    gst_amount: Decimal
    qst_amount: Decimal
    total_amount: Decimal
    total_refunded: Decimal
    refund_count: int
    payment_method: str
    payment_status: str
    individual_timing_adjustment: int
    scheduled_date: date | None
    scheduled_time: str | None
    created_at: datetime
    preparing_started_at: datetime | None
    ready_at: datetime | None
    completed_at: datetime | None
    rejected_at: datetime | None
    cancelled_at: datetime | None
    items: list[OrderItemOutput] = Field(default_factory=list)


class OrderStatusChangeRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=Limits.MAX_REASON_LENGTH)


class AdjustTimingRequest(BaseModel):
    minutes: int


class ItemEdit(BaseModel):
    """New quantity for an order line; 0 removes the line."""

    order_item_id: int
    quantity: int = Field(ge=0, le=Limits.MAX_QUANTITY)


class EditItemsRequest(BaseModel):
    edits: list[ItemEdit] = Field(min_length=1)


class AutoCompleteEntry(BaseModel):
    order_id: int
    order_number: str
    target_at: datetime | None
    completed: bool
    skipped_reason: str | None = None


class AutoCompleteReport(BaseModel):
    branch_id: int
    enabled: bool
    checked_at: datetime
    completed_count: int = 0
    orders: list[AutoCompleteEntry] = Field(default_factory=list)


# =============================================================================
# Refund Schemas
# =============================================================================


class RefundItemSelection(BaseModel):
    order_item_id: int
    quantity: int = Field(ge=1, le=Limits.MAX_QUANTITY)


class RefundRequest(BaseModel):
    """Either `items` (item-based) or `amount` (custom), never both."""

    reason: str
    items: list[RefundItemSelection] | None = None
    amount: Decimal | None = None
    notes: str | None = Field(default=None, max_length=Limits.MAX_REASON_LENGTH)


class RefundOutput(ORMModel):
    id: int
    order_id: int
    amount: Decimal
    items_subtotal: Decimal | None
    gst_amount: Decimal | None
    qst_amount: Decimal | None
    reason: str
    mode: str
    payment_method: str
    refunded_items: list[dict[str, int]]
    processor_refund_id: str | None
    processor_status: str | None
    created_at: datetime
    created_by_email: str | None


class RefundResultOutput(BaseModel):
    refund: RefundOutput
    order_total_refunded: Decimal
    order_payment_status: str
    remaining_refundable: Decimal


class RefundableItem(BaseModel):
    order_item_id: int
    name: str
    unit_price: Decimal
    quantity: int
    refunded_quantity: int
    refundable_quantity: int


class RefundEligibility(BaseModel):
    order_id: int
    eligible: bool
    reason: str | None = None
    refundable_amount: Decimal
    refund_deadline: datetime | None
    items: list[RefundableItem] = Field(default_factory=list)


class RefundAnalytics(BaseModel):
    branch_id: int
    days: int
    total_refunded: Decimal
    refund_count: int
    average_refund: Decimal
    by_reason: dict[str, Decimal]


class RejectOrderResponse(BaseModel):
    order: OrderOutput
    refund: RefundOutput | None = None
    refund_error: str | None = None


# =============================================================================
# Daily Closing Schemas
# =============================================================================


class DailySummary(BaseModel):
    closing_date: date
    total_sales: Decimal
    total_refunds: Decimal
    net_sales: Decimal
    transaction_count: int
    gst_collected: Decimal
    qst_collected: Decimal
    cash_total: Decimal
    card_total: Decimal
    online_total: Decimal


class StartClosingRequest(BaseModel):
    closing_date: date
    branch_id: int | None = None


class CancelClosingRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=Limits.MAX_REASON_LENGTH)


class ClosingOutput(ORMModel):
    id: int
    branch_id: int
    closing_date: date
    status: str
    total_sales: Decimal
    total_refunds: Decimal
    net_sales: Decimal
    transaction_count: int
    gst_collected: Decimal
    qst_collected: Decimal
    cash_total: Decimal
    card_total: Decimal
    online_total: Decimal
    started_at: datetime
    completed_at: datetime | None
    cancelled_at: datetime | None
    cancellation_reason: str | None
    created_by: int | None
    completed_by: int | None
    cancelled_by: int | None
    websrm_transaction_id: str | None


# =============================================================================
# Menu Preset Schemas
# =============================================================================


class PresetScheduleFields(BaseModel):
    schedule_type: ScheduleTypeName | None = None
    scheduled_start: datetime | None = None
    scheduled_end: datetime | None = None
    daily_start_time: str | None = None
    daily_end_time: str | None = None
    auto_apply: bool | None = None


class PresetCreateRequest(PresetScheduleFields):
    """
    Explicit category/item references, or a capture of the currently
    available menu when none are given.
    """

    name: str = Field(min_length=1, max_length=Limits.MAX_NAME_LENGTH)
    description: str | None = Field(default=None, max_length=Limits.MAX_DESCRIPTION_LENGTH)
    menu_data: dict[str, Any] | None = None
    selected_category_ids: list[int] | None = None
    selected_item_ids: list[int] | None = None
    branch_id: int | None = None


class PresetUpdateRequest(PresetScheduleFields):
    name: str | None = Field(default=None, min_length=1, max_length=Limits.MAX_NAME_LENGTH)
    description: str | None = Field(default=None, max_length=Limits.MAX_DESCRIPTION_LENGTH)
    menu_data: dict[str, Any] | None = None
    selected_category_ids: list[int] | None = None
    selected_item_ids: list[int] | None = None


class PresetOutput(ORMModel):
    id: int
    branch_id: int
    name: str
    description: str | None
    menu_data: dict[str, Any]
    selected_category_ids: list[int]
    selected_item_ids: list[int]
    schedule_type: str | None
    scheduled_start: datetime | None
    scheduled_end: datetime | None
    daily_start_time: str | None
    daily_end_time: str | None
    auto_apply: bool
    is_applied: bool
    applied_at: datetime | None
    menu_sync_pending: bool
    created_at: datetime


class ScheduledPresetReport(BaseModel):
    branch_id: int
    checked_at: datetime
    applied: list[int] = Field(default_factory=list)
    deactivated: list[int] = Field(default_factory=list)
    # Presets whose pending menu sync was queued during this check
    synced: list[int] = Field(default_factory=list)


# =============================================================================
# Jobs
# =============================================================================


class QueueStats(BaseModel):
    waiting: int
    active: int
    completed: int
    failed: int
