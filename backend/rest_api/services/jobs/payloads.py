"""
Typed payloads for background jobs, one model per job type.
"""

from typing import Any, Literal

from pydantic import BaseModel, EmailStr, Field

from shared.config.constants import JobTypes


# =============================================================================
# Email
# =============================================================================


class SendEmailPayload(BaseModel):
    to: EmailStr
    subject: str = Field(min_length=1, max_length=200)
    html: str
    text: str | None = None


class OrderConfirmationPayload(BaseModel):
    order_id: int
    order_number: str
    customer_email: EmailStr
    customer_name: str | None = None
    restaurant_name: str
    total_amount: str
    items: list[dict[str, Any]] = Field(default_factory=list)


class OrderStatusUpdatePayload(BaseModel):
    order_id: int
    order_number: str
    customer_email: EmailStr
    customer_name: str | None = None
    restaurant_name: str
    status: str
    estimated_time: str | None = None


class WelcomeEmailPayload(BaseModel):
    email: EmailStr
    name: str


class PasswordResetPayload(BaseModel):
    email: EmailStr
    reset_link: str


# =============================================================================
# Webhooks
# =============================================================================


class StripeWebhookPayload(BaseModel):
    event: dict[str, Any]
    signature: str


class ThirdPartyWebhookPayload(BaseModel):
    provider: Literal["uber-eats", "doordash", "skipthedishes"]
    payload: dict[str, Any]
    signature: str | None = None
    headers: dict[str, str] = Field(default_factory=dict)


# =============================================================================
# Sync
# =============================================================================


class MarketplaceOrderSyncPayload(BaseModel):
    branch_id: int
    start_date: str | None = None
    end_date: str | None = None


class MenuSyncPayload(BaseModel):
    branch_id: int
    preset_id: int | None = None
    provider: Literal["uber-eats", "doordash", "all"] = "all"


# =============================================================================
# Notifications
# =============================================================================


class PushNotificationPayload(BaseModel):
    user_id: int
    title: str = Field(min_length=1, max_length=100)
    body: str
    data: dict[str, Any] = Field(default_factory=dict)


class SmsNotificationPayload(BaseModel):
    to: str = Field(min_length=5, max_length=20)
    message: str = Field(min_length=1, max_length=1600)
    sender: str | None = None


JOB_PAYLOADS: dict[str, type[BaseModel]] = {
    JobTypes.SEND_EMAIL: SendEmailPayload,
    JobTypes.SEND_ORDER_CONFIRMATION: OrderConfirmationPayload,
    JobTypes.SEND_ORDER_STATUS_UPDATE: OrderStatusUpdatePayload,
    JobTypes.SEND_WELCOME_EMAIL: WelcomeEmailPayload,
    JobTypes.SEND_PASSWORD_RESET: PasswordResetPayload,
    JobTypes.PROCESS_STRIPE_WEBHOOK: StripeWebhookPayload,
    JobTypes.PROCESS_THIRD_PARTY_WEBHOOK: ThirdPartyWebhookPayload,
    JobTypes.SYNC_UBER_EATS_ORDERS: MarketplaceOrderSyncPayload,
    JobTypes.SYNC_DOORDASH_ORDERS: MarketplaceOrderSyncPayload,
    JobTypes.SYNC_MENU_TO_THIRD_PARTY: MenuSyncPayload,
    JobTypes.SEND_PUSH_NOTIFICATION: PushNotificationPayload,
    JobTypes.SEND_SMS_NOTIFICATION: SmsNotificationPayload,
}
