"""
Stripe payment gateway: payment lookups and refunds.

Amounts cross this boundary as Decimal dollars and are sent to Stripe in
integer cents. Every refund carries an idempotency key so a retried
request (or a racing double reject) never refunds twice.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Protocol

import stripe

from shared.config.logging import get_logger
from shared.config.settings import settings
from shared.utils.exceptions import PaymentProcessorError, UpstreamServiceError
from shared.utils.money import from_cents, to_cents

from .circuit_breaker import CircuitBreaker, CircuitBreakerError, stripe_breaker

logger = get_logger(__name__)


@dataclass(frozen=True)
class RefundResult:
    """Processor-side outcome of a refund."""
    refund_id: str
    status: str


@dataclass(frozen=True)
class PaymentIntentInfo:
    """What the processor reports for a payment intent."""
    payment_intent_id: str
    status: str
    amount_received: Decimal

    @property
    def succeeded(self) -> bool:
        return self.status == "succeeded"


class PaymentGateway(Protocol):
    """Anything that can look up and refund a captured payment."""

    def retrieve_payment(self, payment_intent_id: str) -> PaymentIntentInfo:
        ...

    def refund(
        self,
        *,
        payment_intent_id: str,
        amount: Decimal,
        reason: str,
        idempotency_key: str,
        metadata: dict[str, str] | None = None,
    ) -> RefundResult:
        ...


class StripePaymentGateway:
    """Payment lookups and refunds through the Stripe API."""

    def __init__(self, api_key: str | None = None, breaker: CircuitBreaker = stripe_breaker):
        self._api_key = api_key if api_key is not None else settings.stripe_secret_key
        self._breaker = breaker

    def _unavailable(self, error: CircuitBreakerError) -> UpstreamServiceError:
        return UpstreamServiceError(
            "payment processor",
            is_unavailable=True,
            retry_after=int(error.retry_after) or 1,
        )

    def retrieve_payment(self, payment_intent_id: str) -> PaymentIntentInfo:
        if not self._api_key:
            raise PaymentProcessorError("Stripe is not configured")

        try:
            with self._breaker.call(ignore=(stripe.InvalidRequestError,)):
                intent = stripe.PaymentIntent.retrieve(payment_intent_id, api_key=self._api_key)
        except CircuitBreakerError as e:
            raise self._unavailable(e) from e
        except stripe.StripeError as e:
            raise PaymentProcessorError(
                e.user_message or "payment could not be found",
                payment_intent_id=payment_intent_id,
                stripe_code=getattr(e, "code", None),
            ) from e

        return PaymentIntentInfo(
            payment_intent_id=intent.id,
            status=intent.status,
            amount_received=from_cents(intent.amount_received or 0),
        )

    def refund(
        self,
        *,
        payment_intent_id: str,
        amount: Decimal,
        reason: str,
        idempotency_key: str,
        metadata: dict[str, str] | None = None,
    ) -> RefundResult:
        if not self._api_key:
            raise PaymentProcessorError("Stripe is not configured")

        params: dict[str, Any] = {
            "payment_intent": payment_intent_id,
            "amount": to_cents(amount),
            "reason": reason,
            "metadata": {k: str(v) for k, v in (metadata or {}).items()},
        }

        try:
            with self._breaker.call(ignore=(stripe.CardError, stripe.InvalidRequestError)):
                refund = stripe.Refund.create(
                    **params,
                    api_key=self._api_key,
                    idempotency_key=idempotency_key,
                )
        except CircuitBreakerError as e:
            raise self._unavailable(e) from e
        except stripe.StripeError as e:
            raise PaymentProcessorError(
                e.user_message or "refund was declined",
                payment_intent_id=payment_intent_id,
                idempotency_key=idempotency_key,
                stripe_code=getattr(e, "code", None),
            ) from e

        logger.info(
            "Stripe refund created",
            refund_id=refund.id,
            status=refund.status,
            amount_cents=params["amount"],
            idempotency_key=idempotency_key,
        )
        return RefundResult(refund_id=refund.id, status=refund.status)


def get_payment_gateway() -> PaymentGateway:
    """FastAPI dependency; tests override it with a fake."""
    return StripePaymentGateway()
