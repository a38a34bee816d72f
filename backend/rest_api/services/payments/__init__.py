"""
Payment Services - external payment processor integration.

Provides:
- Stripe gateway: payment lookups and refunds (amounts in cents, idempotency keys)
- Circuit breaker for external API resilience
"""

from .circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerStats,
    CircuitBreakerError,
    CircuitState,
    stripe_breaker,
    websrm_breaker,
    get_all_breaker_stats,
)
from .stripe_gateway import (
    PaymentGateway,
    PaymentIntentInfo,
    RefundResult,
    StripePaymentGateway,
    get_payment_gateway,
)

__all__ = [
    # Circuit breaker
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerStats",
    "CircuitBreakerError",
    "CircuitState",
    "stripe_breaker",
    "websrm_breaker",
    "get_all_breaker_stats",
    # Stripe
    "PaymentGateway",
    "PaymentIntentInfo",
    "RefundResult",
    "StripePaymentGateway",
    "get_payment_gateway",
]
