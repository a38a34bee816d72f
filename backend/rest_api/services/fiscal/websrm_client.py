"""
WEB-SRM (Revenu Québec) client for daily closing (FER) transactions.

The body is canonical JSON signed with HMAC-SHA256; amounts are signed
integer cents. The FER sequence `FER-{branch}-{date}` doubles as the
idempotency key, so resubmitting a closing that failed halfway cannot
create a second fiscal record.

Usage:
    client = get_fiscal_client()
    transaction_id = client.submit_closing(closing, branch)
"""

import hashlib
from typing import Any, Optional, Protocol

import httpx

from rest_api.models import Branch, DailyClosing
from shared.config.logging import get_logger
from shared.config.settings import settings
from shared.security.request_signing import RequestSigner, canonical_json
from shared.utils.exceptions import FiscalSubmissionError
from shared.utils.money import to_cents

from rest_api.services.payments.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerError,
    websrm_breaker,
)

logger = get_logger(__name__)

FER_PATH = "/closing"
FER_ACTION = "FER"


class FiscalClient(Protocol):
    """Submits a frozen daily closing and returns the fiscal transaction id."""

    def submit_closing(self, closing: DailyClosing, branch: Branch) -> str:
        ...


def fer_sequence(closing: DailyClosing) -> str:
    return f"FER-{closing.branch_id}-{closing.closing_date.isoformat()}"


def build_fer_payload(closing: DailyClosing, branch: Branch) -> dict[str, Any]:
    """Map a daily closing to the FER request body."""
    return {
        "transaction": {
            "reqFer": {
                "idFer": closing.id,
                "acti": FER_ACTION,
                "dtFer": closing.closing_date.isoformat(),
                "sequence": fer_sequence(closing),
                "noTPS": branch.gst_number,
                "noTVQ": branch.qst_number,
                "montVente": to_cents(closing.total_sales),
                "montRembours": to_cents(closing.total_refunds),
                "montNet": to_cents(closing.net_sales),
                "montTPS": to_cents(closing.gst_collected),
                "montTVQ": to_cents(closing.qst_collected),
                "nbTrans": closing.transaction_count,
                "montComptant": to_cents(closing.cash_total),
                "montCarte": to_cents(closing.card_total),
                "montEnLigne": to_cents(closing.online_total),
                "refSucc": closing.branch_id,
                "refEmpl": closing.completed_by or closing.created_by,
            }
        }
    }


def _extract_transaction_id(body: Any) -> Optional[str]:
    try:
        value = body["retourFer"]["retourFerActu"]["psiNoFer"]
    except (KeyError, TypeError):
        return None
    return str(value) if value else None


class WebSrmClient:
    """
    Blocking WEB-SRM client.

    A transport can be injected (httpx.MockTransport in tests).
    """

    def __init__(
        self,
        base_url: str | None = None,
        device_secret: str | None = None,
        timeout: float | None = None,
        enabled: bool | None = None,
        breaker: CircuitBreaker = websrm_breaker,
        transport: httpx.BaseTransport | None = None,
    ):
        self.base_url = (base_url or settings.websrm_base_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.websrm_timeout_seconds
        self.enabled = settings.websrm_enabled if enabled is None else enabled
        self._signer = RequestSigner(device_secret or settings.websrm_device_secret)
        self._breaker = breaker
        self._transport = transport

    def submit_closing(self, closing: DailyClosing, branch: Branch) -> str:
        """
        POST the FER transaction.

        Raises:
            FiscalSubmissionError: transport failure, non-2xx answer, open
                circuit, or a response without a transaction id.
        """
        payload = build_fer_payload(closing, branch)
        body = canonical_json(payload)
        sequence = fer_sequence(closing)

        if not self.enabled:
            digest = hashlib.sha256(body).hexdigest()[:12]
            logger.info("WEB-SRM disabled, closing not submitted", sequence=sequence, hash=digest)
            return f"DRYRUN-{digest}"

        headers = {
            "Content-Type": "application/json",
            "Idempotency-Key": sequence,
            **self._signer.get_headers(body),
        }

        try:
            with self._breaker.call():
                with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                    response = client.post(f"{self.base_url}{FER_PATH}", content=body, headers=headers)
                if response.is_server_error:
                    response.raise_for_status()
            # 4xx is a rejection of this closing, not an outage
            response.raise_for_status()
        except CircuitBreakerError as e:
            raise FiscalSubmissionError(
                "circuit open",
                closing_id=closing.id,
                is_unavailable=True,
                retry_after=int(e.retry_after) or 1,
            ) from e
        except httpx.HTTPStatusError as e:
            raise FiscalSubmissionError(
                f"rejected with HTTP {e.response.status_code}",
                closing_id=closing.id,
                sequence=sequence,
            ) from e
        except httpx.HTTPError as e:
            raise FiscalSubmissionError(
                "service unreachable", closing_id=closing.id, sequence=sequence, error=str(e)
            ) from e

        try:
            transaction_id = _extract_transaction_id(response.json())
        except ValueError:
            transaction_id = None
        if not transaction_id:
            raise FiscalSubmissionError(
                "response did not include a transaction id", closing_id=closing.id, sequence=sequence
            )

        logger.info(
            "FER transaction submitted",
            closing_id=closing.id,
            sequence=sequence,
            websrm_transaction_id=transaction_id,
        )
        return transaction_id


def get_fiscal_client() -> FiscalClient:
    """FastAPI dependency; tests override it with a fake."""
    return WebSrmClient()
