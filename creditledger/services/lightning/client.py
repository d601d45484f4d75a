"""
Lightning payment backend: LNbits invoice creation and payment status checks.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

import httpx
import pybreaker

from creditledger.core.config import settings
from creditledger.services.circuit_breaker import LIGHTNING, get_circuit_breaker
from creditledger.utils.metrics import payment_status_errors_total

logger = logging.getLogger(__name__)

PAID_STATUSES = frozenset({"success", "paid", "settled", "complete"})


class PaymentBackendError(Exception):
    """Any failure talking to the payment backend; always transient from the caller's view."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


@dataclass(frozen=True)
class CreatedInvoice:
    payment_request: str
    payment_hash: str


class PaymentBackend(ABC):
    @abstractmethod
    def create_invoice(self, amount: int, memo: str | None = None) -> CreatedInvoice:
        pass

    @abstractmethod
    def check_payment(self, payment_hash: str) -> bool:
        """True when the backend reports the invoice as settled."""


def _truthy(value: Any) -> bool:
    if value is True:
        return True
    if isinstance(value, str):
        return value.strip().lower() == "true"
    if isinstance(value, int) and not isinstance(value, bool):
        return value == 1
    return False


def parse_paid_flag(body: Any) -> bool:
    """
    LNbits versions disagree on shape: paid may be bool, "true" or 1, and
    newer ones only set details.status / status.
    """
    if not isinstance(body, dict):
        return False
    if _truthy(body.get("paid")):
        return True
    details = body.get("details")
    statuses = [body.get("status")]
    if isinstance(details, dict):
        statuses.append(details.get("status"))
        if _truthy(details.get("paid")):
            return True
    return any(isinstance(s, str) and s.strip().lower() in PAID_STATUSES for s in statuses)


class LnbitsClient(PaymentBackend):
    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        transport: httpx.BaseTransport | None = None,
        breaker: pybreaker.CircuitBreaker | None = None,
    ) -> None:
        self.base_url = (base_url or settings.lnbits_url).rstrip("/")
        self.api_key = api_key or settings.lnbits_api_key
        self.timeout = timeout or settings.lnbits_timeout
        self.transport = transport
        self.breaker = breaker or get_circuit_breaker(LIGHTNING)

    def _headers(self) -> dict[str, str]:
        return {"X-Api-Key": self.api_key, "Content-Type": "application/json"}

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        def send() -> Any:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                response = client.request(method, f"{self.base_url}{path}", headers=self._headers(), **kwargs)
                response.raise_for_status()
                return response.json()

        try:
            return self.breaker.call(send)
        except pybreaker.CircuitBreakerError as e:
            raise PaymentBackendError("payment backend circuit open") from e
        except httpx.HTTPStatusError as e:
            raise PaymentBackendError(
                f"payment backend returned {e.response.status_code}",
                status_code=e.response.status_code,
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise PaymentBackendError(f"payment backend request failed: {type(e).__name__}") from e

    def create_invoice(self, amount: int, memo: str | None = None) -> CreatedInvoice:
        body = self._request(
            "POST",
            "/api/v1/payments",
            json={"out": False, "amount": amount, "memo": memo or settings.invoice_memo},
        )
        payment_request = body.get("payment_request") or body.get("bolt11")
        payment_hash = body.get("payment_hash")
        if not payment_request or not payment_hash:
            raise PaymentBackendError("invoice response missing payment_request or payment_hash")
        logger.info("lightning_invoice_created", extra={"payment_hash": payment_hash, "amount": amount})
        return CreatedInvoice(payment_request=payment_request, payment_hash=payment_hash)

    def check_payment(self, payment_hash: str) -> bool:
        try:
            body = self._request("GET", f"/api/v1/payments/{payment_hash}")
        except PaymentBackendError:
            payment_status_errors_total.inc()
            raise
        return parse_paid_flag(body)
