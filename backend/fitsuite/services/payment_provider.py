# Overview: Payment provider adapter (Mercado Pago REST API over httpx).

"""
Payment Provider Client

Narrow contract used by the payment engine:
- get_payment(payment_id) -> ProviderPayment
- get_merchant_order(order_id) -> dict
- create_preference(payload) -> dict

Transport errors and 5xx responses are retried with exponential backoff up
to `attempts`; persistent failure raises ProviderError(retryable=True) and
the payment is left for the provider's own re-notification. 4xx responses
raise ProviderError(retryable=False).
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field

import httpx

from .plan_catalog import to_cents


class ProviderError(Exception):
    """Raised when the payment provider cannot be reached or rejects a call."""
    def __init__(self, message: str, *, status_code: int | None = None, retryable: bool = True):
        super().__init__(message)
        self.status_code = status_code
        self.retryable = retryable


STATUS_APPROVED = "approved"


@dataclass(frozen=True)
class ProviderPayment:
    id: str
    status: str
    amount_cents: int
    external_reference: str | None = None
    payment_type: str | None = None
    description: str | None = None
    merchant_order_id: str | None = None
    payer: dict = field(default_factory=dict)

    @property
    def is_approved(self) -> bool:
        return self.status == STATUS_APPROVED

    @classmethod
    def from_api(cls, body: dict) -> "ProviderPayment":
        if not isinstance(body, dict) or body.get("id") in (None, ""):
            raise ProviderError("payment response carries no id", retryable=False)
        order = body.get("order") or {}
        return cls(
            id=str(body["id"]),
            status=str(body.get("status") or ""),
            amount_cents=to_cents(body.get("transaction_amount")),
            external_reference=body.get("external_reference") or None,
            payment_type=body.get("payment_type_id") or None,
            description=body.get("description") or None,
            merchant_order_id=str(order["id"]) if order.get("id") else None,
            payer=body.get("payer") or {},
        )


class MercadoPagoClient:
    def __init__(
        self,
        access_token: str,
        *,
        base_url: str = "https://api.mercadopago.com",
        timeout: float = 10.0,
        attempts: int = 3,
        backoff_base: float = 0.2,
        transport: httpx.BaseTransport | None = None,
        logger: logging.Logger | None = None,
    ):
        self.attempts = max(1, attempts)
        self.backoff_base = backoff_base
        self.logger = logger or logging.getLogger(__name__)
        self._client = httpx.Client(
            base_url=base_url,
            timeout=timeout,
            headers={"Authorization": f"Bearer {access_token}"},
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def get_payment(self, payment_id: str) -> ProviderPayment:
        return ProviderPayment.from_api(self._request("GET", f"/v1/payments/{payment_id}"))

    def get_merchant_order(self, order_id: str) -> dict:
        return self._request("GET", f"/merchant_orders/{order_id}")

    def create_preference(self, payload: dict) -> dict:
        return self._request("POST", "/checkout/preferences", json=payload)

    def _request(self, method: str, path: str, **kwargs) -> dict:
        last_error: ProviderError | None = None
        for attempt in range(self.attempts):
            try:
                response = self._client.request(method, path, **kwargs)
            except httpx.TransportError as exc:
                last_error = ProviderError(f"{method} {path} failed: {exc}")
            else:
                if response.status_code < 400:
                    try:
                        return response.json()
                    except ValueError as exc:
                        raise ProviderError(
                            f"{method} {path} returned a non-JSON body",
                            status_code=response.status_code,
                            retryable=False,
                        ) from exc
                if response.status_code < 500:
                    raise ProviderError(
                        f"{method} {path} rejected: {response.status_code}",
                        status_code=response.status_code,
                        retryable=False,
                    )
                last_error = ProviderError(
                    f"{method} {path} failed: {response.status_code}",
                    status_code=response.status_code,
                )

            self.logger.warning("Payment provider attempt %s/%s: %s", attempt + 1, self.attempts, last_error)
            if attempt < self.attempts - 1:
                time.sleep(self.backoff_base * (2 ** attempt))

        raise last_error
