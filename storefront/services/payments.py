import logging
from dataclasses import dataclass

import httpx

from storefront.core.errors import PaymentError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PaymentIntent:
    provider_ref: str
    client_secret: str


class PaymentGateway:
    name = "base"

    def create_intent(self, order_number: str, amount_cents: int, currency: str, payment_method: str) -> PaymentIntent:
        raise NotImplementedError


class MockPaymentGateway(PaymentGateway):
    # Mock: return a fake payment id & secret; card refs mentioning "declined"/"fail" are rejected
    name = "mock"

    def create_intent(self, order_number, amount_cents, currency, payment_method):
        ref = payment_method.lower()
        if "declined" in ref or "fail" in ref:
            raise PaymentError(f"payment method {payment_method} declined", order_number=order_number)
        return PaymentIntent(provider_ref=f"pay_{order_number}", client_secret=f"secret_{order_number}")


class HttpPaymentGateway(PaymentGateway):
    name = "http"

    def __init__(self, base_url: str, timeout: float = 5.0):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def create_intent(self, order_number, amount_cents, currency, payment_method):
        url = f"{self.base_url}/payment/v1/payments/create-intent"
        payload = {
            "order_number": order_number,
            "amount_cents": amount_cents,
            "currency": currency,
            "payment_method": payment_method,
        }
        try:
            with httpx.Client(timeout=self.timeout) as client:
                resp = client.post(url, json=payload)
        except httpx.RequestError as e:
            raise PaymentError(f"payment service unavailable: {e}", order_number=order_number) from e
        if resp.status_code != 200:
            raise PaymentError(f"create-intent returned {resp.status_code}: {resp.text[:200]}", order_number=order_number)
        data = resp.json()
        return PaymentIntent(provider_ref=data["payment_id"], client_secret=data.get("client_secret", ""))


def build_payment_gateway(settings) -> PaymentGateway:
    if settings.PAYMENT_PROVIDER == "http":
        return HttpPaymentGateway(settings.PAYMENT_BASE)
    if settings.PAYMENT_PROVIDER != "mock":
        raise ValueError(f"Unknown PAYMENT_PROVIDER {settings.PAYMENT_PROVIDER!r}")
    return MockPaymentGateway()
