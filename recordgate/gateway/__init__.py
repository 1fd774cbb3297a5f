from abc import ABC, abstractmethod
from typing import Optional, TypedDict

import httpx

from ..config import Settings
from ..helpers import payment_signature, ct_equal


class GatewayNotConfigured(RuntimeError):
    pass


class GatewayError(RuntimeError):
    def __init__(self, message: str, status: int = 502,
                 details: Optional[str] = None):
        super().__init__(message)
        self.status = status
        self.details = details


class PaymentCallback(TypedDict):
    razorpay_order_id: str
    razorpay_payment_id: str
    razorpay_signature: str


# ----------------------------
# Payment Gateway Interface
# ----------------------------
class PaymentGateway(ABC):
    name: str = ""

    def __init__(self, key_id: Optional[str], key_secret: Optional[str],
                 currency: str = "INR"):
        self.key_id = key_id
        self.key_secret = key_secret
        self.currency = currency

    @abstractmethod
    async def create_order(
            self, http: httpx.AsyncClient, amount: int, receipt: str
    ) -> dict: ...

    # "order_id|payment_id" signed with the key secret, hex encoded
    def verify_signature(self, order_id: str, payment_id: str,
                         signature: str) -> bool:
        if not self.key_secret:
            raise GatewayNotConfigured("Server not configured")
        if not isinstance(signature, str) or not signature:
            return False
        expected = payment_signature(self.key_secret, order_id, payment_id)
        return ct_equal(expected, signature)


# Factory keeps server.py simple and constructor-agnostic:
def new_gateway(settings: Settings) -> PaymentGateway:
    if settings.payment_gateway == "mock":
        from ._mock import MockPay
        return MockPay(
            key_id=settings.razorpay_key_id or "rzp_mock",
            key_secret=settings.razorpay_key_secret,
            currency=settings.currency,
        )
    from ._razorpay import Razorpay
    return Razorpay(
        key_id=settings.razorpay_key_id,
        key_secret=settings.razorpay_key_secret,
        currency=settings.currency,
        api_url=settings.razorpay_api_url,
    )


__all__ = [
    "PaymentGateway", "PaymentCallback", "new_gateway",
    "GatewayError", "GatewayNotConfigured",
]
