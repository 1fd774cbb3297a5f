import uuid

import httpx

from . import PaymentGateway, PaymentCallback, GatewayNotConfigured
from ..helpers import payment_signature, now_ts


# ----------------------------
# MockPay implementation
# ----------------------------
class MockPay(PaymentGateway):
    """Issues orders locally and signs callbacks the way the real gateway
    does, so the checkout flow can be driven without gateway credentials."""
    name = "mock"

    async def create_order(
            self, http: httpx.AsyncClient, amount: int, receipt: str
    ) -> dict:
        if not self.key_secret:
            raise GatewayNotConfigured("Razorpay keys not configured")
        return {
            "id": f"order_{uuid.uuid4().hex[:14]}",
            "entity": "order",
            "amount": amount,
            "amount_paid": 0,
            "amount_due": amount,
            "currency": self.currency,
            "receipt": receipt,
            "status": "created",
            "attempts": 0,
            "created_at": int(now_ts()),
        }

    def sign_payment(self, order_id: str) -> PaymentCallback:
        if not self.key_secret:
            raise GatewayNotConfigured("Server not configured")
        payment_id = f"pay_{uuid.uuid4().hex[:14]}"
        return {
            "razorpay_order_id": order_id,
            "razorpay_payment_id": payment_id,
            "razorpay_signature": payment_signature(
                self.key_secret, order_id, payment_id
            ),
        }
