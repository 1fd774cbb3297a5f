import logging

import httpx

from . import PaymentGateway, GatewayError, GatewayNotConfigured
from ..config import RAZORPAY_API_URL

logger = logging.getLogger(__name__)


class Razorpay(PaymentGateway):
    name = "razorpay"

    def __init__(self, key_id, key_secret, currency="INR",
                 api_url: str = RAZORPAY_API_URL):
        super().__init__(key_id, key_secret, currency)
        self.api_url = api_url.rstrip("/")

    async def create_order(
            self, http: httpx.AsyncClient, amount: int, receipt: str
    ) -> dict:
        if not self.key_id or not self.key_secret:
            raise GatewayNotConfigured("Razorpay keys not configured")

        payload = {
            "amount": amount,
            "currency": self.currency,
            "receipt": receipt,
            "payment_capture": 1,
        }
        # httpx turns the (user, password) tuple into HTTP Basic auth
        r = await http.post(
            f"{self.api_url}/orders",
            json=payload,
            auth=(self.key_id, self.key_secret),
        )
        if r.is_error:
            logger.warning("razorpay order creation failed: HTTP %s",
                           r.status_code)
            raise GatewayError(
                "Razorpay order creation failed", details=r.text
            )
        return r.json()
