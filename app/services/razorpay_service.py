import hashlib
import hmac
import logging
import time
from typing import Optional

import razorpay

from app.core.config import settings

logger = logging.getLogger("payments")


class RazorpayGateway:
    """Thin wrapper over the Razorpay SDK used by checkout."""

    def __init__(self, key_id: Optional[str] = None, key_secret: Optional[str] = None,
                 webhook_secret: Optional[str] = None):
        self.key_id = key_id or settings.RAZORPAY_KEY_ID
        self.key_secret = key_secret or settings.RAZORPAY_KEY_SECRET
        self.webhook_secret = webhook_secret or settings.RAZORPAY_WEBHOOK_SECRET
        self._client = None

    @property
    def client(self):
        if self._client is None:
            if not self.key_id or not self.key_secret:
                raise RuntimeError("Razorpay credentials are not configured")
            self._client = razorpay.Client(auth=(self.key_id, self.key_secret))
        return self._client

    def create_order(self, order_id: int, amount: float, notes: dict) -> str:
        """Create a gateway order and return its id. Amount is in rupees."""
        razorpay_order = self.client.order.create({
            "amount": int(round(amount * 100)),  # paise
            "currency": settings.CURRENCY,
            "receipt": f"order_{order_id}_{int(time.time() * 1000)}",
            "notes": notes,
            "payment_capture": 1,
        })
        logger.info(f"✅ Created new Razorpay order: {razorpay_order['id']}")
        return razorpay_order["id"]

    def verify_signature(self, razorpay_order_id: str, razorpay_payment_id: str, signature: str) -> bool:
        if not self.key_secret:
            raise RuntimeError("Razorpay credentials are not configured")
        body = f"{razorpay_order_id}|{razorpay_payment_id}".encode()
        expected = hmac.new(self.key_secret.encode(), body, hashlib.sha256).hexdigest()
        return hmac.compare_digest(expected, signature)

    def verify_webhook_signature(self, body: bytes, signature: Optional[str]) -> bool:
        """Webhooks are signed over the raw request body with the webhook secret."""
        if not self.webhook_secret:
            raise RuntimeError("Razorpay webhook secret is not configured")
        expected = hmac.new(self.webhook_secret.encode(), body, hashlib.sha256).hexdigest()
        return hmac.compare_digest(expected, signature or "")


def get_payment_gateway() -> RazorpayGateway:
    return RazorpayGateway()
