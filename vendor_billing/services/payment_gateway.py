"""
Payment Gateway - Razorpay Integration

Creates payment orders for subscription checkout and verifies the
signature Razorpay returns after the vendor pays. The key secret stays
on the server; only the key id is ever returned to clients.
"""

import asyncio
import hashlib
import hmac
import logging
from dataclasses import dataclass
from typing import Optional, Dict

import razorpay

from vendor_billing.config import Settings
from vendor_billing.core.exceptions import GatewayUnavailableError

logger = logging.getLogger(__name__)


@dataclass
class GatewayOrder:
    """Order created with the gateway."""
    id: str
    amount: int  # In paise
    currency: str
    receipt: Optional[str] = None


def compute_signature(secret: str, order_id: str, payment_id: str) -> str:
    """HMAC-SHA256 hex digest over ``order_id|payment_id``."""
    payload = f"{order_id}|{payment_id}"
    return hmac.new(secret.encode(), payload.encode(), hashlib.sha256).hexdigest()


class RazorpayGateway:
    """
    Service for creating Razorpay orders and checking payment signatures.
    """

    def __init__(self, settings: Settings):
        """Initialize Razorpay client."""
        self.key_id = settings.RAZORPAY_KEY_ID
        self.key_secret = settings.RAZORPAY_KEY_SECRET
        self.timeout_seconds = settings.PAYMENT_GATEWAY_TIMEOUT_SECONDS
        self._configured = settings.payment_gateway_configured
        self.client = razorpay.Client(auth=(self.key_id, self.key_secret))

    @property
    def is_configured(self) -> bool:
        return self._configured

    async def create_order(
        self,
        amount_minor: int,
        currency: str,
        receipt: str,
        notes: Optional[Dict[str, str]] = None,
    ) -> GatewayOrder:
        """
        Create a Razorpay order.

        Args:
            amount_minor: Amount in paise
            currency: ISO currency code
            receipt: Merchant receipt, at most 40 characters
            notes: Key/value notes stored on the order

        Raises:
            GatewayUnavailableError: gateway not configured, timed out or failed
        """
        if not self.is_configured:
            raise GatewayUnavailableError("Payment gateway is not configured")

        order_data = {
            "amount": int(amount_minor),
            "currency": currency,
            "receipt": receipt[:40],
            "notes": notes or {},
        }

        try:
            razorpay_order = await asyncio.wait_for(
                asyncio.to_thread(self.client.order.create, data=order_data),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.error(f"Razorpay order creation timed out after {self.timeout_seconds}s")
            raise GatewayUnavailableError("Payment gateway timed out")
        except Exception as e:
            logger.error(f"Failed to create Razorpay order: {e}")
            raise GatewayUnavailableError(f"Failed to create payment order: {e}")

        logger.info(f"Created Razorpay order {razorpay_order['id']} for receipt {receipt}")

        return GatewayOrder(
            id=razorpay_order["id"],
            amount=int(razorpay_order.get("amount", amount_minor)),
            currency=razorpay_order.get("currency", currency),
            receipt=razorpay_order.get("receipt", receipt),
        )

    def verify_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        """
        Check the checkout signature against our key secret.

        Returns False for any mismatch, including an unconfigured secret.
        """
        if not self.key_secret or not signature:
            return False

        expected_signature = compute_signature(self.key_secret, order_id, payment_id)
        is_valid = hmac.compare_digest(expected_signature, str(signature))
        if not is_valid:
            logger.warning(f"Invalid payment signature for order {order_id}")
        return is_valid
