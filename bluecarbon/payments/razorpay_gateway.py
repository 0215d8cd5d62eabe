import asyncio
from typing import Any

import razorpay

from bluecarbon.core.logging import get_logger
from bluecarbon.payments.base import GatewayOrder, PaymentGateway

log = get_logger(__name__)


class RazorpayGateway(PaymentGateway):
    def __init__(self, key_id: str, key_secret: str) -> None:
        self.key_id = key_id
        self._client = razorpay.Client(auth=(key_id, key_secret))

    async def create_order(
        self,
        amount_minor: int,
        currency: str,
        receipt: str,
        notes: dict[str, Any] | None = None,
    ) -> GatewayOrder:
        # Razorpay caps receipts at 40 chars and note values must be strings
        body = {
            "amount": amount_minor,
            "currency": currency,
            "receipt": receipt[:40],
            "notes": {k: str(v) for k, v in (notes or {}).items()},
        }
        order = await asyncio.to_thread(self._client.order.create, body)
        log.info("razorpay_order_created", order_id=order["id"], amount=order["amount"])
        return GatewayOrder(order_id=order["id"], amount=order["amount"], currency=order["currency"])
