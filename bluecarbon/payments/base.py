from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel

from bluecarbon.core.config import get_settings
from bluecarbon.core.exceptions import ConfigurationError


class GatewayOrder(BaseModel):
    order_id: str
    amount: int  # minor units
    currency: str


class PaymentGateway(ABC):
    """External payment processor. Only order creation is needed here;
    confirmations arrive through the signed webhook."""

    key_id: str = ""

    @abstractmethod
    async def create_order(
        self,
        amount_minor: int,
        currency: str,
        receipt: str,
        notes: dict[str, Any] | None = None,
    ) -> GatewayOrder:
        ...


def get_payment_gateway() -> PaymentGateway:
    settings = get_settings()
    if not settings.razorpay_key_id or not settings.razorpay_key_secret:
        raise ConfigurationError("Payments not configured")
    from bluecarbon.payments.razorpay_gateway import RazorpayGateway
    return RazorpayGateway(settings.razorpay_key_id, settings.razorpay_key_secret)
