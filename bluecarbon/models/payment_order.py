from datetime import datetime
from enum import Enum

from beanie import Document, Indexed, PydanticObjectId
from pydantic import Field


class OrderStatus(str, Enum):
    CREATED = "created"
    COMPLETED = "completed"
    FAILED = "failed"


ORDER_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.CREATED: frozenset({OrderStatus.COMPLETED, OrderStatus.FAILED}),
    OrderStatus.COMPLETED: frozenset(),
    OrderStatus.FAILED: frozenset(),
}


def order_can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return target in ORDER_TRANSITIONS[current]


class PaymentOrder(Document):
    """Razorpay order_id -> batch, buyer and frozen price for webhook reconciliation."""
    order_id: Indexed(str, unique=True)
    batch_id: PydanticObjectId
    buyer_id: str
    quantity: int
    unit_price_minor: int  # frozen at creation
    amount_due_minor: int
    currency: str = "INR"
    status: OrderStatus = OrderStatus.CREATED
    payment_id: str | None = None
    failure_reason: str | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    completed_at: datetime | None = None

    @property
    def is_settled(self) -> bool:
        return self.status in (OrderStatus.COMPLETED, OrderStatus.FAILED)

    class Settings:
        name = "payment_orders"
        indexes = [[("buyer_id", 1), ("created_at", -1)]]
