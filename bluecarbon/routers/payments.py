from beanie import PydanticObjectId
from fastapi import APIRouter, Depends, Header, Request
from pydantic import BaseModel, ConfigDict, Field

from bluecarbon.deps import require_buyer
from bluecarbon.models.user import User
from bluecarbon.payments.base import PaymentGateway, get_payment_gateway
from bluecarbon.services import payments as payments_service

router = APIRouter()


class CreateOrderRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    credit_id: PydanticObjectId = Field(alias="creditId")  # credit batch id
    quantity: int


@router.post("/create-order")
async def create_order(
    body: CreateOrderRequest,
    user: User = Depends(require_buyer),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    """Create Razorpay order; frontend uses orderId and keyId for checkout."""
    order = await payments_service.create_order(body.credit_id, body.quantity, str(user.id), gateway=gateway)
    return {
        "orderId": order["order_id"],
        "amount": order["amount"],
        "currency": order["currency"],
        "keyId": order["key_id"],
    }


@router.get("/orders")
async def my_orders(user: User = Depends(require_buyer)):
    orders = await payments_service.list_orders(str(user.id))
    return {
        "orders": [
            {
                "order_id": o.order_id,
                "batch_id": str(o.batch_id),
                "quantity": o.quantity,
                "amount": o.amount_due_minor,
                "currency": o.currency,
                "status": o.status.value,
                "failure_reason": o.failure_reason,
                "created_at": o.created_at.isoformat(),
                "completed_at": o.completed_at.isoformat() if o.completed_at else None,
            }
            for o in orders
        ]
    }


@router.post("/webhook")
async def razorpay_webhook(
    request: Request,
    x_razorpay_signature: str | None = Header(None, alias="X-Razorpay-Signature"),
):
    """Razorpay webhook: payment.captured / order.paid settle the order (idempotent)."""
    body = await request.body()
    return await payments_service.handle_webhook(body, x_razorpay_signature)
