"""Razorpay orders and webhook: frozen pricing, idempotent supply reservation and balance credit."""

from datetime import datetime
from typing import Any

import orjson
from beanie import PydanticObjectId, UpdateResponse

from bluecarbon.core.audit import log_event
from bluecarbon.core.config import get_settings
from bluecarbon.core.exceptions import (
    ConfigurationError,
    InsufficientSupplyError,
    InvalidStateError,
    NotFoundError,
    PaymentVerificationError,
    ValidationError,
)
from bluecarbon.core.logging import get_logger, log_security_event
from bluecarbon.core.security import verify_razorpay_webhook
from bluecarbon.models.payment_order import OrderStatus, PaymentOrder, order_can_transition
from bluecarbon.payments.base import PaymentGateway, get_payment_gateway
from bluecarbon.services import ledger as ledger_service

log = get_logger(__name__)

HANDLED_EVENTS = ("payment.captured", "order.paid")


async def create_order(
    batch_id: PydanticObjectId,
    quantity: int,
    buyer_id: str,
    gateway: PaymentGateway | None = None,
) -> dict:
    """Create Razorpay order; return order_id and amount for the checkout widget."""
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise ValidationError("Quantity must be a positive whole number", details={"quantity": quantity})
    batch = await ledger_service.get_batch(batch_id)
    # pre-check only; supply is reserved when the payment is confirmed
    if quantity > batch.available_amount:
        raise InsufficientSupplyError(
            details={"batch_id": str(batch_id), "requested": quantity, "available": batch.available_amount}
        )

    settings = get_settings()
    gateway = gateway or get_payment_gateway()
    unit_price = settings.credit_price_minor
    amount_due = quantity * unit_price
    order = await gateway.create_order(
        amount_due,
        settings.currency,
        receipt=f"bc_{batch_id}_{quantity}",
        notes={"batch_id": str(batch_id), "buyer_id": buyer_id, "quantity": quantity},
    )
    await PaymentOrder(
        order_id=order.order_id,
        batch_id=batch.id,
        buyer_id=buyer_id,
        quantity=quantity,
        unit_price_minor=unit_price,
        amount_due_minor=amount_due,
        currency=order.currency,
    ).insert()
    log.info("payment_order_created", order_id=order.order_id, batch_id=str(batch_id), quantity=quantity)
    return {
        "order_id": order.order_id,
        "amount": order.amount,
        "currency": order.currency,
        "key_id": gateway.key_id,
    }


def _verify_signature(payload: bytes, signature: str | None) -> None:
    secret = get_settings().razorpay_webhook_secret
    if not secret:
        raise ConfigurationError("Webhook secret not configured")
    if not verify_razorpay_webhook(payload, signature or "", secret):
        log_security_event("webhook_signature_invalid", payload_bytes=len(payload))
        raise PaymentVerificationError()


async def _transition_order(order: PaymentOrder, target: OrderStatus, fields: dict) -> PaymentOrder | None:
    """Compare-and-swap from the order's current status; None if it moved concurrently."""
    if not order_can_transition(order.status, target):
        raise InvalidStateError(
            "Illegal payment order transition",
            details={"current": order.status.value, "target": target.value},
        )
    return await PaymentOrder.find_one(
        PaymentOrder.id == order.id,
        PaymentOrder.status == order.status,
    ).update(
        {"$set": {"status": target.value, **fields}},
        response_type=UpdateResponse.NEW_DOCUMENT,
    )


async def _fail_order(order: PaymentOrder, reason: str) -> PaymentOrder:
    updated = await _transition_order(order, OrderStatus.FAILED, {"failure_reason": reason})
    if updated is None:
        return await PaymentOrder.get(order.id)
    log.warning("payment_order_failed", order_id=order.order_id, reason=reason)
    return updated


async def apply_confirmation(
    order_id: str,
    payment_id: str | None = None,
    amount_minor: int | None = None,
) -> tuple[PaymentOrder, bool]:
    """
    Settle a verified payment. Returns (order, applied); applied is False for
    replays of an already settled order.
    Each step is idempotent on the order id, so redelivery after a crash resumes safely.
    """
    order = await PaymentOrder.find_one(PaymentOrder.order_id == order_id)
    if not order:
        raise NotFoundError("Payment order not found")
    if order.is_settled:
        log.info("payment_confirmation_replayed", order_id=order_id, status=order.status.value)
        return order, False

    if amount_minor is not None and amount_minor != order.amount_due_minor:
        failed = await _fail_order(order, "amount_mismatch")
        await log_event(
            order.buyer_id,
            "payment_amount_mismatch",
            "payment_order",
            order_id,
            {"captured": amount_minor, "expected": order.amount_due_minor, "payment_id": payment_id},
        )
        return failed, True

    try:
        await ledger_service.reserve_for_sale(order.batch_id, order.quantity, order_id=order_id)
    except InsufficientSupplyError:
        failed = await _fail_order(order, "insufficient_supply")
        log.warning("payment_refund_required", order_id=order_id, payment_id=payment_id)
        await log_event(
            order.buyer_id,
            "payment_refund_required",
            "payment_order",
            order_id,
            {"reason": "insufficient_supply", "payment_id": payment_id},
        )
        return failed, True

    reference = ledger_service.order_reference(order_id)
    await ledger_service.credit_balance(order.buyer_id, order.quantity, reference=reference)
    completed = await _transition_order(
        order,
        OrderStatus.COMPLETED,
        {"payment_id": payment_id, "completed_at": datetime.utcnow()},
    )
    if completed is None:
        return await PaymentOrder.get(order.id), False
    log.info("payment_completed", order_id=order_id, buyer_id=order.buyer_id, quantity=order.quantity)
    await log_event(
        order.buyer_id,
        "payment_completed",
        "payment_order",
        order_id,
        {"payment_id": payment_id, "quantity": order.quantity, "amount": order.amount_due_minor},
    )
    return completed, True


async def on_payment_confirmed(order_id: str, signature: str, raw_payload: bytes) -> PaymentOrder:
    """
    Verify the signature over raw_payload, then settle order_id.
    The signed payload must name order_id; its captured amount is checked
    against the frozen price like a webhook delivery.
    """
    try:
        _verify_signature(raw_payload, signature)
    except PaymentVerificationError:
        await log_event(None, "webhook_signature_invalid", "payment_order", order_id)
        raise
    signed_order_id, payment_id, amount = _extract_payment(_parse_event(raw_payload))
    if signed_order_id != order_id:
        log_security_event("payment_order_mismatch", order_id=order_id, signed_order_id=signed_order_id)
        await log_event(None, "payment_order_mismatch", "payment_order", order_id, {"signed_order_id": signed_order_id})
        raise PaymentVerificationError("Signed payload is for a different order")
    order, _ = await apply_confirmation(order_id, payment_id=payment_id, amount_minor=amount)
    return order


def _parse_event(payload: bytes) -> dict[str, Any]:
    try:
        event = orjson.loads(payload)
    except orjson.JSONDecodeError:
        raise ValidationError("Webhook body is not valid JSON")
    if not isinstance(event, dict):
        raise ValidationError("Webhook body must be a JSON object")
    return event


def _extract_payment(event: dict[str, Any]) -> tuple[str | None, str | None, int | None]:
    body = event.get("payload") or {}
    payment = (body.get("payment") or {}).get("entity") or {}
    order = (body.get("order") or {}).get("entity") or {}
    order_id = payment.get("order_id") or order.get("id")
    amount = payment.get("amount")
    if amount is None:
        amount = order.get("amount_paid")
    return order_id, payment.get("id"), amount


async def handle_webhook(payload: bytes, signature: str | None) -> dict:
    """Verify HMAC and settle the order (payment.captured / order.paid)."""
    try:
        _verify_signature(payload, signature)
    except PaymentVerificationError:
        await log_event(None, "webhook_signature_invalid", "webhook", None, {"payload_bytes": len(payload)})
        raise
    event = _parse_event(payload)
    name = event.get("event")
    if name not in HANDLED_EVENTS:
        log.info("webhook_ignored", webhook_event=name)
        return {"status": "ignored"}

    order_id, payment_id, amount = _extract_payment(event)
    if not order_id:
        raise ValidationError("Webhook payload has no order id")
    try:
        order, applied = await apply_confirmation(order_id, payment_id=payment_id, amount_minor=amount)
    except NotFoundError:
        # answer 200 so the gateway stops redelivering
        log.warning("webhook_unknown_order", order_id=order_id, webhook_event=name)
        return {"status": "ignored"}
    return {"status": order.status.value if applied else "duplicate"}


async def list_orders(buyer_id: str) -> list[PaymentOrder]:
    return await PaymentOrder.find(PaymentOrder.buyer_id == buyer_id).sort(-PaymentOrder.created_at, -PaymentOrder.id).to_list()
