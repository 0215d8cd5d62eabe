"""Credit ledger: batch minting, supply reservation and buyer balances.

Every mutation is a single-document atomic update. Guards (`available_amount >=
quantity`, `balance >= quantity`) live in the update filter, never in a prior
read. Balance mutations tied to an order or retirement carry a reference that
is recorded in the same update so a replay is a no-op; the reconcile job
releases the reference once the owning event is durably recorded.
"""

import math
from datetime import datetime, timedelta

from beanie import PydanticObjectId, UpdateResponse
from pymongo.errors import DuplicateKeyError

from bluecarbon.anchoring.base import Anchor, get_anchor
from bluecarbon.core.config import get_settings
from bluecarbon.core.exceptions import (
    InsufficientBalanceError,
    InsufficientSupplyError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from bluecarbon.core.logging import get_logger
from bluecarbon.core.pagination import Page, paginate
from bluecarbon.core.security import generate_idempotency_key
from bluecarbon.models.balance import Balance
from bluecarbon.models.counter import CREDITS_ISSUED
from bluecarbon.models.credit_batch import CreditBatch, Reservation
from bluecarbon.models.ledger_entry import LedgerEntry
from bluecarbon.models.payment_order import OrderStatus, PaymentOrder
from bluecarbon.models.report import Report, ReportStatus
from bluecarbon.models.retirement import Retirement
from bluecarbon.services import stats as stats_service

log = get_logger(__name__)


def _require_quantity(quantity: int) -> None:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise ValidationError("Quantity must be a positive whole number of tCO2e", details={"quantity": quantity})


# --- batches -----------------------------------------------------------------


async def mint(
    report_id: PydanticObjectId,
    amount: float,
    quality_score: float,
    anchor: Anchor | None = None,
) -> CreditBatch:
    """
    Create the credit batch for an approved report.
    Idempotent on report_id: a retried mint returns the existing batch.

    The batch is inserted with no supply, anchored, then released for sale, so a
    receipt is only ever issued for a batch that exists. A batch left unanchored
    by a crash is finished by the next mint call for the same report.
    """
    existing = await CreditBatch.find_one(CreditBatch.report_id == report_id)
    if existing:
        if existing.anchor_receipt is None:
            return await _anchor_and_release(existing, anchor)
        log.info("mint_replayed", report_id=str(report_id), batch_id=str(existing.id))
        return existing
    report = await Report.get(report_id)
    if not report:
        raise NotFoundError("Report not found")
    if report.status != ReportStatus.APPROVED:
        raise InvalidStateError(
            "Credits can only be minted for an approved report",
            details={"status": report.status.value},
        )
    if amount is None or not math.isfinite(amount) or amount < 0:
        raise ValidationError("Mint amount must be a non-negative number", details={"amount": amount})
    if quality_score is None or not 0 <= quality_score <= 1:
        raise ValidationError("Quality score must be within [0, 1]", details={"quality_score": quality_score})

    batch = CreditBatch(
        report_id=report_id,
        project_id=report.project_id,
        total_amount=int(math.floor(amount)),
        available_amount=0,
        quality_score=quality_score,
        evidence_reference=report.scoring.evidence_reference if report.scoring else "",
    )
    try:
        await batch.insert()
    except DuplicateKeyError:
        # A concurrent mint for the same report won the unique index.
        return await CreditBatch.find_one(CreditBatch.report_id == report_id)
    return await _anchor_and_release(batch, anchor)


async def _anchor_and_release(batch: CreditBatch, anchor: Anchor | None) -> CreditBatch:
    try:
        receipt = await (anchor or get_anchor()).anchor(
            {
                "type": "credit_batch",
                "batch_id": str(batch.id),
                "report_id": str(batch.report_id),
                "project_id": str(batch.project_id),
                "total_amount": batch.total_amount,
                "quality_score": batch.quality_score,
                "evidence_reference": batch.evidence_reference,
                "minted_at": batch.minted_at,
            }
        )
    except Exception:
        await CreditBatch.find_one(CreditBatch.id == batch.id, {"anchor_receipt": None}).delete()
        log.warning("mint_anchor_failed", report_id=str(batch.report_id), batch_id=str(batch.id))
        raise

    released = await CreditBatch.find_one(
        CreditBatch.id == batch.id,
        {"anchor_receipt": None},
    ).update(
        {"$set": {"anchor_receipt": receipt, "available_amount": batch.total_amount}},
        response_type=UpdateResponse.NEW_DOCUMENT,
    )
    if released is None:
        return await CreditBatch.get(batch.id)
    await stats_service.increment(CREDITS_ISSUED, batch.total_amount)
    log.info(
        "credits_minted",
        report_id=str(batch.report_id),
        batch_id=str(batch.id),
        total_amount=batch.total_amount,
        anchor_receipt=receipt,
    )
    return released


async def get_batch(batch_id: PydanticObjectId) -> CreditBatch:
    batch = await CreditBatch.get(batch_id)
    if not batch:
        raise NotFoundError("Credit batch not found")
    return batch


async def list_available() -> list[CreditBatch]:
    return await CreditBatch.find(CreditBatch.available_amount > 0).sort(-CreditBatch.minted_at).to_list()


async def reserve_for_sale(
    batch_id: PydanticObjectId,
    quantity: int,
    order_id: str | None = None,
) -> CreditBatch:
    """
    Conditionally decrement available supply and record the reservation.
    With an order_id the reservation happens at most once for that order.
    """
    _require_quantity(quantity)
    reservation = Reservation(order_id=order_id or f"manual_{generate_idempotency_key()}", quantity=quantity)
    filters = [CreditBatch.id == batch_id, CreditBatch.available_amount >= quantity]
    if order_id:
        filters.append({"reservations.order_id": {"$ne": order_id}})
    updated = await CreditBatch.find_one(*filters).update(
        {
            "$inc": {"available_amount": -quantity},
            "$push": {"reservations": reservation.model_dump()},
        },
        response_type=UpdateResponse.NEW_DOCUMENT,
    )
    if updated is not None:
        log.info(
            "supply_reserved",
            batch_id=str(batch_id),
            order_id=reservation.order_id,
            quantity=quantity,
            available_amount=updated.available_amount,
        )
        return updated

    batch = await CreditBatch.get(batch_id)
    if not batch:
        raise NotFoundError("Credit batch not found")
    if order_id and batch.has_reservation(order_id):
        log.info("supply_reservation_replayed", batch_id=str(batch_id), order_id=order_id)
        return batch
    raise InsufficientSupplyError(
        details={"batch_id": str(batch_id), "requested": quantity, "available": batch.available_amount}
    )


# --- balances ------------------------------------------------------------------


async def _ensure_balance(buyer_id: str) -> None:
    try:
        await Balance.get_motor_collection().update_one(
            {"buyer_id": buyer_id},
            {"$setOnInsert": {"balance": 0, "pending_refs": [], "updated_at": datetime.utcnow()}},
            upsert=True,
        )
    except DuplicateKeyError:
        # Another request created the balance document first.
        return


async def _journal(buyer_id: str, amount: int, balance_after: int, reason: str, reference: str | None) -> None:
    await LedgerEntry(
        buyer_id=buyer_id,
        amount=amount,
        balance_after=balance_after,
        reason=reason,
        reference=reference,
    ).insert()


async def get_balance(buyer_id: str) -> int:
    """Return current balance for buyer (0 if no record)."""
    bal = await Balance.find_one(Balance.buyer_id == buyer_id)
    return bal.balance if bal else 0


async def credit_balance(
    buyer_id: str,
    quantity: int,
    reference: str | None = None,
    reason: str = "purchase",
) -> Balance:
    """Atomic $inc. With a reference, applied at most once."""
    _require_quantity(quantity)
    await _ensure_balance(buyer_id)
    filters = [Balance.buyer_id == buyer_id]
    update: dict = {"$inc": {"balance": quantity}, "$set": {"updated_at": datetime.utcnow()}}
    if reference:
        filters.append({"pending_refs": {"$ne": reference}})
        update["$push"] = {"pending_refs": reference}
    updated = await Balance.find_one(*filters).update(update, response_type=UpdateResponse.NEW_DOCUMENT)
    if updated is None:
        log.info("balance_credit_replayed", buyer_id=buyer_id, reference=reference)
        return await Balance.find_one(Balance.buyer_id == buyer_id)
    await _journal(buyer_id, quantity, updated.balance, reason, reference)
    log.info("balance_credited", buyer_id=buyer_id, quantity=quantity, balance=updated.balance, reference=reference)
    return updated


async def debit_balance(
    buyer_id: str,
    quantity: int,
    reference: str | None = None,
    reason: str = "retirement",
) -> Balance:
    """Atomic conditional decrement guarded by balance >= quantity."""
    _require_quantity(quantity)
    filters = [Balance.buyer_id == buyer_id, Balance.balance >= quantity]
    update: dict = {"$inc": {"balance": -quantity}, "$set": {"updated_at": datetime.utcnow()}}
    if reference:
        filters.append({"pending_refs": {"$ne": reference}})
        update["$push"] = {"pending_refs": reference}
    updated = await Balance.find_one(*filters).update(update, response_type=UpdateResponse.NEW_DOCUMENT)
    if updated is not None:
        await _journal(buyer_id, -quantity, updated.balance, reason, reference)
        log.info("balance_debited", buyer_id=buyer_id, quantity=quantity, balance=updated.balance, reference=reference)
        return updated

    current = await Balance.find_one(Balance.buyer_id == buyer_id)
    if current and reference and reference in current.pending_refs:
        log.info("balance_debit_replayed", buyer_id=buyer_id, reference=reference)
        return current
    raise InsufficientBalanceError(
        details={"balance": current.balance if current else 0, "requested": quantity}
    )


async def reverse_debit(buyer_id: str, quantity: int, reference: str, reason: str = "retirement_reversed") -> bool:
    """Undo a referenced debit whose retirement could not be recorded. Applied at most once."""
    _require_quantity(quantity)
    updated = await Balance.find_one(Balance.buyer_id == buyer_id, {"pending_refs": reference}).update(
        {
            "$inc": {"balance": quantity},
            "$pull": {"pending_refs": reference},
            "$set": {"updated_at": datetime.utcnow()},
        },
        response_type=UpdateResponse.NEW_DOCUMENT,
    )
    if updated is None:
        return False
    await _journal(buyer_id, quantity, updated.balance, reason, reference)
    log.warning("balance_debit_reversed", buyer_id=buyer_id, quantity=quantity, reference=reference)
    return True


def order_reference(order_id: str) -> str:
    return f"order:{order_id}"


def retirement_reference(idempotency_key: str) -> str:
    return f"retirement:{idempotency_key}"


async def _reference_recorded(buyer_id: str, reference: str, cutoff: datetime) -> bool:
    kind, _, key = reference.partition(":")
    if kind == "order":
        order = await PaymentOrder.find_one(PaymentOrder.order_id == key)
        return (
            order is not None
            and order.status == OrderStatus.COMPLETED
            and order.completed_at is not None
            and order.completed_at <= cutoff
        )
    if kind == "retirement":
        retirement = await Retirement.find_one(Retirement.buyer_id == buyer_id, Retirement.idempotency_key == key)
        return retirement is not None and retirement.retired_at <= cutoff
    return False


async def release_settled_references(retention_seconds: int | None = None) -> int:
    """
    Pull balance references whose order or retirement has been recorded for
    longer than the retention window. From then on replays are caught by the
    order status or the retirement's idempotency key, so pending_refs only
    holds in-flight mutations. Returns the number of references released.
    """
    if retention_seconds is None:
        retention_seconds = get_settings().ledger_ref_retention_seconds
    cutoff = datetime.utcnow() - timedelta(seconds=retention_seconds)
    released = 0
    async for balance in Balance.find({"pending_refs": {"$ne": []}}):
        for reference in balance.pending_refs:
            if not await _reference_recorded(balance.buyer_id, reference, cutoff):
                continue
            await Balance.find_one(Balance.id == balance.id).update({"$pull": {"pending_refs": reference}})
            released += 1
    if released:
        log.info("balance_references_released", released=released)
    return released


async def list_entries(buyer_id: str, limit: int = 50, offset: int = 0) -> Page[LedgerEntry]:
    """Ledger entries for a buyer, newest first."""
    limit, offset = paginate(limit, offset)
    query = LedgerEntry.find(LedgerEntry.buyer_id == buyer_id)
    total = await query.count()
    entries = await (
        LedgerEntry.find(LedgerEntry.buyer_id == buyer_id)
        .sort(-LedgerEntry.created_at, -LedgerEntry.id)
        .skip(offset)
        .limit(limit)
        .to_list()
    )
    return Page[LedgerEntry](items=entries, limit=limit, offset=offset, total=total)
