"""Credit retirement: permanent, idempotent consumption of a buyer's balance."""

from pymongo.errors import DuplicateKeyError

from bluecarbon.anchoring.base import Anchor, get_anchor
from bluecarbon.core.audit import log_event
from bluecarbon.core.exceptions import ValidationError
from bluecarbon.core.logging import get_logger
from bluecarbon.core.security import generate_idempotency_key
from bluecarbon.models.counter import CREDITS_RETIRED
from bluecarbon.models.retirement import Retirement
from bluecarbon.services import ledger as ledger_service
from bluecarbon.services import stats as stats_service

log = get_logger(__name__)


async def retire(
    buyer_id: str,
    amount: int,
    reason: str,
    idempotency_key: str | None = None,
    anchor: Anchor | None = None,
) -> Retirement:
    """
    Debit the balance, anchor the retirement, then record it.
    An anchor failure restores the balance. A repeated idempotency key returns
    the retirement recorded the first time.
    """
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise ValidationError("Amount must be a positive whole number", details={"amount": amount})
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("Retirement reason is required")

    key = idempotency_key or generate_idempotency_key()
    existing = await Retirement.find_one(Retirement.buyer_id == buyer_id, Retirement.idempotency_key == key)
    if existing:
        log.info("retirement_replayed", buyer_id=buyer_id, retirement_id=str(existing.id))
        return existing

    reference = ledger_service.retirement_reference(key)
    await ledger_service.debit_balance(buyer_id, amount, reference=reference)

    retirement = Retirement(buyer_id=buyer_id, amount=amount, reason=reason, idempotency_key=key)
    try:
        retirement.anchor_receipt = await (anchor or get_anchor()).anchor(
            {
                "type": "retirement",
                "buyer_id": buyer_id,
                "amount": amount,
                "reason": reason,
                "idempotency_key": key,
                "retired_at": retirement.retired_at,
            }
        )
    except Exception:
        await ledger_service.reverse_debit(buyer_id, amount, reference)
        log.warning("retirement_anchor_failed", buyer_id=buyer_id, idempotency_key=key)
        raise
    try:
        await retirement.insert()
    except DuplicateKeyError:
        return await Retirement.find_one(Retirement.buyer_id == buyer_id, Retirement.idempotency_key == key)

    await stats_service.increment(CREDITS_RETIRED, amount)
    log.info("credits_retired", buyer_id=buyer_id, amount=amount, retirement_id=str(retirement.id))
    await log_event(buyer_id, "credits_retired", "retirement", str(retirement.id), {"amount": amount, "reason": reason})
    return retirement


async def list_retirements(buyer_id: str) -> list[Retirement]:
    return await Retirement.find(Retirement.buyer_id == buyer_id).sort(-Retirement.retired_at, -Retirement.id).to_list()
