from fastapi import APIRouter, Depends, Header, Query
from pydantic import BaseModel

from bluecarbon.anchoring.base import Anchor, get_anchor
from bluecarbon.core.pagination import page_response
from bluecarbon.core.security import normalize_idempotency_key
from bluecarbon.deps import require_buyer
from bluecarbon.models.credit_batch import CreditBatch
from bluecarbon.models.retirement import Retirement
from bluecarbon.models.user import User
from bluecarbon.services import ledger as ledger_service
from bluecarbon.services import retirements as retirements_service

router = APIRouter()


class RetireRequest(BaseModel):
    amount: int
    reason: str


def batch_view(b: CreditBatch) -> dict:
    return {
        "id": str(b.id),
        "report_id": str(b.report_id),
        "project_id": str(b.project_id),
        "total_amount": b.total_amount,
        "available_amount": b.available_amount,
        "quality_score": b.quality_score,
        "evidence_reference": b.evidence_reference,
        "anchor_receipt": b.anchor_receipt,
        "minted_at": b.minted_at.isoformat(),
    }


def retirement_view(r: Retirement) -> dict:
    return {
        "id": str(r.id),
        "amount": r.amount,
        "reason": r.reason,
        "idempotency_key": r.idempotency_key,
        "anchor_receipt": r.anchor_receipt,
        "retired_at": r.retired_at.isoformat(),
    }


@router.get("/available")
async def available_credits():
    """Public marketplace: batches with remaining supply, newest first."""
    batches = await ledger_service.list_available()
    return {"batches": [batch_view(b) for b in batches]}


@router.get("/balance")
async def credits_balance(user: User = Depends(require_buyer)):
    """Return current credit balance."""
    balance = await ledger_service.get_balance(str(user.id))
    return {"balance": balance}


@router.get("/ledger")
async def credits_ledger(
    user: User = Depends(require_buyer),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
):
    """Return ledger entries for current user (newest first)."""
    page = await ledger_service.list_entries(str(user.id), limit=limit, offset=offset)
    out = page_response(page)
    out["items"] = [
        {
            "id": str(e.id),
            "amount": e.amount,
            "balance_after": e.balance_after,
            "reason": e.reason,
            "reference": e.reference,
            "created_at": e.created_at.isoformat(),
        }
        for e in page.items
    ]
    return out


@router.post("/retire")
async def retire_credits(
    body: RetireRequest,
    user: User = Depends(require_buyer),
    anchor: Anchor = Depends(get_anchor),
    idempotency_key: str | None = Header(None, alias="Idempotency-Key"),
):
    """Permanently retire credits from the balance. Repeating an Idempotency-Key is safe."""
    retirement = await retirements_service.retire(
        str(user.id),
        body.amount,
        body.reason,
        idempotency_key=normalize_idempotency_key(idempotency_key),
        anchor=anchor,
    )
    return {
        "retirement": retirement_view(retirement),
        "balance": await ledger_service.get_balance(str(user.id)),
    }


@router.get("/retirements")
async def retirement_history(user: User = Depends(require_buyer)):
    retirements = await retirements_service.list_retirements(str(user.id))
    return {"retirements": [retirement_view(r) for r in retirements]}
