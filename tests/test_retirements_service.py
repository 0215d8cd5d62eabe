"""Credit retirement."""

import asyncio

import pytest

from bluecarbon.core.exceptions import InsufficientBalanceError, ValidationError
from bluecarbon.models.counter import CREDITS_RETIRED
from bluecarbon.models.retirement import Retirement
from bluecarbon.services import ledger as ledger_service
from bluecarbon.services import retirements as retirements_service
from bluecarbon.services import stats as stats_service
from conftest import FailingAnchor, RecordingAnchor

pytestmark = pytest.mark.asyncio


async def _fund(buyer, amount=10) -> str:
    buyer_id = str(buyer.id)
    await ledger_service.credit_balance(buyer_id, amount, reference="order:seed")
    return buyer_id


async def test_retire_debits_and_records(buyer):
    buyer_id = await _fund(buyer)
    retirement = await retirements_service.retire(buyer_id, 4, "FY26 shipping emissions offset")
    assert retirement.amount == 4
    assert retirement.anchor_receipt.startswith("sha256:")
    assert await ledger_service.get_balance(buyer_id) == 6
    assert await stats_service.get_counter(CREDITS_RETIRED) == 4


async def test_retire_more_than_balance(buyer):
    buyer_id = await _fund(buyer)
    with pytest.raises(InsufficientBalanceError):
        await retirements_service.retire(buyer_id, 15, "offset")
    assert await ledger_service.get_balance(buyer_id) == 10
    assert await Retirement.find_all().count() == 0
    assert await stats_service.get_counter(CREDITS_RETIRED) == 0


async def test_retire_validates_input(buyer):
    buyer_id = await _fund(buyer)
    with pytest.raises(ValidationError):
        await retirements_service.retire(buyer_id, 0, "offset")
    with pytest.raises(ValidationError):
        await retirements_service.retire(buyer_id, 2, "   ")


async def test_idempotency_key_returns_first_retirement(buyer):
    buyer_id = await _fund(buyer)
    first = await retirements_service.retire(buyer_id, 3, "offset", idempotency_key="ret-1")
    second = await retirements_service.retire(buyer_id, 3, "offset", idempotency_key="ret-1")
    assert first.id == second.id
    assert await ledger_service.get_balance(buyer_id) == 7
    assert await stats_service.get_counter(CREDITS_RETIRED) == 3


async def test_concurrent_retirements_serialize(buyer):
    buyer_id = await _fund(buyer)
    results = await asyncio.gather(
        *[retirements_service.retire(buyer_id, 3, "offset") for _ in range(5)],
        return_exceptions=True,
    )
    assert sum(isinstance(r, Retirement) for r in results) == 3
    assert await ledger_service.get_balance(buyer_id) == 1
    assert await stats_service.get_counter(CREDITS_RETIRED) == 9


async def test_list_retirements(buyer):
    buyer_id = await _fund(buyer)
    await retirements_service.retire(buyer_id, 1, "first")
    await retirements_service.retire(buyer_id, 2, "second")
    assert [r.reason for r in await retirements_service.list_retirements(buyer_id)] == ["second", "first"]


async def test_rejected_retirement_is_never_anchored(buyer):
    buyer_id = await _fund(buyer)
    anchor = RecordingAnchor()
    with pytest.raises(InsufficientBalanceError):
        await retirements_service.retire(buyer_id, 15, "offset", anchor=anchor)
    assert anchor.records == []

    retirement = await retirements_service.retire(buyer_id, 4, "offset", anchor=anchor)
    assert [r["amount"] for r in anchor.records] == [4]
    assert retirement.anchor_receipt.startswith("sha256:")


async def test_anchor_failure_restores_balance(buyer):
    buyer_id = await _fund(buyer)
    with pytest.raises(RuntimeError):
        await retirements_service.retire(buyer_id, 4, "offset", idempotency_key="ret-2", anchor=FailingAnchor())
    assert await ledger_service.get_balance(buyer_id) == 10
    assert await Retirement.find_all().count() == 0

    retirement = await retirements_service.retire(buyer_id, 4, "offset", idempotency_key="ret-2")
    assert retirement.amount == 4
    assert await ledger_service.get_balance(buyer_id) == 6
    assert await stats_service.get_counter(CREDITS_RETIRED) == 4


async def test_resume_after_crash_before_record(buyer):
    buyer_id = await _fund(buyer)
    # the first attempt debited and then died before recording the retirement
    await ledger_service.debit_balance(buyer_id, 4, reference=ledger_service.retirement_reference("ret-3"))
    retirement = await retirements_service.retire(buyer_id, 4, "offset", idempotency_key="ret-3")
    assert retirement.amount == 4
    assert await ledger_service.get_balance(buyer_id) == 6


async def test_recorded_retirement_releases_reference(buyer):
    buyer_id = await _fund(buyer)
    await retirements_service.retire(buyer_id, 4, "offset", idempotency_key="ret-4")
    # the seed credit has no order behind it, so only the retirement is released
    assert await ledger_service.release_settled_references(retention_seconds=0) == 1
    again = await retirements_service.retire(buyer_id, 4, "offset", idempotency_key="ret-4")
    assert again.amount == 4
    assert await ledger_service.get_balance(buyer_id) == 6
