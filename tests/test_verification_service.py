"""Verification gate: one-shot decisions, mint coupling and reconciliation."""

import asyncio
from datetime import datetime

import pytest
import pytest_asyncio

from bluecarbon.anchoring.base import DigestAnchor
from bluecarbon.core.exceptions import AuthorizationError, InvalidStateError, NotFoundError
from bluecarbon.models.counter import CREDITS_ISSUED
from bluecarbon.models.credit_batch import CreditBatch
from bluecarbon.models.project import Project, ProjectStatus
from bluecarbon.models.report import Report, ReportStatus
from bluecarbon.services import projects as projects_service
from bluecarbon.services import reports as reports_service
from bluecarbon.services import stats as stats_service
from bluecarbon.services import verification as verification_service
from conftest import FailingAnchor, FakeScorer, sample_project_data, sample_raw_data

pytestmark = pytest.mark.asyncio


@pytest_asyncio.fixture
async def scored_report(manager, scorer):
    project = await projects_service.create_project(manager, sample_project_data())
    return await reports_service.submit_report(project.id, sample_raw_data(), manager, scorer=scorer)


async def assert_batches_match_approvals() -> None:
    approved = {r.id async for r in Report.find(Report.status == ReportStatus.APPROVED)}
    minted = {b.report_id async for b in CreditBatch.find_all()}
    assert approved == minted


async def test_approve_mints_batch_and_approves_project(scored_report, verifier):
    report, batch = await verification_service.decide(scored_report.id, verifier, True, notes="canopy verified")
    assert report.status == ReportStatus.APPROVED
    assert report.verifier_id == str(verifier.id)
    assert report.verification_notes == "canopy verified"
    assert batch.total_amount == 80
    assert batch.available_amount == 80
    assert (await Project.get(scored_report.project_id)).status == ProjectStatus.APPROVED
    assert await stats_service.get_counter(CREDITS_ISSUED) == 80
    await assert_batches_match_approvals()


async def test_fractional_tonnage_is_floored(manager, verifier):
    project = await projects_service.create_project(manager, sample_project_data())
    report = await reports_service.submit_report(
        project.id, sample_raw_data(), manager, scorer=FakeScorer(tonnage=12.99, quality=0.5)
    )
    _, batch = await verification_service.decide(report.id, verifier, True)
    assert batch.total_amount == 12


async def test_reject_then_approve_fails(scored_report, verifier):
    report, batch = await verification_service.decide(scored_report.id, verifier, False, notes="insufficient evidence")
    assert report.status == ReportStatus.REJECTED
    assert batch is None
    assert (await Project.get(scored_report.project_id)).status == ProjectStatus.REJECTED

    with pytest.raises(InvalidStateError):
        await verification_service.decide(scored_report.id, verifier, True)
    assert await CreditBatch.find_all().count() == 0
    await assert_batches_match_approvals()


async def test_only_verifiers_decide(scored_report, manager, buyer):
    for user in (manager, buyer):
        with pytest.raises(AuthorizationError):
            await verification_service.decide(scored_report.id, user, True)
    assert (await Report.get(scored_report.id)).status == ReportStatus.PENDING_VERIFICATION


async def test_decide_requires_scored_report(manager, verifier):
    from conftest import FailingScorer
    project = await projects_service.create_project(manager, sample_project_data())
    report = await reports_service.submit_report(project.id, sample_raw_data(), manager, scorer=FailingScorer())
    with pytest.raises(InvalidStateError):
        await verification_service.decide(report.id, verifier, True)


async def test_decide_unknown_report(verifier):
    from beanie import PydanticObjectId
    with pytest.raises(NotFoundError):
        await verification_service.decide(PydanticObjectId(), verifier, True)


async def test_concurrent_decisions_one_wins(scored_report, verifier):
    results = await asyncio.gather(
        verification_service.decide(scored_report.id, verifier, True),
        verification_service.decide(scored_report.id, verifier, False),
        return_exceptions=True,
    )
    assert sum(isinstance(r, InvalidStateError) for r in results) == 1
    assert await CreditBatch.find_all().count() <= 1
    await assert_batches_match_approvals()


async def test_mint_failure_reverts_approval(scored_report, verifier):
    with pytest.raises(RuntimeError):
        await verification_service.decide(scored_report.id, verifier, True, anchor=FailingAnchor())
    report = await Report.get(scored_report.id)
    assert report.status == ReportStatus.PENDING_VERIFICATION
    assert report.verifier_id is None
    assert await CreditBatch.find_all().count() == 0
    assert (await Project.get(scored_report.project_id)).status == ProjectStatus.MRV_SUBMITTED

    # the verifier can retry once the anchor is back
    report, batch = await verification_service.decide(scored_report.id, verifier, True, anchor=DigestAnchor())
    assert report.status == ReportStatus.APPROVED
    assert batch.total_amount == 80


async def test_reconcile_mints_missing_batches(scored_report, verifier):
    # simulate a crash between the approval and the mint
    await Report.find_one(Report.id == scored_report.id).update(
        {"$set": {"status": ReportStatus.APPROVED.value, "verified_at": datetime.utcnow()}}
    )
    assert await CreditBatch.find_all().count() == 0

    assert await verification_service.reconcile_approved_reports() == 1
    assert await verification_service.reconcile_approved_reports() == 0
    batch = await CreditBatch.find_one(CreditBatch.report_id == scored_report.id)
    assert batch.total_amount == 80
    assert (await Project.get(scored_report.project_id)).status == ProjectStatus.APPROVED
    await assert_batches_match_approvals()


async def test_reconcile_finishes_unanchored_batch(scored_report, verifier):
    await Report.find_one(Report.id == scored_report.id).update({"$set": {"status": ReportStatus.APPROVED.value}})
    await CreditBatch(
        report_id=scored_report.id,
        project_id=scored_report.project_id,
        total_amount=80,
        available_amount=0,
        quality_score=0.9,
    ).insert()

    assert await verification_service.reconcile_approved_reports() == 1
    batch = await CreditBatch.find_one(CreditBatch.report_id == scored_report.id)
    assert batch.available_amount == 80
    assert batch.anchor_receipt.startswith("sha256:")
    assert await verification_service.reconcile_approved_reports() == 0


async def test_transitions_follow_the_table(scored_report, verifier):
    await verification_service.decide(scored_report.id, verifier, False)
    with pytest.raises(InvalidStateError):
        await reports_service.transition_report(scored_report.id, ReportStatus.REJECTED, ReportStatus.APPROVED)
    assert (await Report.get(scored_report.id)).status == ReportStatus.REJECTED
