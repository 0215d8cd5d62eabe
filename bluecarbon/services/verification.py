"""Verification gate: one-shot approve/reject decisions and mint reconciliation."""

from datetime import datetime

from beanie import PydanticObjectId

from bluecarbon.anchoring.base import Anchor
from bluecarbon.core.audit import log_event
from bluecarbon.core.exceptions import AuthorizationError, InvalidStateError
from bluecarbon.core.logging import get_logger
from bluecarbon.models.credit_batch import CreditBatch
from bluecarbon.models.project import ProjectStatus
from bluecarbon.models.report import Report, ReportStatus
from bluecarbon.models.user import Role, User
from bluecarbon.services import ledger as ledger_service
from bluecarbon.services import projects as projects_service
from bluecarbon.services.reports import get_report, transition_report

log = get_logger(__name__)


async def decide(
    report_id: PydanticObjectId,
    verifier: User,
    approve: bool,
    notes: str | None = None,
    anchor: Anchor | None = None,
) -> tuple[Report, CreditBatch | None]:
    """
    Approve or reject a report in pending_verification.
    The status change is a compare-and-swap so only one decision wins.
    On approve the batch is minted; if minting fails the approval is undone.
    """
    if verifier.role != Role.VERIFIER:
        raise AuthorizationError("Only verifiers can decide on reports")
    report = await get_report(report_id)
    if report.status != ReportStatus.PENDING_VERIFICATION:
        raise InvalidStateError("Report is not awaiting verification", details={"status": report.status.value})

    target = ReportStatus.APPROVED if approve else ReportStatus.REJECTED
    decided = await transition_report(
        report_id,
        ReportStatus.PENDING_VERIFICATION,
        target,
        fields={
            "verifier_id": str(verifier.id),
            "verification_notes": notes,
            "verified_at": datetime.utcnow(),
        },
    )
    if decided is None:
        raise InvalidStateError("Report was decided concurrently")

    batch = None
    if approve:
        try:
            batch = await ledger_service.mint(
                decided.id,
                decided.scoring.tonnage_estimate,
                decided.scoring.quality_score,
                anchor=anchor,
            )
        except Exception:
            await _revert_approval(decided.id)
            raise
        await projects_service.mirror_status(decided.project_id, ProjectStatus.APPROVED)
    else:
        await projects_service.mirror_status(decided.project_id, ProjectStatus.REJECTED)

    log.info(
        "report_decided",
        report_id=str(report_id),
        verifier_id=str(verifier.id),
        status=target.value,
        batch_id=str(batch.id) if batch else None,
    )
    await log_event(
        str(verifier.id),
        f"report_{target.value}",
        "report",
        str(report_id),
        {"notes": notes, "batch_id": str(batch.id) if batch else None},
    )
    return decided, batch


async def _revert_approval(report_id: PydanticObjectId) -> None:
    if await CreditBatch.find_one(CreditBatch.report_id == report_id):
        return
    reverted = await transition_report(
        report_id,
        ReportStatus.APPROVED,
        ReportStatus.PENDING_VERIFICATION,
        fields={"verifier_id": None, "verification_notes": None, "verified_at": None},
    )
    log.warning("approval_reverted", report_id=str(report_id), reverted=reverted is not None)


async def reconcile_approved_reports(anchor: Anchor | None = None) -> int:
    """Finish the batch for every approved report that lacks an anchored one. Returns batches minted."""
    minted = 0
    async for report in Report.find(Report.status == ReportStatus.APPROVED):
        batch = await CreditBatch.find_one(CreditBatch.report_id == report.id)
        if batch and batch.anchor_receipt:
            continue
        if report.scoring is None:
            log.error("approved_report_unscored", report_id=str(report.id))
            continue
        await ledger_service.mint(
            report.id,
            report.scoring.tonnage_estimate,
            report.scoring.quality_score,
            anchor=anchor,
        )
        await projects_service.mirror_status(report.project_id, ProjectStatus.APPROVED)
        minted += 1
        log.warning("approved_report_reconciled", report_id=str(report.id))
    return minted
