"""MRV report submission, scoring and the pending queue."""

import uuid
from datetime import datetime
from pathlib import PurePosixPath

from beanie import PydanticObjectId, UpdateResponse
from beanie.operators import In

from bluecarbon.core.audit import log_event
from bluecarbon.core.config import get_settings
from bluecarbon.core.exceptions import AuthorizationError, InvalidStateError, NotFoundError, ValidationError
from bluecarbon.core.logging import get_logger
from bluecarbon.models.project import Project, ProjectStatus
from bluecarbon.models.report import (
    PENDING_STATUSES,
    EvidenceFile,
    MonitoringData,
    Report,
    ReportStatus,
    ScoringResult,
    report_can_transition,
)
from bluecarbon.models.user import User
from bluecarbon.scoring.base import Scorer, get_scorer
from bluecarbon.services import projects as projects_service
from bluecarbon.storage.base import StorageBackend, get_storage, safe_key

log = get_logger(__name__)

PHOTO_EXTENSIONS = {"jpg", "jpeg", "png", "gif", "heic"}
IOT_EXTENSIONS = {"csv", "json", "xml", "txt", "log"}


def categorize(filename: str, content_type: str | None) -> str:
    extension = PurePosixPath(filename).suffix.lstrip(".").lower()
    if (content_type or "").startswith("image/") or extension in PHOTO_EXTENSIONS:
        return "photo"
    if extension in IOT_EXTENSIONS:
        return "iot_data"
    return "document"


async def get_report(report_id: PydanticObjectId) -> Report:
    report = await Report.get(report_id)
    if not report:
        raise NotFoundError("Report not found")
    return report


async def transition_report(
    report_id: PydanticObjectId,
    current: ReportStatus,
    target: ReportStatus,
    fields: dict | None = None,
    inc: dict | None = None,
) -> Report | None:
    """Compare-and-swap current -> target; None when the report already left current."""
    if not report_can_transition(current, target):
        raise InvalidStateError(
            "Illegal report transition",
            details={"current": current.value, "target": target.value},
        )
    update: dict = {"$set": {"status": target.value, "updated_at": datetime.utcnow(), **(fields or {})}}
    if inc:
        update["$inc"] = inc
    return await Report.find_one(Report.id == report_id, Report.status == current).update(
        update, response_type=UpdateResponse.NEW_DOCUMENT
    )


async def upload_evidence(
    project_id: PydanticObjectId,
    uploads: list[tuple[str, str | None, bytes]],
    manager: User,
    storage: StorageBackend | None = None,
) -> list[EvidenceFile]:
    """Store (filename, content_type, bytes) uploads; return references to attach to a report."""
    if not uploads:
        raise ValidationError("No files uploaded")
    project = await projects_service.get_project(project_id)
    if not projects_service.can_submit_for(project, manager):
        raise AuthorizationError("Project belongs to another organization")
    max_bytes = get_settings().max_upload_bytes
    for filename, _, content in uploads:
        if len(content) > max_bytes:
            raise ValidationError("File too large", details={"file": filename, "max_bytes": max_bytes})

    storage = storage or get_storage()
    stored: list[EvidenceFile] = []
    for filename, content_type, content in uploads:
        name = PurePosixPath(filename.replace("\\", "/")).name or "upload"
        key = safe_key("mrv", str(project.id), f"{uuid.uuid4().hex}_{name}")
        path = await storage.put(key, content, content_type)
        stored.append(
            EvidenceFile(
                name=name,
                size=len(content),
                content_type=content_type or "application/octet-stream",
                category=categorize(name, content_type),
                path=path,
            )
        )
    log.info("evidence_uploaded", project_id=str(project.id), count=len(stored))
    return stored


def _checked_evidence(project_id: PydanticObjectId, evidence: EvidenceFile) -> EvidenceFile:
    """Accept only references under this project's upload prefix; category is re-derived."""
    parts = PurePosixPath(evidence.path.replace("\\", "/")).parts
    prefix = ("mrv", str(project_id))
    under_prefix = any(parts[i:i + 2] == prefix for i in range(len(parts) - 2))
    if ".." in parts or not under_prefix:
        raise ValidationError("Evidence file was not uploaded for this project", details={"path": evidence.path})
    return evidence.model_copy(update={"category": categorize(evidence.name, evidence.content_type)})


async def submit_report(
    project_id: PydanticObjectId,
    raw_data: MonitoringData,
    submitter: User,
    files: list[EvidenceFile] | None = None,
    scorer: Scorer | None = None,
) -> Report:
    """
    Create a report in pending_scoring and try to score it straight away.
    A scorer failure leaves the report pending_scoring for the retry job.
    """
    if not raw_data.has_observations():
        raise ValidationError("At least one monitoring data field is required")
    project = await projects_service.get_project(project_id)
    if not projects_service.can_submit_for(project, submitter):
        raise AuthorizationError("Project belongs to another organization")

    report = Report(
        project_id=project.id,
        submitter_id=str(submitter.id),
        raw_data=raw_data,
        files=[_checked_evidence(project.id, f) for f in files or []],
    )
    await report.insert()
    if not await Project.get(project.id):
        # project deleted while the report was being written
        await report.delete()
        raise NotFoundError("Project not found")
    await projects_service.mirror_status(project.id, ProjectStatus.MRV_SUBMITTED)
    log.info("report_submitted", report_id=str(report.id), project_id=str(project.id))
    await log_event(str(submitter.id), "report_submitted", "report", str(report.id), {"project_id": str(project.id)})
    return await score_report(report.id, scorer=scorer)


async def score_report(report_id: PydanticObjectId, scorer: Scorer | None = None) -> Report:
    report = await get_report(report_id)
    if report.status != ReportStatus.PENDING_SCORING:
        raise InvalidStateError("Report has already been scored", details={"status": report.status.value})

    now = datetime.utcnow()
    try:
        result = await (scorer or get_scorer()).score(report)
        # re-validate: collaborators can hand back out-of-range values
        result = ScoringResult.model_validate(result.model_dump())
    except Exception as e:
        log.warning(
            "scoring_failed",
            report_id=str(report_id),
            attempt=report.scoring_attempts + 1,
            error=str(e),
        )
        updated = await Report.find_one(
            Report.id == report_id,
            Report.status == ReportStatus.PENDING_SCORING,
        ).update(
            {
                "$inc": {"scoring_attempts": 1},
                "$set": {"scoring_error": str(e)[:500] or type(e).__name__, "updated_at": now},
            },
            response_type=UpdateResponse.NEW_DOCUMENT,
        )
        return updated or await get_report(report_id)

    updated = await transition_report(
        report_id,
        ReportStatus.PENDING_SCORING,
        ReportStatus.PENDING_VERIFICATION,
        fields={"scoring": result.model_dump(), "scoring_error": None},
        inc={"scoring_attempts": 1},
    )
    if updated is None:
        # scored concurrently by another worker
        return await get_report(report_id)
    log.info(
        "report_scored",
        report_id=str(report_id),
        tonnage_estimate=result.tonnage_estimate,
        quality_score=result.quality_score,
    )
    return updated


async def retry_pending_scoring(scorer: Scorer | None = None) -> dict[str, int]:
    """Rescore every pending_scoring report still under the attempt limit."""
    max_attempts = get_settings().scoring_max_attempts
    reports = await Report.find(
        Report.status == ReportStatus.PENDING_SCORING,
        Report.scoring_attempts < max_attempts,
    ).sort(+Report.submitted_at).to_list()
    scorer = scorer or get_scorer()
    scored = 0
    for report in reports:
        try:
            result = await score_report(report.id, scorer=scorer)
        except InvalidStateError:
            continue
        if result.status == ReportStatus.PENDING_VERIFICATION:
            scored += 1
    if reports:
        log.info("scoring_retried", attempted=len(reports), scored=scored)
    return {"attempted": len(reports), "scored": scored}


async def list_pending() -> list[Report]:
    return await Report.find(In(Report.status, list(PENDING_STATUSES))).sort(-Report.submitted_at, -Report.id).to_list()
