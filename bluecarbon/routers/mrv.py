from beanie import PydanticObjectId
from fastapi import APIRouter, Depends, File, Form, UploadFile
from pydantic import BaseModel, ConfigDict, Field

from bluecarbon.anchoring.base import Anchor, get_anchor
from bluecarbon.deps import require_manager, require_verifier
from bluecarbon.models.report import EvidenceFile, MonitoringData, Report
from bluecarbon.models.user import User
from bluecarbon.scoring.base import Scorer, get_scorer
from bluecarbon.services import reports as reports_service
from bluecarbon.services import verification as verification_service
from bluecarbon.storage.base import StorageBackend, get_storage

router = APIRouter()


class RawDataIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    satellite_data: str = Field("", alias="satelliteData")
    community_reports: str = Field("", alias="communityReports")
    sensor_readings: str = Field("", alias="sensorReadings")
    iot_data: str = Field("", alias="iotData")
    notes: str = ""


class EvidenceRef(BaseModel):
    """A file reference as returned by /mrv/upload; category is derived server-side."""
    model_config = ConfigDict(populate_by_name=True)

    name: str
    path: str
    size: int = Field(0, ge=0)
    content_type: str = Field("application/octet-stream", alias="contentType")


class SubmitReportRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    project_id: PydanticObjectId = Field(alias="projectId")
    raw_data: RawDataIn = Field(alias="rawData")
    files: list[EvidenceRef] = Field(default_factory=list)


class DecisionRequest(BaseModel):
    approved: bool
    notes: str | None = None


def evidence_view(f: EvidenceFile) -> dict:
    return {
        "name": f.name,
        "size": f.size,
        "content_type": f.content_type,
        "category": f.category,
        "path": f.path,
        "uploaded_at": f.uploaded_at.isoformat(),
    }


def report_view(r: Report) -> dict:
    return {
        "id": str(r.id),
        "project_id": str(r.project_id),
        "submitter_id": r.submitter_id,
        "raw_data": r.raw_data.model_dump(),
        "files": [evidence_view(f) for f in r.files],
        "status": r.status.value,
        "scoring": r.scoring.model_dump() if r.scoring else None,
        "scoring_attempts": r.scoring_attempts,
        "scoring_error": r.scoring_error,
        "verifier_id": r.verifier_id,
        "verification_notes": r.verification_notes,
        "verified_at": r.verified_at.isoformat() if r.verified_at else None,
        "submitted_at": r.submitted_at.isoformat(),
    }


@router.post("/upload")
async def upload_evidence(
    project_id: PydanticObjectId = Form(..., alias="projectId"),
    files: list[UploadFile] = File(...),
    user: User = Depends(require_manager),
    storage: StorageBackend = Depends(get_storage),
):
    """Upload evidence files (photos, IoT exports, documents) for a project."""
    uploads = [(f.filename or "upload", f.content_type, await f.read()) for f in files]
    stored = await reports_service.upload_evidence(project_id, uploads, user, storage=storage)
    return {"files": [evidence_view(f) for f in stored]}


@router.post("", status_code=201)
async def submit_report(
    body: SubmitReportRequest,
    user: User = Depends(require_manager),
    scorer: Scorer = Depends(get_scorer),
):
    """Submit monitoring data; scoring runs immediately and is retried in the background on failure."""
    report = await reports_service.submit_report(
        body.project_id,
        MonitoringData(**body.raw_data.model_dump()),
        user,
        files=[EvidenceFile(**f.model_dump()) for f in body.files],
        scorer=scorer,
    )
    return report_view(report)


@router.get("/pending")
async def pending_reports(user: User = Depends(require_verifier)):
    reports = await reports_service.list_pending()
    return {"reports": [report_view(r) for r in reports]}


@router.post("/{report_id}/score")
async def rescore_report(
    report_id: PydanticObjectId,
    user: User = Depends(require_verifier),
    scorer: Scorer = Depends(get_scorer),
):
    report = await reports_service.score_report(report_id, scorer=scorer)
    return report_view(report)


@router.post("/{report_id}/approve")
async def decide_report(
    report_id: PydanticObjectId,
    body: DecisionRequest,
    user: User = Depends(require_verifier),
    anchor: Anchor = Depends(get_anchor),
):
    """Approve (mints the credit batch) or reject a scored report."""
    report, batch = await verification_service.decide(
        report_id, user, body.approved, notes=body.notes, anchor=anchor
    )
    return {
        "report": report_view(report),
        "batch_id": str(batch.id) if batch else None,
        "credits_minted": batch.total_amount if batch else 0,
    }
