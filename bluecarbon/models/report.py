from datetime import datetime
from enum import Enum
from typing import Literal

from beanie import Document, PydanticObjectId
from pydantic import BaseModel, Field


class ReportStatus(str, Enum):
    PENDING_SCORING = "pending_scoring"
    PENDING_VERIFICATION = "pending_verification"
    APPROVED = "approved"
    REJECTED = "rejected"


PENDING_STATUSES = (ReportStatus.PENDING_SCORING, ReportStatus.PENDING_VERIFICATION)

REPORT_TRANSITIONS: dict[ReportStatus, frozenset[ReportStatus]] = {
    ReportStatus.PENDING_SCORING: frozenset({ReportStatus.PENDING_VERIFICATION}),
    ReportStatus.PENDING_VERIFICATION: frozenset({ReportStatus.APPROVED, ReportStatus.REJECTED}),
    # approved -> pending_verification only as compensation for a failed mint
    ReportStatus.APPROVED: frozenset({ReportStatus.PENDING_VERIFICATION}),
    ReportStatus.REJECTED: frozenset(),
}


def report_can_transition(current: ReportStatus, target: ReportStatus) -> bool:
    return target in REPORT_TRANSITIONS[current]


class MonitoringData(BaseModel):
    satellite_data: str = ""
    community_reports: str = ""
    sensor_readings: str = ""
    iot_data: str = ""
    notes: str = ""

    def has_observations(self) -> bool:
        """Notes alone do not count as monitoring data."""
        return any(
            v.strip()
            for v in (self.satellite_data, self.community_reports, self.sensor_readings, self.iot_data)
        )


class EvidenceFile(BaseModel):
    name: str
    size: int = 0
    content_type: str = "application/octet-stream"
    category: Literal["photo", "iot_data", "document"] = "document"
    path: str
    uploaded_at: datetime = Field(default_factory=datetime.utcnow)


class ScoringResult(BaseModel):
    tonnage_estimate: float = Field(ge=0)
    quality_score: float = Field(ge=0, le=1)
    evidence_reference: str = ""


class Report(Document):
    project_id: PydanticObjectId
    submitter_id: str
    raw_data: MonitoringData
    files: list[EvidenceFile] = Field(default_factory=list)
    status: ReportStatus = ReportStatus.PENDING_SCORING
    scoring: ScoringResult | None = None
    scoring_attempts: int = 0
    scoring_error: str | None = None
    verifier_id: str | None = None
    verification_notes: str | None = None
    verified_at: datetime | None = None
    submitted_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "mrv_reports"
        indexes = [
            [("status", 1), ("submitted_at", -1)],
            [("project_id", 1)],
        ]
