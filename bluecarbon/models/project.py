from datetime import datetime
from enum import Enum

from beanie import Document
from pydantic import Field


class EcosystemType(str, Enum):
    MANGROVE = "mangrove"
    SALTMARSH = "saltmarsh"
    SEAGRASS = "seagrass"
    COASTAL_WETLAND = "coastal_wetland"


class ProjectStatus(str, Enum):
    REGISTERED = "registered"
    MRV_SUBMITTED = "mrv_submitted"
    APPROVED = "approved"
    REJECTED = "rejected"


# A project mirrors the lifecycle of its latest report; a decided project
# goes back to mrv_submitted when a new report arrives.
PROJECT_TRANSITIONS: dict[ProjectStatus, frozenset[ProjectStatus]] = {
    ProjectStatus.REGISTERED: frozenset({ProjectStatus.MRV_SUBMITTED}),
    ProjectStatus.MRV_SUBMITTED: frozenset(
        {ProjectStatus.MRV_SUBMITTED, ProjectStatus.APPROVED, ProjectStatus.REJECTED}
    ),
    ProjectStatus.APPROVED: frozenset({ProjectStatus.MRV_SUBMITTED}),
    ProjectStatus.REJECTED: frozenset({ProjectStatus.MRV_SUBMITTED}),
}


def project_can_transition(current: ProjectStatus, target: ProjectStatus) -> bool:
    return target in PROJECT_TRANSITIONS[current]


class Project(Document):
    name: str
    description: str = ""
    location: str
    ecosystem_type: EcosystemType
    area: float  # hectares
    coordinates: str | None = None
    community_partners: str | None = None
    expected_carbon_capture: float | None = None
    manager_id: str
    organization: str | None = None
    status: ProjectStatus = ProjectStatus.REGISTERED
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "projects"
        indexes = [
            [("manager_id", 1), ("created_at", -1)],
            [("status", 1)],
        ]
