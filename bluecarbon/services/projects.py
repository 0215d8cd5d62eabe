"""Project registry: registration, listing and status mirroring."""

from datetime import datetime
from typing import Any

from beanie import PydanticObjectId
from beanie.operators import In

from bluecarbon.core.audit import log_event
from bluecarbon.core.exceptions import AuthorizationError, InvalidStateError, NotFoundError, ValidationError
from bluecarbon.core.logging import get_logger
from bluecarbon.models.credit_batch import CreditBatch
from bluecarbon.models.project import EcosystemType, Project, ProjectStatus, project_can_transition
from bluecarbon.models.report import Report, ReportStatus
from bluecarbon.models.user import Role, User

log = get_logger(__name__)


async def create_project(manager: User, data: dict[str, Any]) -> Project:
    if manager.role != Role.MANAGER:
        raise AuthorizationError("Only project managers can register projects")
    name = (data.get("name") or "").strip()
    location = (data.get("location") or "").strip()
    if not name or not location:
        raise ValidationError("Name and location are required")
    try:
        ecosystem = EcosystemType(data.get("ecosystem_type"))
    except ValueError:
        raise ValidationError(
            "Unknown ecosystem type",
            details={"allowed": [e.value for e in EcosystemType]},
        )
    area = data.get("area")
    if area is None or area <= 0:
        raise ValidationError("Area must be greater than zero", details={"area": area})

    project = Project(
        name=name,
        description=data.get("description") or "",
        location=location,
        ecosystem_type=ecosystem,
        area=area,
        coordinates=data.get("coordinates"),
        community_partners=data.get("community_partners"),
        expected_carbon_capture=data.get("expected_carbon_capture"),
        manager_id=str(manager.id),
        organization=manager.organization,
    )
    await project.insert()
    log.info("project_registered", project_id=str(project.id), manager_id=str(manager.id))
    return project


async def get_project(project_id: PydanticObjectId) -> Project:
    project = await Project.get(project_id)
    if not project:
        raise NotFoundError("Project not found")
    return project


async def list_manager_projects(manager_id: str) -> list[Project]:
    return await Project.find(Project.manager_id == manager_id).sort(-Project.created_at, -Project.id).to_list()


async def list_all_projects() -> list[Project]:
    return await Project.find_all().sort(-Project.created_at, -Project.id).to_list()


def can_submit_for(project: Project, user: User) -> bool:
    """Managers may report on their own projects or any project of their organization."""
    if project.manager_id == str(user.id):
        return True
    return bool(project.organization) and project.organization == user.organization


async def _has_reports(project_id: PydanticObjectId) -> bool:
    return await Report.find(Report.project_id == project_id).count() > 0


async def list_manager_projects_with_credits(manager_id: str) -> list[dict[str, Any]]:
    """Manager's projects, each with the credit batches minted from its reports."""
    projects = await list_manager_projects(manager_id)
    if not projects:
        return []
    batches = await CreditBatch.find(
        In(CreditBatch.project_id, [p.id for p in projects]),
        {"anchor_receipt": {"$ne": None}},
    ).sort(-CreditBatch.minted_at).to_list()
    by_project: dict[PydanticObjectId, list[CreditBatch]] = {}
    for batch in batches:
        by_project.setdefault(batch.project_id, []).append(batch)

    out = []
    for project in projects:
        minted = by_project.get(project.id, [])
        out.append(
            {
                "project": project,
                "batches": minted,
                "credits_issued": sum(b.total_amount for b in minted),
                "credits_available": sum(b.available_amount for b in minted),
            }
        )
    return out


async def project_timeline(project_id: PydanticObjectId, user: User) -> list[dict[str, Any]]:
    """
    Registration, report submissions, decisions and mints for one project,
    oldest first. Verifiers see any project; managers only their own.
    """
    project = await get_project(project_id)
    if user.role != Role.VERIFIER and not can_submit_for(project, user):
        raise AuthorizationError("Project belongs to another organization")

    events: list[dict[str, Any]] = [
        {"at": project.created_at, "type": "registered", "project_id": str(project.id)},
    ]
    reports = await Report.find(Report.project_id == project.id).to_list()
    for report in reports:
        events.append({"at": report.submitted_at, "type": "report_submitted", "report_id": str(report.id)})
        if report.verified_at and report.status in (ReportStatus.APPROVED, ReportStatus.REJECTED):
            events.append(
                {
                    "at": report.verified_at,
                    "type": f"report_{report.status.value}",
                    "report_id": str(report.id),
                    "notes": report.verification_notes,
                }
            )
    async for batch in CreditBatch.find(CreditBatch.project_id == project.id, {"anchor_receipt": {"$ne": None}}):
        events.append(
            {
                "at": batch.minted_at,
                "type": "credits_minted",
                "report_id": str(batch.report_id),
                "batch_id": str(batch.id),
                "amount": batch.total_amount,
            }
        )
    events.sort(key=lambda e: e["at"])
    return events


async def delete_project(project_id: PydanticObjectId, manager: User) -> None:
    project = await get_project(project_id)
    if project.manager_id != str(manager.id):
        raise AuthorizationError("Only the owning manager can delete a project")
    if await _has_reports(project.id):
        raise InvalidStateError("Project has monitoring reports and cannot be deleted")
    await project.delete()
    if await _has_reports(project.id):
        # a report landed between the check and the delete
        await project.insert()
        raise InvalidStateError("Project has monitoring reports and cannot be deleted")
    log.info("project_deleted", project_id=str(project_id), manager_id=str(manager.id))
    await log_event(str(manager.id), "project_deleted", "project", str(project_id))


async def mirror_status(project_id: PydanticObjectId, target: ProjectStatus) -> Project | None:
    """Move the project to the status implied by its latest report."""
    project = await Project.get(project_id)
    if not project:
        log.warning("project_missing_for_status", project_id=str(project_id), target=target.value)
        return None
    if project.status == target:
        return project
    if not project_can_transition(project.status, target):
        log.warning(
            "project_transition_skipped",
            project_id=str(project_id),
            current=project.status.value,
            target=target.value,
        )
        return project
    previous = project.status
    project.status = target
    project.updated_at = datetime.utcnow()
    await project.save()
    log.info("project_status_changed", project_id=str(project_id), previous=previous.value, status=target.value)
    return project
