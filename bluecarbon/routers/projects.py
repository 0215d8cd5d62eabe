from beanie import PydanticObjectId
from fastapi import APIRouter, Depends
from pydantic import BaseModel

from bluecarbon.deps import require_manager, require_role, require_verifier
from bluecarbon.models.project import EcosystemType, Project
from bluecarbon.models.user import Role, User
from bluecarbon.routers.credits import batch_view
from bluecarbon.services import projects as projects_service

router = APIRouter()


class CreateProjectRequest(BaseModel):
    name: str
    description: str = ""
    location: str
    ecosystem_type: EcosystemType
    area: float
    coordinates: str | None = None
    community_partners: str | None = None
    expected_carbon_capture: float | None = None


def project_view(p: Project) -> dict:
    return {
        "id": str(p.id),
        "name": p.name,
        "description": p.description,
        "location": p.location,
        "ecosystem_type": p.ecosystem_type.value,
        "area": p.area,
        "coordinates": p.coordinates,
        "community_partners": p.community_partners,
        "expected_carbon_capture": p.expected_carbon_capture,
        "manager_id": p.manager_id,
        "organization": p.organization,
        "status": p.status.value,
        "created_at": p.created_at.isoformat(),
        "updated_at": p.updated_at.isoformat(),
    }


@router.post("", status_code=201)
async def create_project(body: CreateProjectRequest, user: User = Depends(require_manager)):
    """Register a restoration project (status registered)."""
    project = await projects_service.create_project(user, body.model_dump())
    return project_view(project)


@router.get("")
async def my_projects(user: User = Depends(require_manager)):
    projects = await projects_service.list_manager_projects(str(user.id))
    return {"projects": [project_view(p) for p in projects]}


@router.get("/manager-with-credits")
async def my_projects_with_credits(user: User = Depends(require_manager)):
    """Own projects with the credit batches minted from them."""
    rows = await projects_service.list_manager_projects_with_credits(str(user.id))
    return {
        "projects": [
            {
                **project_view(row["project"]),
                "batches": [batch_view(b) for b in row["batches"]],
                "credits_issued": row["credits_issued"],
                "credits_available": row["credits_available"],
            }
            for row in rows
        ]
    }


@router.get("/all")
async def all_projects(user: User = Depends(require_verifier)):
    projects = await projects_service.list_all_projects()
    return {"projects": [project_view(p) for p in projects]}


@router.delete("/{project_id}")
async def delete_project(project_id: PydanticObjectId, user: User = Depends(require_manager)):
    """Delete a project that has no monitoring reports."""
    await projects_service.delete_project(project_id, user)
    return {"status": "deleted"}


@router.get("/{project_id}/timeline")
async def project_timeline(
    project_id: PydanticObjectId,
    user: User = Depends(require_role(Role.MANAGER, Role.VERIFIER)),
):
    events = await projects_service.project_timeline(project_id, user)
    return {"timeline": [{**e, "at": e["at"].isoformat()} for e in events]}
