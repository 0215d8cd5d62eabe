"""Project registry: deletion guard, credits view and timeline."""

import pytest
import pytest_asyncio

from bluecarbon.core.exceptions import AuthorizationError, InvalidStateError
from bluecarbon.models.project import Project
from bluecarbon.models.user import Role
from bluecarbon.services import projects as projects_service
from bluecarbon.services import reports as reports_service
from bluecarbon.services import verification as verification_service
from conftest import make_user, sample_project_data, sample_raw_data

pytestmark = pytest.mark.asyncio


@pytest_asyncio.fixture
async def project(manager):
    return await projects_service.create_project(manager, sample_project_data())


async def test_delete_empty_project(project, manager):
    await projects_service.delete_project(project.id, manager)
    assert await Project.get(project.id) is None


async def test_delete_by_other_manager_is_forbidden(project):
    other = await make_user(Role.MANAGER)
    with pytest.raises(AuthorizationError):
        await projects_service.delete_project(project.id, other)


async def test_report_arriving_during_delete_keeps_project(project, manager, monkeypatch):
    answers = iter([False, True])

    async def has_reports(project_id):
        return next(answers)

    monkeypatch.setattr(projects_service, "_has_reports", has_reports)
    with pytest.raises(InvalidStateError):
        await projects_service.delete_project(project.id, manager)
    restored = await Project.get(project.id)
    assert restored.name == project.name


async def test_manager_projects_with_credits(project, manager, verifier, scorer):
    empty = await projects_service.create_project(manager, {**sample_project_data(), "name": "Chilika Seagrass"})
    report = await reports_service.submit_report(project.id, sample_raw_data(), manager, scorer=scorer)
    _, batch = await verification_service.decide(report.id, verifier, True)

    rows = {row["project"].id: row for row in await projects_service.list_manager_projects_with_credits(str(manager.id))}
    assert [b.id for b in rows[project.id]["batches"]] == [batch.id]
    assert rows[project.id]["credits_issued"] == 80
    assert rows[project.id]["credits_available"] == 80
    assert rows[empty.id]["batches"] == []
    assert rows[empty.id]["credits_issued"] == 0


async def test_timeline_follows_report_to_batch(project, manager, verifier, scorer):
    report = await reports_service.submit_report(project.id, sample_raw_data(), manager, scorer=scorer)
    _, batch = await verification_service.decide(report.id, verifier, True, notes="canopy verified")

    events = await projects_service.project_timeline(project.id, verifier)
    assert [e["type"] for e in events] == ["registered", "report_submitted", "report_approved", "credits_minted"]
    assert events[2]["notes"] == "canopy verified"
    assert events[3]["batch_id"] == str(batch.id)
    assert events[3]["amount"] == 80


async def test_timeline_hidden_from_other_organizations(project):
    outsider = await make_user(Role.MANAGER, organization="Other NGO")
    with pytest.raises(AuthorizationError):
        await projects_service.project_timeline(project.id, outsider)
