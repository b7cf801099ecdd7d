"""
Tests for ProjectService - projects and rosters.
"""

from uuid import uuid4

import pytest

from workplan.exceptions import AssignmentNotFoundError, ProjectNotFoundError, ValidationError
from workplan.services.project_service import ProjectService


@pytest.fixture
def projects(db_session):
    return ProjectService(db_session)


class TestProjects:
    """Tests for project creation and lookup."""

    @pytest.mark.asyncio
    async def test_create_and_get_project(self, projects):
        created = await projects.create_project("  Website Relaunch ", department="Engineering")

        fetched = await projects.get_project(created.id)
        assert fetched.name == "Website Relaunch"
        assert fetched.department == "Engineering"

    @pytest.mark.asyncio
    async def test_blank_name_rejected(self, projects):
        with pytest.raises(ValidationError):
            await projects.create_project("   ")

    @pytest.mark.asyncio
    async def test_missing_project(self, projects):
        with pytest.raises(ProjectNotFoundError):
            await projects.get_project(uuid4())


class TestRoster:
    """Tests for assigning and deactivating members."""

    @pytest.mark.asyncio
    async def test_assign_member(self, projects):
        project = await projects.create_project("Website Relaunch")

        assignment = await projects.assign_member(project.id, " alice ", role="designer")

        assert assignment.member_id == "alice"
        assert assignment.role == "designer"
        assert assignment.is_active is True

    @pytest.mark.asyncio
    async def test_reassigning_reactivates_without_duplicate(self, projects):
        project = await projects.create_project("Website Relaunch")
        first = await projects.assign_member(project.id, "alice")
        await projects.deactivate_assignment(project.id, "alice")

        assert await projects.get_assignments_for_project(project.id) == []

        again = await projects.assign_member(project.id, "alice", role="team_lead")

        assert again.id == first.id
        assert again.role == "team_lead"
        roster = await projects.get_assignments_for_project(project.id, active_only=False)
        assert len(roster) == 1

    @pytest.mark.asyncio
    async def test_assign_to_missing_project(self, projects):
        with pytest.raises(ProjectNotFoundError):
            await projects.assign_member(uuid4(), "alice")

    @pytest.mark.asyncio
    async def test_blank_member_rejected(self, projects):
        project = await projects.create_project("Website Relaunch")

        with pytest.raises(ValidationError):
            await projects.assign_member(project.id, "  ")

    @pytest.mark.asyncio
    async def test_deactivate_unknown_member(self, projects):
        project = await projects.create_project("Website Relaunch")

        with pytest.raises(AssignmentNotFoundError):
            await projects.deactivate_assignment(project.id, "nobody")
