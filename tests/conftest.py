"""
Pytest configuration and fixtures for workplan tests.

Provides database fixtures, a project team with assignments, service
factories and a notification sink that records what was sent.
"""

import pytest
import pytest_asyncio

from workplan.database import DatabaseManager
from workplan.rules_config import HierarchyRules
from workplan.services.leaf_item_service import LeafItemService
from workplan.services.milestones import MilestoneService
from workplan.services.notifications import Notifier
from workplan.services.project_service import ProjectService
from workplan.services.task_service import TaskService

from tests.helpers import LEAD, ALICE, BOB, OUTSIDER


class RecordingSink:
    """Notification sink that keeps every delivered message in memory."""

    def __init__(self):
        self.sent = []

    async def notify(self, recipient_id, subject, body, related_entity_type, related_entity_id):
        self.sent.append(
            {
                "recipient_id": recipient_id,
                "subject": subject,
                "body": body,
                "related_entity_type": related_entity_type,
                "related_entity_id": related_entity_id,
            }
        )

    def subjects_for(self, recipient_id):
        return [n["subject"] for n in self.sent if n["recipient_id"] == recipient_id]


class FailingSink:
    """Notification sink whose delivery always fails."""

    async def notify(self, recipient_id, subject, body, related_entity_type, related_entity_id):
        raise ConnectionError("mail relay unreachable")


@pytest_asyncio.fixture
async def db_manager():
    """
    Create an in-memory SQLite database for testing.

    Yields:
        DatabaseManager instance with in-memory database
    """
    manager = DatabaseManager("sqlite+aiosqlite:///:memory:")
    await manager.initialize()

    yield manager

    await manager.close()


@pytest_asyncio.fixture
async def db_session(db_manager):
    """
    Provide a database session for tests.

    Yields:
        AsyncSession for database operations
    """
    async with db_manager.get_session() as session:
        yield session


@pytest.fixture
def sink():
    """Recording notification sink."""
    return RecordingSink()


@pytest.fixture
def notifier(sink):
    """Notifier wired to the recording sink."""
    return Notifier(sink)


@pytest.fixture
def rules():
    """Default hierarchy rules."""
    return HierarchyRules()


@pytest.fixture
def task_service(db_session, notifier, rules):
    return TaskService(db_session, notifier=notifier, rules=rules)


@pytest.fixture
def leaf_item_service(db_session, notifier, rules):
    return LeafItemService(db_session, notifier=notifier, rules=rules)


@pytest.fixture
def milestone_service(db_session):
    return MilestoneService(db_session)


@pytest_asyncio.fixture
async def team(db_session):
    """
    Create a project with an active team and a second, unrelated project.

    Returns:
        Dictionary with project and assignment ids:
            project_id, assignment_id (the lead's), alice_assignment_id,
            other_project_id, other_assignment_id
    """
    projects = ProjectService(db_session)

    project = await projects.create_project("Website Relaunch", department="Engineering")
    lead = await projects.assign_member(project.id, LEAD, role="team_lead")
    alice = await projects.assign_member(project.id, ALICE)
    await projects.assign_member(project.id, BOB)

    other = await projects.create_project("Data Warehouse")
    other_lead = await projects.assign_member(other.id, OUTSIDER, role="team_lead")

    return {
        "project_id": project.id,
        "assignment_id": lead.id,
        "alice_assignment_id": alice.id,
        "other_project_id": other.id,
        "other_assignment_id": other_lead.id,
    }


@pytest_asyncio.fixture
async def root_task(task_service, team):
    """A root task with weight 100 created by the lead."""
    return await task_service.create_task(
        title="Launch new website",
        assignment_id=team["assignment_id"],
        weight=100,
        creator_id=LEAD,
    )
