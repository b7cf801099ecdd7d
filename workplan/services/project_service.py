"""
Project service for workplan.

Manages projects and their rosters. Membership checks elsewhere only trust
active assignments, so deactivating an assignment is how a member leaves a
project.
"""

from datetime import datetime
from typing import List, Optional, Union
from uuid import UUID, uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from workplan.database import AssignmentORM, ProjectORM
from workplan.exceptions import AssignmentNotFoundError, ValidationError, WorkplanError
from workplan.logging_config import get_logger
from workplan.models import Assignment, Project
from workplan.services.mappers import assignment_to_model, project_to_model
from workplan.services.task_store import TaskStore

logger = get_logger(__name__)

Id = Union[UUID, str]


class ProjectService:
    """Service layer for projects and project assignments."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self.store = TaskStore(session)

    async def create_project(self, name: str, department: Optional[str] = None) -> Project:
        """
        Create a new project.

        Raises:
            ValidationError: If the name is blank
        """
        if not name or not name.strip():
            raise ValidationError("name", "project name is required")

        try:
            project = Project(id=uuid4(), name=name.strip(), department=department)
            self.store.add(
                ProjectORM(
                    id=str(project.id),
                    name=project.name,
                    department=project.department,
                    created_at=project.created_at,
                )
            )
            await self.store.flush()
            logger.info(f"Created project: id={project.id}, name='{project.name}'")
            return project
        except Exception as e:
            logger.error(f"Failed to create project: {e}", exc_info=True)
            raise

    async def get_project(self, project_id: Id) -> Project:
        """
        Raises:
            ProjectNotFoundError: If project does not exist
        """
        return project_to_model(await self.store.get_project_or_raise(project_id))

    async def assign_member(
        self,
        project_id: Id,
        member_id: str,
        role: str = "contributor",
    ) -> Assignment:
        """
        Put a member on a project's roster.

        An existing (project, member) row is reactivated and its role
        updated instead of inserting a duplicate.

        Raises:
            ProjectNotFoundError: If project does not exist
            ValidationError: If member_id is blank
        """
        member_id = (member_id or "").strip()
        if not member_id:
            raise ValidationError("member_id", "member id is required")

        try:
            await self.store.get_project_or_raise(project_id)
            existing = await self.store.find_assignment(project_id, member_id)
            if existing is not None:
                existing.is_active = True
                existing.role = role
                await self.store.flush()
                logger.info(f"Reactivated assignment: project_id={project_id}, member={member_id}")
                return assignment_to_model(existing)

            assignment_orm = AssignmentORM(
                id=str(uuid4()),
                project_id=str(project_id),
                member_id=member_id,
                role=role,
                is_active=True,
                created_at=datetime.utcnow(),
            )
            self.store.add(assignment_orm)
            await self.store.flush()
            logger.info(f"Assigned member: project_id={project_id}, member={member_id}, role={role}")
            return assignment_to_model(assignment_orm)

        except WorkplanError:
            raise
        except Exception as e:
            logger.error(f"Failed to assign member {member_id}: {e}", exc_info=True)
            raise

    async def deactivate_assignment(self, project_id: Id, member_id: str) -> Assignment:
        """
        Take a member off a project's active roster.

        Raises:
            AssignmentNotFoundError: If the member was never on the project
        """
        assignment_orm = await self.store.find_assignment(project_id, member_id.strip())
        if assignment_orm is None:
            raise AssignmentNotFoundError(
                f"Member '{member_id}' has no assignment on project {project_id}"
            )
        assignment_orm.is_active = False
        await self.store.flush()
        logger.info(f"Deactivated assignment: project_id={project_id}, member={member_id}")
        return assignment_to_model(assignment_orm)

    async def get_assignments_for_project(
        self,
        project_id: Id,
        active_only: bool = True,
    ) -> List[Assignment]:
        """
        Raises:
            ProjectNotFoundError: If project does not exist
        """
        await self.store.get_project_or_raise(project_id)
        rows = await self.store.find_assignments_by_project(project_id, active_only=active_only)
        return [assignment_to_model(row) for row in rows]
