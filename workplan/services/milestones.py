"""
Milestone service for workplan.

Milestones are dated checkpoints of a project. A task linked to a milestone
must belong to the same project and be scheduled inside the milestone's
window. Milestone progress is derived by the aggregation engine whenever a
linked task's progress changes.
"""

from datetime import datetime
from typing import List, Optional, Union
from uuid import UUID, uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from workplan.database import MilestoneORM
from workplan.exceptions import (
    InconsistentHierarchyError,
    ValidationError,
    WorkplanError,
)
from workplan.logging_config import get_logger
from workplan.models import Milestone
from workplan.services.mappers import milestone_to_model
from workplan.services.membership import MembershipValidator
from workplan.services.progress_engine import ProgressAggregationEngine
from workplan.services.task_store import TaskStore

logger = get_logger(__name__)

Id = Union[UUID, str]


class MilestoneValidator:
    """Checks run before a task is linked to a milestone or rescheduled."""

    def __init__(self, store: TaskStore, membership: Optional[MembershipValidator] = None) -> None:
        self.store = store
        self.membership = membership or MembershipValidator(store)

    async def validate_task(
        self,
        milestone_id: Optional[Id],
        assignment_id: Id,
        start_date: Optional[datetime],
        due_date: Optional[datetime],
    ) -> None:
        """
        Validate a task's milestone link and schedule.

        A None milestone is always valid.

        Raises:
            MilestoneNotFoundError: If the milestone does not exist
            InconsistentHierarchyError: If the milestone belongs to another project
            ValidationError: If the task starts before or ends after the milestone
        """
        if milestone_id is None:
            return

        milestone = await self.store.get_milestone_or_raise(milestone_id)
        project_id = await self.membership.resolve_project_id(assignment_id)
        if milestone.project_id != project_id:
            logger.warning(
                f"Milestone project mismatch: milestone_id={milestone_id}, "
                f"milestone_project={milestone.project_id}, task_project={project_id}"
            )
            raise InconsistentHierarchyError(
                f"Milestone {milestone_id} and task must belong to the same project"
            )

        window_start = milestone.start_date
        if start_date is not None and window_start is not None and start_date < window_start:
            raise ValidationError("start_date", "task cannot start before its milestone")
        if due_date is not None and due_date > milestone.due_date:
            raise ValidationError("due_date", "task cannot end after its milestone")


class MilestoneService:
    """Service layer for project milestones."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self.store = TaskStore(session)
        self.engine = ProgressAggregationEngine(self.store)

    async def create_milestone(
        self,
        project_id: Id,
        name: str,
        due_date: datetime,
        start_date: Optional[datetime] = None,
        description: Optional[str] = None,
    ) -> Milestone:
        """
        Create a milestone on a project.

        Raises:
            ProjectNotFoundError: If the project does not exist
            ValidationError: If the name is blank or the window is inverted
        """
        if not name or not name.strip():
            raise ValidationError("name", "milestone name is required")
        if due_date is None:
            raise ValidationError("due_date", "milestone due date is required")
        if start_date is not None and start_date > due_date:
            raise ValidationError("start_date", "start date must be on or before the due date")

        try:
            await self.store.get_project_or_raise(project_id)
            now = datetime.utcnow()
            milestone_orm = MilestoneORM(
                id=str(uuid4()),
                project_id=str(project_id),
                name=name.strip(),
                description=description,
                start_date=start_date,
                due_date=due_date,
                progress=0.0,
                created_at=now,
                updated_at=now,
            )
            self.store.add(milestone_orm)
            await self.store.flush()
            logger.info(
                f"Created milestone: id={milestone_orm.id}, name='{milestone_orm.name}', "
                f"project_id={project_id}"
            )
            return milestone_to_model(milestone_orm)

        except WorkplanError:
            raise
        except Exception as e:
            logger.error(f"Failed to create milestone: {e}", exc_info=True)
            raise

    async def get_milestone(self, milestone_id: Id) -> Milestone:
        """
        Raises:
            MilestoneNotFoundError: If the milestone does not exist
        """
        return milestone_to_model(await self.store.get_milestone_or_raise(milestone_id))

    async def get_milestones_for_project(self, project_id: Id) -> List[Milestone]:
        """
        Raises:
            ProjectNotFoundError: If the project does not exist
        """
        await self.store.get_project_or_raise(project_id)
        rows = await self.store.find_milestones_by_project(project_id)
        return [milestone_to_model(row) for row in rows]

    async def refresh_progress(self, milestone_id: Id) -> Milestone:
        """
        Re-derive a milestone's progress from its linked tasks.

        Raises:
            MilestoneNotFoundError: If the milestone does not exist
        """
        await self.store.get_milestone_or_raise(milestone_id)
        await self.engine.recompute_milestone(milestone_id)
        return await self.get_milestone(milestone_id)
