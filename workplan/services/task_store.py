"""
Task store for workplan.

Thin data-access layer over an AsyncSession: point lookups, child-collection
loading and atomic flushes for tasks, leaf items, milestones and project
assignments.
All aggregation services read the tree through this class.
"""

from contextlib import contextmanager
from typing import List, Optional, Union
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from workplan.database import AssignmentORM, LeafItemORM, MilestoneORM, ProjectORM, TaskORM
from workplan.exceptions import (
    AssignmentNotFoundError,
    ConcurrentModificationError,
    LeafItemNotFoundError,
    MilestoneNotFoundError,
    ProjectNotFoundError,
    TaskNotFoundError,
)
from workplan.logging_config import get_logger

logger = get_logger(__name__)

Id = Union[UUID, str]


@contextmanager
def _translate_conflicts():
    """Surface optimistic-concurrency failures as ConcurrentModificationError."""
    try:
        yield
    except StaleDataError as e:
        logger.warning(f"Concurrent modification detected: {e}")
        raise ConcurrentModificationError(
            "The task tree was modified by another request; resubmit the operation"
        ) from e


class TaskStore:
    """
    Persistence gateway for the task hierarchy.

    The store never commits; the enclosing DatabaseManager.get_session()
    block owns the transaction so a mutation and its upward propagation
    land together.
    """

    def __init__(self, session: AsyncSession) -> None:
        """
        Initialize the store with a database session.

        Args:
            session: Active async database session
        """
        self.session = session

    async def _scalar(self, query):
        with _translate_conflicts():
            result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def _scalars(self, query) -> list:
        with _translate_conflicts():
            result = await self.session.execute(query)
        return list(result.scalars().all())

    # ==============================================================================
    # TASKS
    # ==============================================================================

    async def get_task(self, task_id: Id) -> Optional[TaskORM]:
        """Get a task by id, or None."""
        return await self._scalar(select(TaskORM).where(TaskORM.id == str(task_id)))

    async def get_task_or_raise(self, task_id: Id) -> TaskORM:
        """
        Get a task by ID or raise an exception.

        Raises:
            TaskNotFoundError: If task does not exist
        """
        task_orm = await self.get_task(task_id)
        if task_orm is None:
            raise TaskNotFoundError(f"Task with id {task_id} not found")
        return task_orm

    async def get_parent_id(self, task_id: Id) -> Optional[str]:
        """Return only the parent_id column of a task (None for roots or unknown ids)."""
        return await self._scalar(
            select(TaskORM.parent_id).where(TaskORM.id == str(task_id))
        )

    async def find_children(self, parent_id: Id) -> List[TaskORM]:
        """Direct subtasks of a task in creation order."""
        return await self._scalars(
            select(TaskORM)
            .where(TaskORM.parent_id == str(parent_id))
            .order_by(TaskORM.created_at, TaskORM.id)
        )

    async def count_children(self, parent_id: Id) -> int:
        with _translate_conflicts():
            result = await self.session.execute(
                select(func.count()).select_from(TaskORM).where(TaskORM.parent_id == str(parent_id))
            )
        return result.scalar_one()

    async def find_root_tasks(self, project_id: Id) -> List[TaskORM]:
        """Root tasks whose assignment belongs to the project."""
        return await self._scalars(
            select(TaskORM)
            .join(AssignmentORM, AssignmentORM.id == TaskORM.assignment_id)
            .where(AssignmentORM.project_id == str(project_id))
            .where(TaskORM.parent_id.is_(None))
            .order_by(TaskORM.created_at, TaskORM.id)
        )

    # ==============================================================================
    # LEAF ITEMS
    # ==============================================================================

    async def get_leaf_item(self, item_id: Id) -> Optional[LeafItemORM]:
        return await self._scalar(select(LeafItemORM).where(LeafItemORM.id == str(item_id)))

    async def get_leaf_item_or_raise(self, item_id: Id) -> LeafItemORM:
        """
        Get a leaf item by ID or raise an exception.

        Raises:
            LeafItemNotFoundError: If the leaf item does not exist
        """
        item_orm = await self.get_leaf_item(item_id)
        if item_orm is None:
            raise LeafItemNotFoundError(f"Leaf item with id {item_id} not found")
        return item_orm

    async def find_leaf_items(self, task_id: Id) -> List[LeafItemORM]:
        """Leaf items attached directly to a task in creation order."""
        return await self._scalars(
            select(LeafItemORM)
            .where(LeafItemORM.task_id == str(task_id))
            .order_by(LeafItemORM.created_at, LeafItemORM.id)
        )

    # ==============================================================================
    # MILESTONES
    # ==============================================================================

    async def get_milestone(self, milestone_id: Id) -> Optional[MilestoneORM]:
        return await self._scalar(
            select(MilestoneORM).where(MilestoneORM.id == str(milestone_id))
        )

    async def get_milestone_or_raise(self, milestone_id: Id) -> MilestoneORM:
        """
        Raises:
            MilestoneNotFoundError: If the milestone does not exist
        """
        milestone = await self.get_milestone(milestone_id)
        if milestone is None:
            raise MilestoneNotFoundError(f"Milestone with id {milestone_id} not found")
        return milestone

    async def find_milestones_by_project(self, project_id: Id) -> List[MilestoneORM]:
        """Milestones of a project ordered by due date."""
        return await self._scalars(
            select(MilestoneORM)
            .where(MilestoneORM.project_id == str(project_id))
            .order_by(MilestoneORM.due_date, MilestoneORM.id)
        )

    async def find_tasks_by_milestone(self, milestone_id: Id) -> List[TaskORM]:
        """Every task linked to a milestone, at any depth."""
        return await self._scalars(
            select(TaskORM)
            .where(TaskORM.milestone_id == str(milestone_id))
            .order_by(TaskORM.created_at, TaskORM.id)
        )

    # ==============================================================================
    # PROJECTS AND ASSIGNMENTS
    # ==============================================================================

    async def get_project_or_raise(self, project_id: Id) -> ProjectORM:
        """
        Raises:
            ProjectNotFoundError: If project does not exist
        """
        project = await self._scalar(select(ProjectORM).where(ProjectORM.id == str(project_id)))
        if project is None:
            raise ProjectNotFoundError(f"Project with id {project_id} not found")
        return project

    async def get_assignment(self, assignment_id: Id) -> Optional[AssignmentORM]:
        return await self._scalar(
            select(AssignmentORM).where(AssignmentORM.id == str(assignment_id))
        )

    async def get_assignment_or_raise(self, assignment_id: Id) -> AssignmentORM:
        """
        Raises:
            AssignmentNotFoundError: If assignment does not exist
        """
        assignment = await self.get_assignment(assignment_id)
        if assignment is None:
            raise AssignmentNotFoundError(f"Assignment with id {assignment_id} not found")
        return assignment

    async def find_assignments_by_project(
        self,
        project_id: Id,
        active_only: bool = True
    ) -> List[AssignmentORM]:
        """Roster of a project, active assignments only by default."""
        query = select(AssignmentORM).where(AssignmentORM.project_id == str(project_id))
        if active_only:
            query = query.where(AssignmentORM.is_active.is_(True))
        return await self._scalars(query.order_by(AssignmentORM.created_at))

    async def find_assignment(self, project_id: Id, member_id: str) -> Optional[AssignmentORM]:
        """The (project, member) assignment row regardless of its active flag."""
        return await self._scalar(
            select(AssignmentORM)
            .where(AssignmentORM.project_id == str(project_id))
            .where(AssignmentORM.member_id == member_id)
        )

    # ==============================================================================
    # WRITES
    # ==============================================================================

    def add(self, instance) -> None:
        self.session.add(instance)

    async def delete(self, instance) -> None:
        await self.session.delete(instance)

    async def flush(self) -> None:
        """
        Write pending changes to the database inside the current transaction.

        Raises:
            ConcurrentModificationError: If a row's version changed underneath us
        """
        with _translate_conflicts():
            await self.session.flush()
