"""
Membership validation for workplan.

Checks that a task, its parent and an assignee candidate all belong to the
same project team. The project of a task is resolved through the assignment
it was created under.
"""

from typing import Optional, Union
from uuid import UUID

from workplan.exceptions import (
    InconsistentHierarchyError,
    NotAMemberError,
)
from workplan.logging_config import get_logger
from workplan.services.task_store import TaskStore

logger = get_logger(__name__)


class MembershipValidator:
    """Project-membership checks run before any task mutation."""

    def __init__(self, store: TaskStore) -> None:
        self.store = store

    async def resolve_project_id(self, assignment_id: Union[UUID, str]) -> str:
        """
        Resolve the project an assignment belongs to.

        Raises:
            AssignmentNotFoundError: If the assignment does not exist
        """
        assignment = await self.store.get_assignment_or_raise(assignment_id)
        return assignment.project_id

    async def validate_parent(
        self,
        child_assignment_id: Union[UUID, str],
        parent_id: Optional[Union[UUID, str]],
    ) -> None:
        """
        Validate that a parent task lives in the same project as the child.

        Args:
            child_assignment_id: Assignment context of the child task
            parent_id: Proposed parent task, None for root tasks

        Raises:
            AssignmentNotFoundError: If the child's assignment does not exist
            InconsistentHierarchyError: If the parent is missing, has no
                resolvable project, or belongs to a different project
        """
        if parent_id is None:
            return

        child_project_id = await self.resolve_project_id(child_assignment_id)

        parent = await self.store.get_task(parent_id)
        if parent is None:
            raise InconsistentHierarchyError(f"Parent task with id {parent_id} not found")

        parent_assignment = await self.store.get_assignment(parent.assignment_id)
        if parent_assignment is None:
            raise InconsistentHierarchyError(
                f"Project assignment for parent task {parent_id} is missing; "
                f"cannot validate project consistency"
            )

        if parent_assignment.project_id != child_project_id:
            logger.warning(
                f"Parent project mismatch: parent_id={parent_id}, "
                f"parent_project={parent_assignment.project_id}, child_project={child_project_id}"
            )
            raise InconsistentHierarchyError(
                f"Parent task {parent_id} (project {parent_assignment.project_id}) must belong "
                f"to the same project as the current task (project {child_project_id})"
            )

    async def validate_assignee(
        self,
        member_id: Optional[str],
        assignment_id: Union[UUID, str],
    ) -> None:
        """
        Validate that a member may be assigned to a task of the given assignment.

        A None or blank member is always valid (unassign).

        Raises:
            AssignmentNotFoundError: If the task's assignment does not exist
            NotAMemberError: If the member holds no active assignment on the project
        """
        trimmed = member_id.strip() if member_id else None
        if not trimmed:
            return

        project_id = await self.resolve_project_id(assignment_id)
        assignment = await self.store.find_assignment(project_id, trimmed)
        if assignment is None or not assignment.is_active:
            logger.warning(f"Member '{trimmed}' is not an active member of project {project_id}")
            raise NotAMemberError(trimmed, project_id)
