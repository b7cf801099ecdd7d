"""
Task lifecycle state machine for workplan.

Leaf tasks move through Pending, Accepted and Rejected under the control of
their assignee. Once accepted, progress reports drive a task towards
WaitingForReview, where a reviewer either completes it or sends it back to
InProgress.

Checks always run in the same order: who is acting, what kind of task it
is, then which state it is in.
"""

from datetime import datetime
from typing import Optional, Union
from uuid import UUID

from workplan.database import TaskORM
from workplan.exceptions import (
    InvalidStateTransitionError,
    NotALeafError,
    NotAssignedError,
    ValidationError,
)
from workplan.logging_config import get_logger
from workplan.models import TaskStatus
from workplan.services.membership import MembershipValidator
from workplan.services.notifications import ENTITY_TASK, Notifier
from workplan.services.progress_engine import (
    PROGRESS_REPORTABLE_STATUSES,
    ProgressAggregationEngine,
)
from workplan.services.task_store import TaskStore

logger = get_logger(__name__)

ACCEPTABLE_FROM = (TaskStatus.PENDING, TaskStatus.REJECTED)
REJECTABLE_FROM = (TaskStatus.PENDING, TaskStatus.ACCEPTED)
REVIEWABLE_FROM = (TaskStatus.WAITING_FOR_REVIEW,)

COMPLETE_PROGRESS = 100.0


def require_reason(reason: Optional[str]) -> str:
    """
    Raises:
        ValidationError: If the rejection reason is missing or blank
    """
    if reason is None or not reason.strip():
        raise ValidationError("reason", "a rejection reason is required")
    return reason.strip()


class TaskLifecycle:
    """Assignee and reviewer transitions of a task."""

    def __init__(
        self,
        store: TaskStore,
        engine: ProgressAggregationEngine,
        notifier: Notifier,
        membership: Optional[MembershipValidator] = None,
    ) -> None:
        self.store = store
        self.engine = engine
        self.notifier = notifier
        self.membership = membership or MembershipValidator(store)

    # ==============================================================================
    # GUARDS
    # ==============================================================================

    @staticmethod
    def _require_assignee(task_orm: TaskORM, member_id: str) -> None:
        if not task_orm.assigned_member_id or task_orm.assigned_member_id != member_id:
            logger.warning(
                f"Transition refused: member '{member_id}' is not the assignee of task {task_orm.id}"
            )
            raise NotAssignedError(f"Task {task_orm.id}", member_id)

    @staticmethod
    def _require_leaf(task_orm: TaskORM) -> None:
        if not task_orm.is_leaf:
            raise NotALeafError(task_orm.id)

    @staticmethod
    def _require_status(task_orm: TaskORM, allowed: tuple, action: str) -> None:
        current = TaskStatus(task_orm.status)
        if current not in allowed:
            logger.warning(
                f"Illegal transition: task_id={task_orm.id}, status={current.value}, action={action}"
            )
            raise InvalidStateTransitionError(
                f"Task {task_orm.id}", current, allowed, action=action
            )

    def _set_status(self, task_orm: TaskORM, status: TaskStatus) -> None:
        logger.debug(f"Task {task_orm.id}: {task_orm.status} -> {status.value}")
        task_orm.status = status.value
        task_orm.updated_at = datetime.utcnow()

    # ==============================================================================
    # ASSIGNEE TRANSITIONS
    # ==============================================================================

    async def accept_task(self, task_id: Union[UUID, str], member_id: str) -> TaskORM:
        """
        Accept an assigned leaf task.

        Raises:
            TaskNotFoundError: If the task does not exist
            NotAssignedError: If member_id is not the task's assignee
            NotALeafError: If the task has subtasks
            InvalidStateTransitionError: If the task is not Pending or Rejected
        """
        task_orm = await self.store.get_task_or_raise(task_id)
        self._require_assignee(task_orm, member_id)
        self._require_leaf(task_orm)
        self._require_status(task_orm, ACCEPTABLE_FROM, "accepted")

        self._set_status(task_orm, TaskStatus.ACCEPTED)
        task_orm.accepted_at = datetime.utcnow()
        task_orm.rejection_reason = None
        await self.store.flush()
        logger.info(f"Task accepted: task_id={task_orm.id}, member={member_id}")

        await self.notifier.notify(
            task_orm.assigned_by_id,
            "Task Accepted",
            f"Task '{task_orm.title}' has been accepted by {member_id}.",
            ENTITY_TASK,
            task_orm.id,
        )
        return task_orm

    async def reject_task(
        self,
        task_id: Union[UUID, str],
        member_id: str,
        reason: Optional[str],
    ) -> TaskORM:
        """
        Reject an assigned leaf task with a reason.

        Raises:
            TaskNotFoundError: If the task does not exist
            NotAssignedError: If member_id is not the task's assignee
            NotALeafError: If the task has subtasks
            ValidationError: If the reason is blank
            InvalidStateTransitionError: If the task is not Pending or Accepted
        """
        task_orm = await self.store.get_task_or_raise(task_id)
        self._require_assignee(task_orm, member_id)
        self._require_leaf(task_orm)
        reason = require_reason(reason)
        self._require_status(task_orm, REJECTABLE_FROM, "rejected")

        self._set_status(task_orm, TaskStatus.REJECTED)
        task_orm.rejection_reason = reason
        await self.store.flush()
        logger.info(f"Task rejected: task_id={task_orm.id}, member={member_id}")

        await self.notifier.notify(
            task_orm.assigned_by_id,
            "Task Rejected",
            f"Task '{task_orm.title}' has been rejected by {member_id}. Reason: {reason}",
            ENTITY_TASK,
            task_orm.id,
        )
        return task_orm

    async def update_progress(
        self,
        task_id: Union[UUID, str],
        member_id: str,
        value: float,
    ) -> TaskORM:
        """
        Report progress on an accepted leaf task.

        Reporting 100 moves the task to WaitingForReview and tells the
        assigner that it is ready to be reviewed.

        Raises:
            TaskNotFoundError: If the task does not exist
            NotAMemberError: If member_id is no longer on the project
            NotAssignedError: If member_id is not the task's assignee
            NotALeafError: If the task has subtasks
            InvalidStateTransitionError: If the task is not Accepted or InProgress
            ValidationError: If value is outside [0, 100]
        """
        task_orm = await self.store.get_task_or_raise(task_id)
        await self.membership.validate_assignee(member_id, task_orm.assignment_id)
        self._require_assignee(task_orm, member_id)

        await self.engine.set_leaf_progress(task_orm, value)

        if task_orm.progress >= COMPLETE_PROGRESS:
            self._set_status(task_orm, TaskStatus.WAITING_FOR_REVIEW)
            await self.store.flush()
            await self.notifier.notify(
                task_orm.assigned_by_id,
                "Task Ready for Review",
                f"Task '{task_orm.title}' has reached 100% and is waiting for your review.",
                ENTITY_TASK,
                task_orm.id,
            )
        return task_orm

    async def submit_for_review(self, task_id: Union[UUID, str], member_id: str) -> TaskORM:
        """
        Hand a task whose rolled-up progress reached 100 over for review.

        Raises:
            NotAssignedError: If member_id is not the task's assignee
            InvalidStateTransitionError: If the task is not Accepted or InProgress
            ValidationError: If the task's progress is below 100
        """
        task_orm = await self.store.get_task_or_raise(task_id)
        self._require_assignee(task_orm, member_id)
        self._require_status(task_orm, PROGRESS_REPORTABLE_STATUSES, "submitted for review")
        if task_orm.progress < COMPLETE_PROGRESS:
            raise ValidationError(
                "progress",
                f"task must reach 100% before review, currently {task_orm.progress:.1f}%",
            )

        self._set_status(task_orm, TaskStatus.WAITING_FOR_REVIEW)
        await self.store.flush()
        logger.info(f"Task submitted for review: task_id={task_orm.id}")

        await self.notifier.notify(
            task_orm.assigned_by_id,
            "Task Ready for Review",
            f"Task '{task_orm.title}' has been submitted for review by {member_id}.",
            ENTITY_TASK,
            task_orm.id,
        )
        return task_orm

    # ==============================================================================
    # REVIEWER TRANSITIONS
    # ==============================================================================

    async def accept_completion(self, task_id: Union[UUID, str], reviewer_id: str) -> TaskORM:
        """
        Mark a task under review as completed.

        Raises:
            NotAMemberError: If the reviewer is not on the task's project
            InvalidStateTransitionError: If the task is not WaitingForReview
        """
        task_orm = await self.store.get_task_or_raise(task_id)
        await self.membership.validate_assignee(reviewer_id, task_orm.assignment_id)
        self._require_status(task_orm, REVIEWABLE_FROM, "completed")

        self._set_status(task_orm, TaskStatus.COMPLETED)
        task_orm.rejection_reason = None
        await self.store.flush()
        logger.info(f"Task completed: task_id={task_orm.id}, reviewer={reviewer_id}")

        await self.notifier.notify(
            task_orm.assigned_member_id,
            "Task Completed",
            f"Your task '{task_orm.title}' has been reviewed and marked as completed.",
            ENTITY_TASK,
            task_orm.id,
        )
        return task_orm

    async def reject_completion(
        self,
        task_id: Union[UUID, str],
        reviewer_id: str,
        reason: Optional[str],
    ) -> TaskORM:
        """
        Send a task under review back to InProgress.

        Raises:
            NotAMemberError: If the reviewer is not on the task's project
            ValidationError: If the reason is blank
            InvalidStateTransitionError: If the task is not WaitingForReview
        """
        task_orm = await self.store.get_task_or_raise(task_id)
        await self.membership.validate_assignee(reviewer_id, task_orm.assignment_id)
        reason = require_reason(reason)
        self._require_status(task_orm, REVIEWABLE_FROM, "sent back")

        self._set_status(task_orm, TaskStatus.IN_PROGRESS)
        task_orm.rejection_reason = reason
        await self.store.flush()
        logger.info(f"Task completion rejected: task_id={task_orm.id}, reviewer={reviewer_id}")

        await self.notifier.notify(
            task_orm.assigned_member_id,
            "Task Completion Rejected",
            f"Your task '{task_orm.title}' needs more work. Reason: {reason}",
            ENTITY_TASK,
            task_orm.id,
        )
        return task_orm
