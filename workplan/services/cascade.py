"""
Cascade orchestrator for workplan.

Subtree-wide operations: assigning a task together with all of its
descendants, and deleting a task together with its subtree.
"""

from collections import deque
from datetime import datetime
from typing import Deque, List, Optional, Union
from uuid import UUID, uuid4

from workplan.database import LeafItemORM, TaskORM
from workplan.logging_config import get_logger
from workplan.models import LeafItemStatus, TaskStatus
from workplan.services.membership import MembershipValidator
from workplan.services.notifications import ENTITY_LEAF_ITEM, ENTITY_TASK, Notifier
from workplan.services.progress_engine import ProgressAggregationEngine
from workplan.services.task_store import TaskStore
from workplan.services.tree_integrity import TreeIntegrityChecker

logger = get_logger(__name__)

# Statuses reset to Pending when a task changes hands
_RESET_ON_REASSIGN = (TaskStatus.ACCEPTED.value, TaskStatus.REJECTED.value)


def normalize_member_id(member_id: Optional[str]) -> Optional[str]:
    """Strip a member id; blank ids mean unassigned."""
    if member_id is None:
        return None
    return member_id.strip() or None


def apply_assignee(task_orm: TaskORM, member_id: Optional[str], assigner_id: Optional[str]) -> Optional[str]:
    """
    Point a task at a new assignee.

    A task that changes hands goes back to Pending if the previous assignee
    had already accepted or rejected it.

    Returns:
        The previous assignee
    """
    previous = task_orm.assigned_member_id
    task_orm.assigned_member_id = member_id
    task_orm.assigned_by_id = assigner_id
    if previous != member_id and task_orm.status in _RESET_ON_REASSIGN:
        task_orm.status = TaskStatus.PENDING.value
        task_orm.accepted_at = None
        task_orm.rejection_reason = None
    task_orm.updated_at = datetime.utcnow()
    return previous


class CascadeOrchestrator:
    """Subtree assignment and deletion."""

    def __init__(
        self,
        store: TaskStore,
        notifier: Notifier,
        membership: Optional[MembershipValidator] = None,
        integrity: Optional[TreeIntegrityChecker] = None,
        engine: Optional[ProgressAggregationEngine] = None,
    ) -> None:
        self.store = store
        self.notifier = notifier
        self.membership = membership or MembershipValidator(store)
        self.integrity = integrity or TreeIntegrityChecker(store)
        self.engine = engine or ProgressAggregationEngine(store)

    # ==============================================================================
    # ASSIGNMENT
    # ==============================================================================

    async def _create_companion_item(
        self,
        task_orm: TaskORM,
        member_id: str,
        assigner_id: Optional[str],
    ) -> LeafItemORM:
        """Attach an "Action Item for <title>" leaf item to a freshly assigned task."""
        now = datetime.utcnow()
        item_orm = LeafItemORM(
            id=str(uuid4()),
            task_id=task_orm.id,
            title=f"Action Item for {task_orm.title}"[:250],
            description=None,
            weight=max(1, min(100, task_orm.weight)),
            progress=0.0,
            status=LeafItemStatus.PENDING.value,
            assignee_id=member_id,
            assigned_by_id=assigner_id,
            due_date=task_orm.due_date,
            created_at=now,
            updated_at=now,
        )
        self.store.add(item_orm)
        await self.store.flush()
        logger.debug(f"Companion leaf item created: item_id={item_orm.id}, task_id={task_orm.id}")

        due = f" due on {task_orm.due_date:%Y-%m-%d}" if task_orm.due_date else ""
        await self.notifier.notify(
            member_id,
            "New Action Item Created",
            f"A new action item '{item_orm.title}' has been created for you{due}.",
            ENTITY_LEAF_ITEM,
            item_orm.id,
        )
        return item_orm

    async def assign_task(
        self,
        task_id: Union[UUID, str],
        member_id: Optional[str],
        assigner_id: Optional[str],
    ) -> TaskORM:
        """
        Assign a task and every descendant subtask to the same member.

        Existing subtask assignees are overwritten. Each newly assigned
        subtask receives a companion leaf item; the task itself only when it
        is flagged ``is_auto_todo``. Unassigning (``member_id`` None) clears
        the whole subtree without creating leaf items.

        Args:
            task_id: Task at the top of the cascade
            member_id: New assignee, None or blank to unassign
            assigner_id: Member performing the assignment

        Returns:
            The updated top task

        Raises:
            TaskNotFoundError: If the task does not exist
            NotAMemberError: If the member is not on the task's project
        """
        task_orm = await self.store.get_task_or_raise(task_id)
        await self.membership.validate_assignee(member_id, task_orm.assignment_id)
        member_id = normalize_member_id(member_id)

        logger.debug(f"Assigning task {task_orm.id} to {member_id} (by {assigner_id})")

        previous = apply_assignee(task_orm, member_id, assigner_id)
        await self.store.flush()
        await self.notifier.notify_reassignment(member_id, previous, task_orm.title, task_orm.id)

        if member_id and task_orm.is_auto_todo:
            await self._create_companion_item(task_orm, member_id, assigner_id)

        queue: Deque[TaskORM] = deque([task_orm])
        reassigned = 0
        while queue:
            parent = queue.popleft()
            for subtask in await self.store.find_children(parent.id):
                previous = apply_assignee(subtask, member_id, assigner_id)
                await self.store.flush()
                reassigned += 1
                if member_id:
                    await self._create_companion_item(subtask, member_id, assigner_id)
                await self.notifier.notify_reassignment(
                    member_id,
                    previous,
                    subtask.title,
                    subtask.id,
                    noun="subtask",
                    context=f" under task '{parent.title}'",
                )
                queue.append(subtask)

        if reassigned and task_orm.status == TaskStatus.PENDING.value:
            task_orm.status = TaskStatus.ACCEPTED.value
            task_orm.accepted_at = datetime.utcnow()
            await self.store.flush()

        logger.info(
            f"Task assigned: task_id={task_orm.id}, member={member_id}, "
            f"subtasks_reassigned={reassigned}"
        )
        return task_orm

    # ==============================================================================
    # DELETION
    # ==============================================================================

    async def _collect_subtree(self, root: TaskORM) -> List[TaskORM]:
        """All tasks of a subtree in breadth-first order, root first."""
        ordered = [root]
        index = 0
        while index < len(ordered):
            ordered.extend(await self.store.find_children(ordered[index].id))
            index += 1
        return ordered

    async def delete_task(self, task_id: Union[UUID, str]) -> bool:
        """
        Delete a task and its entire subtree, then re-aggregate the former parent.

        Returns:
            True if the task was deleted, False if it did not exist
        """
        task_orm = await self.store.get_task(task_id)
        if task_orm is None:
            logger.warning(f"Delete skipped: task {task_id} not found")
            return False

        task_id = task_orm.id
        title = task_orm.title
        parent_id = task_orm.parent_id
        assignee = task_orm.assigned_member_id

        subtree = await self._collect_subtree(task_orm)
        milestone_ids = {node.milestone_id for node in subtree if node.milestone_id}
        for node in reversed(subtree):
            for item_orm in await self.store.find_leaf_items(node.id):
                await self.store.delete(item_orm)
            await self.store.delete(node)
            await self.store.flush()

        logger.info(f"Task deleted: task_id={task_id}, subtree_size={len(subtree)}")

        if parent_id is not None:
            await self.integrity.refresh_leaf_flag(parent_id)
            await self.store.flush()
            await self.engine.recompute_ancestors(parent_id)
        for milestone_id in sorted(milestone_ids):
            await self.engine.recompute_milestone(milestone_id)

        await self.notifier.notify(
            assignee,
            "Task Deleted",
            f"Task '{title}' has been deleted.",
            ENTITY_TASK,
            task_id,
        )
        return True
