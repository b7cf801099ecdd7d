"""
Progress aggregation engine for workplan.

A parent's progress is always the weight-weighted average of its direct
children (subtasks and leaf items together). When a leaf changes, each
ancestor up to the root is re-derived from its current children, so running
the walk twice yields the same values. Milestones touched by the walk are
refreshed at the end of it.
"""

from datetime import datetime
from typing import Iterable, List, Optional, Union
from uuid import UUID

from workplan.database import LeafItemORM, TaskORM
from workplan.exceptions import (
    InvalidStateTransitionError,
    NotALeafError,
    ValidationError,
)
from workplan.logging_config import get_logger
from workplan.models import LeafItemStatus, TaskStatus
from workplan.services.task_store import TaskStore
from workplan.services.tree_integrity import MAX_ANCESTOR_WALK
from workplan.services.weight_ledger import WeightBudgetLedger

logger = get_logger(__name__)

# Statuses in which the assignee may report progress on a leaf task
PROGRESS_REPORTABLE_STATUSES = (TaskStatus.ACCEPTED, TaskStatus.IN_PROGRESS)


def weighted_progress(children: Iterable) -> float:
    """
    Weighted average of child progress.

    Args:
        children: Objects exposing ``progress`` and ``weight``

    Returns:
        sum(progress * weight) / sum(weight), or 0.0 if the total weight is 0
    """
    total_weight = 0
    weighted_sum = 0.0
    for child in children:
        total_weight += child.weight
        weighted_sum += child.progress * child.weight
    if total_weight == 0:
        return 0.0
    return weighted_sum / total_weight


def validate_progress(value: float) -> float:
    """
    Raises:
        ValidationError: If value is not a number within [0, 100]
    """
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError("progress", f"progress must be a number, got {value!r}")
    if value < 0 or value > 100:
        raise ValidationError("progress", f"progress must be between 0 and 100, got {value}")
    return float(value)


class ProgressAggregationEngine:
    """
    Owner of the derived aggregate fields of the task tree.

    Lifecycle and cascade code never assign ``progress`` of parents or the
    rolled-up hours directly; they call into this engine instead.
    """

    def __init__(self, store: TaskStore, ledger: Optional[WeightBudgetLedger] = None) -> None:
        self.store = store
        self.ledger = ledger or WeightBudgetLedger(store)

    # ==============================================================================
    # LEAF UPDATES
    # ==============================================================================

    async def set_leaf_progress(self, task_orm: TaskORM, value: float) -> None:
        """
        Persist a leaf task's progress and re-aggregate its ancestors.

        Raises:
            ValidationError: If value is outside [0, 100]
            NotALeafError: If the task has subtasks
            InvalidStateTransitionError: If the task has not been accepted
        """
        value = validate_progress(value)
        if not task_orm.is_leaf:
            raise NotALeafError(task_orm.id)
        if TaskStatus(task_orm.status) not in PROGRESS_REPORTABLE_STATUSES:
            raise InvalidStateTransitionError(
                f"Task {task_orm.id}",
                TaskStatus(task_orm.status),
                PROGRESS_REPORTABLE_STATUSES,
                action="given progress",
            )

        task_orm.progress = value
        task_orm.updated_at = datetime.utcnow()
        await self.store.flush()
        logger.info(f"Leaf progress set: task_id={task_orm.id}, progress={value}")

        await self.recompute_progress(task_orm.parent_id)
        await self.recompute_milestone(task_orm.milestone_id)

    async def set_leaf_item_progress(self, item_orm: LeafItemORM, value: float) -> None:
        """
        Persist a leaf item's progress and re-aggregate its task chain.

        Raises:
            ValidationError: If value is outside [0, 100]
            InvalidStateTransitionError: If the item has not been accepted
        """
        value = validate_progress(value)
        if LeafItemStatus(item_orm.status) != LeafItemStatus.ACCEPTED:
            raise InvalidStateTransitionError(
                f"Leaf item {item_orm.id}",
                LeafItemStatus(item_orm.status),
                LeafItemStatus.ACCEPTED,
                action="given progress",
            )

        item_orm.progress = value
        item_orm.updated_at = datetime.utcnow()
        await self.store.flush()
        logger.info(f"Leaf item progress set: item_id={item_orm.id}, progress={value}")

        await self.recompute_progress(item_orm.task_id)

    # ==============================================================================
    # UPWARD WALKS
    # ==============================================================================

    async def recompute_progress(self, parent_id: Optional[Union[UUID, str]]) -> None:
        """
        Re-derive progress for a task and every ancestor above it.

        Each step reloads the current children and performs one bounded
        read-modify-write; the enclosing session transaction spans the walk.
        """
        current = str(parent_id) if parent_id is not None else None
        visited: List[str] = []
        milestone_ids: List[str] = []

        while current is not None and len(visited) < MAX_ANCESTOR_WALK:
            if current in visited:
                break
            visited.append(current)

            parent = await self.store.get_task(current)
            if parent is None:
                logger.warning(f"Progress recompute stopped: task {current} not found")
                break
            if parent.milestone_id and parent.milestone_id not in milestone_ids:
                milestone_ids.append(parent.milestone_id)

            subtasks = await self.store.find_children(current)
            leaf_items = await self.store.find_leaf_items(current)
            if subtasks or leaf_items:
                new_progress = weighted_progress([*subtasks, *leaf_items])
                if parent.progress != new_progress:
                    logger.debug(
                        f"Progress recomputed: task_id={current}, "
                        f"{parent.progress} -> {new_progress}"
                    )
                    parent.progress = new_progress
                    parent.updated_at = datetime.utcnow()
                    await self.store.flush()

            current = parent.parent_id

        logger.debug(f"Progress walk finished: visited={len(visited)} tasks")

        for milestone_id in milestone_ids:
            await self.recompute_milestone(milestone_id)

    async def recompute_estimated_hours(self, parent_id: Optional[Union[UUID, str]]) -> None:
        """
        Roll estimated hours up additively: a parent's estimate is the sum of
        its direct subtasks' estimates.
        """
        current = str(parent_id) if parent_id is not None else None
        visited: List[str] = []

        while current is not None and len(visited) < MAX_ANCESTOR_WALK:
            if current in visited:
                break
            visited.append(current)

            parent = await self.store.get_task(current)
            if parent is None:
                break

            subtasks = await self.store.find_children(current)
            if subtasks:
                total = sum(sub.estimated_hours or 0.0 for sub in subtasks)
                if parent.estimated_hours != total:
                    parent.estimated_hours = total
                    await self.store.flush()

            current = parent.parent_id

    async def recompute_milestone(self, milestone_id: Optional[Union[UUID, str]]) -> None:
        """
        Re-derive a milestone's progress as the plain mean of its linked tasks.

        A milestone without linked tasks is at 0.
        """
        if milestone_id is None:
            return
        milestone = await self.store.get_milestone(milestone_id)
        if milestone is None:
            logger.warning(f"Milestone recompute skipped: milestone {milestone_id} not found")
            return

        tasks = await self.store.find_tasks_by_milestone(milestone.id)
        new_progress = sum(t.progress for t in tasks) / len(tasks) if tasks else 0.0
        if milestone.progress != new_progress:
            logger.debug(
                f"Milestone progress recomputed: milestone_id={milestone.id}, "
                f"{milestone.progress} -> {new_progress}"
            )
            milestone.progress = new_progress
            milestone.updated_at = datetime.utcnow()
            await self.store.flush()

    async def recompute_ancestors(self, parent_id: Optional[Union[UUID, str]]) -> None:
        """Re-derive weight, progress and estimated hours from ``parent_id`` up to the root."""
        if parent_id is None:
            return
        await self.ledger.recompute_weight(parent_id)
        await self.recompute_progress(parent_id)
        await self.recompute_estimated_hours(parent_id)
