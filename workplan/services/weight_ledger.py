"""
Weight budget ledger for workplan.

Every parent distributes a budget of weight units (100 by default) among its
direct children, subtasks and leaf items alike. The ledger guards the budget
when children are attached and re-derives parent weights from their children
afterwards.
"""

from datetime import datetime
from typing import List, Optional, Union
from uuid import UUID

from workplan.exceptions import BudgetExceededError, InvalidWeightError
from workplan.logging_config import get_logger
from workplan.models import MAX_WEIGHT, MIN_WEIGHT
from workplan.rules_config import HierarchyRules
from workplan.services.task_store import TaskStore
from workplan.services.tree_integrity import MAX_ANCESTOR_WALK

logger = get_logger(__name__)


def validate_weight(weight: Optional[int], field: str = "weight") -> int:
    """
    Validate a single task or leaf item weight.

    Raises:
        InvalidWeightError: If weight is missing, not an integer or outside [1, 100]
    """
    if weight is None or isinstance(weight, bool) or not isinstance(weight, int):
        raise InvalidWeightError(weight, field=field)
    if weight < MIN_WEIGHT or weight > MAX_WEIGHT:
        raise InvalidWeightError(weight, field=field)
    return weight


class WeightBudgetLedger:
    """Creation-time budget checks and parent weight recomputation."""

    def __init__(self, store: TaskStore, rules: Optional[HierarchyRules] = None) -> None:
        self.store = store
        self.rules = rules or HierarchyRules()

    async def committed_weight(
        self,
        parent_id: Union[UUID, str],
        exclude_ids: Optional[List[str]] = None,
    ) -> int:
        """
        Sum the weights of a parent's direct children.

        Args:
            parent_id: Parent task
            exclude_ids: Child ids to leave out (a row being edited or moved)

        Returns:
            Total weight of subtasks plus leaf items
        """
        excluded = set(exclude_ids or [])
        subtasks = await self.store.find_children(parent_id)
        leaf_items = await self.store.find_leaf_items(parent_id)
        return sum(
            child.weight
            for child in [*subtasks, *leaf_items]
            if child.id not in excluded
        )

    async def assert_creatable(
        self,
        parent_id: Optional[Union[UUID, str]],
        proposed_weight: int,
        exclude_id: Optional[Union[UUID, str]] = None,
    ) -> None:
        """
        Check that a child of ``proposed_weight`` fits into the parent's budget.

        Root tasks (``parent_id`` None) are not checked.

        Raises:
            InvalidWeightError: If the proposed weight is out of range
            BudgetExceededError: If committed + proposed exceeds the budget
        """
        validate_weight(proposed_weight)
        if parent_id is None:
            return

        exclude = [str(exclude_id)] if exclude_id is not None else None
        committed = await self.committed_weight(parent_id, exclude_ids=exclude)
        budget = self.rules.weight_budget
        if committed + proposed_weight > budget:
            logger.warning(
                f"Weight budget exceeded: parent_id={parent_id}, committed={committed}, "
                f"proposed={proposed_weight}, budget={budget}"
            )
            raise BudgetExceededError(parent_id, committed, proposed_weight, budget)

    async def recompute_weight(self, parent_id: Optional[Union[UUID, str]]) -> None:
        """
        Re-derive parent weights from their children, walking up to the root.

        A parent with at least one child takes the clamped sum of its
        children's weights; a task without children keeps its own weight.
        The budget is not re-validated here.
        """
        current = str(parent_id) if parent_id is not None else None
        visited: List[str] = []

        while current is not None and len(visited) < MAX_ANCESTOR_WALK:
            if current in visited:
                break
            visited.append(current)

            parent = await self.store.get_task(current)
            if parent is None:
                logger.warning(f"Weight recompute stopped: task {current} not found")
                break

            subtasks = await self.store.find_children(current)
            leaf_items = await self.store.find_leaf_items(current)
            if subtasks or leaf_items:
                total = sum(child.weight for child in [*subtasks, *leaf_items])
                new_weight = max(0, min(MAX_WEIGHT, total))
                if parent.weight != new_weight:
                    logger.debug(
                        f"Weight recomputed: task_id={current}, {parent.weight} -> {new_weight}"
                    )
                    parent.weight = new_weight
                    parent.updated_at = datetime.utcnow()
                    await self.store.flush()

            current = parent.parent_id
