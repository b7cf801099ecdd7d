"""
Tree integrity checks for workplan.

Detects cycles in the parent chain, enforces the single-level or multi-level
nesting policy, and owns the structural derived fields ``depth`` and
``is_leaf``.
"""

from typing import Optional, Union
from uuid import UUID

from workplan.database import TaskORM
from workplan.exceptions import CircularHierarchyError, NestingLimitError
from workplan.logging_config import get_logger
from workplan.rules_config import HierarchyRules, NestingPolicy
from workplan.services.task_store import TaskStore

logger = get_logger(__name__)

# Hard stop for ancestor walks on corrupted data
MAX_ANCESTOR_WALK = 100


class TreeIntegrityChecker:
    """Acyclicity, nesting depth and structural bookkeeping for task trees."""

    def __init__(self, store: TaskStore, rules: Optional[HierarchyRules] = None) -> None:
        self.store = store
        self.rules = rules or HierarchyRules()

    # ==============================================================================
    # NESTING
    # ==============================================================================

    def can_create_child(self, parent_depth: int) -> bool:
        """
        Check if a subtask can be created under a parent at the given depth.

        Args:
            parent_depth: Depth of the parent task (0-based)

        Returns:
            True if a child can be created, False if the parent is at max depth
        """
        return parent_depth < self.rules.effective_max_depth

    def get_child_depth(self, parent_depth: int) -> int:
        """
        Calculate the depth for a child of the given parent.

        Raises:
            NestingLimitError: If the child would exceed the nesting policy
        """
        child_depth = parent_depth + 1
        max_depth = self.rules.effective_max_depth
        if child_depth > max_depth:
            if self.rules.nesting_policy == NestingPolicy.SINGLE:
                message = (
                    "Single-level nesting is enabled: subtasks may only be "
                    "created directly under root tasks"
                )
            else:
                message = (
                    f"Cannot create child: parent at depth {parent_depth} "
                    f"would create child at depth {child_depth}, "
                    f"exceeding max depth {max_depth}"
                )
            logger.warning(message)
            raise NestingLimitError(message)
        return child_depth

    async def subtree_height(self, task_id: Union[UUID, str]) -> int:
        """Number of levels below a task (0 for a task without subtasks)."""
        height = 0
        frontier = [str(task_id)]
        while frontier:
            next_frontier = []
            for current_id in frontier:
                next_frontier.extend(child.id for child in await self.store.find_children(current_id))
            if next_frontier:
                height += 1
            frontier = next_frontier
        return height

    # ==============================================================================
    # ACYCLICITY
    # ==============================================================================

    async def validate_acyclic(
        self,
        task_id: Union[UUID, str],
        proposed_parent_id: Optional[Union[UUID, str]],
    ) -> None:
        """
        Walk the ancestor chain from the proposed parent upward.

        The visited set is seeded with the task itself, so making a task its
        own parent or the child of one of its descendants is detected.

        Raises:
            CircularHierarchyError: If any id is reached twice or the walk
                exceeds MAX_ANCESTOR_WALK hops
        """
        if proposed_parent_id is None:
            return

        visited = {str(task_id)}
        current: Optional[str] = str(proposed_parent_id)
        hops = 0

        while current is not None:
            if current in visited:
                logger.warning(f"Circular reference: task_id={task_id}, revisited={current}")
                raise CircularHierarchyError(task_id, current)
            if hops >= MAX_ANCESTOR_WALK:
                raise CircularHierarchyError(task_id, current)
            visited.add(current)
            hops += 1
            current = await self.store.get_parent_id(current)

    # ==============================================================================
    # DERIVED STRUCTURE
    # ==============================================================================

    async def refresh_structure(self, task_orm: TaskORM) -> None:
        """Recompute ``depth`` and ``is_leaf`` of a single task."""
        if task_orm.parent_id is None:
            depth = 0
        else:
            parent = await self.store.get_task_or_raise(task_orm.parent_id)
            depth = parent.depth + 1
        is_leaf = await self.store.count_children(task_orm.id) == 0

        if task_orm.depth != depth or task_orm.is_leaf != is_leaf:
            logger.debug(
                f"Structure refreshed: task_id={task_orm.id}, depth={depth}, is_leaf={is_leaf}"
            )
            task_orm.depth = depth
            task_orm.is_leaf = is_leaf

    async def refresh_leaf_flag(self, task_id: Optional[Union[UUID, str]]) -> None:
        """Recompute ``is_leaf`` of a task after a subtask was attached or detached."""
        if task_id is None:
            return
        task_orm = await self.store.get_task(task_id)
        if task_orm is not None:
            task_orm.is_leaf = await self.store.count_children(task_orm.id) == 0

    async def update_descendant_depths(self, task_orm: TaskORM) -> None:
        """
        Rewrite depths below a task after it moved.

        Raises:
            NestingLimitError: If a descendant would exceed the nesting policy
        """
        queue = [task_orm]
        while queue:
            current = queue.pop(0)
            for child in await self.store.find_children(current.id):
                child.depth = self.get_child_depth(current.depth)
                queue.append(child)
