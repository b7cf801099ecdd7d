"""
Leaf item service for workplan.

Leaf items are the smallest trackable units of work. They sit under a task,
take a share of its weight budget like a subtask does, and feed its progress.
Every change here re-aggregates the owning task and its ancestors.
"""

from datetime import datetime
from typing import List, Optional, Union
from uuid import UUID, uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from workplan.database import LeafItemORM
from workplan.exceptions import (
    InvalidStateTransitionError,
    NotAssignedError,
    WorkplanError,
)
from workplan.logging_config import get_logger
from workplan.models import LeafItem, LeafItemStatus
from workplan.rules_config import HierarchyRules
from workplan.services.cascade import normalize_member_id
from workplan.services.lifecycle import require_reason
from workplan.services.mappers import leaf_item_to_model, leaf_item_to_orm
from workplan.services.membership import MembershipValidator
from workplan.services.notifications import ENTITY_LEAF_ITEM, Notifier
from workplan.services.progress_engine import ProgressAggregationEngine, validate_progress
from workplan.services.task_service import validate_title
from workplan.services.task_store import TaskStore
from workplan.services.weight_ledger import WeightBudgetLedger, validate_weight

logger = get_logger(__name__)

Id = Union[UUID, str]

ITEM_ACCEPTABLE_FROM = (LeafItemStatus.PENDING, LeafItemStatus.REJECTED)
ITEM_REJECTABLE_FROM = (LeafItemStatus.PENDING, LeafItemStatus.ACCEPTED)


class LeafItemService:
    """Service layer for leaf item operations."""

    def __init__(
        self,
        session: AsyncSession,
        notifier: Optional[Notifier] = None,
        rules: Optional[HierarchyRules] = None,
    ) -> None:
        self.session = session
        self.rules = rules or HierarchyRules()
        self.notifier = notifier or Notifier()

        self.store = TaskStore(session)
        self.membership = MembershipValidator(self.store)
        self.ledger = WeightBudgetLedger(self.store, self.rules)
        self.engine = ProgressAggregationEngine(self.store, self.ledger)

    # ==============================================================================
    # CREATE / READ
    # ==============================================================================

    async def create_leaf_item(
        self,
        task_id: Id,
        title: str,
        weight: int,
        assigner_id: Optional[str] = None,
        assignee_id: Optional[str] = None,
        description: Optional[str] = None,
        due_date: Optional[datetime] = None,
    ) -> LeafItem:
        """
        Create a leaf item under a task.

        Args:
            task_id: Owning task
            title: Item title
            weight: Share of the task's budget, 1-100
            assigner_id: Member creating the item
            assignee_id: Member expected to do the work
            description: Optional description
            due_date: Optional due date

        Returns:
            Created leaf item

        Raises:
            TaskNotFoundError: If the task does not exist
            InvalidWeightError: If weight is outside [1, 100]
            BudgetExceededError: If the task's budget cannot take the weight
            NotAMemberError: If the assignee is not on the task's project
        """
        try:
            logger.debug(f"Creating leaf item: title='{title}', task_id={task_id}, weight={weight}")

            task_orm = await self.store.get_task_or_raise(task_id)
            validate_title(title)
            validate_weight(weight)
            if self.rules.enforce_budget_on_leaf_items:
                await self.ledger.assert_creatable(task_orm.id, weight)
            await self.membership.validate_assignee(assignee_id, task_orm.assignment_id)

            now = datetime.utcnow()
            item = LeafItem(
                id=uuid4(),
                task_id=UUID(task_orm.id),
                title=title,
                description=description,
                weight=weight,
                assignee_id=normalize_member_id(assignee_id),
                assigned_by_id=assigner_id,
                due_date=due_date,
                created_at=now,
                updated_at=now,
            )
            item_orm = leaf_item_to_orm(item)
            self.store.add(item_orm)
            await self.store.flush()

            await self.engine.recompute_ancestors(task_orm.id)
            logger.info(f"Created leaf item: id={item.id}, task_id={task_orm.id}")

            await self.notifier.notify(
                item.assignee_id,
                "New Action Item Created",
                f"A new action item '{item.title}' has been created for you.",
                ENTITY_LEAF_ITEM,
                item.id,
            )
            return leaf_item_to_model(item_orm)

        except WorkplanError:
            raise
        except Exception as e:
            logger.error(f"Failed to create leaf item: {e}", exc_info=True)
            raise

    async def get_leaf_item(self, item_id: Id) -> LeafItem:
        """
        Raises:
            LeafItemNotFoundError: If the item does not exist
        """
        return leaf_item_to_model(await self.store.get_leaf_item_or_raise(item_id))

    async def get_leaf_items_for_task(self, task_id: Id) -> List[LeafItem]:
        """
        Raises:
            TaskNotFoundError: If the task does not exist
        """
        await self.store.get_task_or_raise(task_id)
        return [leaf_item_to_model(item) for item in await self.store.find_leaf_items(task_id)]

    # ==============================================================================
    # UPDATE
    # ==============================================================================

    async def update_leaf_item(
        self,
        item_id: Id,
        title: Optional[str] = None,
        description: Optional[str] = None,
        weight: Optional[int] = None,
        progress: Optional[float] = None,
    ) -> LeafItem:
        """
        Update fields of a leaf item.

        Progress can only be reported once the item has been accepted.

        Raises:
            LeafItemNotFoundError: If the item does not exist
            InvalidWeightError: If weight is outside [1, 100]
            BudgetExceededError: If the new weight does not fit the task's budget
            InvalidStateTransitionError: If progress is set on an unaccepted item
            ValidationError: If progress is outside [0, 100]
        """
        try:
            item_orm = await self.store.get_leaf_item_or_raise(item_id)
            logger.debug(f"Updating leaf item {item_id}")

            if title is not None:
                validate_title(title)
            if weight is not None:
                validate_weight(weight)
                if self.rules.enforce_budget_on_update:
                    await self.ledger.assert_creatable(
                        item_orm.task_id, weight, exclude_id=item_orm.id
                    )
            if progress is not None:
                validate_progress(progress)
            if progress is not None and LeafItemStatus(item_orm.status) != LeafItemStatus.ACCEPTED:
                raise InvalidStateTransitionError(
                    f"Leaf item {item_orm.id}",
                    LeafItemStatus(item_orm.status),
                    LeafItemStatus.ACCEPTED,
                    action="given progress",
                )

            if title is not None:
                item_orm.title = title
            if description is not None:
                item_orm.description = description
            if weight is not None:
                item_orm.weight = weight
            item_orm.updated_at = datetime.utcnow()
            await self.store.flush()

            if weight is not None:
                await self.engine.recompute_ancestors(item_orm.task_id)
            if progress is not None:
                await self.engine.set_leaf_item_progress(item_orm, progress)

            logger.info(f"Updated leaf item: id={item_id}")
            return leaf_item_to_model(item_orm)

        except WorkplanError:
            raise
        except Exception as e:
            logger.error(f"Failed to update leaf item {item_id}: {e}", exc_info=True)
            raise

    async def accept_leaf_item(self, item_id: Id, member_id: str) -> LeafItem:
        """
        Accept a leaf item as its assignee.

        Raises:
            NotAssignedError: If member_id is not the item's assignee
            InvalidStateTransitionError: If the item is not Pending or Rejected
        """
        item_orm = await self.store.get_leaf_item_or_raise(item_id)
        self._require_assignee(item_orm, member_id)
        self._require_status(item_orm, ITEM_ACCEPTABLE_FROM, "accepted")

        item_orm.status = LeafItemStatus.ACCEPTED.value
        item_orm.accepted_at = datetime.utcnow()
        item_orm.rejection_reason = None
        item_orm.updated_at = item_orm.accepted_at
        await self.store.flush()
        await self.engine.recompute_progress(item_orm.task_id)
        logger.info(f"Leaf item accepted: id={item_orm.id}, member={member_id}")

        await self.notifier.notify(
            item_orm.assigned_by_id,
            "Action Item Accepted",
            f"Action item '{item_orm.title}' has been accepted by {member_id}.",
            ENTITY_LEAF_ITEM,
            item_orm.id,
        )
        return leaf_item_to_model(item_orm)

    async def reject_leaf_item(self, item_id: Id, member_id: str, reason: str) -> LeafItem:
        """
        Reject a leaf item as its assignee.

        Raises:
            NotAssignedError: If member_id is not the item's assignee
            ValidationError: If the reason is blank
            InvalidStateTransitionError: If the item is not Pending or Accepted
        """
        item_orm = await self.store.get_leaf_item_or_raise(item_id)
        self._require_assignee(item_orm, member_id)
        reason = require_reason(reason)
        self._require_status(item_orm, ITEM_REJECTABLE_FROM, "rejected")

        item_orm.status = LeafItemStatus.REJECTED.value
        item_orm.rejection_reason = reason
        item_orm.updated_at = datetime.utcnow()
        await self.store.flush()
        logger.info(f"Leaf item rejected: id={item_orm.id}, member={member_id}")

        await self.notifier.notify(
            item_orm.assigned_by_id,
            "Action Item Rejected",
            f"Action item '{item_orm.title}' has been rejected by {member_id}. Reason: {reason}",
            ENTITY_LEAF_ITEM,
            item_orm.id,
        )
        return leaf_item_to_model(item_orm)

    # ==============================================================================
    # DELETE
    # ==============================================================================

    async def delete_leaf_item(self, item_id: Id) -> bool:
        """
        Delete a leaf item and re-aggregate its task.

        Returns:
            True if deleted, False if the item did not exist
        """
        try:
            item_orm = await self.store.get_leaf_item(item_id)
            if item_orm is None:
                return False

            task_id = item_orm.task_id
            await self.store.delete(item_orm)
            await self.store.flush()
            await self.engine.recompute_ancestors(task_id)

            logger.info(f"Deleted leaf item: id={item_id}, task_id={task_id}")
            return True

        except WorkplanError:
            raise
        except Exception as e:
            logger.error(f"Failed to delete leaf item {item_id}: {e}", exc_info=True)
            raise

    # ==============================================================================
    # GUARDS
    # ==============================================================================

    @staticmethod
    def _require_assignee(item_orm: LeafItemORM, member_id: str) -> None:
        if not item_orm.assignee_id or item_orm.assignee_id != member_id:
            raise NotAssignedError(f"Leaf item {item_orm.id}", member_id)

    @staticmethod
    def _require_status(item_orm: LeafItemORM, allowed: tuple, action: str) -> None:
        current = LeafItemStatus(item_orm.status)
        if current not in allowed:
            raise InvalidStateTransitionError(
                f"Leaf item {item_orm.id}", current, allowed, action=action
            )
