"""
Task service for workplan.

Public entry point for every task-tree operation. Each method validates the
request through the membership, integrity and budget components before
touching the store, then hands off to the ledger and aggregation engine so
derived fields are re-persisted up to the root inside the same session
transaction.
"""

from datetime import datetime
from typing import List, Optional, Union
from uuid import UUID, uuid4

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from workplan.database import TaskORM
from workplan.exceptions import (
    NotAuthorizedError,
    ValidationError,
    WorkplanError,
)
from workplan.logging_config import get_logger
from workplan.models import (
    MEMBER_EDITABLE_FIELDS,
    Task,
    TaskPatch,
    TaskPriority,
    TaskStatus,
    TaskTree,
)
from workplan.rules_config import HierarchyRules
from workplan.services.cascade import (
    CascadeOrchestrator,
    apply_assignee,
    normalize_member_id,
)
from workplan.services.lifecycle import TaskLifecycle
from workplan.services.mappers import leaf_item_to_model, task_to_model, task_to_tree
from workplan.services.membership import MembershipValidator
from workplan.services.milestones import MilestoneValidator
from workplan.services.notifications import ENTITY_TASK, Notifier
from workplan.services.progress_engine import ProgressAggregationEngine
from workplan.services.task_store import TaskStore
from workplan.services.tree_integrity import TreeIntegrityChecker
from workplan.services.weight_ledger import WeightBudgetLedger, validate_weight

logger = get_logger(__name__)

Id = Union[UUID, str]

# Priorities that cannot be scheduled without a due date
DUE_DATE_REQUIRED = (TaskPriority.HIGH, TaskPriority.CRITICAL)


def validate_title(title: Optional[str]) -> str:
    """
    Raises:
        ValidationError: If the title is blank or longer than 250 characters
    """
    if title is None or not title.strip():
        raise ValidationError("title", "title is required")
    if len(title) > 250:
        raise ValidationError("title", f"title must be at most 250 characters, got {len(title)}")
    return title


def validate_schedule(
    priority: TaskPriority,
    start_date: Optional[datetime],
    due_date: Optional[datetime],
) -> None:
    """
    Raises:
        ValidationError: If a High/Critical task has no due date or the
            start date falls after the due date
    """
    if TaskPriority(priority) in DUE_DATE_REQUIRED and due_date is None:
        raise ValidationError(
            "due_date", f"{TaskPriority(priority).value} priority tasks require a due date"
        )
    if start_date is not None and due_date is not None and start_date > due_date:
        raise ValidationError("start_date", "start date must be on or before the due date")


def _parse_patch(data: dict) -> TaskPatch:
    """
    Build a TaskPatch from a plain dict.

    Raises:
        ValidationError: For the first field pydantic rejects
    """
    try:
        return TaskPatch(**data)
    except PydanticValidationError as e:
        error = e.errors()[0]
        field = ".".join(str(part) for part in error["loc"]) or "patch"
        if error["type"] == "extra_forbidden":
            message = f"{field} is derived or unknown and cannot be patched"
        else:
            message = error["msg"]
        logger.warning(f"Rejected task patch: field={field}, reason={message}")
        raise ValidationError(field, message) from e


class TaskService:
    """
    Service layer for task hierarchy operations.

    One instance wraps one AsyncSession; the caller's
    ``DatabaseManager.get_session()`` block commits everything the service
    did as a single transaction.
    """

    def __init__(
        self,
        session: AsyncSession,
        notifier: Optional[Notifier] = None,
        rules: Optional[HierarchyRules] = None,
    ) -> None:
        """
        Initialize task service with database session.

        Args:
            session: Active async database session
            notifier: Notification dispatcher, logging-only if omitted
            rules: Hierarchy rules, defaults if omitted
        """
        self.session = session
        self.rules = rules or HierarchyRules()
        self.notifier = notifier or Notifier()

        self.store = TaskStore(session)
        self.membership = MembershipValidator(self.store)
        self.milestones = MilestoneValidator(self.store, self.membership)
        self.integrity = TreeIntegrityChecker(self.store, self.rules)
        self.ledger = WeightBudgetLedger(self.store, self.rules)
        self.engine = ProgressAggregationEngine(self.store, self.ledger)
        self.lifecycle = TaskLifecycle(self.store, self.engine, self.notifier, self.membership)
        self.cascade = CascadeOrchestrator(
            self.store, self.notifier, self.membership, self.integrity, self.engine
        )

    # ==============================================================================
    # CREATE OPERATIONS
    # ==============================================================================

    async def _create(
        self,
        title: str,
        assignment_id: Id,
        weight: int,
        creator_id: Optional[str],
        parent_id: Optional[Id],
        description: Optional[str],
        assigned_member_id: Optional[str],
        priority: TaskPriority,
        start_date: Optional[datetime],
        due_date: Optional[datetime],
        estimated_hours: float,
        is_auto_todo: bool,
        milestone_id: Optional[Id] = None,
    ) -> Task:
        await self.store.get_assignment_or_raise(assignment_id)
        validate_title(title)
        validate_weight(weight)
        validate_schedule(priority, start_date, due_date)

        depth = 0
        if parent_id is not None:
            await self.membership.validate_parent(assignment_id, parent_id)
            parent_orm = await self.store.get_task_or_raise(parent_id)
            depth = self.integrity.get_child_depth(parent_orm.depth)
            await self.ledger.assert_creatable(parent_id, weight)
            # A subtask is scheduled inside its parent's milestone unless it names its own
            await self.milestones.validate_task(
                milestone_id if milestone_id is not None else parent_orm.milestone_id,
                assignment_id, start_date, due_date,
            )
        else:
            await self.milestones.validate_task(milestone_id, assignment_id, start_date, due_date)

        await self.membership.validate_assignee(assigned_member_id, assignment_id)
        assigned_member_id = normalize_member_id(assigned_member_id)

        now = datetime.utcnow()
        task = Task(
            id=uuid4(),
            title=title,
            description=description,
            assignment_id=UUID(str(assignment_id)),
            parent_id=UUID(str(parent_id)) if parent_id is not None else None,
            depth=depth,
            milestone_id=UUID(str(milestone_id)) if milestone_id is not None else None,
            weight=weight,
            priority=priority,
            assigned_member_id=assigned_member_id,
            assigned_by_id=creator_id if assigned_member_id else None,
            is_auto_todo=is_auto_todo,
            start_date=start_date,
            due_date=due_date,
            estimated_hours=estimated_hours,
            created_at=now,
            updated_at=now,
        )
        task_orm = self._pydantic_to_orm(task)
        self.store.add(task_orm)
        await self.store.flush()

        # The row now exists, so the walk sees the real chain
        await self.integrity.validate_acyclic(task_orm.id, parent_id)

        if parent_id is not None:
            await self.integrity.refresh_leaf_flag(parent_id)
            await self.store.flush()
            await self.engine.recompute_ancestors(parent_id)
        await self.engine.recompute_milestone(task_orm.milestone_id)

        return task_to_model(task_orm)

    async def create_task(
        self,
        title: str,
        assignment_id: Id,
        weight: int,
        creator_id: Optional[str] = None,
        parent_id: Optional[Id] = None,
        description: Optional[str] = None,
        assigned_member_id: Optional[str] = None,
        priority: TaskPriority = TaskPriority.MEDIUM,
        start_date: Optional[datetime] = None,
        due_date: Optional[datetime] = None,
        estimated_hours: float = 0.0,
        is_auto_todo: bool = False,
        milestone_id: Optional[Id] = None,
    ) -> Task:
        """
        Create a new task, optionally under a parent.

        Args:
            title: Task title
            assignment_id: Assignment context the task is created under
            weight: Share of the parent's budget, 1-100
            creator_id: Member creating the task
            parent_id: Optional parent task
            description: Optional description
            assigned_member_id: Optional initial assignee
            priority: Task priority
            start_date: Optional start date
            due_date: Optional due date
            estimated_hours: Effort estimate
            is_auto_todo: Create a companion leaf item when assigned
            milestone_id: Optional milestone the task is scheduled under

        Returns:
            Created task

        Raises:
            AssignmentNotFoundError: If the assignment does not exist
            InvalidWeightError: If weight is outside [1, 100]
            ValidationError: If the schedule is inconsistent or outside the milestone
            MilestoneNotFoundError: If the milestone does not exist
            InconsistentHierarchyError: If the parent is missing or in another project
            NestingLimitError: If the nesting policy forbids the parent
            BudgetExceededError: If the parent's budget cannot take the weight
            NotAMemberError: If the assignee is not on the project
            CircularHierarchyError: If the parent chain loops
        """
        try:
            logger.debug(
                f"Creating task: title='{title}', assignment_id={assignment_id}, "
                f"parent_id={parent_id}, weight={weight}"
            )
            task = await self._create(
                title, assignment_id, weight, creator_id, parent_id, description,
                assigned_member_id, priority, start_date, due_date,
                estimated_hours, is_auto_todo,
                milestone_id,
            )
            logger.info(f"Created task: id={task.id}, title='{title}', depth={task.depth}")

            await self.notifier.notify(
                creator_id,
                "New Task Created",
                f"Task '{task.title}' has been created.",
                ENTITY_TASK,
                task.id,
            )
            if task.assigned_member_id and task.assigned_member_id != creator_id:
                await self.notifier.notify_reassignment(
                    task.assigned_member_id, None, task.title, task.id
                )
            return task

        except WorkplanError:
            raise
        except Exception as e:
            logger.error(f"Failed to create task: {e}", exc_info=True)
            raise

    async def add_subtask(
        self,
        parent_task_id: Id,
        title: str,
        weight: int,
        creator_id: Optional[str] = None,
        description: Optional[str] = None,
        assigned_member_id: Optional[str] = None,
        priority: TaskPriority = TaskPriority.MEDIUM,
        start_date: Optional[datetime] = None,
        due_date: Optional[datetime] = None,
        estimated_hours: float = 0.0,
        is_auto_todo: bool = False,
        milestone_id: Optional[Id] = None,
    ) -> Task:
        """
        Create a subtask under an existing task, inheriting its assignment context.

        Raises:
            TaskNotFoundError: If the parent task does not exist
            (plus everything create_task raises)
        """
        try:
            parent_orm = await self.store.get_task_or_raise(parent_task_id)
            logger.debug(f"Creating subtask: title='{title}', parent_id={parent_task_id}")

            task = await self._create(
                title, parent_orm.assignment_id, weight, creator_id, parent_orm.id,
                description, assigned_member_id, priority, start_date, due_date,
                estimated_hours, is_auto_todo,
                milestone_id,
            )
            logger.info(
                f"Created subtask: id={task.id}, title='{title}', parent_id={parent_task_id}"
            )

            await self.notifier.notify(
                creator_id,
                "New Subtask Created",
                f"Subtask '{task.title}' has been added to '{parent_orm.title}'.",
                ENTITY_TASK,
                task.id,
            )
            if task.assigned_member_id and task.assigned_member_id != creator_id:
                await self.notifier.notify_reassignment(
                    task.assigned_member_id, None, task.title, task.id, noun="subtask"
                )
            return task

        except WorkplanError:
            raise
        except Exception as e:
            logger.error(f"Failed to create subtask: {e}", exc_info=True)
            raise

    # ==============================================================================
    # READ OPERATIONS
    # ==============================================================================

    async def get_task(self, task_id: Id) -> TaskTree:
        """
        Get a task with its full subtree and leaf items.

        Raises:
            TaskNotFoundError: If task does not exist
        """
        root_orm = await self.store.get_task_or_raise(task_id)
        root = task_to_tree(root_orm)

        queue = [root]
        while queue:
            node = queue.pop(0)
            node.leaf_items = [
                leaf_item_to_model(item) for item in await self.store.find_leaf_items(node.id)
            ]
            node.subtasks = [
                task_to_tree(child) for child in await self.store.find_children(node.id)
            ]
            queue.extend(node.subtasks)

        return root

    async def get_tasks_for_project(self, project_id: Id) -> List[Task]:
        """
        Get the root tasks of a project.

        Raises:
            ProjectNotFoundError: If project does not exist
        """
        await self.store.get_project_or_raise(project_id)
        roots = await self.store.find_root_tasks(project_id)
        return [task_to_model(task_orm) for task_orm in roots]

    # ==============================================================================
    # UPDATE OPERATIONS
    # ==============================================================================

    async def _validate_move(
        self,
        task_orm: TaskORM,
        new_parent_id: Optional[Id],
        weight: Optional[int] = None,
    ) -> int:
        """
        Check a parent change and return the task's new depth.

        Raises:
            CircularHierarchyError: If the new parent is the task or one of its descendants
            InconsistentHierarchyError: If the new parent is missing or in another project
            NestingLimitError: If the moved subtree would exceed the nesting policy
            BudgetExceededError: If the new parent's budget cannot take the task
        """
        if new_parent_id is None:
            return 0

        await self.integrity.validate_acyclic(task_orm.id, new_parent_id)
        await self.membership.validate_parent(task_orm.assignment_id, new_parent_id)

        new_parent = await self.store.get_task_or_raise(new_parent_id)
        new_depth = self.integrity.get_child_depth(new_parent.depth)
        height = await self.integrity.subtree_height(task_orm.id)
        # The deepest descendant must still fit under the policy
        self.integrity.get_child_depth(new_depth + height - 1)

        if self.rules.enforce_budget_on_update:
            await self.ledger.assert_creatable(
                new_parent_id, weight if weight is not None else task_orm.weight
            )
        return new_depth

    async def _apply_move(
        self,
        task_orm: TaskORM,
        new_parent_id: Optional[Id],
        new_depth: int,
    ) -> None:
        old_parent_id = task_orm.parent_id
        task_orm.parent_id = str(new_parent_id) if new_parent_id is not None else None
        task_orm.depth = new_depth
        task_orm.updated_at = datetime.utcnow()
        await self.integrity.update_descendant_depths(task_orm)
        await self.store.flush()

        await self.integrity.refresh_leaf_flag(old_parent_id)
        await self.integrity.refresh_leaf_flag(task_orm.parent_id)
        await self.store.flush()

        await self.engine.recompute_ancestors(old_parent_id)
        await self.engine.recompute_ancestors(task_orm.parent_id)

    async def move_task(self, task_id: Id, new_parent_id: Optional[Id]) -> Task:
        """
        Move a task (with its subtree) under a new parent, or to the root level.

        Args:
            task_id: Task to move
            new_parent_id: New parent, None to make it a root task

        Returns:
            The moved task

        Raises:
            TaskNotFoundError: If the task does not exist
            CircularHierarchyError: If the new parent is inside the task's subtree
            InconsistentHierarchyError: If the new parent is in another project
            NestingLimitError: If the move would exceed the nesting policy
            BudgetExceededError: If the new parent has no room for the task
        """
        try:
            task_orm = await self.store.get_task_or_raise(task_id)
            current = task_orm.parent_id
            target = str(new_parent_id) if new_parent_id is not None else None
            if current == target:
                return task_to_model(task_orm)

            logger.debug(f"Moving task {task_id}: {current} -> {target}")
            new_depth = await self._validate_move(task_orm, target)
            await self._apply_move(task_orm, target, new_depth)
            logger.info(f"Moved task: id={task_id}, new_parent_id={target}, depth={new_depth}")
            return task_to_model(task_orm)

        except WorkplanError:
            raise
        except Exception as e:
            logger.error(f"Failed to move task {task_id}: {e}", exc_info=True)
            raise

    async def update_task(
        self,
        task_id: Id,
        patch: Union[TaskPatch, dict],
        is_supervisor: bool = False,
        actor_id: Optional[str] = None,
    ) -> Task:
        """
        Apply a partial update to a task.

        Members may change title, description and actual hours; every other
        field needs ``is_supervisor``. All checks run before any field is
        written.

        Raises:
            TaskNotFoundError: If the task does not exist
            NotAuthorizedError: If a non-supervisor edits supervisor-only fields
            ValidationError: If a value is invalid or the field is derived
            NotAMemberError: If the new assignee is not on the project
            CircularHierarchyError, InconsistentHierarchyError,
            NestingLimitError, BudgetExceededError: For parent changes
            MilestoneNotFoundError, InconsistentHierarchyError: For milestone changes
        """
        try:
            if isinstance(patch, dict):
                patch = _parse_patch(patch)
            changes = patch.changes()

            task_orm = await self.store.get_task_or_raise(task_id)
            logger.debug(f"Updating task {task_id}: fields={sorted(changes)}")

            restricted = set(changes) - MEMBER_EDITABLE_FIELDS
            if restricted and not is_supervisor:
                logger.warning(
                    f"Update refused: actor={actor_id}, task_id={task_id}, fields={sorted(restricted)}"
                )
                raise NotAuthorizedError(
                    f"Only supervisors may change {', '.join(sorted(restricted))}"
                )

            has_subtasks = await self.store.count_children(task_orm.id) > 0
            has_children = has_subtasks or bool(await self.store.find_leaf_items(task_orm.id))

            target = None
            is_move = False
            if "parent_id" in changes:
                target = changes["parent_id"]
                target = str(target) if target is not None else None
                is_move = target != task_orm.parent_id

            if "weight" in changes:
                if has_children:
                    raise ValidationError("weight", "weight of a task with children is derived")
                validate_weight(changes["weight"])
                # A move checks the new weight against the new parent instead
                if (
                    self.rules.enforce_budget_on_update
                    and task_orm.parent_id is not None
                    and not is_move
                ):
                    await self.ledger.assert_creatable(
                        task_orm.parent_id, changes["weight"], exclude_id=task_orm.id
                    )

            if "estimated_hours" in changes and has_subtasks:
                raise ValidationError(
                    "estimated_hours", "estimate of a task with subtasks is derived"
                )
            if "title" in changes:
                validate_title(changes["title"])

            priority = changes.get("priority") or TaskPriority(task_orm.priority)
            start_date = changes["start_date"] if "start_date" in changes else task_orm.start_date
            due_date = changes["due_date"] if "due_date" in changes else task_orm.due_date
            validate_schedule(priority, start_date, due_date)

            milestone_id = task_orm.milestone_id
            if "milestone_id" in changes:
                milestone_id = changes["milestone_id"]
                milestone_id = str(milestone_id) if milestone_id is not None else None
            if {"milestone_id", "start_date", "due_date"} & set(changes):
                await self.milestones.validate_task(
                    milestone_id, task_orm.assignment_id, start_date, due_date
                )

            if "assigned_member_id" in changes:
                await self.membership.validate_assignee(
                    changes["assigned_member_id"], task_orm.assignment_id
                )

            move_depth = None
            if is_move:
                move_depth = await self._validate_move(task_orm, target, changes.get("weight"))

            # All checks passed
            previous_due = task_orm.due_date
            previous_assignee = task_orm.assigned_member_id
            previous_milestone = task_orm.milestone_id
            new_assignee = previous_assignee

            for field in ("title", "description", "actual_hours", "start_date", "due_date", "is_auto_todo"):
                if field in changes:
                    setattr(task_orm, field, changes[field])
            if "estimated_hours" in changes:
                task_orm.estimated_hours = changes["estimated_hours"] or 0.0
            if "priority" in changes and changes["priority"] is not None:
                task_orm.priority = TaskPriority(changes["priority"]).value
            if "weight" in changes:
                task_orm.weight = changes["weight"]
            if "milestone_id" in changes:
                task_orm.milestone_id = milestone_id
            if "assigned_member_id" in changes:
                new_assignee = normalize_member_id(changes["assigned_member_id"])
                apply_assignee(task_orm, new_assignee, actor_id)
            task_orm.updated_at = datetime.utcnow()
            await self.store.flush()

            if move_depth is not None:
                await self._apply_move(task_orm, changes["parent_id"], move_depth)
            elif "weight" in changes or "estimated_hours" in changes:
                await self.engine.recompute_ancestors(task_orm.parent_id)
            if task_orm.milestone_id != previous_milestone:
                await self.engine.recompute_milestone(previous_milestone)
                await self.engine.recompute_milestone(task_orm.milestone_id)

            logger.info(f"Updated task: id={task_id}, fields={sorted(changes)}")

            if new_assignee != previous_assignee:
                await self.notifier.notify_reassignment(
                    new_assignee, previous_assignee, task_orm.title, task_orm.id
                )
            if task_orm.due_date != previous_due and task_orm.assigned_member_id:
                due = f"{task_orm.due_date:%Y-%m-%d}" if task_orm.due_date else "none"
                await self.notifier.notify(
                    task_orm.assigned_member_id,
                    "Task Due Date Updated",
                    f"The due date of task '{task_orm.title}' is now {due}.",
                    ENTITY_TASK,
                    task_orm.id,
                )

            return task_to_model(task_orm)

        except WorkplanError:
            raise
        except Exception as e:
            logger.error(f"Failed to update task {task_id}: {e}", exc_info=True)
            raise

    # ==============================================================================
    # ASSIGNMENT AND LIFECYCLE
    # ==============================================================================

    async def assign_task(
        self,
        task_id: Id,
        member_id: Optional[str],
        assigner_id: Optional[str] = None,
    ) -> Task:
        """
        Assign a task and its whole subtree to a member.

        Raises:
            TaskNotFoundError: If the task does not exist
            NotAMemberError: If the member is not on the task's project
        """
        try:
            task_orm = await self.cascade.assign_task(task_id, member_id, assigner_id)
            return task_to_model(task_orm)
        except WorkplanError:
            raise
        except Exception as e:
            logger.error(f"Failed to assign task {task_id}: {e}", exc_info=True)
            raise

    async def accept_task(self, task_id: Id, member_id: str) -> Task:
        """Accept a leaf task as its assignee. See TaskLifecycle.accept_task."""
        return task_to_model(await self.lifecycle.accept_task(task_id, member_id))

    async def reject_task(self, task_id: Id, member_id: str, reason: str) -> Task:
        """Reject a leaf task as its assignee. See TaskLifecycle.reject_task."""
        return task_to_model(await self.lifecycle.reject_task(task_id, member_id, reason))

    async def update_progress(self, task_id: Id, member_id: str, value: float) -> Task:
        """Report progress on a leaf task. See TaskLifecycle.update_progress."""
        return task_to_model(await self.lifecycle.update_progress(task_id, member_id, value))

    async def submit_for_review(self, task_id: Id, member_id: str) -> Task:
        return task_to_model(await self.lifecycle.submit_for_review(task_id, member_id))

    async def accept_completion(self, task_id: Id, reviewer_id: str) -> Task:
        return task_to_model(await self.lifecycle.accept_completion(task_id, reviewer_id))

    async def reject_completion(self, task_id: Id, reviewer_id: str, reason: str) -> Task:
        return task_to_model(
            await self.lifecycle.reject_completion(task_id, reviewer_id, reason)
        )

    # ==============================================================================
    # DELETE OPERATIONS
    # ==============================================================================

    async def delete_task(self, task_id: Id) -> bool:
        """
        Delete a task and its subtree.

        Returns:
            True if deleted, False if the task did not exist
        """
        try:
            return await self.cascade.delete_task(task_id)
        except WorkplanError:
            raise
        except Exception as e:
            logger.error(f"Failed to delete task {task_id}: {e}", exc_info=True)
            raise

    # ==============================================================================
    # CONVERSION HELPERS
    # ==============================================================================

    @staticmethod
    def _pydantic_to_orm(task: Task) -> TaskORM:
        """
        Convert Pydantic Task to TaskORM model.

        Args:
            task: Pydantic Task instance

        Returns:
            SQLAlchemy ORM task instance
        """
        return TaskORM(
            id=str(task.id),
            title=task.title,
            description=task.description,
            assignment_id=str(task.assignment_id),
            parent_id=str(task.parent_id) if task.parent_id else None,
            depth=task.depth,
            is_leaf=task.is_leaf,
            milestone_id=str(task.milestone_id) if task.milestone_id else None,
            weight=task.weight,
            progress=task.progress,
            status=TaskStatus(task.status).value,
            priority=TaskPriority(task.priority).value,
            assigned_member_id=task.assigned_member_id,
            assigned_by_id=task.assigned_by_id,
            is_auto_todo=task.is_auto_todo,
            rejection_reason=task.rejection_reason,
            start_date=task.start_date,
            due_date=task.due_date,
            accepted_at=task.accepted_at,
            estimated_hours=task.estimated_hours,
            actual_hours=task.actual_hours,
            created_at=task.created_at,
            updated_at=task.updated_at,
        )
