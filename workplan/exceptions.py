"""
Error taxonomy for workplan.

Every rule violation is raised before the failing operation writes anything.
Storage failures are not wrapped, except optimistic-concurrency conflicts
which surface as ConcurrentModificationError.
"""

from typing import Iterable, Optional, Union


class WorkplanError(Exception):
    """Base exception for all workplan errors."""
    pass


# ==============================================================================
# NOT FOUND
# ==============================================================================

class NotFoundError(WorkplanError):
    """Raised when a referenced entity does not exist."""
    pass


class TaskNotFoundError(NotFoundError):
    """Raised when a task is not found."""
    pass


class LeafItemNotFoundError(NotFoundError):
    """Raised when a leaf item is not found."""
    pass


class AssignmentNotFoundError(NotFoundError):
    """Raised when a project assignment is not found."""
    pass


class ProjectNotFoundError(NotFoundError):
    """Raised when a project is not found."""
    pass


class MilestoneNotFoundError(NotFoundError):
    """Raised when a milestone is not found."""
    pass


# ==============================================================================
# VALIDATION
# ==============================================================================

class ValidationError(WorkplanError):
    """
    Raised when an input value is malformed or out of range.

    Attributes:
        field: Name of the offending field
    """

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        super().__init__(f"{field}: {message}")


class InvalidWeightError(ValidationError):
    """Raised when a weight falls outside [1, 100]."""

    def __init__(self, weight: int, field: str = "weight") -> None:
        self.weight = weight
        super().__init__(field, f"weight must be between 1 and 100, got {weight}")


# ==============================================================================
# STRUCTURE
# ==============================================================================

class InconsistentHierarchyError(WorkplanError):
    """Raised when a parent is missing or belongs to another project."""
    pass


class NestingLimitError(InconsistentHierarchyError):
    """Raised when a subtask would exceed the configured nesting policy."""
    pass


class CircularHierarchyError(WorkplanError):
    """Raised when a parent assignment would create a cycle."""

    def __init__(self, task_id, revisited_id) -> None:
        self.task_id = task_id
        self.revisited_id = revisited_id
        super().__init__(
            f"Circular reference detected: task {task_id} reaches task "
            f"{revisited_id} twice in its ancestor chain"
        )


class NotAMemberError(WorkplanError):
    """Raised when a member holds no active assignment on the project."""

    def __init__(self, member_id: str, project_id) -> None:
        self.member_id = member_id
        self.project_id = project_id
        super().__init__(
            f"Member '{member_id}' is not assigned to project {project_id}"
        )


class BudgetExceededError(WorkplanError):
    """Raised when sibling weights would exceed the parent's budget."""

    def __init__(self, parent_id, committed: int, proposed: int, budget: int = 100) -> None:
        self.parent_id = parent_id
        self.committed = committed
        self.proposed = proposed
        self.budget = budget
        super().__init__(
            f"Total weight would be {committed + proposed}/{budget} "
            f"under parent {parent_id} (committed={committed}, proposed={proposed})"
        )


# ==============================================================================
# LIFECYCLE
# ==============================================================================

class InvalidStateTransitionError(WorkplanError):
    """Raised when a lifecycle transition is not legal from the current state."""

    def __init__(
        self,
        entity_id,
        current,
        required: Union[Iterable, object],
        action: Optional[str] = None,
    ) -> None:
        self.entity_id = entity_id
        self.current = current
        if isinstance(required, (list, tuple, set, frozenset)):
            self.required = tuple(required)
        else:
            self.required = (required,)
        required_names = " or ".join(_state_name(s) for s in self.required)
        verb = f" {action}" if action else ""
        super().__init__(
            f"{entity_id} cannot be{verb} from status '{_state_name(current)}'; "
            f"it should be '{required_names}'"
        )


class NotAssignedError(WorkplanError):
    """Raised when someone other than the assignee attempts a transition."""

    def __init__(self, entity_id, member_id: str) -> None:
        self.entity_id = entity_id
        self.member_id = member_id
        super().__init__(f"Member '{member_id}' is not assigned to {entity_id}")


class NotALeafError(WorkplanError):
    """Raised when a leaf-only operation targets a task with subtasks."""

    def __init__(self, task_id) -> None:
        self.task_id = task_id
        super().__init__(f"Task {task_id} has subtasks; only leaf tasks allow this")


class NotAuthorizedError(WorkplanError):
    """Raised when a non-supervisor edits supervisor-only fields."""
    pass


# ==============================================================================
# STORAGE
# ==============================================================================

class ConcurrentModificationError(WorkplanError):
    """Raised when a row changed underneath the current transaction."""
    pass


def _state_name(state) -> str:
    return getattr(state, "value", str(state))
