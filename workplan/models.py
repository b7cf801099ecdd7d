"""
Pydantic models for workplan.

Defines the core data structures for projects, assignments, tasks and leaf
items with validation, plus the read model used to return a task subtree.
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

MAX_WEIGHT = 100
MIN_WEIGHT = 1

# Task fields a non-supervisor is allowed to change
MEMBER_EDITABLE_FIELDS = frozenset({"title", "description", "actual_hours"})


class TaskStatus(str, Enum):
    """Lifecycle states shared by leaf tasks and parent/root tasks."""
    PENDING = "Pending"
    ACCEPTED = "Accepted"
    REJECTED = "Rejected"
    IN_PROGRESS = "InProgress"
    WAITING_FOR_REVIEW = "WaitingForReview"
    COMPLETED = "Completed"


class LeafItemStatus(str, Enum):
    """Lifecycle states of a leaf (action) item."""
    PENDING = "Pending"
    ACCEPTED = "Accepted"
    REJECTED = "Rejected"


class TaskPriority(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"


class Project(BaseModel):
    """A department-owned initiative that owns a roster of assignments."""

    id: UUID = Field(default_factory=uuid4, description="Unique identifier for the project")
    name: str = Field(..., min_length=1, max_length=200, description="Project name")
    department: Optional[str] = Field(default=None, max_length=100)
    created_at: datetime = Field(default_factory=datetime.utcnow, description="Creation timestamp")


class Assignment(BaseModel):
    """
    Binds one member to one project with a role.

    The unit against which task membership is validated. At most one active
    assignment exists per (project, member) pair.
    """

    id: UUID = Field(default_factory=uuid4)
    project_id: UUID
    member_id: str = Field(..., min_length=1, max_length=100)
    role: str = Field(default="contributor", min_length=1, max_length=50)
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    @field_validator("member_id")
    @classmethod
    def strip_member_id(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("member_id must not be blank")
        return v


class Milestone(BaseModel):
    """
    A dated checkpoint of a project that tasks can be linked to.

    Linked tasks must fall inside the milestone window; ``progress`` is the
    mean progress of the linked tasks.
    """

    id: UUID = Field(default_factory=uuid4)
    project_id: UUID
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=2000)
    start_date: Optional[datetime] = None
    due_date: datetime
    progress: float = Field(default=0.0, ge=0, le=100)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: Optional[datetime] = None

    @model_validator(mode="after")
    def validate_window(self) -> "Milestone":
        if self.start_date is not None and self.start_date > self.due_date:
            raise ValueError("Milestone start date must be on or before its due date")
        return self


class LeafItem(BaseModel):
    """
    A terminal unit of work attached under a task.

    Contributes to its task's weight budget and progress aggregation exactly
    like a subtask does.
    """

    id: UUID = Field(default_factory=uuid4)
    task_id: UUID
    title: str = Field(..., min_length=1, max_length=250)
    description: Optional[str] = Field(default=None, max_length=2000)
    weight: int = Field(..., ge=MIN_WEIGHT, le=MAX_WEIGHT)
    progress: float = Field(default=0.0, ge=0, le=100)
    status: LeafItemStatus = Field(default=LeafItemStatus.PENDING)
    assignee_id: Optional[str] = None
    assigned_by_id: Optional[str] = None
    due_date: Optional[datetime] = None
    rejection_reason: Optional[str] = Field(default=None, max_length=500)
    accepted_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: Optional[datetime] = None


class Task(BaseModel):
    """
    A node in a per-project task tree.

    ``depth``, ``is_leaf`` and ``progress`` of non-leaf tasks are derived by
    the aggregation services and are never taken from caller input.
    """

    id: UUID = Field(default_factory=uuid4, description="Unique identifier for the task")
    title: str = Field(..., min_length=1, max_length=250, description="Task title")
    description: Optional[str] = Field(default=None, max_length=2000)

    # Hierarchy
    assignment_id: UUID = Field(..., description="Assignment context the task was created under")
    parent_id: Optional[UUID] = Field(default=None, description="Parent task ID, None for root tasks")
    depth: int = Field(default=0, ge=0)
    is_leaf: bool = Field(default=True)
    milestone_id: Optional[UUID] = None

    # Aggregated values
    weight: int = Field(..., ge=0, le=MAX_WEIGHT)
    progress: float = Field(default=0.0, ge=0, le=100)

    # Lifecycle
    status: TaskStatus = Field(default=TaskStatus.PENDING)
    priority: TaskPriority = Field(default=TaskPriority.MEDIUM)
    assigned_member_id: Optional[str] = None
    assigned_by_id: Optional[str] = None
    is_auto_todo: bool = Field(default=False)
    rejection_reason: Optional[str] = Field(default=None, max_length=500)

    # Schedule and effort
    start_date: Optional[datetime] = None
    due_date: Optional[datetime] = None
    accepted_at: Optional[datetime] = None
    estimated_hours: float = Field(default=0.0, ge=0)
    actual_hours: Optional[float] = Field(default=None, ge=0)

    # Timestamps
    created_at: datetime = Field(default_factory=datetime.utcnow, description="Creation timestamp")
    updated_at: Optional[datetime] = None

    class Config:
        """Pydantic configuration."""
        json_schema_extra = {
            "example": {
                "id": "123e4567-e89b-12d3-a456-426614174001",
                "title": "Design authentication flow",
                "assignment_id": "123e4567-e89b-12d3-a456-426614174000",
                "parent_id": None,
                "depth": 0,
                "is_leaf": True,
                "weight": 40,
                "progress": 0.0,
                "status": "Pending",
                "priority": "Medium",
            }
        }

    @model_validator(mode='after')
    def validate_parent_depth_consistency(self) -> 'Task':
        """
        Validate parent_id consistency with depth.

        Raises:
            ValueError: If parent_id and depth disagree
        """
        if self.depth == 0 and self.parent_id is not None:
            raise ValueError("Depth 0 tasks cannot have a parent_id")
        if self.depth > 0 and self.parent_id is None:
            raise ValueError(f"Depth {self.depth} tasks must have a parent_id")
        return self

    @property
    def is_root(self) -> bool:
        return self.parent_id is None


class TaskTree(Task):
    """A task together with its full subtree of subtasks and leaf items."""

    subtasks: List["TaskTree"] = Field(default_factory=list)
    leaf_items: List[LeafItem] = Field(default_factory=list)

    def iter_ids(self):
        """Yield the ids of this task and every descendant task, depth-first."""
        yield self.id
        for subtask in self.subtasks:
            yield from subtask.iter_ids()


class TaskPatch(BaseModel):
    """
    Partial update for a task.

    Only fields explicitly set by the caller are applied. Derived fields
    (progress, status, depth, is_leaf) are not fields of the patch and are
    rejected instead of ignored.
    """

    model_config = ConfigDict(extra="forbid")

    title: Optional[str] = Field(default=None, min_length=1, max_length=250)
    description: Optional[str] = Field(default=None, max_length=2000)
    weight: Optional[int] = None
    parent_id: Optional[UUID] = None
    assigned_member_id: Optional[str] = None
    priority: Optional[TaskPriority] = None
    start_date: Optional[datetime] = None
    due_date: Optional[datetime] = None
    estimated_hours: Optional[float] = Field(default=None, ge=0)
    actual_hours: Optional[float] = Field(default=None, ge=0)
    is_auto_todo: Optional[bool] = None
    milestone_id: Optional[UUID] = None

    def changes(self) -> dict:
        """Return only the fields the caller explicitly provided."""
        return self.model_dump(exclude_unset=True)


class Notification(BaseModel):
    """A notification recorded by the database notification sink."""

    id: UUID = Field(default_factory=uuid4)
    recipient_id: str
    subject: str
    body: str
    related_entity_type: str
    related_entity_id: UUID
    is_read: bool = False
    created_at: datetime = Field(default_factory=datetime.utcnow)


TaskTree.model_rebuild()
