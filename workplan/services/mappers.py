"""
Conversion helpers between ORM rows and pydantic models.
"""

from uuid import UUID

from workplan.database import AssignmentORM, LeafItemORM, MilestoneORM, ProjectORM, TaskORM
from workplan.models import Assignment, LeafItem, Milestone, Project, Task, TaskTree


def _task_fields(task_orm: TaskORM) -> dict:
    return {
        "id": UUID(task_orm.id),
        "title": task_orm.title,
        "description": task_orm.description,
        "assignment_id": UUID(task_orm.assignment_id),
        "parent_id": UUID(task_orm.parent_id) if task_orm.parent_id else None,
        "depth": task_orm.depth,
        "is_leaf": task_orm.is_leaf,
        "milestone_id": UUID(task_orm.milestone_id) if task_orm.milestone_id else None,
        "weight": task_orm.weight,
        "progress": task_orm.progress,
        "status": task_orm.status,
        "priority": task_orm.priority,
        "assigned_member_id": task_orm.assigned_member_id,
        "assigned_by_id": task_orm.assigned_by_id,
        "is_auto_todo": task_orm.is_auto_todo,
        "rejection_reason": task_orm.rejection_reason,
        "start_date": task_orm.start_date,
        "due_date": task_orm.due_date,
        "accepted_at": task_orm.accepted_at,
        "estimated_hours": task_orm.estimated_hours,
        "actual_hours": task_orm.actual_hours,
        "created_at": task_orm.created_at,
        "updated_at": task_orm.updated_at,
    }


def task_to_model(task_orm: TaskORM) -> Task:
    """Convert TaskORM to Pydantic Task model."""
    return Task.model_validate(_task_fields(task_orm))


def task_to_tree(task_orm: TaskORM) -> TaskTree:
    """Convert TaskORM to a TaskTree node with empty child collections."""
    return TaskTree.model_validate(_task_fields(task_orm))


def leaf_item_to_model(item_orm: LeafItemORM) -> LeafItem:
    """Convert LeafItemORM to Pydantic LeafItem model."""
    return LeafItem.model_validate(
        {
            "id": UUID(item_orm.id),
            "task_id": UUID(item_orm.task_id),
            "title": item_orm.title,
            "description": item_orm.description,
            "weight": item_orm.weight,
            "progress": item_orm.progress,
            "status": item_orm.status,
            "assignee_id": item_orm.assignee_id,
            "assigned_by_id": item_orm.assigned_by_id,
            "due_date": item_orm.due_date,
            "rejection_reason": item_orm.rejection_reason,
            "accepted_at": item_orm.accepted_at,
            "created_at": item_orm.created_at,
            "updated_at": item_orm.updated_at,
        }
    )


def leaf_item_to_orm(item: LeafItem) -> LeafItemORM:
    """Convert Pydantic LeafItem to LeafItemORM model."""
    return LeafItemORM(
        id=str(item.id),
        task_id=str(item.task_id),
        title=item.title,
        description=item.description,
        weight=item.weight,
        progress=item.progress,
        status=item.status.value,
        assignee_id=item.assignee_id,
        assigned_by_id=item.assigned_by_id,
        due_date=item.due_date,
        rejection_reason=item.rejection_reason,
        accepted_at=item.accepted_at,
        created_at=item.created_at,
        updated_at=item.updated_at,
    )


def project_to_model(project_orm: ProjectORM) -> Project:
    return Project.model_validate(
        {
            "id": UUID(project_orm.id),
            "name": project_orm.name,
            "department": project_orm.department,
            "created_at": project_orm.created_at,
        }
    )


def assignment_to_model(assignment_orm: AssignmentORM) -> Assignment:
    return Assignment.model_validate(
        {
            "id": UUID(assignment_orm.id),
            "project_id": UUID(assignment_orm.project_id),
            "member_id": assignment_orm.member_id,
            "role": assignment_orm.role,
            "is_active": assignment_orm.is_active,
            "created_at": assignment_orm.created_at,
        }
    )


def milestone_to_model(milestone_orm: MilestoneORM) -> Milestone:
    return Milestone.model_validate(
        {
            "id": UUID(milestone_orm.id),
            "project_id": UUID(milestone_orm.project_id),
            "name": milestone_orm.name,
            "description": milestone_orm.description,
            "start_date": milestone_orm.start_date,
            "due_date": milestone_orm.due_date,
            "progress": milestone_orm.progress,
            "created_at": milestone_orm.created_at,
            "updated_at": milestone_orm.updated_at,
        }
    )
