"""
Tests for TaskService - creation, reading, updates and moves.

Tests cover hierarchy validation (membership, nesting, acyclicity), the
supervisor rule on updates and the notifications sent along the way.
"""

from datetime import datetime, timedelta
from uuid import uuid4

import pytest

from workplan.exceptions import (
    AssignmentNotFoundError,
    BudgetExceededError,
    CircularHierarchyError,
    InconsistentHierarchyError,
    NestingLimitError,
    NotAMemberError,
    NotAuthorizedError,
    ProjectNotFoundError,
    TaskNotFoundError,
    ValidationError,
)
from workplan.models import TaskPatch, TaskPriority, TaskStatus
from workplan.rules_config import HierarchyRules, NestingPolicy
from workplan.services.task_service import TaskService

from tests.helpers import LEAD, ALICE, BOB, OUTSIDER


class TestTaskServiceCreate:
    """Tests for task creation operations."""

    @pytest.mark.asyncio
    async def test_create_task_basic(self, task_service, team):
        """Test creating a basic root task."""
        task = await task_service.create_task(
            title="Plan release",
            assignment_id=team["assignment_id"],
            weight=40,
            creator_id=LEAD,
            description="Dates and owners",
        )

        assert task.title == "Plan release"
        assert task.description == "Dates and owners"
        assert task.depth == 0
        assert task.parent_id is None
        assert task.is_leaf is True
        assert task.weight == 40
        assert task.progress == 0.0
        assert task.status == TaskStatus.PENDING
        assert task.priority == TaskPriority.MEDIUM

    @pytest.mark.asyncio
    async def test_create_task_saves_to_database(self, task_service, team):
        task = await task_service.create_task("Persisted", team["assignment_id"], weight=10)

        retrieved = await task_service.get_task(task.id)
        assert retrieved.id == task.id
        assert retrieved.title == "Persisted"

    @pytest.mark.asyncio
    async def test_create_task_unknown_assignment(self, task_service, team):
        with pytest.raises(AssignmentNotFoundError):
            await task_service.create_task("Orphan", uuid4(), weight=10)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("title", ["", "   ", "x" * 251])
    async def test_create_task_invalid_title(self, task_service, team, title):
        with pytest.raises(ValidationError) as exc_info:
            await task_service.create_task(title, team["assignment_id"], weight=10)
        assert exc_info.value.field == "title"

    @pytest.mark.asyncio
    async def test_high_priority_requires_due_date(self, task_service, team):
        with pytest.raises(ValidationError) as exc_info:
            await task_service.create_task(
                "Hotfix", team["assignment_id"], weight=10, priority=TaskPriority.CRITICAL
            )
        assert exc_info.value.field == "due_date"

    @pytest.mark.asyncio
    async def test_start_date_after_due_date_rejected(self, task_service, team):
        now = datetime.utcnow()
        with pytest.raises(ValidationError):
            await task_service.create_task(
                "Backwards", team["assignment_id"], weight=10,
                start_date=now + timedelta(days=3), due_date=now,
            )

    @pytest.mark.asyncio
    async def test_create_notifies_creator_and_assignee(self, task_service, team, sink):
        await task_service.create_task(
            "Write docs", team["assignment_id"], weight=10, creator_id=LEAD,
            assigned_member_id=ALICE,
        )

        assert sink.subjects_for(LEAD) == ["New Task Created"]
        assert sink.subjects_for(ALICE) == ["Assigned to Task"]

    @pytest.mark.asyncio
    async def test_create_with_non_member_assignee(self, task_service, team):
        """Test that assigning someone outside the project is refused."""
        with pytest.raises(NotAMemberError):
            await task_service.create_task(
                "Secret", team["assignment_id"], weight=10, assigned_member_id=OUTSIDER
            )

        assert await task_service.get_tasks_for_project(team["project_id"]) == []


class TestTaskServiceSubtasks:
    """Tests for subtask creation with hierarchy validation."""

    @pytest.mark.asyncio
    async def test_add_subtask(self, task_service, root_task, sink):
        child = await task_service.add_subtask(root_task.id, "Design", weight=30, creator_id=LEAD)

        assert child.parent_id == root_task.id
        assert child.depth == 1
        assert child.assignment_id == root_task.assignment_id
        assert "New Subtask Created" in sink.subjects_for(LEAD)

        parent = await task_service.get_task(root_task.id)
        assert parent.is_leaf is False

    @pytest.mark.asyncio
    async def test_add_subtask_missing_parent(self, task_service, team):
        with pytest.raises(TaskNotFoundError):
            await task_service.add_subtask(uuid4(), "Lost", weight=10)

    @pytest.mark.asyncio
    async def test_parent_from_other_project_rejected(self, task_service, team, root_task):
        """Test that a parent in a different project is inconsistent."""
        with pytest.raises(InconsistentHierarchyError):
            await task_service.create_task(
                "Cross-project", team["other_assignment_id"], weight=10, parent_id=root_task.id
            )

    @pytest.mark.asyncio
    async def test_missing_parent_rejected(self, task_service, team):
        with pytest.raises(InconsistentHierarchyError):
            await task_service.create_task(
                "Dangling", team["assignment_id"], weight=10, parent_id=uuid4()
            )

    @pytest.mark.asyncio
    async def test_single_level_nesting(self, db_session, notifier, root_task):
        """Test that single-level nesting refuses grandchildren."""
        service = TaskService(
            db_session, notifier=notifier, rules=HierarchyRules(nesting_policy=NestingPolicy.SINGLE)
        )
        child = await service.add_subtask(root_task.id, "Child", weight=10)

        with pytest.raises(NestingLimitError):
            await service.add_subtask(child.id, "Grandchild", weight=10)

    @pytest.mark.asyncio
    async def test_multi_level_nesting_limit(self, task_service, root_task):
        """Test that the chain stops at the configured max depth."""
        parent_id = root_task.id
        for level in range(1, 6):
            task = await task_service.add_subtask(parent_id, f"Level {level}", weight=10)
            assert task.depth == level
            parent_id = task.id

        with pytest.raises(NestingLimitError):
            await task_service.add_subtask(parent_id, "Level 6", weight=10)


class TestTaskServiceRead:
    """Tests for read operations."""

    @pytest.mark.asyncio
    async def test_get_task_returns_subtree(self, task_service, leaf_item_service, root_task):
        a = await task_service.add_subtask(root_task.id, "A", weight=50)
        await task_service.add_subtask(a.id, "A1", weight=50)
        await leaf_item_service.create_leaf_item(root_task.id, "Checklist", weight=10)

        tree = await task_service.get_task(root_task.id)

        assert [sub.title for sub in tree.subtasks] == ["A"]
        assert [sub.title for sub in tree.subtasks[0].subtasks] == ["A1"]
        assert [item.title for item in tree.leaf_items] == ["Checklist"]
        assert len(list(tree.iter_ids())) == 3

    @pytest.mark.asyncio
    async def test_get_missing_task(self, task_service):
        with pytest.raises(TaskNotFoundError):
            await task_service.get_task(uuid4())

    @pytest.mark.asyncio
    async def test_get_tasks_for_project_returns_roots(self, task_service, team, root_task):
        await task_service.add_subtask(root_task.id, "Child", weight=10)
        await task_service.create_task("Other root", team["assignment_id"], weight=10)
        await task_service.create_task("Foreign root", team["other_assignment_id"], weight=10)

        roots = await task_service.get_tasks_for_project(team["project_id"])

        assert {task.title for task in roots} == {"Launch new website", "Other root"}

    @pytest.mark.asyncio
    async def test_get_tasks_for_missing_project(self, task_service):
        with pytest.raises(ProjectNotFoundError):
            await task_service.get_tasks_for_project(uuid4())


class TestTaskServiceUpdate:
    """Tests for partial updates."""

    @pytest.mark.asyncio
    async def test_member_may_edit_title_and_hours(self, task_service, root_task):
        updated = await task_service.update_task(
            root_task.id,
            TaskPatch(title="Relaunch website", actual_hours=3.5),
            is_supervisor=False,
            actor_id=ALICE,
        )

        assert updated.title == "Relaunch website"
        assert updated.actual_hours == 3.5

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "changes",
        [{"weight": 10}, {"priority": "Low"}, {"estimated_hours": 2}, {"assigned_member_id": BOB}],
    )
    async def test_member_may_not_edit_supervisor_fields(self, task_service, root_task, changes):
        with pytest.raises(NotAuthorizedError):
            await task_service.update_task(root_task.id, changes, is_supervisor=False, actor_id=ALICE)

    @pytest.mark.asyncio
    async def test_weight_of_parent_is_derived(self, task_service, root_task):
        await task_service.add_subtask(root_task.id, "Child", weight=10)

        with pytest.raises(ValidationError) as exc_info:
            await task_service.update_task(root_task.id, {"weight": 50}, is_supervisor=True)
        assert exc_info.value.field == "weight"

    @pytest.mark.asyncio
    async def test_update_assignee_notifies(self, task_service, root_task, sink):
        updated = await task_service.update_task(
            root_task.id, {"assigned_member_id": BOB}, is_supervisor=True, actor_id=LEAD
        )

        assert updated.assigned_member_id == BOB
        assert updated.assigned_by_id == LEAD
        assert "Assigned to Task" in sink.subjects_for(BOB)

    @pytest.mark.asyncio
    async def test_update_assignee_requires_membership(self, task_service, root_task):
        with pytest.raises(NotAMemberError):
            await task_service.update_task(
                root_task.id, {"assigned_member_id": OUTSIDER}, is_supervisor=True
            )

    @pytest.mark.asyncio
    async def test_due_date_change_notifies_assignee(self, task_service, team, sink):
        task = await task_service.create_task(
            "Ship", team["assignment_id"], weight=10, creator_id=LEAD, assigned_member_id=ALICE
        )

        await task_service.update_task(
            task.id, {"due_date": datetime(2030, 6, 1)}, is_supervisor=True, actor_id=LEAD
        )

        assert "Task Due Date Updated" in sink.subjects_for(ALICE)

    @pytest.mark.asyncio
    async def test_clearing_due_date_of_high_priority_rejected(self, task_service, team):
        task = await task_service.create_task(
            "Urgent", team["assignment_id"], weight=10,
            priority=TaskPriority.HIGH, due_date=datetime(2030, 6, 1),
        )

        with pytest.raises(ValidationError):
            await task_service.update_task(task.id, {"due_date": None}, is_supervisor=True)

    @pytest.mark.asyncio
    async def test_missing_task(self, task_service):
        with pytest.raises(TaskNotFoundError):
            await task_service.update_task(uuid4(), {"title": "Nope"})

    @pytest.mark.asyncio
    @pytest.mark.parametrize("field", ["progress", "status", "depth", "is_leaf"])
    async def test_derived_field_is_rejected(self, task_service, root_task, field):
        """Test that a derived field fails loudly instead of being dropped."""
        with pytest.raises(ValidationError) as exc_info:
            await task_service.update_task(
                root_task.id, {field: 99, "title": "Renamed"}, is_supervisor=True
            )
        assert exc_info.value.field == field

        unchanged = await task_service.get_task(root_task.id)
        assert unchanged.title == root_task.title
        assert unchanged.progress == 0.0

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "changes, field",
        [({"estimated_hours": -1}, "estimated_hours"), ({"due_date": "not a date"}, "due_date")],
    )
    async def test_malformed_value_raises_validation_error(
        self, task_service, root_task, changes, field
    ):
        with pytest.raises(ValidationError) as exc_info:
            await task_service.update_task(root_task.id, changes, is_supervisor=True)
        assert exc_info.value.field == field


class TestTaskServiceMove:
    """Tests for re-parenting tasks."""

    @pytest.mark.asyncio
    async def test_move_under_new_parent(self, task_service, team, root_task):
        other_root = await task_service.create_task("Marketing", team["assignment_id"], weight=100)
        child = await task_service.add_subtask(root_task.id, "Landing page", weight=40)
        await task_service.add_subtask(child.id, "Hero image", weight=100)

        moved = await task_service.move_task(child.id, other_root.id)

        assert moved.parent_id == other_root.id
        assert moved.depth == 1
        old_parent = await task_service.get_task(root_task.id)
        new_parent = await task_service.get_task(other_root.id)
        assert old_parent.is_leaf is True
        assert new_parent.is_leaf is False
        assert new_parent.weight == 100
        assert new_parent.subtasks[0].subtasks[0].depth == 2

    @pytest.mark.asyncio
    async def test_move_to_root_level(self, task_service, team, root_task):
        child = await task_service.add_subtask(root_task.id, "Standalone", weight=40)

        moved = await task_service.move_task(child.id, None)

        assert moved.parent_id is None
        assert moved.depth == 0
        roots = await task_service.get_tasks_for_project(team["project_id"])
        assert len(roots) == 2

    @pytest.mark.asyncio
    async def test_move_under_descendant_is_circular(self, task_service, root_task):
        """Test that a task cannot be moved below one of its descendants."""
        a = await task_service.add_subtask(root_task.id, "A", weight=50)
        a1 = await task_service.add_subtask(a.id, "A1", weight=50)

        with pytest.raises(CircularHierarchyError):
            await task_service.update_task(root_task.id, {"parent_id": a1.id}, is_supervisor=True)

        unchanged = await task_service.get_task(root_task.id)
        assert unchanged.parent_id is None
        assert unchanged.subtasks[0].id == a.id

    @pytest.mark.asyncio
    async def test_move_under_itself_is_circular(self, task_service, root_task):
        with pytest.raises(CircularHierarchyError):
            await task_service.move_task(root_task.id, root_task.id)

    @pytest.mark.asyncio
    async def test_move_into_full_parent(self, task_service, team, root_task):
        full = await task_service.create_task("Full", team["assignment_id"], weight=100)
        await task_service.add_subtask(full.id, "Everything", weight=100)
        child = await task_service.add_subtask(root_task.id, "Extra", weight=10)

        with pytest.raises(BudgetExceededError):
            await task_service.move_task(child.id, full.id)

    @pytest.mark.asyncio
    async def test_move_with_new_weight_checks_only_new_parent(
        self, task_service, team, root_task
    ):
        """Test that a combined move and reweigh is judged by the new parent's budget."""
        x = await task_service.add_subtask(root_task.id, "X", weight=60, creator_id=LEAD)
        await task_service.add_subtask(root_task.id, "Y", weight=40, creator_id=LEAD)
        target = await task_service.create_task(
            "Target", team["assignment_id"], weight=50, creator_id=LEAD
        )

        moved = await task_service.update_task(
            x.id, {"parent_id": target.id, "weight": 70}, is_supervisor=True
        )

        assert moved.parent_id == target.id
        assert moved.weight == 70
        new_parent = await task_service.get_task(target.id)
        assert new_parent.weight == 70
        old_parent = await task_service.get_task(root_task.id)
        assert old_parent.weight == 40

    @pytest.mark.asyncio
    async def test_move_with_new_weight_over_new_budget(self, task_service, team, root_task):
        x = await task_service.add_subtask(root_task.id, "X", weight=60, creator_id=LEAD)
        target = await task_service.create_task("Target", team["assignment_id"], weight=100)
        await task_service.add_subtask(target.id, "Resident", weight=50)

        with pytest.raises(BudgetExceededError):
            await task_service.update_task(
                x.id, {"parent_id": target.id, "weight": 70}, is_supervisor=True
            )

    @pytest.mark.asyncio
    async def test_move_across_projects(self, task_service, team, root_task):
        foreign = await task_service.create_task("Foreign", team["other_assignment_id"], weight=100)
        child = await task_service.add_subtask(root_task.id, "Mine", weight=10)

        with pytest.raises(InconsistentHierarchyError):
            await task_service.move_task(child.id, foreign.id)

    @pytest.mark.asyncio
    async def test_move_respects_subtree_height(self, db_session, notifier, team):
        """Test that a deep subtree cannot be moved where it would exceed max depth."""
        service = TaskService(db_session, notifier=notifier, rules=HierarchyRules(max_depth=2))
        host = await service.create_task("Host", team["assignment_id"], weight=100)
        host_child = await service.add_subtask(host.id, "Host child", weight=10)
        mover = await service.create_task("Mover", team["assignment_id"], weight=100)
        await service.add_subtask(mover.id, "Mover child", weight=10)

        with pytest.raises(NestingLimitError):
            await service.move_task(mover.id, host_child.id)
