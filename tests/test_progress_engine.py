"""
Tests for the progress aggregation engine.

Covers the weighted average, leaf progress reporting rules, upward
propagation through several levels and idempotent recomputation.
"""

from types import SimpleNamespace

import pytest

from workplan.exceptions import (
    InvalidStateTransitionError,
    NotALeafError,
    ValidationError,
)
from workplan.services.progress_engine import validate_progress, weighted_progress

from tests.helpers import LEAD, ALICE


def child(weight, progress):
    return SimpleNamespace(weight=weight, progress=progress)


class TestWeightedProgress:
    """Tests for the pure weighted average."""

    def test_weighted_average(self):
        """Test the 60/40 example: only the lighter child is done."""
        assert weighted_progress([child(60, 0.0), child(40, 100.0)]) == 40.0

    def test_equal_weights_is_plain_average(self):
        assert weighted_progress([child(50, 20.0), child(50, 80.0)]) == 50.0

    def test_no_children_is_zero(self):
        """Test that an empty collection yields 0 instead of dividing by zero."""
        assert weighted_progress([]) == 0.0

    def test_zero_total_weight_is_zero(self):
        assert weighted_progress([child(0, 100.0), child(0, 50.0)]) == 0.0


class TestValidateProgress:
    """Tests for validate_progress()."""

    @pytest.mark.parametrize("value", [0, 55.5, 100])
    def test_accepts_values_in_range(self, value):
        assert validate_progress(value) == float(value)

    @pytest.mark.parametrize("value", [-1, 100.1, "50", None, False])
    def test_rejects_invalid_values(self, value):
        with pytest.raises(ValidationError) as exc_info:
            validate_progress(value)
        assert exc_info.value.field == "progress"


async def _accepted_subtask(task_service, parent_id, title, weight):
    task = await task_service.add_subtask(
        parent_id, title, weight=weight, creator_id=LEAD, assigned_member_id=ALICE
    )
    await task_service.accept_task(task.id, ALICE)
    return task


class TestAggregation:
    """Tests for progress roll-up through the tree."""

    @pytest.mark.asyncio
    async def test_root_progress_from_two_subtasks(self, task_service, root_task):
        """Test that finishing the 40-weight subtask puts the root at 40%."""
        a = await _accepted_subtask(task_service, root_task.id, "A", 60)
        b = await _accepted_subtask(task_service, root_task.id, "B", 40)

        await task_service.update_progress(b.id, ALICE, 100)

        root = await task_service.get_task(root_task.id)
        assert root.progress == 40.0
        assert root.subtasks[0].id == a.id
        assert root.subtasks[0].progress == 0.0

    @pytest.mark.asyncio
    async def test_progress_propagates_through_levels(self, task_service, root_task):
        """Test that a grandchild's progress reaches the root."""
        a = await task_service.add_subtask(root_task.id, "A", weight=50, creator_id=LEAD)
        await task_service.add_subtask(root_task.id, "B", weight=50, creator_id=LEAD)
        a1 = await _accepted_subtask(task_service, a.id, "A1", 100)

        await task_service.update_progress(a1.id, ALICE, 50)

        tree = await task_service.get_task(root_task.id)
        assert tree.subtasks[0].progress == 50.0
        # A now weighs 100 (its only child), B weighs 50
        assert tree.subtasks[0].weight == 100
        assert tree.progress == pytest.approx(100 * 50.0 / 150)

    @pytest.mark.asyncio
    async def test_partial_progress(self, task_service, root_task):
        a = await _accepted_subtask(task_service, root_task.id, "A", 75)
        b = await _accepted_subtask(task_service, root_task.id, "B", 25)

        await task_service.update_progress(a.id, ALICE, 40)
        await task_service.update_progress(b.id, ALICE, 80)

        root = await task_service.get_task(root_task.id)
        assert root.progress == pytest.approx((75 * 40 + 25 * 80) / 100)

    @pytest.mark.asyncio
    async def test_leaf_items_feed_task_progress(self, task_service, leaf_item_service, root_task):
        """Test that leaf item progress rolls up like subtask progress."""
        first = await leaf_item_service.create_leaf_item(
            root_task.id, "Draft", weight=50, assigner_id=LEAD, assignee_id=ALICE
        )
        await leaf_item_service.create_leaf_item(
            root_task.id, "Review", weight=50, assigner_id=LEAD, assignee_id=ALICE
        )

        await leaf_item_service.accept_leaf_item(first.id, ALICE)
        await leaf_item_service.update_leaf_item(first.id, progress=100)

        root = await task_service.get_task(root_task.id)
        assert root.progress == 50.0
        assert root.is_leaf is True

    @pytest.mark.asyncio
    async def test_recompute_is_idempotent(self, task_service, root_task):
        """Test that running the walk again changes nothing."""
        await _accepted_subtask(task_service, root_task.id, "A", 60)
        b = await _accepted_subtask(task_service, root_task.id, "B", 40)
        await task_service.update_progress(b.id, ALICE, 100)

        before = await task_service.get_task(root_task.id)
        await task_service.engine.recompute_ancestors(root_task.id)
        await task_service.engine.recompute_ancestors(root_task.id)
        after = await task_service.get_task(root_task.id)

        assert after.progress == before.progress == 40.0
        assert after.weight == before.weight == 100

    @pytest.mark.asyncio
    async def test_recompute_unknown_task_is_noop(self, task_service):
        await task_service.engine.recompute_progress("does-not-exist")


class TestSetLeafProgress:
    """Tests for the leaf progress guards."""

    @pytest.mark.asyncio
    async def test_parent_cannot_take_direct_progress(self, task_service, root_task):
        await task_service.add_subtask(root_task.id, "A", weight=50, creator_id=LEAD)
        task_orm = await task_service.store.get_task(root_task.id)

        with pytest.raises(NotALeafError):
            await task_service.engine.set_leaf_progress(task_orm, 10)

    @pytest.mark.asyncio
    async def test_leaf_task_with_leaf_items_takes_direct_progress(
        self, task_service, leaf_item_service, root_task
    ):
        await leaf_item_service.create_leaf_item(root_task.id, "Draft", weight=50, assigner_id=LEAD)
        task_orm = await task_service.store.get_task(root_task.id)
        task_orm.status = "Accepted"

        await task_service.engine.set_leaf_progress(task_orm, 10)

        assert task_orm.progress == 10.0

    @pytest.mark.asyncio
    async def test_pending_task_cannot_take_progress(self, task_service, root_task):
        task_orm = await task_service.store.get_task(root_task.id)

        with pytest.raises(InvalidStateTransitionError) as exc_info:
            await task_service.engine.set_leaf_progress(task_orm, 10)
        assert exc_info.value.current.value == "Pending"

    @pytest.mark.asyncio
    async def test_out_of_range_progress_rejected(self, task_service, root_task):
        task_orm = await task_service.store.get_task(root_task.id)
        task_orm.status = "Accepted"

        with pytest.raises(ValidationError):
            await task_service.engine.set_leaf_progress(task_orm, 150)
        assert task_orm.progress == 0.0


class TestEstimatedHours:
    """Tests for the additive estimate roll-up."""

    @pytest.mark.asyncio
    async def test_estimates_sum_up_to_root(self, task_service, root_task):
        a = await task_service.add_subtask(
            root_task.id, "A", weight=50, creator_id=LEAD, estimated_hours=8
        )
        await task_service.add_subtask(
            root_task.id, "B", weight=50, creator_id=LEAD, estimated_hours=4
        )
        await task_service.add_subtask(a.id, "A1", weight=50, creator_id=LEAD, estimated_hours=3)
        await task_service.add_subtask(a.id, "A2", weight=50, creator_id=LEAD, estimated_hours=2)

        tree = await task_service.get_task(root_task.id)
        assert tree.subtasks[0].estimated_hours == 5
        assert tree.estimated_hours == 9
