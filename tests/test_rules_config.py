"""
Tests for hierarchy rules loading.
"""

import pytest
from pydantic import ValidationError

from workplan.rules_config import DEFAULT_MAX_DEPTH, HierarchyRules, NestingPolicy


class TestHierarchyRules:
    """Tests for the HierarchyRules model."""

    def test_defaults(self):
        rules = HierarchyRules()
        assert rules.nesting_policy == NestingPolicy.MULTI
        assert rules.max_depth == DEFAULT_MAX_DEPTH
        assert rules.weight_budget == 100
        assert rules.enforce_budget_on_update is True
        assert rules.enforce_budget_on_leaf_items is True

    def test_single_policy_caps_depth(self):
        rules = HierarchyRules(nesting_policy="single", max_depth=5)
        assert rules.effective_max_depth == 1

    def test_multi_policy_uses_max_depth(self):
        assert HierarchyRules(max_depth=3).effective_max_depth == 3

    @pytest.mark.parametrize("field,value", [
        ("max_depth", -1),
        ("max_depth", 11),
        ("weight_budget", 0),
        ("weight_budget", 101),
        ("nesting_policy", "sideways"),
    ])
    def test_out_of_range_values_rejected(self, field, value):
        with pytest.raises(ValidationError):
            HierarchyRules(**{field: value})


class TestTomlLoading:
    """Tests for HierarchyRules.from_toml_file."""

    def test_missing_file_returns_defaults(self, tmp_path):
        rules = HierarchyRules.from_toml_file(tmp_path / "absent.toml")
        assert rules == HierarchyRules()

    def test_loads_hierarchy_table(self, tmp_path):
        path = tmp_path / "hierarchy.toml"
        path.write_text(
            "[hierarchy]\n"
            'nesting_policy = "single"\n'
            "max_depth = 3\n"
            "enforce_budget_on_update = false\n"
        )

        rules = HierarchyRules.from_toml_file(path)

        assert rules.nesting_policy == NestingPolicy.SINGLE
        assert rules.max_depth == 3
        assert rules.effective_max_depth == 1
        assert rules.enforce_budget_on_update is False
        assert rules.enforce_budget_on_leaf_items is True

    def test_file_without_table_uses_defaults(self, tmp_path):
        path = tmp_path / "hierarchy.toml"
        path.write_text('[other]\nkey = "value"\n')

        assert HierarchyRules.from_toml_file(path) == HierarchyRules()

    def test_invalid_values_raise(self, tmp_path):
        path = tmp_path / "hierarchy.toml"
        path.write_text("[hierarchy]\nmax_depth = 42\n")

        with pytest.raises(ValidationError):
            HierarchyRules.from_toml_file(path)
