"""Hierarchy rules configuration for workplan.

This module provides the Pydantic model holding the structural rules the
engine enforces (nesting policy, depth limit, weight budget strictness) and
TOML file loading support.
"""

import logging
import sys
from enum import Enum
from pathlib import Path
from typing import Optional

# Use tomllib from stdlib in Python 3.11+, fallback to tomli for earlier versions
if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

# Original hierarchy depth limit: five levels below the root task
DEFAULT_MAX_DEPTH = 5


class NestingPolicy(str, Enum):
    """How deep subtasks may nest."""
    SINGLE = "single"  # subtasks only directly under root tasks
    MULTI = "multi"    # subtasks of subtasks, up to max_depth


class HierarchyRules(BaseModel):
    """Structural rules for task trees.

    Attributes:
        nesting_policy: Single-level or multi-level nesting.
        max_depth: Deepest allowed task depth under MULTI (0-10).
        weight_budget: Units a parent distributes among its direct children.
        enforce_budget_on_update: Re-check the budget when a child's weight
            is edited or a task is moved under a new parent.
        enforce_budget_on_leaf_items: Check the budget when a leaf item is
            created explicitly. Companion items synthesized on assignment
            are never checked.
    """

    nesting_policy: NestingPolicy = NestingPolicy.MULTI
    max_depth: int = Field(default=DEFAULT_MAX_DEPTH, ge=0, le=10)
    weight_budget: int = Field(default=100, ge=1, le=100)
    enforce_budget_on_update: bool = True
    enforce_budget_on_leaf_items: bool = True

    @property
    def effective_max_depth(self) -> int:
        """Deepest depth a task may have under the active policy."""
        if self.nesting_policy == NestingPolicy.SINGLE:
            return min(1, self.max_depth)
        return self.max_depth

    @classmethod
    def from_toml_file(cls, path: Optional[Path] = None) -> 'HierarchyRules':
        """Load rules from TOML file with fallback to defaults.

        Args:
            path: Path to the TOML file. If None, defaults to
                  ~/.workplan/hierarchy.toml.

        Returns:
            HierarchyRules loaded from the ``[hierarchy]`` table or defaults.
        """
        if path is None:
            path = Path.home() / ".workplan" / "hierarchy.toml"

        if not path.exists():
            logger.info(f"Hierarchy rules not found at {path}. Using defaults.")
            return cls()

        with open(path, 'rb') as f:
            data = tomllib.load(f)

        return cls(**data.get('hierarchy', {}))
