"""
workplan - task hierarchy aggregation and consistency engine.

Maintains per-project trees of tasks, subtasks and leaf items with weight
budgets, weighted progress roll-ups and a multi-actor task lifecycle.
"""

__version__ = "0.1.0"
