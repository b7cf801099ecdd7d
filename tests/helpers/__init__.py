"""Test helper utilities for workplan tests."""

from tests.helpers.members import ALICE, BOB, LEAD, OUTSIDER

__all__ = [
    "LEAD",
    "ALICE",
    "BOB",
    "OUTSIDER",
]
