"""Service layer for workplan."""
