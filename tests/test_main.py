"""
Tests for the command line entry point.
"""

import logging
from uuid import uuid4

import pytest
from rich.console import Console

from workplan.__main__ import build_parser, main, render_task_tree
from workplan.models import LeafItem, TaskStatus, TaskTree


@pytest.fixture
def isolated_env(tmp_path, monkeypatch):
    """Send logs and the database into a temporary directory."""
    monkeypatch.setattr("workplan.logging_config.LOG_DIR", tmp_path / "logs")
    monkeypatch.setattr("workplan.logging_config.LOG_FILE", tmp_path / "logs" / "workplan.log")
    monkeypatch.setenv("WORKPLAN_DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'workplan.db'}")
    monkeypatch.setenv("WORKPLAN_HIERARCHY_CONFIG", str(tmp_path / "hierarchy.toml"))

    root_logger = logging.getLogger()
    saved_handlers = list(root_logger.handlers)
    saved_level = root_logger.level
    yield tmp_path
    for handler in root_logger.handlers:
        handler.close()
    root_logger.handlers[:] = saved_handlers
    root_logger.setLevel(saved_level)


class TestParser:
    """Tests for argument parsing."""

    def test_show_requires_task_id(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["show"])

    def test_command_is_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])


class TestRenderTaskTree:
    """Tests for the rich tree rendering."""

    def test_renders_subtasks_and_items(self):
        assignment_id = uuid4()
        root = TaskTree(title="Launch", assignment_id=assignment_id, weight=100, progress=40.0)
        child = TaskTree(
            title="Write copy", assignment_id=assignment_id, weight=40, parent_id=root.id,
            depth=1, status=TaskStatus.ACCEPTED, assigned_member_id="alice",
        )
        child.leaf_items.append(LeafItem(task_id=child.id, title="Draft headline", weight=20))
        root.subtasks.append(child)

        console = Console(record=True, width=120)
        console.print(render_task_tree(root))
        output = console.export_text()

        assert "Launch" in output
        assert "40.0%" in output
        assert "Write copy" in output
        assert "@alice" in output
        assert "[Accepted]" in output
        assert "- Draft headline" in output


class TestMain:
    """Tests for running commands end to end."""

    def test_init_db_creates_database(self, isolated_env):
        assert main(["--config", str(isolated_env / "missing.ini"), "init-db"]) == 0
        assert (isolated_env / "workplan.db").exists()

    def test_show_unknown_task_exits_with_two(self, isolated_env):
        main(["--config", str(isolated_env / "missing.ini"), "init-db"])

        assert main(["--config", str(isolated_env / "missing.ini"), "show", str(uuid4())]) == 2
