"""Entry point for workplan.

This module allows running workplan as a module:
    python -m workplan init-db
    python -m workplan show <task-id>

Or as an installed command:
    workplan show <task-id>
"""

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.text import Text
from rich.tree import Tree

from workplan.config import Config
from workplan.database import DatabaseManager
from workplan.exceptions import NotFoundError
from workplan.logging_config import get_logger, setup_logging
from workplan.models import TaskStatus, TaskTree
from workplan.rules_config import HierarchyRules
from workplan.services.notifications import notifier_for
from workplan.services.task_service import TaskService

logger = get_logger(__name__)

_STATUS_STYLES = {
    TaskStatus.PENDING: "yellow",
    TaskStatus.ACCEPTED: "cyan",
    TaskStatus.REJECTED: "red",
    TaskStatus.IN_PROGRESS: "blue",
    TaskStatus.WAITING_FOR_REVIEW: "magenta",
    TaskStatus.COMPLETED: "green",
}


def _task_label(task: TaskTree) -> Text:
    label = Text(task.title, style="bold")
    label.append(f"  w={task.weight}", style="dim")
    label.append(f"  {task.progress:.1f}%")
    label.append(f"  [{task.status.value}]", style=_STATUS_STYLES.get(task.status, ""))
    if task.assigned_member_id:
        label.append(f"  @{task.assigned_member_id}", style="italic")
    return label


def render_task_tree(task: TaskTree) -> Tree:
    """Build a rich Tree for a task, its subtasks and leaf items."""
    root = Tree(_task_label(task))
    stack = [(task, root)]
    while stack:
        node, branch = stack.pop()
        for item in node.leaf_items:
            item_label = Text(f"- {item.title}")
            item_label.append(f"  w={item.weight}  {item.progress:.1f}%", style="dim")
            item_label.append(f"  [{item.status.value}]")
            branch.add(item_label)
        for subtask in node.subtasks:
            stack.append((subtask, branch.add(_task_label(subtask))))
    return root


async def _init_db(db_config: dict) -> None:
    manager = DatabaseManager(db_config["url"], echo=db_config["echo"])
    await manager.initialize()
    await manager.close()


async def _show(db_config: dict, rules: HierarchyRules, sink_name: str, task_id: str) -> TaskTree:
    manager = DatabaseManager(db_config["url"], echo=db_config["echo"])
    await manager.initialize()
    try:
        async with manager.get_session() as session:
            service = TaskService(session, notifier=notifier_for(sink_name, session), rules=rules)
            return await service.get_task(task_id)
    finally:
        await manager.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="workplan",
        description="Task hierarchy aggregation and consistency engine"
    )
    parser.add_argument(
        '--config',
        type=Path,
        help='Path to config.ini (default: ~/.workplan/config.ini)'
    )
    parser.add_argument(
        '--log-level',
        help='Logging level (default: WORKPLAN_LOG_LEVEL or INFO)'
    )

    commands = parser.add_subparsers(dest="command", required=True)
    commands.add_parser("init-db", help="Create the database schema")
    show = commands.add_parser("show", help="Render a task and its subtree")
    show.add_argument("task_id", help="Task id")
    return parser


def main(args: Optional[list[str]] = None) -> int:
    """Main entry point for workplan.

    Args:
        args: Command-line arguments (defaults to sys.argv)

    Returns:
        Exit code (0 for success, non-zero for error)
    """
    parsed = build_parser().parse_args(args)

    log_level = parsed.log_level.upper() if parsed.log_level else None
    setup_logging(log_level=log_level, console=True)

    config = Config(parsed.config)
    db_config = config.get_database_config()

    try:
        if parsed.command == "init-db":
            asyncio.run(_init_db(db_config))
            logger.info(f"Database ready at {db_config['url']}")
            return 0

        rules = HierarchyRules.from_toml_file(config.get_hierarchy_config_path())
        sink_name = config.get_notification_config()["sink"]
        task = asyncio.run(_show(db_config, rules, sink_name, parsed.task_id))
        Console().print(render_task_tree(task))
        return 0
    except NotFoundError as e:
        logger.error(str(e))
        return 2
    except KeyboardInterrupt:
        logger.info("workplan interrupted by user (Ctrl+C)")
        return 0
    except Exception:
        logger.error("Error running workplan", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
