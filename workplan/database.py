"""
Database layer for workplan.

Provides SQLAlchemy ORM models, async engine/session management, and database
initialization. SQLite via aiosqlite is the default backend.
"""

from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import AsyncGenerator, Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    event,
)
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from workplan.logging_config import get_logger

logger = get_logger(__name__)

_DATA_DIR = Path.home() / ".workplan"
_DEFAULT_DB_PATH = _DATA_DIR / "workplan.db"
_DEFAULT_DB_URL = f"sqlite+aiosqlite:///{_DEFAULT_DB_PATH}"


class Base(DeclarativeBase):
    """Base class for all ORM models."""
    pass


class ProjectORM(Base):
    """SQLAlchemy ORM model for projects."""
    __tablename__ = "projects"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    department: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    def __repr__(self) -> str:
        return f"<ProjectORM(id={self.id}, name={self.name})>"


class AssignmentORM(Base):
    """
    SQLAlchemy ORM model for project assignments.

    One row per (project, member) pair; deactivated rows are kept and
    reactivated instead of duplicated.
    """
    __tablename__ = "assignments"
    __table_args__ = (
        UniqueConstraint("project_id", "member_id", name="uq_assignment_project_member"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    project_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("projects.id"), nullable=False, index=True
    )
    member_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    role: Mapped[str] = mapped_column(String(50), nullable=False, default="contributor")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    def __repr__(self) -> str:
        return (
            f"<AssignmentORM(id={self.id}, project_id={self.project_id}, "
            f"member_id={self.member_id}, active={self.is_active})>"
        )


class MilestoneORM(Base):
    """
    SQLAlchemy ORM model for project milestones.

    ``progress`` is derived from the tasks linked to the milestone.
    """
    __tablename__ = "milestones"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    project_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("projects.id"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    start_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    due_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    progress: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<MilestoneORM(id={self.id}, name={self.name}, progress={self.progress})>"


class TaskORM(Base):
    """
    SQLAlchemy ORM model for tasks.

    Hierarchy is expressed through the parent_id column. ``version`` is an
    optimistic concurrency token maintained by SQLAlchemy on every UPDATE.
    """
    __tablename__ = "tasks"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    title: Mapped[str] = mapped_column(String(250), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Hierarchy
    assignment_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("assignments.id"), nullable=False, index=True
    )
    parent_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("tasks.id"), nullable=True, index=True
    )
    depth: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_leaf: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    milestone_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("milestones.id"), nullable=True, index=True
    )

    # Aggregated values
    weight: Mapped[int] = mapped_column(Integer, nullable=False)
    progress: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)

    # Lifecycle
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="Pending")
    priority: Mapped[str] = mapped_column(String(10), nullable=False, default="Medium")
    assigned_member_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)
    assigned_by_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    is_auto_todo: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    rejection_reason: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    # Schedule and effort
    start_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    due_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    accepted_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    estimated_hours: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    actual_hours: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<TaskORM(id={self.id}, title={self.title}, depth={self.depth})>"


class LeafItemORM(Base):
    """SQLAlchemy ORM model for leaf (action) items attached to a task."""
    __tablename__ = "leaf_items"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    task_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("tasks.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    title: Mapped[str] = mapped_column(String(250), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    weight: Mapped[int] = mapped_column(Integer, nullable=False)
    progress: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="Pending")
    assignee_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    assigned_by_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    due_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    rejection_reason: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    accepted_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<LeafItemORM(id={self.id}, task_id={self.task_id}, weight={self.weight})>"


class NotificationORM(Base):
    """In-app notification rows written by the database notification sink."""
    __tablename__ = "notifications"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    recipient_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    subject: Mapped[str] = mapped_column(String(200), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    related_entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    related_entity_id: Mapped[str] = mapped_column(String(36), nullable=False)
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)

    def __repr__(self) -> str:
        return f"<NotificationORM(id={self.id}, recipient_id={self.recipient_id})>"


def _enable_sqlite_savepoints(engine: AsyncEngine) -> None:
    """Let SQLAlchemy emit BEGIN itself so SAVEPOINT nests inside the transaction."""

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


class DatabaseManager:
    """
    Manages database connections and session lifecycle.

    Handles async engine creation, session management, and database
    initialization for both production and testing scenarios.
    """

    def __init__(self, database_url: str = _DEFAULT_DB_URL, echo: bool = False):
        """
        Initialize database manager with connection URL.

        Args:
            database_url: SQLAlchemy database URL (default: local SQLite file)
            echo: Log emitted SQL statements
        """
        self.database_url = database_url
        self.echo = echo
        self.engine: Optional[AsyncEngine] = None
        self.session_maker: Optional[async_sessionmaker[AsyncSession]] = None

    async def initialize(self) -> None:
        """
        Initialize the database engine and create tables.

        Creates the async engine, session maker, and all tables defined
        in the Base metadata.
        """
        try:
            logger.info(f"Initializing database: {self.database_url}")
            if self.database_url == _DEFAULT_DB_URL:
                _DATA_DIR.mkdir(parents=True, exist_ok=True)

            self.engine = create_async_engine(
                self.database_url,
                echo=self.echo,
                future=True,
            )
            if self.engine.dialect.name == "sqlite":
                _enable_sqlite_savepoints(self.engine)

            self.session_maker = async_sessionmaker(
                self.engine,
                class_=AsyncSession,
                expire_on_commit=False,
            )

            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)

            logger.info("Database initialized successfully")
        except Exception as e:
            logger.error(f"Failed to initialize database: {e}", exc_info=True)
            raise

    async def close(self) -> None:
        """
        Close the database engine and cleanup resources.
        """
        if self.engine:
            logger.info("Closing database connection")
            try:
                await self.engine.dispose()
                self.engine = None
                self.session_maker = None
                logger.info("Database connection closed successfully")
            except Exception as e:
                logger.error(f"Error closing database connection: {e}", exc_info=True)
                raise

    @asynccontextmanager
    async def get_session(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Get an async database session with automatic transaction management.

        Everything done inside the block commits together or not at all.

        Yields:
            AsyncSession for database operations

        Example:
            async with db_manager.get_session() as session:
                service = TaskService(session)
                await service.update_progress(task_id, member_id, 50)
        """
        if not self.session_maker:
            raise RuntimeError("DatabaseManager not initialized. Call initialize() first.")

        async with self.session_maker() as session:
            try:
                yield session
                await session.commit()
            except Exception as e:
                logger.error(f"Database session error, rolling back: {e}", exc_info=True)
                await session.rollback()
                raise


# Global database manager instance
_db_manager: Optional[DatabaseManager] = None


def get_database_manager(database_url: str = _DEFAULT_DB_URL, echo: bool = False) -> DatabaseManager:
    """
    Get or create the global database manager instance.

    Args:
        database_url: SQLAlchemy database URL
        echo: Log emitted SQL statements

    Returns:
        DatabaseManager instance
    """
    global _db_manager
    if _db_manager is None:
        _db_manager = DatabaseManager(database_url, echo=echo)
    return _db_manager


async def init_database(database_url: str = _DEFAULT_DB_URL, echo: bool = False) -> DatabaseManager:
    """
    Initialize the database and return the manager instance.

    Convenience function for application startup.

    Args:
        database_url: SQLAlchemy database URL
        echo: Log emitted SQL statements

    Returns:
        Initialized DatabaseManager instance
    """
    db_manager = get_database_manager(database_url, echo=echo)
    await db_manager.initialize()
    return db_manager
