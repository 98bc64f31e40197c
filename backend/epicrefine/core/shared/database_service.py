# backend/epicrefine/core/shared/database_service.py
"""
Database service for async SQLAlchemy session management.

Provides a singleton service for managing database connections,
sessions, and health checks. Supports both SQLite (development, tests)
and PostgreSQL (production).

Usage:
    from epicrefine.core.shared.database_service import database_service

    # Get async session (context manager)
    async with database_service.get_session() as session:
        result = await session.execute(
            select(ConversationalAnalysis).where(ConversationalAnalysis.id == analysis_id)
        )
        analysis = result.scalar_one_or_none()

    # Initialize database (create tables)
    await database_service.init_db()

    # Health check
    health = await database_service.health_check()

PostgreSQL Configuration:
    Connection pooling is configured through settings / environment:
    - DB_POOL_SIZE: Number of connections to maintain (default: 20)
    - DB_MAX_OVERFLOW: Extra connections allowed during peak load (default: 40)
    - DB_POOL_RECYCLE: Recycle connections after N seconds (default: 3600)
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict, Optional

from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from epicrefine.config import settings
from epicrefine.core.database.base import Base


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    """SQLite ignores ON DELETE CASCADE unless foreign keys are switched on."""
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class DatabaseService:
    """
    Database service for managing async SQLAlchemy sessions.

    Singleton with a global instance; tests and tools may build their own
    instance with an explicit database_url.

    Attributes:
        _engine: Async SQLAlchemy engine
        _session_factory: Async session factory
        _logger: Logger instance

    Methods:
        get_session(): Get async database session (context manager)
        init_db(): Initialize database (create all tables)
        health_check(): Check database connectivity
        close(): Close database engine and connections
    """

    def __init__(self, database_url: Optional[str] = None):
        """
        Initialize database service.

        Args:
            database_url: SQLAlchemy async URL. Defaults to settings.database_url.
        """
        self._logger = logging.getLogger("epicrefine.database")
        self._database_url = database_url or settings.database_url
        self._engine: Optional[AsyncEngine] = None
        self._session_factory: Optional[async_sessionmaker] = None
        self._initialize_engine()

    @property
    def database_type(self) -> str:
        return "sqlite" if self._database_url.startswith("sqlite") else "postgresql"

    def _initialize_engine(self) -> None:
        """
        Initialize database engine based on the database URL.

        SQLite Configuration:
            - Uses aiosqlite async driver
            - check_same_thread=False for async support
            - Foreign keys enabled on every connection
            - Creates data directory if needed

        PostgreSQL Configuration:
            - Uses asyncpg async driver
            - Connection pooling from settings
            - Pool pre-ping for connection health
        """
        database_url = self._database_url

        self._logger.info(f"Initializing database: {database_url.split('@')[-1].split('?')[0]}")

        if database_url.startswith("sqlite"):
            if ":///" in database_url:
                db_path = database_url.split("///")[1].split("?")[0]
                db_dir = os.path.dirname(db_path)
                if db_path != ":memory:" and db_dir and not os.path.exists(db_dir):
                    os.makedirs(db_dir, exist_ok=True)
                    self._logger.info(f"Created database directory: {db_dir}")

            self._engine = create_async_engine(
                database_url,
                connect_args={"check_same_thread": False, "timeout": 30},
                pool_pre_ping=True,
                echo=settings.debug,
            )
            event.listen(self._engine.sync_engine, "connect", _enable_sqlite_foreign_keys)
            self._logger.info("Using SQLite database (development mode)")

        else:
            self._engine = create_async_engine(
                database_url,
                pool_size=settings.db_pool_size,
                max_overflow=settings.db_max_overflow,
                pool_pre_ping=True,
                pool_recycle=settings.db_pool_recycle,
                echo=settings.debug,
            )
            self._logger.info(
                f"Using PostgreSQL database (pool_size={settings.db_pool_size}, "
                f"max_overflow={settings.db_max_overflow})"
            )

        self._session_factory = async_sessionmaker(
            self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    @asynccontextmanager
    async def get_session(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Get async database session as context manager.

        Commits on success and rolls back on error, so one `async with`
        block is one transaction.

        Yields:
            AsyncSession: Async database session

        Raises:
            RuntimeError: If database is not initialized
            Exception: Any database errors (triggers rollback)
        """
        if not self._session_factory:
            raise RuntimeError("Database not initialized")

        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def init_db(self) -> None:
        """
        Initialize database by creating all tables.

        Safe to call multiple times (won't recreate existing tables).
        For production schema changes use the Alembic migrations.
        """
        if not self._engine:
            raise RuntimeError("Database engine not initialized")

        self._logger.info("Creating database tables...")

        async with self._engine.begin() as conn:
            # Import models so they're registered with Base
            from epicrefine.core.database import models  # noqa: F401

            await conn.run_sync(Base.metadata.create_all)

        self._logger.info("Database tables created successfully")

    async def health_check(self) -> Dict[str, Any]:
        """
        Check database connectivity and gather table counts.

        Returns:
            Dict with health status:
                {
                    "status": "healthy" | "unhealthy",
                    "connected": True | False,
                    "error": "error message" (if unhealthy),
                    "database_type": "sqlite" | "postgresql",
                    "tables": {"conversational_analyses": count, ...},
                }
        """
        try:
            async with self.get_session() as session:
                await session.execute(text("SELECT 1"))

                tables = {}
                for table_name in (
                    "conversational_analyses",
                    "conversational_messages",
                    "requirements_artifacts",
                ):
                    try:
                        result = await session.execute(
                            text(f"SELECT COUNT(*) FROM {table_name}")
                        )
                        tables[table_name] = result.scalar() or 0
                    except Exception:
                        tables[table_name] = 0

            return {
                "status": "healthy",
                "connected": True,
                "database_type": self.database_type,
                "tables": tables,
            }

        except Exception as e:
            self._logger.error(f"Database health check failed: {str(e)}")
            return {
                "status": "unhealthy",
                "connected": False,
                "database_type": self.database_type,
                "error": str(e),
            }

    async def close(self) -> None:
        """
        Close database engine and all connections.

        Should be called on shutdown to gracefully close all connections.
        """
        if self._engine:
            await self._engine.dispose()
            self._logger.info("Database connections closed")

    def __repr__(self) -> str:
        return f"<DatabaseService(type={self.database_type})>"


# Global singleton instance
database_service = DatabaseService()
