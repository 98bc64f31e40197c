# backend/epicrefine/core/conversation/repository.py
"""
Entity store for conversational analyses and their messages.

AnalysisRepository is the contract the workflow services depend on; it is
injected into every service so tests can swap in an in-memory fake.
SqlAlchemyAnalysisRepository implements it on top of DatabaseService, one
session (= one transaction) per call. SQLAlchemy failures are converted to
TransientStoreError at this boundary.

Usage:
    from epicrefine.core.conversation.repository import SqlAlchemyAnalysisRepository

    repository = SqlAlchemyAnalysisRepository()
    analysis = await repository.create_analysis("Login", "desc", "epic", "u1")
    acquired = await repository.mark_started_if_not(analysis.id, utcnow())

    async with repository.transaction() as tx:
        messages = await tx.list_messages(analysis.id)
        await tx.delete_messages([m.id for m in messages[:-1]])
"""

import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager, contextmanager
from datetime import datetime
from typing import Any, AsyncContextManager, AsyncGenerator, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError

from ..database.models import (
    ConversationalAnalysis,
    ConversationalMessage,
    RequirementsArtifact,
    utcnow,
)
from ..models.conversation_models import (
    AnalysisRecord,
    ArtifactRecord,
    ConversationalPhase,
    ConversationalStatus,
    MessageRecord,
    MessageRole,
    NewMessage,
    QuestionCategory,
)
from ..shared.database_service import DatabaseService, database_service
from .errors import InvariantViolationError, NotFoundError, TransientStoreError

logger = logging.getLogger("epicrefine.conversation.repository")

# Fields update_analysis accepts; everything else is owned by the store.
UPDATABLE_ANALYSIS_FIELDS = frozenset({
    "status",
    "current_phase",
    "completeness",
    "submitted_at",
    "reopened_at",
    "reopen_reason",
})


def validate_analysis_update(current: AnalysisRecord, updates: Dict[str, Any]) -> None:
    """
    Reject updates that would break the analysis invariants.

    Raises:
        InvariantViolationError: unknown field, completeness outside 0-100,
            or a phase/status pair where exactly one of them is COMPLETED.
    """
    unknown = set(updates) - UPDATABLE_ANALYSIS_FIELDS
    if unknown:
        raise InvariantViolationError(
            f"Cannot update fields {sorted(unknown)}", analysis_id=current.id
        )

    completeness = updates.get("completeness", current.completeness)
    if not 0 <= completeness <= 100:
        raise InvariantViolationError(
            f"Completeness {completeness} outside 0-100", analysis_id=current.id
        )

    status = updates.get("status", current.status)
    phase = updates.get("current_phase", current.current_phase)
    if (phase == ConversationalPhase.COMPLETED) != (status == ConversationalStatus.COMPLETED):
        raise InvariantViolationError(
            f"Phase {phase.value} is inconsistent with status {status.value}",
            analysis_id=current.id,
        )


class MessageTransaction(ABC):
    """Statements available inside one atomic store transaction."""

    @abstractmethod
    async def get_analysis(self, analysis_id: str, for_update: bool = False) -> Optional[AnalysisRecord]:
        ...

    @abstractmethod
    async def list_messages(self, analysis_id: str) -> List[MessageRecord]:
        ...

    @abstractmethod
    async def update_analysis(self, analysis_id: str, **updates: Any) -> AnalysisRecord:
        """Validated update of the analysis row. Raises NotFoundError."""

    @abstractmethod
    async def delete_messages(self, message_ids: Sequence[str]) -> int:
        ...


class AnalysisRepository(ABC):
    """Contract of the entity store (analyses, messages, artifacts)."""

    # ---- analyses ----------------------------------------------------------

    @abstractmethod
    async def create_analysis(
        self, title: str, description: str, epic_content: str, user_id: str
    ) -> AnalysisRecord:
        ...

    @abstractmethod
    async def get_analysis(self, analysis_id: str) -> Optional[AnalysisRecord]:
        ...

    @abstractmethod
    async def list_analyses(
        self,
        user_id: str,
        status: Optional[ConversationalStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[AnalysisRecord]:
        ...

    @abstractmethod
    async def list_analysis_ids_by_status(self, status: ConversationalStatus) -> List[str]:
        ...

    @abstractmethod
    async def update_analysis(self, analysis_id: str, **updates: Any) -> AnalysisRecord:
        """Apply validated field updates and bump updated_at. Raises NotFoundError."""

    @abstractmethod
    async def delete_analysis(self, analysis_id: str) -> bool:
        """Delete an analysis together with its messages and artifact."""

    @abstractmethod
    async def mark_started_if_not(self, analysis_id: str, started_at: datetime) -> bool:
        """
        Atomically set started_at when it is still NULL.

        Returns True when exactly one row was updated by this call.
        """

    # ---- messages ----------------------------------------------------------

    @abstractmethod
    async def find_message(
        self, analysis_id: str, role: MessageRole, content: str
    ) -> Optional[MessageRecord]:
        ...

    @abstractmethod
    async def insert_message(self, analysis_id: str, message: NewMessage) -> MessageRecord:
        """Insert a message and touch the parent's updated_at. Raises NotFoundError."""

    @abstractmethod
    async def list_messages(self, analysis_id: str) -> List[MessageRecord]:
        """All messages of an analysis, ascending by created_at."""

    @abstractmethod
    async def count_messages(self, analysis_ids: Sequence[str]) -> Dict[str, int]:
        ...

    @abstractmethod
    async def count_user_messages_by_category(
        self, analysis_id: str
    ) -> Tuple[int, Dict[QuestionCategory, int]]:
        """Return (total USER messages, USER messages per category)."""

    # ---- artifacts ---------------------------------------------------------

    @abstractmethod
    async def get_artifact(self, analysis_id: str) -> Optional[ArtifactRecord]:
        ...

    @abstractmethod
    async def upsert_artifact(
        self, analysis_id: str, refined_requirements: str, completeness_score: int
    ) -> ArtifactRecord:
        ...

    # ---- transactions ------------------------------------------------------

    @abstractmethod
    def transaction(self) -> AsyncContextManager[MessageTransaction]:
        """Open one atomic unit of work; commits on success, rolls back on error."""


# =========================================================================
# SQLALCHEMY IMPLEMENTATION
# =========================================================================


def _analysis_record(row: ConversationalAnalysis) -> AnalysisRecord:
    return AnalysisRecord(
        **{column.key: getattr(row, column.key) for column in ConversationalAnalysis.__table__.columns}
    )


def _message_record(row: ConversationalMessage) -> MessageRecord:
    return MessageRecord.model_validate(row)


@contextmanager
def _store_errors(operation: str, analysis_id: Optional[str] = None):
    try:
        yield
    except SQLAlchemyError as e:
        logger.error(f"Store error during {operation} (analysis={analysis_id}): {e}")
        raise TransientStoreError(f"{operation} failed: {e}", analysis_id=analysis_id) from e


class _SqlMessageTransaction(MessageTransaction):
    def __init__(self, session):
        self._session = session

    async def get_analysis(self, analysis_id: str, for_update: bool = False) -> Optional[AnalysisRecord]:
        query = select(ConversationalAnalysis).where(ConversationalAnalysis.id == analysis_id)
        if for_update:
            # No-op on SQLite; row lock on PostgreSQL
            query = query.with_for_update()
        result = await self._session.execute(query)
        row = result.scalar_one_or_none()
        return _analysis_record(row) if row else None

    async def list_messages(self, analysis_id: str) -> List[MessageRecord]:
        result = await self._session.execute(
            select(ConversationalMessage)
            .where(ConversationalMessage.analysis_id == analysis_id)
            .order_by(ConversationalMessage.created_at.asc())
        )
        return [_message_record(row) for row in result.scalars().all()]

    async def update_analysis(self, analysis_id: str, **updates: Any) -> AnalysisRecord:
        # Returns the row already locked by get_analysis(for_update=True), if any
        row = await self._session.get(ConversationalAnalysis, analysis_id)
        if row is None:
            raise NotFoundError(f"Analysis {analysis_id} not found", analysis_id=analysis_id)

        validate_analysis_update(_analysis_record(row), updates)
        for field, value in updates.items():
            setattr(row, field, value)
        row.updated_at = utcnow()
        await self._session.flush()
        return _analysis_record(row)

    async def delete_messages(self, message_ids: Sequence[str]) -> int:
        if not message_ids:
            return 0
        result = await self._session.execute(
            delete(ConversationalMessage).where(ConversationalMessage.id.in_(list(message_ids)))
        )
        return result.rowcount or 0


class SqlAlchemyAnalysisRepository(AnalysisRepository):
    """
    AnalysisRepository backed by async SQLAlchemy.

    Attributes:
        _db: DatabaseService providing sessions (global singleton by default)
    """

    def __init__(self, database: Optional[DatabaseService] = None):
        self._db = database or database_service

    # ---- analyses ----------------------------------------------------------

    async def create_analysis(
        self, title: str, description: str, epic_content: str, user_id: str
    ) -> AnalysisRecord:
        with _store_errors("create_analysis"):
            async with self._db.get_session() as session:
                row = ConversationalAnalysis(
                    title=title,
                    description=description,
                    epic_content=epic_content,
                    user_id=user_id,
                    status=ConversationalStatus.IN_PROGRESS,
                    current_phase=ConversationalPhase.ANALYSIS,
                    completeness=0,
                )
                session.add(row)
                await session.flush()
                await session.refresh(row)
                record = _analysis_record(row)

        logger.info(f"Created analysis {record.id} (user: {user_id})")
        return record

    async def get_analysis(self, analysis_id: str) -> Optional[AnalysisRecord]:
        with _store_errors("get_analysis", analysis_id):
            async with self._db.get_session() as session:
                row = await session.get(ConversationalAnalysis, analysis_id)
                return _analysis_record(row) if row else None

    async def list_analyses(
        self,
        user_id: str,
        status: Optional[ConversationalStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[AnalysisRecord]:
        query = select(ConversationalAnalysis).where(ConversationalAnalysis.user_id == user_id)
        if status:
            query = query.where(ConversationalAnalysis.status == status)
        query = query.order_by(ConversationalAnalysis.created_at.desc()).limit(limit).offset(offset)

        with _store_errors("list_analyses"):
            async with self._db.get_session() as session:
                result = await session.execute(query)
                return [_analysis_record(row) for row in result.scalars().all()]

    async def list_analysis_ids_by_status(self, status: ConversationalStatus) -> List[str]:
        with _store_errors("list_analysis_ids_by_status"):
            async with self._db.get_session() as session:
                result = await session.execute(
                    select(ConversationalAnalysis.id)
                    .where(ConversationalAnalysis.status == status)
                    .order_by(ConversationalAnalysis.created_at.asc())
                )
                return list(result.scalars().all())

    async def update_analysis(self, analysis_id: str, **updates: Any) -> AnalysisRecord:
        with _store_errors("update_analysis", analysis_id):
            async with self._db.get_session() as session:
                return await _SqlMessageTransaction(session).update_analysis(analysis_id, **updates)

    async def delete_analysis(self, analysis_id: str) -> bool:
        with _store_errors("delete_analysis", analysis_id):
            async with self._db.get_session() as session:
                result = await session.execute(
                    delete(ConversationalAnalysis).where(ConversationalAnalysis.id == analysis_id)
                )
                deleted = (result.rowcount or 0) > 0

        if deleted:
            logger.info(f"Deleted analysis {analysis_id} with its messages")
        return deleted

    async def mark_started_if_not(self, analysis_id: str, started_at: datetime) -> bool:
        with _store_errors("mark_started_if_not", analysis_id):
            async with self._db.get_session() as session:
                result = await session.execute(
                    update(ConversationalAnalysis)
                    .where(
                        ConversationalAnalysis.id == analysis_id,
                        ConversationalAnalysis.started_at.is_(None),
                    )
                    .values(started_at=started_at)
                    .execution_options(synchronize_session=False)
                )
                return result.rowcount == 1

    # ---- messages ----------------------------------------------------------

    async def find_message(
        self, analysis_id: str, role: MessageRole, content: str
    ) -> Optional[MessageRecord]:
        with _store_errors("find_message", analysis_id):
            async with self._db.get_session() as session:
                result = await session.execute(
                    select(ConversationalMessage)
                    .where(
                        ConversationalMessage.analysis_id == analysis_id,
                        ConversationalMessage.role == role,
                        ConversationalMessage.content == content,
                    )
                    .order_by(ConversationalMessage.created_at.asc())
                    .limit(1)
                )
                row = result.scalar_one_or_none()
                return _message_record(row) if row else None

    async def insert_message(self, analysis_id: str, message: NewMessage) -> MessageRecord:
        with _store_errors("insert_message", analysis_id):
            async with self._db.get_session() as session:
                analysis = await session.get(ConversationalAnalysis, analysis_id)
                if analysis is None:
                    raise NotFoundError(f"Analysis {analysis_id} not found", analysis_id=analysis_id)

                now = utcnow()
                row = ConversationalMessage(
                    analysis_id=analysis_id,
                    content=message.content,
                    role=message.role,
                    message_type=message.message_type,
                    category=message.category,
                    created_at=now,
                )
                session.add(row)
                analysis.updated_at = now
                await session.flush()
                return _message_record(row)

    async def list_messages(self, analysis_id: str) -> List[MessageRecord]:
        with _store_errors("list_messages", analysis_id):
            async with self._db.get_session() as session:
                return await _SqlMessageTransaction(session).list_messages(analysis_id)

    async def count_messages(self, analysis_ids: Sequence[str]) -> Dict[str, int]:
        if not analysis_ids:
            return {}
        with _store_errors("count_messages"):
            async with self._db.get_session() as session:
                result = await session.execute(
                    select(ConversationalMessage.analysis_id, func.count(ConversationalMessage.id))
                    .where(ConversationalMessage.analysis_id.in_(list(analysis_ids)))
                    .group_by(ConversationalMessage.analysis_id)
                )
                return {analysis_id: count for analysis_id, count in result.all()}

    async def count_user_messages_by_category(
        self, analysis_id: str
    ) -> Tuple[int, Dict[QuestionCategory, int]]:
        with _store_errors("count_user_messages_by_category", analysis_id):
            async with self._db.get_session() as session:
                result = await session.execute(
                    select(ConversationalMessage.category, func.count(ConversationalMessage.id))
                    .where(
                        ConversationalMessage.analysis_id == analysis_id,
                        ConversationalMessage.role == MessageRole.USER,
                    )
                    .group_by(ConversationalMessage.category)
                )
                rows = result.all()

        total_user = sum(count for _, count in rows)
        by_category = {category: count for category, count in rows if category is not None}
        return total_user, by_category

    # ---- artifacts ---------------------------------------------------------

    async def get_artifact(self, analysis_id: str) -> Optional[ArtifactRecord]:
        with _store_errors("get_artifact", analysis_id):
            async with self._db.get_session() as session:
                result = await session.execute(
                    select(RequirementsArtifact).where(RequirementsArtifact.analysis_id == analysis_id)
                )
                row = result.scalar_one_or_none()
                return ArtifactRecord.model_validate(row) if row else None

    async def upsert_artifact(
        self, analysis_id: str, refined_requirements: str, completeness_score: int
    ) -> ArtifactRecord:
        if not 0 <= completeness_score <= 100:
            raise InvariantViolationError(
                f"Artifact score {completeness_score} outside 0-100", analysis_id=analysis_id
            )

        with _store_errors("upsert_artifact", analysis_id):
            async with self._db.get_session() as session:
                result = await session.execute(
                    select(RequirementsArtifact).where(RequirementsArtifact.analysis_id == analysis_id)
                )
                row = result.scalar_one_or_none()
                if row is None:
                    row = RequirementsArtifact(analysis_id=analysis_id)
                    session.add(row)
                row.refined_requirements = refined_requirements
                row.completeness_score = completeness_score
                row.updated_at = utcnow()
                await session.flush()
                await session.refresh(row)
                return ArtifactRecord.model_validate(row)

    # ---- transactions ------------------------------------------------------

    @asynccontextmanager
    async def transaction(self) -> AsyncGenerator[MessageTransaction, None]:
        with _store_errors("transaction"):
            async with self._db.get_session() as session:
                yield _SqlMessageTransaction(session)
