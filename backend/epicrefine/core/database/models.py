# backend/epicrefine/core/database/models.py
"""
SQLAlchemy ORM models for EpicRefine conversational persistence.

Models:
    - ConversationalAnalysis: One conversation thread refining a requirement
    - ConversationalMessage: One immutable turn of that conversation
    - RequirementsArtifact: Refined requirements produced for an analysis

Enum columns store the domain enums directly (non-native VARCHAR), so adding
a category only touches the enum definition.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    event,
)
from sqlalchemy.orm import relationship

from ..conversation.errors import InvariantViolationError
from ..models.conversation_models import (
    ConversationalPhase,
    ConversationalStatus,
    MessageRole,
    MessageType,
    QuestionCategory,
)
from .base import Base


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the DateTime columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return str(uuid.uuid4())


def _enum_column(enum_cls, name: str) -> Enum:
    return Enum(
        enum_cls,
        name=name,
        native_enum=False,
        length=40,
        validate_strings=True,
    )


class ConversationalAnalysis(Base):
    """
    Conversational analysis model.

    Attributes:
        id: Unique analysis identifier (UUID string)
        title: Short title of the requirement
        description: Initial description supplied by the user
        epic_content: Epic / user story text
        user_id: Owner of the analysis
        status: Lifecycle status (ConversationalStatus)
        current_phase: Stored workflow phase (ConversationalPhase)
        completeness: Coverage score, 0-100
        started_at: Set exactly once by the start guard, never cleared
        submitted_at: Last time a phase was submitted
        reopened_at: Last time the analysis was reopened
        reopen_reason: Reason given on the last reopen
        created_at: Creation timestamp
        updated_at: Bumped on every message append and state change

    Relationships:
        messages: Conversation turns (cascade delete)
        artifact: Refined requirements (cascade delete)
    """

    __tablename__ = "conversational_analyses"

    id = Column(String(36), primary_key=True, default=new_id)
    title = Column(String(500), nullable=False)
    description = Column(Text, nullable=False, default="")
    epic_content = Column(Text, nullable=False, default="")
    user_id = Column(String(255), nullable=False, index=True)

    status = Column(
        _enum_column(ConversationalStatus, "conversational_status"),
        nullable=False,
        default=ConversationalStatus.IN_PROGRESS,
        index=True,
    )
    current_phase = Column(
        _enum_column(ConversationalPhase, "conversational_phase"),
        nullable=False,
        default=ConversationalPhase.ANALYSIS,
    )
    completeness = Column(Integer, nullable=False, default=0)

    started_at = Column(DateTime, nullable=True)
    submitted_at = Column(DateTime, nullable=True)
    reopened_at = Column(DateTime, nullable=True)
    reopen_reason = Column(Text, nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    messages = relationship(
        "ConversationalMessage",
        back_populates="analysis",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="raise",
    )
    artifact = relationship(
        "RequirementsArtifact",
        back_populates="analysis",
        cascade="all, delete-orphan",
        passive_deletes=True,
        uselist=False,
        lazy="raise",
    )

    __table_args__ = (
        CheckConstraint(
            "completeness >= 0 AND completeness <= 100",
            name="ck_conversational_analyses_completeness_range",
        ),
        Index("ix_conversational_analyses_user_created", "user_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<ConversationalAnalysis(id={self.id}, phase={self.current_phase}, status={self.status})>"


class ConversationalMessage(Base):
    """
    Conversation turn model.

    Rows are insert-only: the before_update listener below rejects any
    attempt to modify a persisted message. Bulk deletion by the retention
    service is the only other legal mutation.
    """

    __tablename__ = "conversational_messages"

    id = Column(String(36), primary_key=True, default=new_id)
    analysis_id = Column(
        String(36),
        ForeignKey("conversational_analyses.id", ondelete="CASCADE"),
        nullable=False,
    )
    content = Column(Text, nullable=False)
    role = Column(_enum_column(MessageRole, "message_role"), nullable=False)
    message_type = Column(_enum_column(MessageType, "message_type"), nullable=False)
    category = Column(_enum_column(QuestionCategory, "question_category"), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    analysis = relationship("ConversationalAnalysis", back_populates="messages")

    __table_args__ = (
        Index("ix_conversational_messages_analysis_created", "analysis_id", "created_at"),
        Index("ix_conversational_messages_analysis_role", "analysis_id", "role"),
    )

    def __repr__(self) -> str:
        return f"<ConversationalMessage(id={self.id}, role={self.role}, analysis_id={self.analysis_id})>"


@event.listens_for(ConversationalMessage, "before_update")
def _reject_message_update(mapper, connection, target):
    raise InvariantViolationError(f"Message {target.id} is immutable")


class RequirementsArtifact(Base):
    """
    Refined requirements for an analysis (one row per analysis).

    Seeded with the opening assistant reply and refreshed when the
    analysis completes.
    """

    __tablename__ = "requirements_artifacts"

    id = Column(String(36), primary_key=True, default=new_id)
    analysis_id = Column(
        String(36),
        ForeignKey("conversational_analyses.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    refined_requirements = Column(Text, nullable=False, default="")
    completeness_score = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    analysis = relationship("ConversationalAnalysis", back_populates="artifact")

    __table_args__ = (
        CheckConstraint(
            "completeness_score >= 0 AND completeness_score <= 100",
            name="ck_requirements_artifacts_score_range",
        ),
    )
