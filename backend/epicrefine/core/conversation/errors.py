# backend/epicrefine/core/conversation/errors.py
"""
Error taxonomy for the conversational workflow.

Every error carries an ErrorKind so boundaries that must degrade
gracefully (start guard, ledger reads, retention batches) can report what
went wrong without string matching. QueryResult is the explicit result type
for reads whose callers need to tell "genuinely empty" from "failed".
"""

from dataclasses import dataclass
from enum import Enum
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


class ErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    TRANSIENT_STORE = "transient_store"
    COLLABORATOR = "collaborator"
    INVARIANT_VIOLATION = "invariant_violation"


class ConversationError(Exception):
    """Base class for workflow errors."""

    kind: ErrorKind = ErrorKind.CONFLICT

    def __init__(self, message: str, analysis_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.analysis_id = analysis_id

    def to_dict(self) -> dict:
        return {
            "error": self.kind.value,
            "message": self.message,
            "analysis_id": self.analysis_id,
        }


class NotFoundError(ConversationError):
    """Analysis (or message) does not exist."""
    kind = ErrorKind.NOT_FOUND


class ConflictError(ConversationError):
    """Operation is invalid for the analysis's current phase or status."""
    kind = ErrorKind.CONFLICT


class TransientStoreError(ConversationError):
    """A store query or transaction failed; the operation may be retried."""
    kind = ErrorKind.TRANSIENT_STORE


class CollaboratorError(ConversationError):
    """The LLM collaborator failed or timed out."""
    kind = ErrorKind.COLLABORATOR


class InvariantViolationError(ConversationError):
    """A data invariant would be broken (e.g. completeness out of range)."""
    kind = ErrorKind.INVARIANT_VIOLATION


@dataclass(frozen=True)
class QueryResult(Generic[T]):
    """
    Value of a read, or the kind of failure that prevented it.

    Usage:
        result = await ledger.read_result(analysis_id)
        if result.ok:
            messages = result.value
        else:
            logger.warning(f"read failed: {result.error_kind} {result.error}")
    """
    value: Optional[T] = None
    error_kind: Optional[ErrorKind] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error_kind is None

    def value_or(self, default: T) -> T:
        return self.value if self.ok else default

    @classmethod
    def success(cls, value: T) -> "QueryResult[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, exc: ConversationError) -> "QueryResult[T]":
        return cls(error_kind=exc.kind, error=exc.message)
