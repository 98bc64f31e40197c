# backend/epicrefine/core/conversation/message_ledger.py
"""
Message ledger: append-only conversation history with duplicate suppression.

Writes:
    append() skips a message when an identical (analysis, role, content)
    message already exists. This guards against upstream retries of the same
    LLM call storing the same reply twice. The check is best-effort: two
    identical appends racing each other can both pass it. If the duplicate
    check itself fails, the message is inserted anyway (availability over
    strict dedup) and the failure is logged.

Reads:
    read() reconciles whatever the store holds: messages are deduplicated by
    (role, stripped content) keeping the earliest, then ordered by created_at.
    The sort is stable, so equal timestamps keep store order.

Usage:
    ledger = MessageLedger(repository)
    outcome = await ledger.append(analysis_id, NewMessage(
        content="What should happen on a failed login?",
        role=MessageRole.ASSISTANT,
        message_type=MessageType.QUESTION,
    ))
    messages = await ledger.read(analysis_id)
"""

import logging
from typing import Dict, List, Optional, Tuple

from ..models.conversation_models import AppendOutcome, MessageRecord, MessageRole, NewMessage
from .errors import QueryResult, TransientStoreError
from .repository import AnalysisRepository, SqlAlchemyAnalysisRepository

logger = logging.getLogger("epicrefine.conversation.message_ledger")


def reconcile_messages(messages: List[MessageRecord]) -> List[MessageRecord]:
    """
    Deduplicate by (role, content.strip()) keeping the earliest message, then
    sort ascending by created_at.
    """
    earliest: Dict[Tuple[MessageRole, str], MessageRecord] = {}
    order: List[Tuple[MessageRole, str]] = []

    for message in messages:
        key = (message.role, message.content.strip())
        kept = earliest.get(key)
        if kept is None:
            earliest[key] = message
            order.append(key)
        elif message.created_at < kept.created_at:
            earliest[key] = message

    return sorted((earliest[key] for key in order), key=lambda m: m.created_at)


class MessageLedger:
    """Appends and reads conversation messages for analyses."""

    def __init__(self, repository: Optional[AnalysisRepository] = None):
        self._repository = repository or SqlAlchemyAnalysisRepository()

    async def append(self, analysis_id: str, message: NewMessage) -> AppendOutcome:
        """
        Store a message unless an identical one already exists.

        Raises:
            NotFoundError: analysis does not exist
            TransientStoreError: the insert itself failed
        """
        try:
            existing = await self._repository.find_message(analysis_id, message.role, message.content)
        except TransientStoreError as e:
            logger.warning(
                f"Duplicate check failed for analysis {analysis_id}, inserting anyway: {e}"
            )
            existing = None

        if existing is not None:
            logger.debug(
                f"Skipping duplicate {message.role.value} message for analysis {analysis_id} "
                f"(existing: {existing.id})"
            )
            return AppendOutcome(message=existing, duplicate=True)

        stored = await self._repository.insert_message(analysis_id, message)
        return AppendOutcome(message=stored, duplicate=False)

    async def read(self, analysis_id: str) -> List[MessageRecord]:
        """
        Reconciled conversation history.

        Raises:
            TransientStoreError: the store query failed
        """
        messages = await self._repository.list_messages(analysis_id)
        return reconcile_messages(messages)

    async def read_result(self, analysis_id: str) -> QueryResult[List[MessageRecord]]:
        """Like read(), but reports store failures instead of raising."""
        try:
            return QueryResult.success(await self.read(analysis_id))
        except TransientStoreError as e:
            logger.warning(f"Failed to read messages for analysis {analysis_id}: {e}")
            return QueryResult.failure(e)
