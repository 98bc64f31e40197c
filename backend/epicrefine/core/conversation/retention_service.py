# backend/epicrefine/core/conversation/retention_service.py
"""
Message retention (purge) for completed analyses.

Once an analysis is COMPLETED its conversation is mostly superseded by the
refined requirements. This service deletes old turns while keeping enough
context to audit or continue the analysis.

Keep policy:
    - the most recent ASSISTANT message (if any)
    - with keep_last_user, also the last USER message before it
    - with keep_last_assistant=False, nothing is kept (full wipe)

Every other message is a deletion candidate. Dry-run (the default) only
reports what would be deleted. Execute mode plans and deletes inside a single
transaction per analysis, with the analysis row locked, so exactly the
planned set is removed. A failure on one analysis is reported in that
analysis's summary and the batch moves on.

Usage:
    from epicrefine.core.conversation.retention_service import retention_service

    # Preview
    summaries = await retention_service.purge_completed_batch(dry_run=True)

    # Purge one analysis, keeping the final question/answer pair
    summary = await retention_service.purge_one(
        analysis_id, dry_run=False, keep_last_user=True
    )
    print(f"Deleted {summary.deleted_count} messages")
"""

import logging
from typing import List, Optional, Sequence, Tuple

from ...config import settings
from ..models.conversation_models import (
    ConversationalStatus,
    MessageRecord,
    MessageRole,
    PurgeSummary,
)
from .errors import ConversationError
from .repository import AnalysisRepository, SqlAlchemyAnalysisRepository

logger = logging.getLogger("epicrefine.conversation.retention_service")


def plan_purge(
    messages: Sequence[MessageRecord],
    keep_last_assistant: bool = True,
    keep_last_user: bool = False,
) -> Tuple[List[str], List[str]]:
    """
    Split messages (ascending by created_at) into kept and deleted ids.

    Returns:
        (kept_ids, delete_ids), both in conversation order
    """
    keep = set()

    if keep_last_assistant:
        for index in range(len(messages) - 1, -1, -1):
            if messages[index].role != MessageRole.ASSISTANT:
                continue
            keep.add(messages[index].id)
            if keep_last_user:
                for previous in reversed(messages[:index]):
                    if previous.role == MessageRole.USER:
                        keep.add(previous.id)
                        break
            break

    kept_ids = [m.id for m in messages if m.id in keep]
    delete_ids = [m.id for m in messages if m.id not in keep]
    return kept_ids, delete_ids


class RetentionService:
    """
    Purges superseded conversation messages.

    Attributes:
        preview_limit: Max ids reported in PurgeSummary.preview_delete_ids
    """

    def __init__(self, repository: Optional[AnalysisRepository] = None):
        self._repository = repository or SqlAlchemyAnalysisRepository()
        self.preview_limit = settings.purge_preview_limit

    async def purge_one(
        self,
        analysis_id: str,
        dry_run: bool = True,
        keep_last_assistant: bool = True,
        keep_last_user: bool = False,
    ) -> PurgeSummary:
        """
        Purge (or preview purging) one analysis's messages.

        Never raises for store problems or a missing analysis; the summary's
        `error` field carries the failure instead.
        """
        summary = PurgeSummary(analysis_id=analysis_id, dry_run=dry_run)

        try:
            async with self._repository.transaction() as tx:
                analysis = await tx.get_analysis(analysis_id, for_update=not dry_run)
                if analysis is None:
                    summary.error = "Analysis not found"
                    return summary

                messages = await tx.list_messages(analysis_id)
                kept_ids, delete_ids = plan_purge(messages, keep_last_assistant, keep_last_user)

                summary.total_messages = len(messages)
                summary.to_delete_count = len(delete_ids)
                summary.kept_message_ids = kept_ids
                summary.preview_delete_ids = delete_ids[: self.preview_limit]

                if not dry_run and delete_ids:
                    summary.deleted_count = await tx.delete_messages(delete_ids)

        except ConversationError as e:
            logger.error(f"Error purging messages for analysis {analysis_id}: {e}")
            summary.deleted_count = 0
            summary.error = e.message
            return summary

        if dry_run:
            logger.info(
                f"[DRY RUN] Analysis {analysis_id}: would delete {summary.to_delete_count} "
                f"of {summary.total_messages} messages"
            )
        elif summary.deleted_count:
            logger.info(
                f"Analysis {analysis_id}: deleted {summary.deleted_count} "
                f"of {summary.total_messages} messages"
            )
        return summary

    async def purge_completed_batch(
        self,
        dry_run: bool = True,
        keep_last_user: Optional[bool] = None,
    ) -> List[PurgeSummary]:
        """
        Purge every COMPLETED analysis, keeping its last assistant message.

        Args:
            dry_run: Only report what would be deleted
            keep_last_user: Also keep the user message before the last
                assistant message (defaults to settings.purge_keep_last_user)

        Returns:
            One PurgeSummary per completed analysis
        """
        if keep_last_user is None:
            keep_last_user = settings.purge_keep_last_user

        analysis_ids = await self._repository.list_analysis_ids_by_status(ConversationalStatus.COMPLETED)
        logger.info(
            f"Starting message purge for {len(analysis_ids)} completed analyses "
            f"(dry_run={dry_run}, keep_last_user={keep_last_user})"
        )

        summaries: List[PurgeSummary] = []
        for analysis_id in analysis_ids:
            try:
                summary = await self.purge_one(
                    analysis_id,
                    dry_run=dry_run,
                    keep_last_assistant=True,
                    keep_last_user=keep_last_user,
                )
            except Exception as e:
                logger.error(f"Unexpected error purging analysis {analysis_id}: {e}")
                summary = PurgeSummary(analysis_id=analysis_id, dry_run=dry_run, error=str(e))
            summaries.append(summary)

        total_deleted = sum(s.deleted_count for s in summaries)
        failed = sum(1 for s in summaries if s.error)
        logger.info(
            f"Message purge finished: {len(summaries)} analyses, "
            f"{total_deleted} messages deleted, {failed} failed"
        )
        return summaries


# Global retention service instance
retention_service = RetentionService()
