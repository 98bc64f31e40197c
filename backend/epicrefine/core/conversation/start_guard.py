# backend/epicrefine/core/conversation/start_guard.py
"""
Start guard for conversational analyses.

Ensures the opening AI turn of an analysis is produced at most once, even
when several requests try to start the same analysis concurrently. The claim
is a single conditional update (set started_at only where it is still NULL);
whichever request changes the row wins. There is no read-then-write window.

Store failures never propagate from here: a failed claim is reported as not
acquired, so a broken store can never cause a second LLM kickoff.
"""

import logging
from typing import Optional

from ..database.models import utcnow
from ..models.conversation_models import StartClaim
from .errors import ConversationError
from .repository import AnalysisRepository, SqlAlchemyAnalysisRepository

logger = logging.getLogger("epicrefine.conversation.start_guard")


class StartGuard:
    """Claims the right to kick off an analysis's conversation."""

    def __init__(self, repository: Optional[AnalysisRepository] = None):
        self._repository = repository or SqlAlchemyAnalysisRepository()

    async def mark_started_if_not(self, analysis_id: str) -> StartClaim:
        """
        Atomically claim the start of an analysis.

        Returns:
            StartClaim with acquired=True for exactly one caller per analysis.
            `analysis` is the state after the claim, or None if it could not
            be read.
        """
        try:
            acquired = await self._repository.mark_started_if_not(analysis_id, utcnow())
        except ConversationError as e:
            logger.warning(f"Start claim failed for analysis {analysis_id}, treating as not acquired: {e}")
            acquired = False

        try:
            analysis = await self._repository.get_analysis(analysis_id)
        except ConversationError as e:
            logger.warning(f"Could not load analysis {analysis_id} after start claim: {e}")
            analysis = None

        if acquired:
            logger.info(f"Start claimed for analysis {analysis_id}")
        else:
            logger.debug(f"Analysis {analysis_id} already started (or claim failed)")

        return StartClaim(acquired=acquired, analysis=analysis)
