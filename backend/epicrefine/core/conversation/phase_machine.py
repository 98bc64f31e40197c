# backend/epicrefine/core/conversation/phase_machine.py
"""
Phase state machine for conversational analyses.

Phases move forward only: ANALYSIS -> STRATEGY -> TEST_PLANNING -> COMPLETED.
Status is orthogonal to the phase, except that phase COMPLETED and status
COMPLETED always go together.

Outside of explicit transitions the phase follows completeness:

    completeness <  phase_strategy_threshold       -> ANALYSIS
    completeness <  phase_test_planning_threshold  -> STRATEGY
    otherwise                                      -> TEST_PLANNING

After a turn the stored phase becomes max(stored, derived), so a dip in
completeness never moves an analysis back. reopen_analysis is the only
transition that re-derives the phase from scratch.
"""

import logging
from typing import Optional

from ...config import settings
from ..database.models import utcnow
from ..models.conversation_models import (
    AnalysisRecord,
    ConversationalPhase,
    ConversationalStatus,
    MessageRole,
    MessageType,
    NewMessage,
)
from .coverage_service import CoverageService
from .errors import ConflictError, InvariantViolationError, NotFoundError
from .message_ledger import MessageLedger
from .repository import AnalysisRepository, SqlAlchemyAnalysisRepository

logger = logging.getLogger("epicrefine.conversation.phase_machine")

PHASE_ORDER = [
    ConversationalPhase.ANALYSIS,
    ConversationalPhase.STRATEGY,
    ConversationalPhase.TEST_PLANNING,
    ConversationalPhase.COMPLETED,
]

# Statuses for which submit_phase is a no-op
SUBMITTED_STATUSES = frozenset({
    ConversationalStatus.READY_TO_ADVANCE,
    ConversationalStatus.SUBMITTED,
    ConversationalStatus.COMPLETED,
})


def derive_phase(completeness: int, status: ConversationalStatus) -> ConversationalPhase:
    """Phase implied by a completeness score."""
    if status == ConversationalStatus.COMPLETED:
        return ConversationalPhase.COMPLETED
    if completeness < settings.phase_strategy_threshold:
        return ConversationalPhase.ANALYSIS
    if completeness < settings.phase_test_planning_threshold:
        return ConversationalPhase.STRATEGY
    return ConversationalPhase.TEST_PLANNING


def later_phase(first: ConversationalPhase, second: ConversationalPhase) -> ConversationalPhase:
    return first if PHASE_ORDER.index(first) >= PHASE_ORDER.index(second) else second


def phase_after_turn(
    stored: ConversationalPhase, completeness: int, status: ConversationalStatus
) -> ConversationalPhase:
    """Phase to persist after a user turn: never earlier than the stored one."""
    derived = derive_phase(completeness, status)
    phase = later_phase(stored, derived)
    if phase == ConversationalPhase.COMPLETED and status != ConversationalStatus.COMPLETED:
        raise InvariantViolationError(f"Phase COMPLETED reached with status {status.value}")
    return phase


def next_phase(current: ConversationalPhase) -> ConversationalPhase:
    if current == ConversationalPhase.COMPLETED:
        raise ConflictError("Analysis is already completed")
    return PHASE_ORDER[PHASE_ORDER.index(current) + 1]


def reopen_message(reason: Optional[str]) -> str:
    text = "Analysis reopened."
    if reason:
        text += f" Reason: {reason}"
    return f"{text} How can I help you improve it?"


class PhaseStateMachine:
    """
    Persisted phase/status transitions.

    Each method loads the analysis, applies one transition and stores the
    result, returning the updated AnalysisRecord.
    """

    def __init__(
        self,
        repository: Optional[AnalysisRepository] = None,
        ledger: Optional[MessageLedger] = None,
        coverage: Optional[CoverageService] = None,
    ):
        self._repository = repository or SqlAlchemyAnalysisRepository()
        self._ledger = ledger or MessageLedger(self._repository)
        self._coverage = coverage or CoverageService(self._repository)

    async def _load(self, analysis_id: str) -> AnalysisRecord:
        analysis = await self._repository.get_analysis(analysis_id)
        if analysis is None:
            raise NotFoundError(f"Analysis {analysis_id} not found", analysis_id=analysis_id)
        return analysis

    async def submit_phase(self, analysis_id: str) -> AnalysisRecord:
        """
        Mark the current phase as finished.

        ANALYSIS and STRATEGY become READY_TO_ADVANCE. Submitting
        TEST_PLANNING completes the analysis. Already submitted or completed
        analyses are returned unchanged.
        """
        analysis = await self._load(analysis_id)

        if analysis.status in SUBMITTED_STATUSES:
            logger.debug(f"Analysis {analysis_id} already submitted ({analysis.status.value})")
            return analysis

        now = utcnow()
        if analysis.current_phase == ConversationalPhase.TEST_PLANNING:
            updated = await self._repository.update_analysis(
                analysis_id,
                status=ConversationalStatus.COMPLETED,
                current_phase=ConversationalPhase.COMPLETED,
                completeness=100,
                submitted_at=now,
            )
        else:
            updated = await self._repository.update_analysis(
                analysis_id,
                status=ConversationalStatus.READY_TO_ADVANCE,
                submitted_at=now,
            )

        logger.info(
            f"Submitted phase {analysis.current_phase.value} of analysis {analysis_id} "
            f"-> status {updated.status.value}"
        )
        return updated

    async def advance_to_next_phase(self, analysis_id: str) -> AnalysisRecord:
        """
        Move exactly one phase forward.

        Raises:
            ConflictError: the analysis is already COMPLETED
        """
        analysis = await self._load(analysis_id)
        try:
            target = next_phase(analysis.current_phase)
        except ConflictError as e:
            e.analysis_id = analysis_id
            raise

        if target == ConversationalPhase.COMPLETED:
            updated = await self._repository.update_analysis(
                analysis_id,
                current_phase=target,
                status=ConversationalStatus.COMPLETED,
                completeness=100,
            )
        else:
            updated = await self._repository.update_analysis(
                analysis_id,
                current_phase=target,
                status=ConversationalStatus.IN_PROGRESS,
            )

        logger.info(f"Advanced analysis {analysis_id}: {analysis.current_phase.value} -> {target.value}")
        return updated

    async def reopen_analysis(self, analysis_id: str, reason: Optional[str] = None) -> AnalysisRecord:
        """
        Reopen an analysis for further editing.

        Usually called on a COMPLETED or submitted analysis, but any status
        is accepted: reopening an IN_PROGRESS analysis records the reason and
        re-derives its phase the same way.

        Completeness is recomputed from the stored answers and the phase is
        re-derived from it, so a completed analysis may move back to an
        earlier phase. A CLARIFICATION message recording the reopen is added
        to the conversation.
        """
        await self._load(analysis_id)

        coverage = await self._coverage.calculate(analysis_id)
        status = ConversationalStatus.REOPENED
        updated = await self._repository.update_analysis(
            analysis_id,
            status=status,
            current_phase=derive_phase(coverage.overall_score, status),
            completeness=coverage.overall_score,
            reopened_at=utcnow(),
            reopen_reason=reason,
        )

        await self._ledger.append(
            analysis_id,
            NewMessage(
                content=reopen_message(reason),
                role=MessageRole.ASSISTANT,
                message_type=MessageType.CLARIFICATION,
            ),
        )

        logger.info(
            f"Reopened analysis {analysis_id} at phase {updated.current_phase.value} "
            f"(completeness {updated.completeness})"
        )
        return updated
