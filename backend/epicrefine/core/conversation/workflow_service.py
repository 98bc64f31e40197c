# backend/epicrefine/core/conversation/workflow_service.py
"""
Conversational workflow orchestration.

Composes the start guard, message ledger, coverage scorer and phase state
machine with the LLM collaborator to drive an analysis from its opening
question to a completed set of refined requirements.

Turn flow:
    user message -> ledger.append -> LLM -> ledger.append (reply)
        -> coverage -> phase_after_turn on the locked row -> persist

Failure semantics:
    - If the LLM fails, the user's message stays in the ledger but the
      analysis's completeness and phase are left as they were; the
      CollaboratorError propagates so the caller can retry.
    - Starting an analysis twice never produces a second opening turn: only
      the request that wins the start guard calls the LLM.

Usage:
    from epicrefine.core.conversation.workflow_service import workflow_service

    analysis = await workflow_service.start_conversation(
        user_id="u1", title="Login", description="Users log in with email",
        epic_content="As a user I want to log in...",
    )
    turn = await workflow_service.process_user_message(
        analysis.id, "Lock the account after 5 failures",
        category=QuestionCategory.BUSINESS_RULES,
    )
    print(turn.reply, turn.phase, turn.coverage.overall_score)
"""

import asyncio
import logging
from typing import List, Optional

from ...config import settings
from ..llm.llm_service import LLMCollaborator, llm_service
from ..models.conversation_models import (
    AnalysisRecord,
    AnalysisWithStats,
    ArtifactRecord,
    ConversationalPhase,
    ConversationalStatus,
    MessageRecord,
    MessageRole,
    MessageType,
    NewMessage,
    QuestionCategory,
    StartOutcome,
    TurnResult,
)
from ..models.llm_models import LLMCompletion, PromptContext
from .coverage_service import CoverageService
from .errors import CollaboratorError, ConflictError, NotFoundError
from .message_ledger import MessageLedger, reconcile_messages
from .phase_machine import PhaseStateMachine, phase_after_turn
from .repository import AnalysisRepository, SqlAlchemyAnalysisRepository
from .start_guard import StartGuard

logger = logging.getLogger("epicrefine.conversation.workflow_service")


class ConversationalWorkflowService:
    """
    Entry point for conversational analyses.

    Attributes:
        _repository: Entity store shared by all components
        _llm: Collaborator producing assistant turns
    """

    def __init__(
        self,
        repository: Optional[AnalysisRepository] = None,
        llm: Optional[LLMCollaborator] = None,
    ):
        self._repository = repository or SqlAlchemyAnalysisRepository()
        self._llm = llm or llm_service
        self.ledger = MessageLedger(self._repository)
        self.coverage = CoverageService(self._repository)
        self.start_guard = StartGuard(self._repository)
        self.phases = PhaseStateMachine(self._repository, self.ledger, self.coverage)

    # =========================================================================
    # INTERNAL HELPERS
    # =========================================================================

    async def _load(self, analysis_id: str, user_id: Optional[str] = None) -> AnalysisRecord:
        analysis = await self._repository.get_analysis(analysis_id)
        # Another user's analysis is indistinguishable from a missing one
        if analysis is None or (user_id is not None and analysis.user_id != user_id):
            raise NotFoundError(f"Analysis {analysis_id} not found", analysis_id=analysis_id)
        return analysis

    async def _generate_reply(
        self,
        analysis: AnalysisRecord,
        messages: List[MessageRecord],
        opening: bool = False,
    ) -> LLMCompletion:
        context = PromptContext(
            analysis_id=analysis.id,
            title=analysis.title,
            description=analysis.description,
            epic_content=analysis.epic_content,
            phase=analysis.current_phase,
            messages=messages,
            opening=opening,
        )

        try:
            completion = await asyncio.wait_for(
                self._llm.complete(context), timeout=settings.llm_call_timeout
            )
        except asyncio.TimeoutError as e:
            logger.error(f"LLM call timed out after {settings.llm_call_timeout}s (analysis {analysis.id})")
            raise CollaboratorError(
                f"LLM call timed out after {settings.llm_call_timeout}s", analysis_id=analysis.id
            ) from e
        except CollaboratorError:
            raise
        except Exception as e:
            logger.error(f"LLM call failed for analysis {analysis.id}: {e}")
            raise CollaboratorError(f"LLM call failed: {e}", analysis_id=analysis.id) from e

        logger.info(
            f"LLM reply for analysis {analysis.id} "
            f"({completion.prompt_tokens} prompt / {completion.completion_tokens} completion tokens)"
        )
        return completion

    async def _record_turn(self, analysis_id: str):
        """
        Recompute coverage and move the phase forward if it qualifies.

        The phase is computed from the row as stored now, locked for the
        write, so a submit or advance that landed during the LLM call is
        never undone. A COMPLETED analysis keeps its completeness and phase.
        """
        coverage = await self.coverage.calculate(analysis_id)

        async with self._repository.transaction() as tx:
            current = await tx.get_analysis(analysis_id, for_update=True)
            if current is None:
                raise NotFoundError(f"Analysis {analysis_id} not found", analysis_id=analysis_id)
            if current.status == ConversationalStatus.COMPLETED:
                logger.info(f"Analysis {analysis_id} completed during the turn, phase left unchanged")
                return current, coverage

            phase = phase_after_turn(current.current_phase, coverage.overall_score, current.status)
            updated = await tx.update_analysis(
                analysis_id,
                completeness=coverage.overall_score,
                current_phase=phase,
            )

        if phase != current.current_phase:
            logger.info(f"Analysis {analysis_id} moved to phase {phase.value}")
        return updated, coverage

    async def _kickoff(self, analysis: AnalysisRecord) -> None:
        """Seed the opening USER message and produce the first assistant question."""
        await self.ledger.append(
            analysis.id,
            NewMessage(
                content=f"{analysis.title}\n\n{analysis.description}",
                role=MessageRole.USER,
                message_type=MessageType.ANSWER,
                category=QuestionCategory.FUNCTIONAL_REQUIREMENTS,
            ),
        )

        messages = await self.ledger.read(analysis.id)
        completion = await self._generate_reply(analysis, messages, opening=True)

        await self.ledger.append(
            analysis.id,
            NewMessage(
                content=completion.text,
                role=MessageRole.ASSISTANT,
                message_type=MessageType.QUESTION,
                category=QuestionCategory.FUNCTIONAL_REQUIREMENTS,
            ),
        )
        updated, _ = await self._record_turn(analysis.id)
        await self._repository.upsert_artifact(analysis.id, completion.text, updated.completeness)

    async def _refresh_artifact(self, analysis: AnalysisRecord) -> None:
        """Store the final assistant reply as the refined requirements."""
        messages = await self.ledger.read(analysis.id)
        replies = [m for m in messages if m.role == MessageRole.ASSISTANT]
        if replies:
            text = replies[-1].content
        else:
            existing = await self._repository.get_artifact(analysis.id)
            text = existing.refined_requirements if existing else ""
        await self._repository.upsert_artifact(analysis.id, text, 100)
        logger.info(f"Refined requirements stored for completed analysis {analysis.id}")

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def create_analysis(
        self, title: str, description: str, epic_content: str, user_id: str
    ) -> AnalysisRecord:
        """Create an IN_PROGRESS analysis in phase ANALYSIS with completeness 0."""
        return await self._repository.create_analysis(title, description, epic_content, user_id)

    async def start_conversation(
        self, user_id: str, title: str, description: str, epic_content: str
    ) -> AnalysisRecord:
        """
        Create an analysis and run its opening turn.

        Returns:
            The analysis with its reconciled messages and coverage
        """
        analysis = await self.create_analysis(title, description, epic_content, user_id)
        outcome = await self.start_existing_conversation(analysis.id, user_id)
        return outcome.analysis

    async def start_existing_conversation(self, analysis_id: str, user_id: str) -> StartOutcome:
        """
        Run the opening turn of an existing analysis, at most once.

        Safe to retry: callers that lose the start guard get the persisted
        state back with already_started=True and no LLM call is made.

        Raises:
            NotFoundError: analysis missing or owned by another user
            CollaboratorError: the opening LLM call failed
        """
        await self._load(analysis_id, user_id)

        claim = await self.start_guard.mark_started_if_not(analysis_id)
        if not claim.acquired:
            logger.info(f"Analysis {analysis_id} already started, returning current state")
            return StartOutcome(analysis=await self.get_analysis(analysis_id), already_started=True)

        await self._kickoff(claim.analysis or await self._load(analysis_id))
        return StartOutcome(analysis=await self.get_analysis(analysis_id), already_started=False)

    async def process_user_message(
        self,
        analysis_id: str,
        content: str,
        category: Optional[QuestionCategory] = None,
    ) -> TurnResult:
        """
        Handle one user turn.

        Raises:
            NotFoundError: analysis does not exist
            ConflictError: analysis is COMPLETED
            CollaboratorError: the LLM failed; the user message is kept
        """
        analysis = await self._load(analysis_id)
        if analysis.status == ConversationalStatus.COMPLETED:
            raise ConflictError(
                f"Analysis {analysis_id} is completed; reopen it to continue",
                analysis_id=analysis_id,
            )

        await self.ledger.append(
            analysis_id,
            NewMessage(
                content=content,
                role=MessageRole.USER,
                message_type=MessageType.ANSWER,
                category=category,
            ),
        )

        messages = await self.ledger.read(analysis_id)
        completion = await self._generate_reply(analysis, messages)

        await self.ledger.append(
            analysis_id,
            NewMessage(
                content=completion.text,
                role=MessageRole.ASSISTANT,
                message_type=MessageType.QUESTION,
                category=category,
            ),
        )
        updated, coverage = await self._record_turn(analysis_id)

        return TurnResult(
            reply=completion.text,
            message_type=MessageType.QUESTION,
            category=category,
            phase=updated.current_phase,
            status=updated.status,
            coverage=coverage,
        )

    async def submit_phase(self, analysis_id: str) -> AnalysisRecord:
        updated = await self.phases.submit_phase(analysis_id)
        if updated.status == ConversationalStatus.COMPLETED:
            await self._refresh_artifact(updated)
        return updated

    async def advance_to_next_phase(self, analysis_id: str) -> AnalysisRecord:
        updated = await self.phases.advance_to_next_phase(analysis_id)
        if updated.current_phase == ConversationalPhase.COMPLETED:
            await self._refresh_artifact(updated)
        return updated

    async def reopen_analysis(self, analysis_id: str, reason: Optional[str] = None) -> AnalysisRecord:
        return await self.phases.reopen_analysis(analysis_id, reason)

    async def delete_analysis(self, analysis_id: str, user_id: Optional[str] = None) -> bool:
        """Delete an analysis with its messages and artifact."""
        await self._load(analysis_id, user_id)
        return await self._repository.delete_analysis(analysis_id)

    # =========================================================================
    # READS
    # =========================================================================

    async def get_messages(self, analysis_id: str) -> List[MessageRecord]:
        """Reconciled conversation; empty if the store cannot be read."""
        result = await self.ledger.read_result(analysis_id)
        return result.value_or([])

    async def get_analysis(self, analysis_id: str) -> AnalysisRecord:
        """Analysis with its reconciled messages and current coverage."""
        analysis = await self._load(analysis_id)
        raw = await self._repository.list_messages(analysis_id)
        return analysis.model_copy(update={
            "messages": reconcile_messages(raw),
            "coverage": self.coverage.calculate_from_messages(raw),
        })

    async def list_user_analyses(
        self,
        user_id: str,
        status: Optional[ConversationalStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[AnalysisRecord]:
        return await self._repository.list_analyses(user_id, status=status, limit=limit, offset=offset)

    async def list_user_analyses_with_stats(
        self,
        user_id: str,
        status: Optional[ConversationalStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[AnalysisWithStats]:
        """User's analyses with message counts (one grouped count query)."""
        analyses = await self.list_user_analyses(user_id, status=status, limit=limit, offset=offset)
        counts = await self._repository.count_messages([a.id for a in analyses])
        return [
            AnalysisWithStats(**a.model_dump(), message_count=counts.get(a.id, 0))
            for a in analyses
        ]

    async def get_artifact(self, analysis_id: str) -> Optional[ArtifactRecord]:
        await self._load(analysis_id)
        return await self._repository.get_artifact(analysis_id)


# Global workflow service instance
workflow_service = ConversationalWorkflowService()
