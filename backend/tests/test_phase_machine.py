"""
Unit tests for the phase state machine.

Tests phase derivation, monotonic turn updates, and the submit / advance /
reopen transitions.
"""

from unittest.mock import patch

import pytest

from epicrefine.core.conversation.errors import ConflictError, InvariantViolationError, NotFoundError
from epicrefine.core.conversation.message_ledger import MessageLedger
from epicrefine.core.conversation.phase_machine import (
    PhaseStateMachine,
    derive_phase,
    next_phase,
    phase_after_turn,
)
from epicrefine.core.models.conversation_models import (
    ConversationalPhase,
    ConversationalStatus,
    MessageRole,
    MessageType,
    NewMessage,
    QuestionCategory,
)

Phase = ConversationalPhase
Status = ConversationalStatus


class TestDerivePhase:
    """Test completeness-to-phase derivation."""

    @pytest.mark.parametrize("completeness,expected", [
        (0, Phase.ANALYSIS),
        (29, Phase.ANALYSIS),
        (30, Phase.STRATEGY),
        (69, Phase.STRATEGY),
        (70, Phase.TEST_PLANNING),
        (100, Phase.TEST_PLANNING),
    ])
    def test_thresholds(self, completeness, expected):
        assert derive_phase(completeness, Status.IN_PROGRESS) == expected

    def test_completed_status_forces_completed_phase(self):
        assert derive_phase(10, Status.COMPLETED) == Phase.COMPLETED

    def test_thresholds_come_from_settings(self):
        with patch("epicrefine.core.conversation.phase_machine.settings") as mock_settings:
            mock_settings.phase_strategy_threshold = 10
            mock_settings.phase_test_planning_threshold = 20

            assert derive_phase(15, Status.IN_PROGRESS) == Phase.STRATEGY
            assert derive_phase(20, Status.IN_PROGRESS) == Phase.TEST_PLANNING


class TestPhaseAfterTurn:
    """Test that turns never move the phase backwards."""

    def test_moves_forward(self):
        assert phase_after_turn(Phase.ANALYSIS, 45, Status.IN_PROGRESS) == Phase.STRATEGY

    def test_never_regresses(self):
        assert phase_after_turn(Phase.TEST_PLANNING, 5, Status.IN_PROGRESS) == Phase.TEST_PLANNING

    def test_completed_phase_requires_completed_status(self):
        with pytest.raises(InvariantViolationError):
            phase_after_turn(Phase.COMPLETED, 50, Status.IN_PROGRESS)


class TestNextPhase:

    def test_order(self):
        assert next_phase(Phase.ANALYSIS) == Phase.STRATEGY
        assert next_phase(Phase.STRATEGY) == Phase.TEST_PLANNING
        assert next_phase(Phase.TEST_PLANNING) == Phase.COMPLETED

    def test_completed_has_no_next(self):
        with pytest.raises(ConflictError):
            next_phase(Phase.COMPLETED)


class TestSubmitPhase:
    """Test submit_phase transitions."""

    @pytest.mark.asyncio
    async def test_analysis_becomes_ready_to_advance(self, repository):
        analysis = await repository.create_analysis("Login", "desc", "epic", "u1")

        updated = await PhaseStateMachine(repository).submit_phase(analysis.id)

        assert updated.status == Status.READY_TO_ADVANCE
        assert updated.current_phase == Phase.ANALYSIS
        assert updated.submitted_at is not None

    @pytest.mark.asyncio
    async def test_submit_is_idempotent(self, repository):
        analysis = await repository.create_analysis("Login", "desc", "epic", "u1")
        machine = PhaseStateMachine(repository)

        first = await machine.submit_phase(analysis.id)
        second = await machine.submit_phase(analysis.id)

        assert second.status == Status.READY_TO_ADVANCE
        assert second.submitted_at == first.submitted_at

    @pytest.mark.asyncio
    async def test_submitted_status_left_unchanged(self, fake_repository):
        analysis = await fake_repository.create_analysis("Login", "desc", "epic", "u1")
        await fake_repository.update_analysis(analysis.id, status=Status.SUBMITTED)

        updated = await PhaseStateMachine(fake_repository).submit_phase(analysis.id)

        assert updated.status == Status.SUBMITTED
        assert updated.submitted_at is None

    @pytest.mark.asyncio
    async def test_submit_test_planning_completes(self, repository):
        analysis = await repository.create_analysis("Login", "desc", "epic", "u1")
        await repository.update_analysis(analysis.id, current_phase=Phase.TEST_PLANNING, completeness=75)

        updated = await PhaseStateMachine(repository).submit_phase(analysis.id)

        assert updated.status == Status.COMPLETED
        assert updated.current_phase == Phase.COMPLETED
        assert updated.completeness == 100

    @pytest.mark.asyncio
    async def test_submit_missing_analysis(self, repository):
        with pytest.raises(NotFoundError):
            await PhaseStateMachine(repository).submit_phase("missing")


class TestAdvanceToNextPhase:
    """Test advance_to_next_phase transitions."""

    @pytest.mark.asyncio
    async def test_visits_every_phase_in_order(self, repository):
        """Test phase monotonicity across repeated advances."""
        analysis = await repository.create_analysis("Login", "desc", "epic", "u1")
        machine = PhaseStateMachine(repository)

        visited = []
        for _ in range(3):
            visited.append((await machine.advance_to_next_phase(analysis.id)).current_phase)

        assert visited == [Phase.STRATEGY, Phase.TEST_PLANNING, Phase.COMPLETED]

    @pytest.mark.asyncio
    async def test_intermediate_steps_reset_status(self, repository):
        analysis = await repository.create_analysis("Login", "desc", "epic", "u1")
        machine = PhaseStateMachine(repository)
        await machine.submit_phase(analysis.id)

        updated = await machine.advance_to_next_phase(analysis.id)

        assert updated.current_phase == Phase.STRATEGY
        assert updated.status == Status.IN_PROGRESS

    @pytest.mark.asyncio
    async def test_final_step_completes(self, repository):
        analysis = await repository.create_analysis("Login", "desc", "epic", "u1")
        await repository.update_analysis(analysis.id, current_phase=Phase.TEST_PLANNING, completeness=40)

        updated = await PhaseStateMachine(repository).advance_to_next_phase(analysis.id)

        assert updated.current_phase == Phase.COMPLETED
        assert updated.status == Status.COMPLETED
        assert updated.completeness == 100

    @pytest.mark.asyncio
    async def test_advance_from_completed_conflicts(self, repository):
        analysis = await repository.create_analysis("Login", "desc", "epic", "u1")
        await repository.update_analysis(
            analysis.id, current_phase=Phase.COMPLETED, status=Status.COMPLETED, completeness=100
        )

        with pytest.raises(ConflictError) as exc_info:
            await PhaseStateMachine(repository).advance_to_next_phase(analysis.id)

        assert exc_info.value.analysis_id == analysis.id


class TestReopenAnalysis:
    """Test reopen_analysis."""

    @pytest.mark.asyncio
    async def test_reopen_completed_rederives_phase(self, repository):
        """Test that reopening recomputes completeness and may move the phase back."""
        analysis = await repository.create_analysis("Login", "desc", "epic", "u1")
        ledger = MessageLedger(repository)
        await ledger.append(analysis.id, NewMessage(
            content="Must support SSO", role=MessageRole.USER,
            message_type=MessageType.ANSWER, category=QuestionCategory.FUNCTIONAL_REQUIREMENTS,
        ))
        await repository.update_analysis(
            analysis.id, current_phase=Phase.COMPLETED, status=Status.COMPLETED, completeness=100
        )

        updated = await PhaseStateMachine(repository).reopen_analysis(analysis.id, "Missing MFA rules")

        # 1 functional answer out of 1: 100 / 4 = 25
        assert updated.completeness == 25
        assert updated.current_phase == Phase.ANALYSIS
        assert updated.status == Status.REOPENED
        assert updated.reopen_reason == "Missing MFA rules"
        assert updated.reopened_at is not None

    @pytest.mark.asyncio
    async def test_reopen_appends_clarification(self, repository):
        analysis = await repository.create_analysis("Login", "desc", "epic", "u1")

        await PhaseStateMachine(repository).reopen_analysis(analysis.id, "Missing MFA rules")

        messages = await repository.list_messages(analysis.id)
        assert len(messages) == 1
        assert messages[0].role == MessageRole.ASSISTANT
        assert messages[0].message_type == MessageType.CLARIFICATION
        assert "Missing MFA rules" in messages[0].content

    @pytest.mark.asyncio
    async def test_reopen_without_reason(self, fake_repository):
        analysis = await fake_repository.create_analysis("Login", "desc", "epic", "u1")

        updated = await PhaseStateMachine(fake_repository).reopen_analysis(analysis.id)

        assert updated.reopen_reason is None
        assert fake_repository.messages[0].content.startswith("Analysis reopened.")

    @pytest.mark.asyncio
    async def test_reopen_in_progress_analysis(self, repository):
        """Test that reopening is accepted from any status and re-derives the phase."""
        analysis = await repository.create_analysis("Login", "desc", "epic", "u1")
        await repository.update_analysis(analysis.id, current_phase=Phase.STRATEGY)

        updated = await PhaseStateMachine(repository).reopen_analysis(analysis.id, "Scope changed")

        assert updated.status == Status.REOPENED
        assert updated.current_phase == Phase.ANALYSIS
        assert updated.completeness == 0

    @pytest.mark.asyncio
    async def test_reopen_missing_analysis(self, repository):
        with pytest.raises(NotFoundError):
            await PhaseStateMachine(repository).reopen_analysis("missing", "why")
