"""
End-to-end conversation scenario against SQLite.

create -> start claim -> append USER -> append ASSISTANT -> read -> coverage
-> phase, using the real SQLAlchemy repository.
"""

import pytest

from epicrefine.core.conversation.coverage_service import CoverageService
from epicrefine.core.conversation.message_ledger import MessageLedger
from epicrefine.core.conversation.phase_machine import derive_phase
from epicrefine.core.conversation.start_guard import StartGuard
from epicrefine.core.models.conversation_models import (
    ConversationalPhase,
    MessageRole,
    MessageType,
    NewMessage,
)


@pytest.mark.asyncio
async def test_login_scenario(sql_repository):
    analysis = await sql_repository.create_analysis("Login", "desc", "epic", "u1")
    ledger = MessageLedger(sql_repository)

    claim = await StartGuard(sql_repository).mark_started_if_not(analysis.id)
    await ledger.append(analysis.id, NewMessage(content="desc", role=MessageRole.USER, message_type=MessageType.ANSWER))
    await ledger.append(analysis.id, NewMessage(
        content="first question", role=MessageRole.ASSISTANT, message_type=MessageType.QUESTION
    ))
    messages = await ledger.read(analysis.id)
    coverage = await CoverageService(sql_repository).calculate(analysis.id)
    stored = await sql_repository.get_analysis(analysis.id)

    assert claim.acquired is True
    assert [m.role for m in messages] == [MessageRole.USER, MessageRole.ASSISTANT]
    assert coverage.overall_score == 0
    assert derive_phase(coverage.overall_score, stored.status) == ConversationalPhase.ANALYSIS
    assert stored.current_phase == ConversationalPhase.ANALYSIS
