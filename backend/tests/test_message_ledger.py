"""
Unit tests for MessageLedger.

Tests duplicate suppression on append, read-side reconciliation and
ordering, and degraded behavior when the store fails.
"""

from datetime import datetime, timedelta

import pytest

from epicrefine.core.conversation.errors import ErrorKind, NotFoundError, TransientStoreError
from epicrefine.core.conversation.message_ledger import MessageLedger, reconcile_messages
from epicrefine.core.models.conversation_models import (
    MessageRecord,
    MessageRole,
    MessageType,
    NewMessage,
    QuestionCategory,
)


def user_message(content, category=None):
    return NewMessage(content=content, role=MessageRole.USER, message_type=MessageType.ANSWER, category=category)


def assistant_message(content):
    return NewMessage(content=content, role=MessageRole.ASSISTANT, message_type=MessageType.QUESTION)


def record(message_id, role, content, created_at, analysis_id="a1"):
    return MessageRecord(
        id=message_id,
        analysis_id=analysis_id,
        content=content,
        role=role,
        message_type=MessageType.ANSWER if role == MessageRole.USER else MessageType.QUESTION,
        created_at=created_at,
    )


class TestAppend:
    """Test appending messages."""

    @pytest.mark.asyncio
    async def test_append_stores_message(self, repository):
        """Test a plain append."""
        analysis = await repository.create_analysis("Login", "desc", "epic", "u1")
        ledger = MessageLedger(repository)

        outcome = await ledger.append(analysis.id, user_message("desc", QuestionCategory.BUSINESS_RULES))

        assert outcome.duplicate is False
        assert outcome.message.content == "desc"
        assert outcome.message.category == QuestionCategory.BUSINESS_RULES
        assert len(await repository.list_messages(analysis.id)) == 1

    @pytest.mark.asyncio
    async def test_duplicate_append_is_suppressed(self, repository):
        """Test that identical (role, content) appends store one message."""
        analysis = await repository.create_analysis("Login", "desc", "epic", "u1")
        ledger = MessageLedger(repository)

        first = await ledger.append(analysis.id, assistant_message("What is the lockout policy?"))
        second = await ledger.append(analysis.id, assistant_message("What is the lockout policy?"))

        assert second.duplicate is True
        assert second.message.id == first.message.id
        assert len(await repository.list_messages(analysis.id)) == 1

    @pytest.mark.asyncio
    async def test_same_content_different_role_is_kept(self, repository):
        """Test that dedup is scoped to the role."""
        analysis = await repository.create_analysis("Login", "desc", "epic", "u1")
        ledger = MessageLedger(repository)

        await ledger.append(analysis.id, user_message("ok"))
        outcome = await ledger.append(analysis.id, assistant_message("ok"))

        assert outcome.duplicate is False
        assert len(await repository.list_messages(analysis.id)) == 2

    @pytest.mark.asyncio
    async def test_append_touches_analysis_updated_at(self, repository):
        """Test that appending bumps the parent's updated_at."""
        analysis = await repository.create_analysis("Login", "desc", "epic", "u1")

        await MessageLedger(repository).append(analysis.id, user_message("desc"))

        assert (await repository.get_analysis(analysis.id)).updated_at >= analysis.updated_at

    @pytest.mark.asyncio
    async def test_append_to_missing_analysis(self, repository):
        """Test appending to an unknown analysis."""
        with pytest.raises(NotFoundError):
            await MessageLedger(repository).append("missing", user_message("desc"))

    @pytest.mark.asyncio
    async def test_failed_duplicate_check_still_inserts(self, fake_repository):
        """Test that a failing duplicate check degrades to an insert."""
        analysis = await fake_repository.create_analysis("Login", "desc", "epic", "u1")
        fake_repository.failing.add("find_message")

        outcome = await MessageLedger(fake_repository).append(analysis.id, user_message("desc"))

        assert outcome.duplicate is False
        assert outcome.message is not None
        assert len(fake_repository.messages) == 1

    @pytest.mark.asyncio
    async def test_failed_insert_propagates(self, fake_repository):
        """Test that insert failures reach the caller."""
        analysis = await fake_repository.create_analysis("Login", "desc", "epic", "u1")
        fake_repository.failing.add("insert_message")

        with pytest.raises(TransientStoreError):
            await MessageLedger(fake_repository).append(analysis.id, user_message("desc"))


class TestRead:
    """Test reconciled reads."""

    @pytest.mark.asyncio
    async def test_read_returns_conversation_order(self, repository):
        """Test the create -> append -> read scenario."""
        analysis = await repository.create_analysis("Login", "desc", "epic", "u1")
        ledger = MessageLedger(repository)

        await ledger.append(analysis.id, user_message("desc"))
        await ledger.append(analysis.id, assistant_message("first question"))
        messages = await ledger.read(analysis.id)

        assert [m.role for m in messages] == [MessageRole.USER, MessageRole.ASSISTANT]
        assert [m.content for m in messages] == ["desc", "first question"]

    @pytest.mark.asyncio
    async def test_read_is_stable(self, repository):
        """Test that repeated reads without writes return the same list."""
        analysis = await repository.create_analysis("Login", "desc", "epic", "u1")
        ledger = MessageLedger(repository)
        await ledger.append(analysis.id, user_message("desc"))
        await ledger.append(analysis.id, assistant_message("q1"))

        assert await ledger.read(analysis.id) == await ledger.read(analysis.id)

    @pytest.mark.asyncio
    async def test_read_reconciles_stored_duplicates(self, fake_repository):
        """Test that duplicates that raced past append are hidden on read."""
        analysis = await fake_repository.create_analysis("Login", "desc", "epic", "u1")
        t0 = datetime(2026, 1, 1, 12, 0, 0)
        fake_repository.insert_raw(record("m2", MessageRole.ASSISTANT, "Question?", t0 + timedelta(seconds=2), analysis.id))
        fake_repository.insert_raw(record("m1", MessageRole.ASSISTANT, "Question? ", t0 + timedelta(seconds=1), analysis.id))

        messages = await MessageLedger(fake_repository).read(analysis.id)

        assert [m.id for m in messages] == ["m1"]

    @pytest.mark.asyncio
    async def test_read_result_reports_store_failure(self, fake_repository):
        """Test that read_result tells a failure apart from an empty list."""
        analysis = await fake_repository.create_analysis("Login", "desc", "epic", "u1")
        ledger = MessageLedger(fake_repository)

        empty = await ledger.read_result(analysis.id)
        fake_repository.failing.add("list_messages")
        failed = await ledger.read_result(analysis.id)

        assert empty.ok and empty.value == []
        assert not failed.ok
        assert failed.error_kind == ErrorKind.TRANSIENT_STORE
        assert failed.value_or([]) == []


class TestReconcileMessages:
    """Test the pure reconciliation function."""

    def test_keeps_earliest_of_duplicates(self):
        t0 = datetime(2026, 1, 1)
        messages = [
            record("late", MessageRole.USER, "same", t0 + timedelta(minutes=5)),
            record("early", MessageRole.USER, "  same", t0),
        ]

        assert [m.id for m in reconcile_messages(messages)] == ["early"]

    def test_sorted_by_created_at(self):
        t0 = datetime(2026, 1, 1)
        messages = [
            record("b", MessageRole.ASSISTANT, "second", t0 + timedelta(seconds=1)),
            record("a", MessageRole.USER, "first", t0),
        ]

        assert [m.id for m in reconcile_messages(messages)] == ["a", "b"]

    def test_ties_keep_store_order(self):
        t0 = datetime(2026, 1, 1)
        messages = [
            record("x", MessageRole.USER, "one", t0),
            record("y", MessageRole.ASSISTANT, "two", t0),
            record("z", MessageRole.USER, "three", t0),
        ]

        assert [m.id for m in reconcile_messages(messages)] == ["x", "y", "z"]

    def test_empty(self):
        assert reconcile_messages([]) == []
