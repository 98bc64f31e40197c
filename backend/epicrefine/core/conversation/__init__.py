# backend/epicrefine/core/conversation/__init__.py
"""
Conversational analysis workflow and persistence engine.

Modules:
    repository: Entity store contract and SQLAlchemy implementation
    start_guard: Atomic single-winner claim gating the first AI turn
    message_ledger: Append with duplicate suppression, reconciled reads
    coverage_service: Completeness / coverage scoring
    phase_machine: Phase derivation and submit/advance/reopen transitions
    retention_service: Message purge with dry-run previews
    workflow_service: Use cases composing the above with the LLM
"""
