from .conversation_models import (
    AnalysisRecord,
    AnalysisWithStats,
    AppendOutcome,
    ArtifactRecord,
    ConversationalPhase,
    ConversationalStatus,
    CoverageReport,
    MessageRecord,
    MessageRole,
    MessageType,
    NewMessage,
    PurgeSummary,
    QuestionCategory,
    StartClaim,
    StartOutcome,
    TurnResult,
)
from .llm_models import LLMCompletion, PromptContext

__all__ = [
    "AnalysisRecord",
    "AnalysisWithStats",
    "AppendOutcome",
    "ArtifactRecord",
    "ConversationalPhase",
    "ConversationalStatus",
    "CoverageReport",
    "MessageRecord",
    "MessageRole",
    "MessageType",
    "NewMessage",
    "PurgeSummary",
    "QuestionCategory",
    "StartClaim",
    "StartOutcome",
    "TurnResult",
    "LLMCompletion",
    "PromptContext",
]
