# backend/epicrefine/core/models/conversation_models.py
"""
Conversation domain models.

Enumerations shared by the ORM layer and the workflow services, plus the
pydantic records that services hand to callers. ORM rows never leave the
repository; everything above it works with these records.
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class ConversationalPhase(str, Enum):
    """Workflow stage of an analysis, in forward order."""
    ANALYSIS = "ANALYSIS"             # Refining requirements
    STRATEGY = "STRATEGY"             # Building the test strategy
    TEST_PLANNING = "TEST_PLANNING"   # Producing the test plan
    COMPLETED = "COMPLETED"           # Terminal


class ConversationalStatus(str, Enum):
    """Lifecycle flag, orthogonal to the phase."""
    IN_PROGRESS = "IN_PROGRESS"
    READY_TO_ADVANCE = "READY_TO_ADVANCE"
    SUBMITTED = "SUBMITTED"
    REOPENED = "REOPENED"
    COMPLETED = "COMPLETED"


class MessageRole(str, Enum):
    USER = "USER"
    ASSISTANT = "ASSISTANT"


class MessageType(str, Enum):
    QUESTION = "QUESTION"                 # Assistant asks something
    ANSWER = "ANSWER"                     # User answers
    CLARIFICATION = "CLARIFICATION"       # Assistant asks for / gives clarification
    ANALYSIS_RESULT = "ANALYSIS_RESULT"
    STRATEGY_RESULT = "STRATEGY_RESULT"
    TESTPLAN_RESULT = "TESTPLAN_RESULT"


class QuestionCategory(str, Enum):
    """Requirement aspect a USER message addresses."""
    FUNCTIONAL_REQUIREMENTS = "FUNCTIONAL_REQUIREMENTS"
    NON_FUNCTIONAL_REQUIREMENTS = "NON_FUNCTIONAL_REQUIREMENTS"
    BUSINESS_RULES = "BUSINESS_RULES"
    USER_INTERFACE = "USER_INTERFACE"
    DATA_HANDLING = "DATA_HANDLING"
    INTEGRATION = "INTEGRATION"
    SECURITY = "SECURITY"
    PERFORMANCE = "PERFORMANCE"
    ERROR_HANDLING = "ERROR_HANDLING"
    ACCEPTANCE_CRITERIA = "ACCEPTANCE_CRITERIA"


# =========================================================================
# RECORDS
# =========================================================================


class MessageRecord(BaseModel):
    """One stored conversation turn. Immutable once created."""
    id: str
    analysis_id: str
    content: str
    role: MessageRole
    message_type: MessageType
    category: Optional[QuestionCategory] = None
    created_at: datetime

    class Config:
        from_attributes = True
        frozen = True


class NewMessage(BaseModel):
    """Payload for appending a message to the ledger."""
    content: str
    role: MessageRole
    message_type: MessageType
    category: Optional[QuestionCategory] = None


class CoverageReport(BaseModel):
    """
    Completeness signal for an analysis.

    Attributes:
        overall_score: Rounded mean of the four weighted category coverages
        functional_coverage: FUNCTIONAL_REQUIREMENTS coverage (0-100)
        non_functional_coverage: NON_FUNCTIONAL_REQUIREMENTS coverage (0-100)
        business_rules_coverage: BUSINESS_RULES coverage (0-100)
        acceptance_criteria_coverage: ACCEPTANCE_CRITERIA coverage (0-100)
    """
    overall_score: int = Field(default=0, ge=0, le=100)
    functional_coverage: int = Field(default=0, ge=0, le=100)
    non_functional_coverage: int = Field(default=0, ge=0, le=100)
    business_rules_coverage: int = Field(default=0, ge=0, le=100)
    acceptance_criteria_coverage: int = Field(default=0, ge=0, le=100)

    @classmethod
    def empty(cls) -> "CoverageReport":
        return cls()


class AnalysisRecord(BaseModel):
    """
    One conversation thread refining a single requirement.

    `messages` and `coverage` are only populated by read paths that load
    the conversation (e.g. ConversationalWorkflowService.get_analysis).
    """
    id: str
    title: str
    description: str
    epic_content: str
    user_id: str
    status: ConversationalStatus = ConversationalStatus.IN_PROGRESS
    current_phase: ConversationalPhase = ConversationalPhase.ANALYSIS
    completeness: int = Field(default=0, ge=0, le=100)
    started_at: Optional[datetime] = None
    submitted_at: Optional[datetime] = None
    reopened_at: Optional[datetime] = None
    reopen_reason: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    messages: List[MessageRecord] = Field(default_factory=list)
    coverage: Optional[CoverageReport] = None


class AnalysisWithStats(AnalysisRecord):
    message_count: int = 0


class ArtifactRecord(BaseModel):
    """Refined requirements produced for an analysis."""
    analysis_id: str
    refined_requirements: str
    completeness_score: int = Field(default=0, ge=0, le=100)
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


# =========================================================================
# OPERATION RESULTS
# =========================================================================


class StartClaim(BaseModel):
    """Outcome of the start guard's conditional claim."""
    acquired: bool
    analysis: Optional[AnalysisRecord] = None


class StartOutcome(BaseModel):
    analysis: AnalysisRecord
    already_started: bool


class AppendOutcome(BaseModel):
    """Stored message plus whether the append was suppressed as a duplicate."""
    message: Optional[MessageRecord] = None
    duplicate: bool = False


class TurnResult(BaseModel):
    """Reply to a user turn with the analysis state after it."""
    reply: str
    message_type: MessageType
    category: Optional[QuestionCategory] = None
    phase: ConversationalPhase
    status: ConversationalStatus
    coverage: CoverageReport


class PurgeSummary(BaseModel):
    """Per-analysis result of a purge (dry-run or executed)."""
    analysis_id: str
    total_messages: int = 0
    to_delete_count: int = 0
    kept_message_ids: List[str] = Field(default_factory=list)
    preview_delete_ids: List[str] = Field(default_factory=list)
    dry_run: bool = True
    deleted_count: int = 0
    error: Optional[str] = None
