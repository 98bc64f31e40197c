# backend/epicrefine/core/models/llm_models.py
"""
LLM collaborator models.

The workflow hands the collaborator a PromptContext and receives an
LLMCompletion (text plus token usage). Prompt wording lives in
core/llm/prompts.py.
"""

from typing import List, Optional

from pydantic import BaseModel, Field

from .conversation_models import ConversationalPhase, MessageRecord


class PromptContext(BaseModel):
    """
    Everything the collaborator needs to produce the next assistant turn.

    Attributes:
        analysis_id: Analysis the turn belongs to (for logging/usage tracking)
        title: Analysis title
        description: Initial description of the requirement
        epic_content: Epic / user story text
        phase: Current workflow phase
        messages: Reconciled conversation so far, oldest first
        opening: True for the first turn of a conversation
    """
    analysis_id: str
    title: str
    description: str
    epic_content: str
    phase: ConversationalPhase = ConversationalPhase.ANALYSIS
    messages: List[MessageRecord] = Field(default_factory=list)
    opening: bool = False


class LLMCompletion(BaseModel):
    text: str
    prompt_tokens: int = Field(default=0, ge=0)
    completion_tokens: int = Field(default=0, ge=0)
    model: Optional[str] = None

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens
