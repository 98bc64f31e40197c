# backend/epicrefine/core/llm/prompts.py
"""
Prompt construction for the conversational analyst.

Turns a PromptContext into the chat message list sent to the model. Only
plain text goes in and out; the workflow treats the reply as opaque.
"""

from typing import Dict, List

from ..models.conversation_models import ConversationalPhase, MessageRole
from ..models.llm_models import PromptContext

SYSTEM_PROMPT = (
    "You are a senior QA analyst helping a user refine a software requirement. "
    "Ask one focused question at a time, covering functional requirements, "
    "non-functional requirements, business rules and acceptance criteria. "
    "Be concise."
)

PHASE_INSTRUCTIONS: Dict[ConversationalPhase, str] = {
    ConversationalPhase.ANALYSIS: (
        "Current phase: ANALYSIS. Clarify what the requirement must do and "
        "which rules constrain it."
    ),
    ConversationalPhase.STRATEGY: (
        "Current phase: STRATEGY. Propose and refine a test strategy for the "
        "requirement as understood so far."
    ),
    ConversationalPhase.TEST_PLANNING: (
        "Current phase: TEST_PLANNING. Turn the agreed strategy into concrete "
        "test cases with expected results."
    ),
    ConversationalPhase.COMPLETED: (
        "The analysis is complete. Summarize the refined requirements."
    ),
}

OPENING_INSTRUCTION = (
    "This is the start of the conversation. Briefly restate the requirement "
    "and ask the first clarifying question."
)


def requirement_brief(context: PromptContext) -> str:
    lines = [f"Title: {context.title}"]
    if context.description:
        lines.append(f"Description: {context.description}")
    if context.epic_content:
        lines.append(f"Epic:\n{context.epic_content}")
    return "\n".join(lines)


def build_chat_messages(context: PromptContext) -> List[Dict[str, str]]:
    """Chat-completions message list for the next assistant turn."""
    system = "\n\n".join([
        SYSTEM_PROMPT,
        PHASE_INSTRUCTIONS[context.phase],
        requirement_brief(context),
    ])
    chat = [{"role": "system", "content": system}]

    for message in context.messages:
        role = "assistant" if message.role == MessageRole.ASSISTANT else "user"
        chat.append({"role": role, "content": message.content})

    if context.opening:
        chat.append({"role": "system", "content": OPENING_INSTRUCTION})

    return chat
