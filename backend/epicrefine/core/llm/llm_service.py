# ============================================================================
# backend/epicrefine/core/llm/llm_service.py
# ============================================================================
#
# LLM collaborator for EpicRefine
#
# The conversational workflow only needs one thing from a language model:
# given the analysis context, produce the next assistant turn and report
# token usage. LLMCollaborator is that contract; LLMService implements it
# against any OpenAI-compatible chat-completions endpoint.
#
# Supported LLM Providers:
#   - OpenAI API
#   - Local Ollama / LM Studio servers
#   - Any OpenAI-compatible API endpoint (via OPENAI_BASE_URL)
#
# ============================================================================

import logging
from abc import ABC, abstractmethod
from typing import Optional

import httpx
import urllib3
from openai import AsyncOpenAI, OpenAIError

from ...config import settings
from ..conversation.errors import CollaboratorError
from ..models.llm_models import LLMCompletion, PromptContext
from .prompts import build_chat_messages

logger = logging.getLogger("epicrefine.llm")


class LLMCollaborator(ABC):
    """Produces assistant turns for the conversational workflow."""

    @abstractmethod
    async def complete(self, context: PromptContext) -> LLMCompletion:
        """
        Generate the next assistant message.

        Raises:
            CollaboratorError: the model could not produce a reply
        """


class LLMService(LLMCollaborator):
    """
    OpenAI-compatible LLM collaborator.

    Attributes:
        _client (Optional[AsyncOpenAI]): Client, None when no API key is configured
        model (str): Chat model used for completions
    """

    def __init__(self, client: Optional[AsyncOpenAI] = None):
        """
        Initialize the LLM service.

        Args:
            client: Optional pre-built client. Defaults to one configured
                    from settings.
        """
        self.model = settings.openai_model
        self._client = client
        if self._client is None:
            self._initialize_client()

    def _initialize_client(self) -> None:
        """Initialize the AsyncOpenAI client from settings."""
        if not settings.openai_api_key:
            logger.warning("No LLM API key configured (set OPENAI_API_KEY)")
            self._client = None
            return

        try:
            if not settings.openai_verify_ssl:
                urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

            http_client = httpx.AsyncClient(
                verify=settings.openai_verify_ssl,
                timeout=settings.openai_timeout,
            )

            self._client = AsyncOpenAI(
                api_key=settings.openai_api_key,
                base_url=settings.openai_base_url,
                http_client=http_client,
                max_retries=settings.openai_max_retries,
            )
            logger.info(f"LLM client initialized (model: {self.model}, base_url: {settings.openai_base_url})")

        except Exception as e:
            logger.error(f"Failed to initialize OpenAI client: {e}")
            self._client = None

    @property
    def is_available(self) -> bool:
        """Check if LLM client is available for processing."""
        return self._client is not None

    async def complete(self, context: PromptContext) -> LLMCompletion:
        if not self._client:
            raise CollaboratorError("LLM client not available", analysis_id=context.analysis_id)

        try:
            resp = await self._client.chat.completions.create(
                model=self.model,
                temperature=settings.openai_temperature,
                max_tokens=settings.openai_max_tokens,
                messages=build_chat_messages(context),
            )
        except OpenAIError as e:
            logger.error(f"LLM completion failed for analysis {context.analysis_id}: {e}")
            raise CollaboratorError(f"LLM completion failed: {e}", analysis_id=context.analysis_id) from e

        content = (resp.choices[0].message.content or "").strip() if resp.choices else ""
        if not content:
            raise CollaboratorError("LLM returned an empty reply", analysis_id=context.analysis_id)

        usage = resp.usage
        completion = LLMCompletion(
            text=content,
            prompt_tokens=usage.prompt_tokens if usage else 0,
            completion_tokens=usage.completion_tokens if usage else 0,
            model=resp.model or self.model,
        )
        logger.debug(
            f"LLM reply for analysis {context.analysis_id}: {completion.total_tokens} tokens"
        )
        return completion


# Global LLM service instance
llm_service = LLMService()
