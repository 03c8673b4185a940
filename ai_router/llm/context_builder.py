from __future__ import annotations

import logging
import time
from typing import Protocol

from ai_router.constants import (
    MAX_HISTORY_MESSAGES,
    MAX_TEMPERATURE,
    MIN_TEMPERATURE,
    TEMPERATURE_ADJUSTMENT,
    TIMEOUT_MAX_TOKENS_CAP,
    TIMEOUT_MS_PER_TOKEN,
)
from ai_router.llm.features import ANALYTICAL_TEMPERATURE_CUES, CREATIVE_TEMPERATURE_CUES
from ai_router.schemas import (
    ChatMessage,
    CompletionRequest,
    ContextRetrievalResult,
    ContextRetrievalSettings,
    ConversationContext,
    OrchestrationOptions,
    RelevantDocument,
    RequestMetadata,
    Role,
)

logger = logging.getLogger(__name__)


class ContextRetriever(Protocol):
    """External lookup of relevant prior messages, documents and concepts."""

    async def retrieve(
        self,
        query_text: str,
        context: ConversationContext,
        max_results: int,
    ) -> ContextRetrievalResult: ...


def pick_temperature(base: float, content: str) -> float:
    lowered = content.lower()
    temperature = base
    if CREATIVE_TEMPERATURE_CUES.search(lowered):
        temperature += TEMPERATURE_ADJUSTMENT
    if ANALYTICAL_TEMPERATURE_CUES.search(lowered):
        temperature -= TEMPERATURE_ADJUSTMENT
    return round(max(MIN_TEMPERATURE, min(MAX_TEMPERATURE, temperature)), 2)


def max_tokens_for_budget(timeout_ms: int | None, default: int | None = None) -> int | None:
    if timeout_ms is None:
        return default
    # Never 0: a falsy max_tokens falls back to the backend default.
    return max(1, min(TIMEOUT_MAX_TOKENS_CAP, timeout_ms // TIMEOUT_MS_PER_TOKEN))


def build_message_history(content: str, context: ConversationContext | None) -> list[ChatMessage]:
    messages: list[ChatMessage] = []
    if context is not None and context.recent_messages:
        messages.extend(context.recent_messages[-MAX_HISTORY_MESSAGES:])
    messages.append(ChatMessage(role=Role.USER, content=content))
    return messages


def build_system_prompt(persona: str, context: ConversationContext | None) -> str:
    prompt = persona
    if context is None:
        return prompt
    if context.custom_instructions:
        prompt += f"\n\nAdditional instructions: {context.custom_instructions}"
    if context.project_id:
        prompt += f"\n\nYou are working within project context: {context.project_id}"
    return prompt


def summarize_context(context: ConversationContext | None) -> str:
    if context is None:
        return ""
    parts: list[str] = []
    if context.branch_context and context.branch_context.branch_summary:
        parts.append(f"Branch: {context.branch_context.branch_summary}")
    if context.relevant_documents:
        parts.append(f"{len(context.relevant_documents)} relevant documents found")
    if context.recent_messages:
        parts.append(f"{len(context.recent_messages)} recent messages in context")
    return " | ".join(parts)


def merge_retrieval(
    context: ConversationContext | None,
    retrieval: ContextRetrievalResult | None,
) -> ConversationContext | None:
    """Fold hybrid matches into the context's relevant documents.

    Retrieved documents come first, previously attached ones follow unless
    their id was retrieved again.
    """
    if context is None:
        return None
    if retrieval is None or not retrieval.hybrid_matches:
        return context

    retrieved = [
        RelevantDocument(id=match.id, content=match.content, similarity=match.score)
        for match in retrieval.hybrid_matches
    ]
    seen = {doc.id for doc in retrieved}
    existing = [doc for doc in (context.relevant_documents or []) if doc.id not in seen]
    return context.model_copy(update={"relevant_documents": retrieved + existing})


class ContextBuilder:
    def __init__(
        self,
        retriever: ContextRetriever | None = None,
        settings: ContextRetrievalSettings | None = None,
    ) -> None:
        self._retriever = retriever
        self.settings = settings or ContextRetrievalSettings()

    @property
    def retrieval_available(self) -> bool:
        return self._retriever is not None and self.settings.enabled

    async def retrieve(
        self,
        content: str,
        context: ConversationContext | None,
        options: OrchestrationOptions,
    ) -> ContextRetrievalResult | None:
        if not options.enable_context_retrieval or not self.retrieval_available or context is None:
            return None

        limit = options.context_retrieval_limit or self.settings.max_results
        start = time.perf_counter()
        try:
            result = await self._retriever.retrieve(content, context, limit)
        except Exception as e:
            logger.warning("Context retrieval failed, continuing without it: %s", e)
            return None

        logger.info(
            "Context retrieval returned %d result(s) in %.0fms",
            result.total_results,
            (time.perf_counter() - start) * 1000,
        )
        return result

    async def build_context(
        self,
        content: str,
        context: ConversationContext | None,
        options: OrchestrationOptions,
    ) -> tuple[ConversationContext | None, ContextRetrievalResult | None]:
        retrieval = await self.retrieve(content, context, options)
        return merge_retrieval(context, retrieval), retrieval

    def build_request(
        self,
        content: str,
        backend: str,
        branch_id: str,
        context: ConversationContext | None,
        options: OrchestrationOptions,
        *,
        persona: str,
        base_temperature: float,
        default_max_tokens: int | None = None,
    ) -> CompletionRequest:
        return CompletionRequest(
            messages=build_message_history(content, context),
            backend=backend,
            max_tokens=max_tokens_for_budget(options.timeout_ms, default_max_tokens),
            temperature=pick_temperature(base_temperature, content),
            system_prompt=build_system_prompt(persona, context),
            metadata=RequestMetadata(
                conversation_id=context.conversation_id if context else None,
                branch_id=branch_id,
                project_id=context.project_id if context else None,
                context_summary=summarize_context(context),
            ),
        )
