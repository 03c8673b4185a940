from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ai_router.constants import (
    DEFAULT_MAX_RETRIES,
    DEFAULT_RETRIEVAL_LIMIT,
    DEFAULT_SIMILARITY_THRESHOLD,
)
from ai_router.errors import ErrorType


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Role(StrEnum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class FinishReason(StrEnum):
    STOP = "stop"
    LENGTH = "length"
    ERROR = "error"


class SwitchReason(StrEnum):
    USER_REQUEST = "user_request"
    FAILURE = "failure"
    OPTIMIZATION = "optimization"
    FALLBACK = "fallback"


class MatchType(StrEnum):
    MESSAGE = "message"
    DOCUMENT = "document"
    CONCEPT = "concept"


class StreamFallbackMode(StrEnum):
    """How content from a fallback stream relates to content already delivered."""

    REPLACE = "replace"
    APPEND = "append"


class PromptTransformType(StrEnum):
    FORMAT = "format"
    LENGTH = "length"
    SPECIFICITY = "specificity"
    EXAMPLES = "examples"
    STRUCTURE = "structure"
    CONTEXT = "context"
    REASONING = "reasoning"


# =============================================================================
# Conversation context
# =============================================================================


class ChatMessage(BaseModel):
    role: Role
    content: str
    timestamp: datetime | None = None
    backend: str | None = None
    token_count: int | None = None


class RelevantDocument(BaseModel):
    id: str
    content: str
    similarity: float


class RelatedConcept(BaseModel):
    id: str
    name: str
    description: str = ""
    similarity: float


class BranchContext(BaseModel):
    parent_messages: list[ChatMessage] = Field(default_factory=list)
    branch_summary: str = ""
    backend: str | None = None


class ConversationContext(BaseModel):
    conversation_id: str
    branch_id: str
    project_id: str | None = None
    custom_instructions: str | None = None
    recent_messages: list[ChatMessage] = Field(default_factory=list)
    relevant_documents: list[RelevantDocument] | None = None
    related_concepts: list[RelatedConcept] | None = None
    branch_context: BranchContext | None = None


class RetrievalMatch(BaseModel):
    id: str
    content: str
    score: float
    type: MatchType = MatchType.MESSAGE
    vector_similarity: float | None = None
    text_score: float | None = None


class ContextRetrievalResult(BaseModel):
    vector_matches: list[RetrievalMatch] = Field(default_factory=list)
    text_matches: list[RetrievalMatch] = Field(default_factory=list)
    hybrid_matches: list[RetrievalMatch] = Field(default_factory=list)
    retrieval_time_ms: float = 0.0

    @property
    def total_results(self) -> int:
        return len(self.vector_matches) + len(self.text_matches) + len(self.hybrid_matches)


# =============================================================================
# Requests and responses
# =============================================================================


class RequestMetadata(BaseModel):
    conversation_id: str | None = None
    branch_id: str | None = None
    project_id: str | None = None
    context_summary: str = ""


class CompletionRequest(BaseModel):
    messages: list[ChatMessage]
    backend: str
    max_tokens: int | None = None
    temperature: float | None = None
    stream: bool = False
    system_prompt: str | None = None
    metadata: RequestMetadata = Field(default_factory=RequestMetadata)


class TokenUsage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    @classmethod
    def from_counts(cls, prompt_tokens: int, completion_tokens: int) -> TokenUsage:
        return cls(
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=prompt_tokens + completion_tokens,
        )


class CompletionResponse(BaseModel):
    id: str
    backend: str
    content: str
    finish_reason: FinishReason
    usage: TokenUsage = Field(default_factory=TokenUsage)
    processing_time_ms: float = 0.0
    timestamp: datetime = Field(default_factory=_utcnow)
    metadata: dict[str, Any] = Field(default_factory=dict)


class StreamingChunk(BaseModel):
    id: str
    backend: str
    delta: str = ""
    finished: bool = False
    finish_reason: FinishReason | None = None
    usage: TokenUsage | None = None
    processing_time_ms: float | None = None
    error_type: ErrorType | None = None
    restarted: bool = False


class ModelSwitchEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    from_backend: str | None
    to_backend: str
    reason: SwitchReason
    conversation_id: str | None = None
    branch_id: str | None = None
    timestamp: datetime = Field(default_factory=_utcnow)
    context_preserved: bool = False
    switch_time_ms: float = 0.0


class PromptTransform(BaseModel):
    type: PromptTransformType
    description: str
    before: str
    after: str


class PromptOptimization(BaseModel):
    backend: str
    original_prompt: str
    optimized_prompt: str
    transforms: list[PromptTransform] = Field(default_factory=list)
    estimated_improvement: float = 0.0


class ProcessedResponse(CompletionResponse):
    context_used: ContextRetrievalResult | None = None
    model_switch_event: ModelSwitchEvent | None = None
    optimizations: PromptOptimization | None = None


# =============================================================================
# Backend descriptors and configuration
# =============================================================================


class BackendCapabilities(BaseModel):
    model_config = ConfigDict(frozen=True)

    max_context_tokens: int = 128_000
    supports_streaming: bool = True
    supports_system_messages: bool = True
    supports_function_calling: bool = False
    supports_vision: bool = False
    price_per_input_token: float = 0.0
    price_per_output_token: float = 0.0
    rate_limit_rpm: int = 60
    rate_limit_tpm: int = 100_000
    supported_languages: tuple[str, ...] = ("en",)
    strengths: tuple[str, ...] = ()
    weaknesses: tuple[str, ...] = ()
    # ContentFeature value -> selector bonus when the request shows that feature.
    feature_weights: dict[str, float] = Field(default_factory=dict)


class BackendConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    kind: str | None = None
    api_key: str = Field(default="", repr=False)
    base_url: str | None = None
    model_name: str | None = None
    max_tokens: int | None = None
    temperature: float | None = None
    enabled: bool = True
    rate_limit_rpm: int | None = Field(default=None, ge=1)
    rate_limit_tpm: int | None = Field(default=None, ge=1)
    system_prompt: str | None = None
    capabilities: BackendCapabilities | None = None

    @property
    def backend_kind(self) -> str:
        return self.kind or self.id

    @property
    def is_usable(self) -> bool:
        return self.enabled and bool(self.api_key)


class SelectorWeights(BaseModel):
    model_config = ConfigDict(frozen=True)

    continuity_bonus: float = 0.1
    reliability_weight: float = 0.2
    latency_scale_ms: float = Field(default=10_000.0, gt=0)
    max_latency_penalty: float = 0.1
    unavailable_score: float = -1.0


class ContextRetrievalSettings(BaseModel):
    enabled: bool = True
    max_results: int = Field(default=DEFAULT_RETRIEVAL_LIMIT, ge=1)
    similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD


class OrchestratorConfig(BaseModel):
    backends: list[BackendConfig]
    default_backend: str
    fallback_chain: list[str] = Field(default_factory=list)
    selector_weights: SelectorWeights = Field(default_factory=SelectorWeights)
    stream_fallback_mode: StreamFallbackMode = StreamFallbackMode.REPLACE
    context_retrieval: ContextRetrievalSettings = Field(default_factory=ContextRetrievalSettings)

    @field_validator("backends")
    @classmethod
    def _unique_ids(cls, backends: list[BackendConfig]) -> list[BackendConfig]:
        seen: set[str] = set()
        for backend in backends:
            if backend.id in seen:
                raise ValueError(f"duplicate backend id: {backend.id}")
            seen.add(backend.id)
        return backends

    @model_validator(mode="after")
    def _default_fallback_chain(self) -> OrchestratorConfig:
        if not self.fallback_chain:
            self.fallback_chain = [b.id for b in self.backends]
        return self

    def get_backend(self, backend_id: str) -> BackendConfig | None:
        for backend in self.backends:
            if backend.id == backend_id:
                return backend
        return None


class OrchestrationOptions(BaseModel):
    preferred_backend: str | None = None
    fallback_backends: list[str] | None = None
    max_retries: int = Field(default=DEFAULT_MAX_RETRIES, ge=1)
    timeout_ms: int | None = Field(default=None, gt=0)
    enable_context_retrieval: bool = False
    context_retrieval_limit: int | None = Field(default=None, ge=1)
    optimize_prompts: bool = False


# =============================================================================
# Status and metrics
# =============================================================================


class RateLimitStatus(BaseModel):
    remaining_requests: int
    remaining_tokens: int
    resets_in_s: float


class BackendMetrics(BaseModel):
    backend: str
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    average_latency_ms: float = 0.0
    total_tokens: int = 0
    total_cost: float = 0.0
    last_request_at: datetime | None = None
    error_rate: float = 0.0

    @property
    def success_rate(self) -> float:
        if self.total_requests == 0:
            return 1.0
        return self.successful_requests / self.total_requests


class BackendStatus(BaseModel):
    healthy: bool
    latency_ms: float
    error_rate: float
    rate_limit_status: RateLimitStatus


class BackendStatusReport(BackendStatus):
    backend: str
    enabled: bool
    model: str | None = None
    capabilities: BackendCapabilities
    metrics: BackendMetrics


class OrchestratorStatus(BaseModel):
    backends: dict[str, BackendStatusReport]
    default_backend: str
    fallback_chain: list[str]
    total_switches: int = 0
    retrieval_available: bool = False


# =============================================================================
# Analytics
# =============================================================================


class BackendAnalytics(BaseModel):
    metrics: BackendMetrics
    success_rate_pct: float
    average_cost: float
    reliability: float
    performance: float


class SwitchSummary(BaseModel):
    total_switches: int = 0
    switch_reasons: dict[str, int] = Field(default_factory=dict)
    common_pairs: dict[str, int] = Field(default_factory=dict)
    average_switch_time_ms: float = 0.0


class PerformanceAnalytics(BaseModel):
    backends: dict[str, BackendAnalytics] = Field(default_factory=dict)
    switches: SwitchSummary = Field(default_factory=SwitchSummary)
    recommendations: list[str] = Field(default_factory=list)
