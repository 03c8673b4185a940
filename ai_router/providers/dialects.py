"""Wire dialects for the generic provider client.

A dialect owns everything that differs between backend APIs: paths, auth
headers, request payload, response and stream-event parsing, finish-reason
mapping and the error table. ``ProviderClient`` owns transport, rate limits
and the streaming contract.
"""

from __future__ import annotations

import json
import uuid
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from ai_router.errors import BackendError, ErrorType
from ai_router.schemas import ChatMessage, CompletionRequest, FinishReason, Role, TokenUsage
from ai_router.utils.sse import SSEEvent


DEFAULT_RATE_LIMIT_RETRY_AFTER = 60.0

STATUS_ERROR_TYPES: dict[int, ErrorType] = {
    400: ErrorType.INVALID_REQUEST,
    401: ErrorType.AUTHENTICATION,
    403: ErrorType.AUTHENTICATION,
    404: ErrorType.INVALID_REQUEST,
    408: ErrorType.TIMEOUT,
    413: ErrorType.CONTEXT_LIMIT,
    422: ErrorType.INVALID_REQUEST,
    429: ErrorType.RATE_LIMIT,
}

# Checked against the lower-cased body of any 4xx response, first match wins.
BODY_HINTS: tuple[tuple[str, ErrorType], ...] = (
    ("context_length_exceeded", ErrorType.CONTEXT_LIMIT),
    ("maximum context length", ErrorType.CONTEXT_LIMIT),
    ("prompt is too long", ErrorType.CONTEXT_LIMIT),
    ("content_filter", ErrorType.CONTENT_FILTER),
    ("content_policy", ErrorType.CONTENT_FILTER),
    ("content management policy", ErrorType.CONTENT_FILTER),
)


@dataclass
class ParsedCompletion:
    id: str
    content: str
    finish_reason: FinishReason
    usage: TokenUsage
    model: str | None = None


@dataclass
class StreamState:
    """Accumulates stream-wide fields that arrive spread over several events."""

    id: str
    model: str | None = None
    prompt_tokens: int = 0
    completion_tokens: int = 0
    finish_reason: FinishReason | None = None
    done: bool = False

    @property
    def usage(self) -> TokenUsage:
        return TokenUsage.from_counts(self.prompt_tokens, self.completion_tokens)


def parse_retry_after(headers: Mapping[str, str]) -> float | None:
    raw = headers.get("retry-after")
    if raw is None:
        return None
    try:
        return max(0.0, float(raw))
    except ValueError:
        return None


def split_system(request: CompletionRequest) -> tuple[str | None, list[ChatMessage]]:
    """Fold system-role history into a single system prompt."""
    parts = [request.system_prompt] if request.system_prompt else []
    conversation: list[ChatMessage] = []
    for message in request.messages:
        if message.role == Role.SYSTEM:
            parts.append(message.content)
        else:
            conversation.append(message)
    return ("\n\n".join(parts) if parts else None), conversation


class Dialect(ABC):
    name: str
    body_hints: tuple[tuple[str, ErrorType], ...] = BODY_HINTS

    @abstractmethod
    def headers(self, api_key: str) -> dict[str, str]: ...

    @abstractmethod
    def chat_path(self, model: str, stream: bool) -> str: ...

    @abstractmethod
    def health_path(self) -> str: ...

    @abstractmethod
    def build_payload(
        self,
        request: CompletionRequest,
        model: str,
        max_tokens: int,
        temperature: float,
        stream: bool,
    ) -> dict[str, Any]: ...

    @abstractmethod
    def parse_completion(self, data: dict[str, Any], backend: str) -> ParsedCompletion: ...

    @abstractmethod
    def parse_stream_event(self, event: SSEEvent, state: StreamState, backend: str) -> str:
        """Update ``state`` from one event and return the text delta it carries."""

    def classify_error(
        self,
        status_code: int,
        body: str,
        headers: Mapping[str, str],
        backend: str,
    ) -> BackendError:
        error_type = STATUS_ERROR_TYPES.get(status_code)
        if error_type is None:
            error_type = ErrorType.API_ERROR if status_code >= 500 else ErrorType.UNKNOWN

        if 400 <= status_code < 500 and error_type != ErrorType.RATE_LIMIT:
            lowered = body.lower()
            for marker, hinted in self.body_hints:
                if marker in lowered:
                    error_type = hinted
                    break

        retry_after = None
        if error_type == ErrorType.RATE_LIMIT:
            retry_after = parse_retry_after(headers) or DEFAULT_RATE_LIMIT_RETRY_AFTER

        return BackendError(
            f"{backend} returned HTTP {status_code}: {body[:200]}",
            backend=backend,
            error_type=error_type,
            status_code=status_code,
            retry_after=retry_after,
        )

    def health_ok(self, data: Any) -> bool:
        return isinstance(data, dict)


def _load_event(event: SSEEvent, backend: str) -> dict[str, Any]:
    try:
        data = json.loads(event.data)
    except json.JSONDecodeError as e:
        raise BackendError(
            f"Malformed stream event from {backend}",
            backend=backend,
            error_type=ErrorType.API_ERROR,
            original_error=e,
        ) from e
    if not isinstance(data, dict):
        raise BackendError(
            f"Unexpected stream event from {backend}",
            backend=backend,
            error_type=ErrorType.API_ERROR,
        )
    return data


# =============================================================================
# OpenAI-compatible (OpenAI, Moonshot, xAI)
# =============================================================================


OPENAI_FINISH_REASONS: dict[str, FinishReason] = {
    "stop": FinishReason.STOP,
    "length": FinishReason.LENGTH,
}


class OpenAICompatibleDialect(Dialect):
    name = "openai"

    def __init__(self, include_stream_usage: bool = True) -> None:
        self.include_stream_usage = include_stream_usage

    def headers(self, api_key: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {api_key}"}

    def chat_path(self, model: str, stream: bool) -> str:
        return "/chat/completions"

    def health_path(self) -> str:
        return "/models"

    def build_payload(self, request, model, max_tokens, temperature, stream):
        system, conversation = split_system(request)
        messages: list[dict[str, str]] = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.extend({"role": m.role.value, "content": m.content} for m in conversation)

        payload: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "stream": stream,
        }
        if stream and self.include_stream_usage:
            payload["stream_options"] = {"include_usage": True}
        return payload

    @staticmethod
    def map_finish_reason(raw: str | None) -> FinishReason:
        return OPENAI_FINISH_REASONS.get(raw or "", FinishReason.ERROR)

    def parse_completion(self, data, backend):
        choice = data["choices"][0]
        usage = data.get("usage") or {}
        return ParsedCompletion(
            id=data.get("id") or f"{backend}_{uuid.uuid4().hex}",
            content=(choice.get("message") or {}).get("content") or "",
            finish_reason=self.map_finish_reason(choice.get("finish_reason")),
            usage=TokenUsage.from_counts(
                usage.get("prompt_tokens", 0), usage.get("completion_tokens", 0)
            ),
            model=data.get("model"),
        )

    def parse_stream_event(self, event, state, backend):
        if event.is_done:
            state.done = True
            return ""

        data = _load_event(event, backend)
        if "error" in data:
            error = data["error"] or {}
            raise BackendError(
                str(error.get("message") or "stream error"),
                backend=backend,
                error_type=ErrorType.API_ERROR,
            )

        if data.get("id"):
            state.id = data["id"]
        if data.get("model"):
            state.model = data["model"]
        usage = data.get("usage")
        if usage:
            state.prompt_tokens = usage.get("prompt_tokens", state.prompt_tokens)
            state.completion_tokens = usage.get("completion_tokens", state.completion_tokens)

        choices = data.get("choices") or []
        if not choices:
            return ""
        choice = choices[0]
        if choice.get("finish_reason"):
            state.finish_reason = self.map_finish_reason(choice["finish_reason"])
        return (choice.get("delta") or {}).get("content") or ""

    def health_ok(self, data):
        return isinstance(data, dict) and isinstance(data.get("data"), list)


# =============================================================================
# Anthropic Messages API
# =============================================================================


ANTHROPIC_API_VERSION = "2023-06-01"

ANTHROPIC_FINISH_REASONS: dict[str, FinishReason] = {
    "end_turn": FinishReason.STOP,
    "stop_sequence": FinishReason.STOP,
    "max_tokens": FinishReason.LENGTH,
}

ANTHROPIC_ERROR_TYPES: dict[str, ErrorType] = {
    "invalid_request_error": ErrorType.INVALID_REQUEST,
    "authentication_error": ErrorType.AUTHENTICATION,
    "permission_error": ErrorType.AUTHENTICATION,
    "not_found_error": ErrorType.INVALID_REQUEST,
    "request_too_large": ErrorType.CONTEXT_LIMIT,
    "rate_limit_error": ErrorType.RATE_LIMIT,
    "api_error": ErrorType.API_ERROR,
    "overloaded_error": ErrorType.API_ERROR,
}


class AnthropicDialect(Dialect):
    name = "anthropic"

    def headers(self, api_key: str) -> dict[str, str]:
        return {"x-api-key": api_key, "anthropic-version": ANTHROPIC_API_VERSION}

    def chat_path(self, model: str, stream: bool) -> str:
        return "/v1/messages"

    def health_path(self) -> str:
        return "/v1/models"

    def build_payload(self, request, model, max_tokens, temperature, stream):
        system, conversation = split_system(request)
        payload: dict[str, Any] = {
            "model": model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": [{"role": m.role.value, "content": m.content} for m in conversation],
            "stream": stream,
        }
        if system:
            payload["system"] = system
        if request.metadata.conversation_id:
            payload["metadata"] = {"user_id": request.metadata.conversation_id}
        return payload

    @staticmethod
    def map_finish_reason(raw: str | None) -> FinishReason:
        return ANTHROPIC_FINISH_REASONS.get(raw or "", FinishReason.ERROR)

    def parse_completion(self, data, backend):
        blocks = data.get("content") or []
        text = "".join(block.get("text", "") for block in blocks if block.get("type") == "text")
        usage = data.get("usage") or {}
        return ParsedCompletion(
            id=data.get("id") or f"{backend}_{uuid.uuid4().hex}",
            content=text,
            finish_reason=self.map_finish_reason(data.get("stop_reason")),
            usage=TokenUsage.from_counts(
                usage.get("input_tokens", 0), usage.get("output_tokens", 0)
            ),
            model=data.get("model"),
        )

    def parse_stream_event(self, event, state, backend):
        data = _load_event(event, backend)
        event_type = data.get("type") or event.event

        if event_type == "message_start":
            message = data.get("message") or {}
            state.id = message.get("id") or state.id
            state.model = message.get("model") or state.model
            state.prompt_tokens = (message.get("usage") or {}).get("input_tokens", 0)
        elif event_type == "content_block_delta":
            delta = data.get("delta") or {}
            if delta.get("type") == "text_delta":
                return delta.get("text", "")
        elif event_type == "message_delta":
            stop_reason = (data.get("delta") or {}).get("stop_reason")
            if stop_reason:
                state.finish_reason = self.map_finish_reason(stop_reason)
            output_tokens = (data.get("usage") or {}).get("output_tokens")
            if output_tokens is not None:
                state.completion_tokens = output_tokens
        elif event_type == "message_stop":
            state.done = True
        elif event_type == "error":
            error = data.get("error") or {}
            raise BackendError(
                str(error.get("message") or "stream error"),
                backend=backend,
                error_type=ANTHROPIC_ERROR_TYPES.get(error.get("type", ""), ErrorType.API_ERROR),
            )
        return ""

    def classify_error(self, status_code, body, headers, backend):
        error = super().classify_error(status_code, body, headers, backend)
        if error.error_type in (ErrorType.INVALID_REQUEST, ErrorType.UNKNOWN):
            try:
                native = (json.loads(body).get("error") or {}).get("type", "")
            except (json.JSONDecodeError, AttributeError):
                return error
            mapped = ANTHROPIC_ERROR_TYPES.get(native)
            if mapped is not None and mapped != error.error_type:
                return BackendError(
                    error.message,
                    backend=backend,
                    error_type=mapped,
                    status_code=status_code,
                )
        return error


# =============================================================================
# Google Gemini generateContent API
# =============================================================================


GEMINI_FINISH_REASONS: dict[str, FinishReason] = {
    "STOP": FinishReason.STOP,
    "MAX_TOKENS": FinishReason.LENGTH,
}


class GeminiDialect(Dialect):
    name = "gemini"
    body_hints = BODY_HINTS + (
        ("api key not valid", ErrorType.AUTHENTICATION),
        ("safety", ErrorType.CONTENT_FILTER),
    )

    def headers(self, api_key: str) -> dict[str, str]:
        return {"x-goog-api-key": api_key}

    def chat_path(self, model: str, stream: bool) -> str:
        if stream:
            return f"/v1beta/models/{model}:streamGenerateContent?alt=sse"
        return f"/v1beta/models/{model}:generateContent"

    def health_path(self) -> str:
        return "/v1beta/models"

    def build_payload(self, request, model, max_tokens, temperature, stream):
        system, conversation = split_system(request)
        payload: dict[str, Any] = {
            "contents": [
                {
                    "role": "model" if m.role == Role.ASSISTANT else "user",
                    "parts": [{"text": m.content}],
                }
                for m in conversation
            ],
            "generationConfig": {"maxOutputTokens": max_tokens, "temperature": temperature},
        }
        if system:
            payload["systemInstruction"] = {"parts": [{"text": system}]}
        return payload

    @staticmethod
    def map_finish_reason(raw: str | None) -> FinishReason:
        # SAFETY, RECITATION, OTHER and unknown values all end the answer abnormally.
        return GEMINI_FINISH_REASONS.get(raw or "", FinishReason.ERROR)

    @staticmethod
    def _check_blocked(data: dict[str, Any], backend: str) -> None:
        block_reason = (data.get("promptFeedback") or {}).get("blockReason")
        if block_reason:
            raise BackendError(
                f"{backend} blocked the prompt: {block_reason}",
                backend=backend,
                error_type=ErrorType.CONTENT_FILTER,
            )

    @staticmethod
    def _candidate_text(candidate: dict[str, Any]) -> str:
        parts = (candidate.get("content") or {}).get("parts") or []
        return "".join(part.get("text", "") for part in parts)

    def parse_completion(self, data, backend):
        self._check_blocked(data, backend)
        candidates = data.get("candidates") or []
        if not candidates:
            raise BackendError(
                f"{backend} returned no candidates",
                backend=backend,
                error_type=ErrorType.API_ERROR,
            )
        candidate = candidates[0]
        if candidate.get("finishReason") == "SAFETY" and not self._candidate_text(candidate):
            raise BackendError(
                f"{backend} withheld the answer on safety grounds",
                backend=backend,
                error_type=ErrorType.CONTENT_FILTER,
            )
        usage = data.get("usageMetadata") or {}
        return ParsedCompletion(
            id=data.get("responseId") or f"gemini_{uuid.uuid4().hex}",
            content=self._candidate_text(candidate),
            finish_reason=self.map_finish_reason(candidate.get("finishReason")),
            usage=TokenUsage.from_counts(
                usage.get("promptTokenCount", 0), usage.get("candidatesTokenCount", 0)
            ),
            model=data.get("modelVersion"),
        )

    def parse_stream_event(self, event, state, backend):
        data = _load_event(event, backend)
        if "error" in data:
            error = data["error"] or {}
            raise BackendError(
                str(error.get("message") or "stream error"),
                backend=backend,
                error_type=ErrorType.API_ERROR,
            )
        self._check_blocked(data, backend)

        if data.get("responseId"):
            state.id = data["responseId"]
        if data.get("modelVersion"):
            state.model = data["modelVersion"]
        usage = data.get("usageMetadata")
        if usage:
            state.prompt_tokens = usage.get("promptTokenCount", state.prompt_tokens)
            state.completion_tokens = usage.get("candidatesTokenCount", state.completion_tokens)

        candidates = data.get("candidates") or []
        if not candidates:
            return ""
        candidate = candidates[0]
        if candidate.get("finishReason"):
            state.finish_reason = self.map_finish_reason(candidate["finishReason"])
        return self._candidate_text(candidate)

    def health_ok(self, data):
        return isinstance(data, dict) and "models" in data


DIALECTS: dict[str, Dialect] = {
    OpenAICompatibleDialect.name: OpenAICompatibleDialect(),
    AnthropicDialect.name: AnthropicDialect(),
    GeminiDialect.name: GeminiDialect(),
}


def get_dialect(name: str) -> Dialect:
    try:
        return DIALECTS[name]
    except KeyError:
        raise ValueError(f"Unknown dialect: {name}") from None
