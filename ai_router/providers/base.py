from __future__ import annotations

import json
import logging
import time
import uuid
from collections.abc import AsyncIterator
from typing import Any

import httpx

from ai_router.constants import (
    DEFAULT_OUTPUT_TOKENS_ESTIMATE,
    HEALTH_CHECK_TIMEOUT,
    HTTP_CONNECT_TIMEOUT,
    HTTP_READ_TIMEOUT,
)
from ai_router.errors import BackendError, ErrorType
from ai_router.llm.rate_limit import Clock, RateLimitTracker
from ai_router.providers.catalog import BackendProfile
from ai_router.providers.dialects import Dialect, StreamState
from ai_router.providers.prompt_optimizer import optimize_prompt
from ai_router.schemas import (
    BackendCapabilities,
    BackendConfig,
    BackendMetrics,
    BackendStatus,
    CompletionRequest,
    CompletionResponse,
    ConversationContext,
    FinishReason,
    PromptOptimization,
    RateLimitStatus,
    StreamingChunk,
    TokenUsage,
)
from ai_router.utils.sse import iter_sse_events

logger = logging.getLogger(__name__)

PROVIDER_TIMEOUT = httpx.Timeout(
    connect=HTTP_CONNECT_TIMEOUT, read=HTTP_READ_TIMEOUT, write=60.0, pool=60.0
)


class ProviderClient:
    """One backend endpoint behind the uniform chat contract.

    Wire differences live in the ``Dialect``; static defaults come from the
    ``BackendProfile`` and are overridden by ``BackendConfig``. The client owns
    its ``httpx.AsyncClient`` unless one is injected, and its rate-limit
    tracker always.
    """

    def __init__(
        self,
        config: BackendConfig,
        profile: BackendProfile,
        dialect: Dialect,
        *,
        http_client: httpx.AsyncClient | None = None,
        clock: Clock = time.monotonic,
    ) -> None:
        self.config = config
        self.profile = profile
        self.dialect = dialect
        self._capabilities = config.capabilities or profile.capabilities
        self.rate_limiter = RateLimitTracker(
            rpm=config.rate_limit_rpm or self._capabilities.rate_limit_rpm,
            tpm=config.rate_limit_tpm or self._capabilities.rate_limit_tpm,
            clock=clock,
        )
        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(
            base_url=self.base_url, timeout=PROVIDER_TIMEOUT
        )

    # -- identity ----------------------------------------------------------

    @property
    def backend_id(self) -> str:
        return self.config.id

    @property
    def is_enabled(self) -> bool:
        return self.config.is_usable

    @property
    def capabilities(self) -> BackendCapabilities:
        return self._capabilities

    @property
    def base_url(self) -> str:
        return (self.config.base_url or self.profile.base_url).rstrip("/")

    @property
    def model_name(self) -> str:
        return self.config.model_name or self.profile.model_name

    @property
    def persona(self) -> str:
        return self.config.system_prompt or self.profile.persona

    @property
    def base_temperature(self) -> float:
        if self.config.temperature is not None:
            return self.config.temperature
        return self.profile.base_temperature

    @property
    def default_max_tokens(self) -> int:
        return self.config.max_tokens or self.profile.default_max_tokens

    # -- rate limits -------------------------------------------------------

    def can_admit(self) -> bool:
        return self.rate_limiter.can_admit()

    def record_usage(self, tokens: int) -> None:
        self.rate_limiter.record_usage(tokens)

    def get_rate_limit_status(self) -> RateLimitStatus:
        return self.rate_limiter.status()

    def _ensure_admitted(self) -> None:
        if not self.can_admit():
            raise BackendError(
                f"Rate limit exceeded for {self.backend_id}",
                backend=self.backend_id,
                error_type=ErrorType.RATE_LIMIT,
                retry_after=self.rate_limiter.seconds_until_reset(),
            )

    # -- transport helpers -------------------------------------------------

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    def _headers(self) -> dict[str, str]:
        return {"Content-Type": "application/json", **self.dialect.headers(self.config.api_key)}

    def _payload(self, request: CompletionRequest, stream: bool) -> dict[str, Any]:
        temperature = request.temperature
        if temperature is None:
            temperature = self.base_temperature
        return self.dialect.build_payload(
            request,
            model=self.model_name,
            max_tokens=request.max_tokens or self.default_max_tokens,
            temperature=temperature,
            stream=stream,
        )

    def _transport_error(self, exc: httpx.RequestError) -> BackendError:
        if isinstance(exc, httpx.TimeoutException):
            error_type = ErrorType.TIMEOUT
        else:
            error_type = ErrorType.API_ERROR
        return BackendError(
            f"{self.backend_id} request failed: {type(exc).__name__}: {exc}",
            backend=self.backend_id,
            error_type=error_type,
            original_error=exc,
        )

    def _status_error(self, response: httpx.Response) -> BackendError:
        return self.dialect.classify_error(
            response.status_code, response.text, response.headers, self.backend_id
        )

    def _metadata(self, model: str | None) -> dict[str, Any]:
        return {"model": model or self.model_name, "dialect": self.dialect.name}

    # -- chat --------------------------------------------------------------

    async def chat(self, request: CompletionRequest) -> CompletionResponse:
        self._ensure_admitted()
        payload = self._payload(request, stream=False)
        start = time.perf_counter()
        try:
            response = await self._http.post(
                self._url(self.dialect.chat_path(self.model_name, stream=False)),
                json=payload,
                headers=self._headers(),
            )
            if response.is_error:
                raise self._status_error(response)
            try:
                parsed = self.dialect.parse_completion(response.json(), self.backend_id)
            except (ValueError, KeyError, IndexError, TypeError, AttributeError) as e:
                raise BackendError(
                    f"Malformed response from {self.backend_id}",
                    backend=self.backend_id,
                    error_type=ErrorType.API_ERROR,
                    original_error=e,
                ) from e
        except httpx.RequestError as e:
            elapsed = time.perf_counter() - start
            logger.error("%s request failed after %.2fs: %s", self.backend_id, elapsed, e)
            raise self._transport_error(e) from e
        except BackendError as e:
            elapsed = time.perf_counter() - start
            logger.error(
                "%s request failed after %.2fs: %s (%s)",
                self.backend_id,
                elapsed,
                e.message,
                e.error_type,
            )
            raise

        elapsed_ms = (time.perf_counter() - start) * 1000
        self.record_usage(parsed.usage.total_tokens)
        logger.info(
            "%s request completed in %.0fms (tokens=%d)",
            self.backend_id,
            elapsed_ms,
            parsed.usage.total_tokens,
        )
        return CompletionResponse(
            id=parsed.id,
            backend=self.backend_id,
            content=parsed.content,
            finish_reason=parsed.finish_reason,
            usage=parsed.usage,
            processing_time_ms=elapsed_ms,
            metadata=self._metadata(parsed.model),
        )

    async def stream_chat(self, request: CompletionRequest) -> AsyncIterator[StreamingChunk]:
        """Yield chunks in generation order, ending with exactly one terminal chunk.

        Failures before the first chunk raise ``BackendError``. Once content
        has been yielded, failures end the stream with a terminal chunk whose
        ``finish_reason`` is ``error`` instead.
        """
        self._ensure_admitted()
        payload = self._payload(request, stream=True)
        start = time.perf_counter()
        state = StreamState(id=f"{self.backend_id}_{uuid.uuid4().hex}")
        yielded = False

        try:
            async with self._http.stream(
                "POST",
                self._url(self.dialect.chat_path(self.model_name, stream=True)),
                json=payload,
                headers=self._headers(),
            ) as response:
                if response.is_error:
                    await response.aread()
                    raise self._status_error(response)

                async for event in iter_sse_events(response.aiter_lines()):
                    try:
                        delta = self.dialect.parse_stream_event(event, state, self.backend_id)
                    except (ValueError, KeyError, IndexError, TypeError, AttributeError) as e:
                        raise BackendError(
                            f"Malformed stream event from {self.backend_id}",
                            backend=self.backend_id,
                            error_type=ErrorType.API_ERROR,
                            original_error=e,
                        ) from e
                    if delta:
                        yielded = True
                        yield StreamingChunk(id=state.id, backend=self.backend_id, delta=delta)
                    if state.done:
                        break
        except httpx.RequestError as e:
            error = self._transport_error(e)
        except BackendError as e:
            error = e
        else:
            error = None
            if not state.done and state.finish_reason is None:
                error = BackendError(
                    f"{self.backend_id} stream ended before completion",
                    backend=self.backend_id,
                    error_type=ErrorType.API_ERROR,
                )

        elapsed_ms = (time.perf_counter() - start) * 1000
        if error is not None:
            logger.error(
                "%s stream failed after %.0fms: %s (%s)",
                self.backend_id,
                elapsed_ms,
                error.message,
                error.error_type,
            )
            if not yielded:
                raise error
            yield StreamingChunk(
                id=state.id,
                backend=self.backend_id,
                finished=True,
                finish_reason=FinishReason.ERROR,
                processing_time_ms=elapsed_ms,
                error_type=error.error_type,
            )
            return

        usage = state.usage
        self.record_usage(usage.total_tokens)
        logger.info(
            "%s stream completed in %.0fms (tokens=%d)",
            self.backend_id,
            elapsed_ms,
            usage.total_tokens,
        )
        yield StreamingChunk(
            id=state.id,
            backend=self.backend_id,
            finished=True,
            finish_reason=state.finish_reason or FinishReason.STOP,
            usage=usage,
            processing_time_ms=elapsed_ms,
        )

    # -- diagnostics -------------------------------------------------------

    async def health_check(self) -> bool:
        try:
            response = await self._http.get(
                self._url(self.dialect.health_path()),
                headers=self._headers(),
                timeout=HEALTH_CHECK_TIMEOUT,
            )
            if response.status_code != 200:
                logger.debug("%s health probe returned %d", self.backend_id, response.status_code)
                return False
            return self.dialect.health_ok(response.json())
        except (httpx.HTTPError, ValueError) as e:
            logger.debug("%s health probe failed: %s", self.backend_id, e)
            return False

    async def get_status(self, metrics: BackendMetrics | None = None) -> BackendStatus:
        healthy = await self.health_check() if self.is_enabled else False
        return BackendStatus(
            healthy=healthy,
            latency_ms=metrics.average_latency_ms if metrics else 0.0,
            error_rate=metrics.error_rate if metrics else 0.0,
            rate_limit_status=self.get_rate_limit_status(),
        )

    def estimate_cost(self, request: CompletionRequest) -> float:
        serialized = json.dumps(
            [{"role": m.role.value, "content": m.content} for m in request.messages]
        ) + (request.system_prompt or "")
        input_tokens = len(serialized) / self.profile.chars_per_token
        output_tokens = request.max_tokens or DEFAULT_OUTPUT_TOKENS_ESTIMATE
        return (
            input_tokens * self.capabilities.price_per_input_token
            + output_tokens * self.capabilities.price_per_output_token
        )

    def usage_cost(self, usage: TokenUsage) -> float:
        return (
            usage.prompt_tokens * self.capabilities.price_per_input_token
            + usage.completion_tokens * self.capabilities.price_per_output_token
        )

    def optimize_prompt(
        self, prompt: str, context: ConversationContext | None = None
    ) -> PromptOptimization:
        return optimize_prompt(self.profile.prompt_style, self.backend_id, prompt, context)

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.backend_id!r}, model={self.model_name!r})"
