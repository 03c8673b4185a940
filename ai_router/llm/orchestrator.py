"""Top-level coordinator for blocking and streaming chat requests.

Every call runs the same pipeline: build context, select a backend, optionally
rewrite the prompt for it, build the request, then walk the attempt chain
(selected backend first, configured fallbacks after) until one backend
answers or the attempt budget is spent.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections import Counter, deque
from collections.abc import AsyncIterator, Awaitable, Callable, Mapping, Sequence
from contextlib import aclosing
from typing import Any

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
)

from ai_router.constants import (
    HIGH_ERROR_RATE_THRESHOLD,
    HIGH_LATENCY_THRESHOLD_MS,
    MAX_SWITCH_HISTORY,
    RATE_LIMIT_BACKOFF_SECONDS,
    SWITCH_SUMMARY_MESSAGES,
)
from ai_router.errors import (
    AllBackendsFailedError,
    BackendError,
    ErrorType,
    NoBackendAvailableError,
)
from ai_router.llm.context_builder import ContextBuilder, ContextRetriever
from ai_router.llm.metrics import (
    PerformanceMetricsStore,
    average_cost,
    performance_score,
    reliability,
)
from ai_router.llm.router import ModelSelector, get_fallback_chain, is_available
from ai_router.providers.base import ProviderClient
from ai_router.providers.registry import BackendRegistry, default_registry
from ai_router.schemas import (
    BackendAnalytics,
    BackendStatusReport,
    CompletionRequest,
    CompletionResponse,
    ConversationContext,
    FinishReason,
    ModelSwitchEvent,
    OrchestrationOptions,
    OrchestratorConfig,
    OrchestratorStatus,
    PerformanceAnalytics,
    ProcessedResponse,
    PromptOptimization,
    StreamFallbackMode,
    StreamingChunk,
    SwitchReason,
    SwitchSummary,
)

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, BackendError) and exc.retryable


class AttemptChain:
    """Cycles over the candidate backends of one call.

    Candidates that are disabled or not admissible at the moment of the
    attempt are skipped. ``next_client`` raises once no candidate is usable.
    """

    def __init__(self, clients: Mapping[str, ProviderClient], candidates: Sequence[str]) -> None:
        self._clients = clients
        self.candidates = [c for c in candidates if c in clients]
        self._index = 0
        self.attempts = 0
        self.last_error: BackendError | None = None
        self.last_backend: str | None = None

    def _find(self) -> tuple[int, ProviderClient] | None:
        total = len(self.candidates)
        for offset in range(total):
            i = (self._index + offset) % total
            client = self._clients[self.candidates[i]]
            if is_available(client):
                return i, client
        return None

    def peek(self) -> str | None:
        found = self._find()
        return found[1].backend_id if found else None

    def next_client(self) -> ProviderClient:
        found = self._find()
        if found is None:
            if self.last_error is not None:
                raise AllBackendsFailedError(self.last_error, self.attempts) from self.last_error
            raise NoBackendAvailableError()
        i, client = found
        self._index = (i + 1) % len(self.candidates)
        self.attempts += 1
        self.last_backend = client.backend_id
        return client

    def backoff(self) -> float:
        """Linear back-off, only when a rate-limited backend is about to be retried."""
        error = self.last_error
        if error is None or error.error_type != ErrorType.RATE_LIMIT:
            return 0.0
        if self.peek() != self.last_backend:
            return 0.0
        return self.attempts * RATE_LIMIT_BACKOFF_SECONDS

    def wait(self, retry_state: RetryCallState) -> float:
        return self.backoff()


class Orchestrator:
    def __init__(
        self,
        config: OrchestratorConfig,
        *,
        registry: BackendRegistry | None = None,
        retriever: ContextRetriever | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.config = config
        registry = registry or default_registry
        self._clients: dict[str, ProviderClient] = {
            backend.id: registry.create_client(backend) for backend in config.backends
        }
        self.metrics = PerformanceMetricsStore(self._clients)
        self.selector = ModelSelector(self._clients, self.metrics, config.selector_weights)
        self.context_builder = ContextBuilder(retriever, config.context_retrieval)
        self._switch_history: deque[ModelSwitchEvent] = deque(maxlen=MAX_SWITCH_HISTORY)
        self._sleep = sleep

        logger.info(
            "Orchestrator ready: %d backend(s) [%s], default=%s",
            len(self._clients),
            ", ".join(self._clients),
            config.default_backend,
        )

    async def __aenter__(self) -> Orchestrator:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await asyncio.gather(*(client.aclose() for client in self._clients.values()))

    @property
    def clients(self) -> Mapping[str, ProviderClient]:
        return self._clients

    def get_client(self, backend_id: str) -> ProviderClient | None:
        return self._clients.get(backend_id)

    # -- pipeline steps ----------------------------------------------------

    def _preferred(
        self,
        preferred_backend: str | None,
        context: ConversationContext | None,
        options: OrchestrationOptions,
    ) -> str | None:
        if preferred_backend:
            return preferred_backend
        if options.preferred_backend:
            return options.preferred_backend
        if context is not None and context.branch_context is not None:
            return context.branch_context.backend
        return None

    def _candidates(self, selected: str, options: OrchestrationOptions) -> list[str]:
        configured = options.fallback_backends or self.config.fallback_chain
        return get_fallback_chain(selected, configured, self._clients)

    def _optimize(
        self,
        content: str,
        selected: str,
        context: ConversationContext | None,
        options: OrchestrationOptions,
    ) -> PromptOptimization | None:
        if not options.optimize_prompts:
            return None
        optimization = self._clients[selected].optimize_prompt(content, context)
        logger.info(
            "Prompt optimized for %s: %d transform(s)",
            selected,
            len(optimization.transforms),
        )
        return optimization

    def _build_request(
        self,
        client: ProviderClient,
        prompt: str,
        branch_id: str,
        context: ConversationContext | None,
        options: OrchestrationOptions,
        stream: bool = False,
    ) -> CompletionRequest:
        request = self.context_builder.build_request(
            prompt,
            client.backend_id,
            branch_id,
            context,
            options,
            persona=client.persona,
            base_temperature=client.base_temperature,
            default_max_tokens=client.default_max_tokens,
        )
        if stream:
            request.stream = True
        return request

    def _record_attempt(
        self,
        client: ProviderClient,
        started: float,
        success: bool,
        response: CompletionResponse | StreamingChunk | None = None,
    ) -> None:
        latency_ms = (time.perf_counter() - started) * 1000
        usage = response.usage if response is not None else None
        self.metrics.record(
            client.backend_id,
            latency_ms,
            success,
            tokens=usage.total_tokens if usage else 0,
            cost=client.usage_cost(usage) if usage else 0.0,
        )

    def _record_switch(
        self,
        preferred: str | None,
        selected: str,
        served: str,
        context: ConversationContext | None,
        branch_id: str,
        started: float,
    ) -> ModelSwitchEvent | None:
        baseline = preferred or selected
        if served == baseline:
            return None
        event = ModelSwitchEvent(
            from_backend=baseline,
            to_backend=served,
            reason=SwitchReason.FALLBACK if served != selected else SwitchReason.OPTIMIZATION,
            conversation_id=context.conversation_id if context else None,
            branch_id=branch_id,
            context_preserved=bool(context and context.recent_messages),
            switch_time_ms=(time.perf_counter() - started) * 1000,
        )
        self._switch_history.append(event)
        logger.info("Backend switch %s → %s (%s)", event.from_backend, served, event.reason)
        return event

    # -- blocking ----------------------------------------------------------

    async def _run_chain(
        self,
        chain: AttemptChain,
        build: Callable[[ProviderClient], CompletionRequest],
        max_retries: int,
    ) -> CompletionResponse:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(max_retries),
            retry=retry_if_exception(_is_retryable),
            wait=chain.wait,
            sleep=self._sleep,
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    client = chain.next_client()
                    started = time.perf_counter()
                    try:
                        response = await client.chat(build(client))
                    except BackendError as e:
                        self._record_attempt(client, started, success=False)
                        chain.last_error = e
                        logger.warning(
                            "Attempt %d on %s failed: %s (%s)",
                            chain.attempts,
                            client.backend_id,
                            e.message,
                            e.error_type,
                        )
                        raise
                    self._record_attempt(client, started, success=True, response=response)
                    return response
        except BackendError as e:
            if e.retryable:
                raise AllBackendsFailedError(e, chain.attempts) from e
            raise
        raise AssertionError("unreachable")  # pragma: no cover

    async def process(
        self,
        content: str,
        branch_id: str,
        preferred_backend: str | None = None,
        context: ConversationContext | None = None,
        options: OrchestrationOptions | None = None,
    ) -> ProcessedResponse:
        options = options or OrchestrationOptions()
        started = time.perf_counter()

        context, retrieval = await self.context_builder.build_context(content, context, options)
        preferred = self._preferred(preferred_backend, context, options)
        selected = self.selector.select(content, preferred, context, options)
        if selected is None:
            raise NoBackendAvailableError()

        optimization = self._optimize(content, selected, context, options)
        prompt = optimization.optimized_prompt if optimization else content
        chain = AttemptChain(self._clients, self._candidates(selected, options))

        def build(client: ProviderClient) -> CompletionRequest:
            return self._build_request(client, prompt, branch_id, context, options)

        response = await self._run_chain(chain, build, options.max_retries)
        switch_event = self._record_switch(
            preferred, selected, response.backend, context, branch_id, started
        )

        logger.info(
            "Processed request on %s in %.0fms (%d attempt(s))",
            response.backend,
            (time.perf_counter() - started) * 1000,
            chain.attempts,
        )
        return ProcessedResponse(
            **response.model_dump(),
            context_used=retrieval,
            model_switch_event=switch_event,
            optimizations=optimization,
        )

    # -- streaming ---------------------------------------------------------

    async def stream_process(
        self,
        content: str,
        branch_id: str,
        preferred_backend: str | None = None,
        context: ConversationContext | None = None,
        options: OrchestrationOptions | None = None,
    ) -> AsyncIterator[StreamingChunk]:
        """Stream one answer, falling back to the next backend on failure.

        Exactly one chunk with ``finished=True`` reaches the caller. Failures
        after streaming has begun surface as that terminal chunk with
        ``finish_reason=error`` rather than as an exception.
        """
        options = options or OrchestrationOptions()
        started = time.perf_counter()

        context, _ = await self.context_builder.build_context(content, context, options)
        preferred = self._preferred(preferred_backend, context, options)
        selected = self.selector.select(content, preferred, context, options)
        if selected is None:
            raise NoBackendAvailableError()

        optimization = self._optimize(content, selected, context, options)
        prompt = optimization.optimized_prompt if optimization else content
        chain = AttemptChain(self._clients, self._candidates(selected, options))
        replace = self.config.stream_fallback_mode == StreamFallbackMode.REPLACE
        delivered = False
        last_backend = selected

        while chain.attempts < options.max_retries:
            delay = chain.backoff()
            try:
                client = chain.next_client()
            except BackendError:
                break
            if delay:
                logger.warning("Retrying %s in %.1fs after rate limit", client.backend_id, delay)
                await self._sleep(delay)

            last_backend = client.backend_id
            request = self._build_request(client, prompt, branch_id, context, options, True)
            attempt_started = time.perf_counter()
            first_chunk = True
            try:
                async with aclosing(client.stream_chat(request)) as stream:
                    async for chunk in stream:
                        if chunk.finished and chunk.finish_reason == FinishReason.ERROR:
                            raise BackendError(
                                f"{client.backend_id} stream terminated with an error",
                                backend=client.backend_id,
                                error_type=chunk.error_type or ErrorType.UNKNOWN,
                            )
                        if first_chunk and delivered and replace:
                            chunk = chunk.model_copy(update={"restarted": True})
                        first_chunk = False

                        if chunk.finished:
                            self._record_attempt(client, attempt_started, True, chunk)
                            self._record_switch(
                                preferred, selected, client.backend_id, context, branch_id, started
                            )
                            yield chunk
                            return

                        delivered = delivered or bool(chunk.delta)
                        yield chunk
                raise BackendError(
                    f"{client.backend_id} stream ended without a terminal chunk",
                    backend=client.backend_id,
                    error_type=ErrorType.API_ERROR,
                )
            except BackendError as e:
                self._record_attempt(client, attempt_started, success=False)
                chain.last_error = e
                logger.warning(
                    "Stream attempt %d on %s failed: %s (%s)",
                    chain.attempts,
                    client.backend_id,
                    e.message,
                    e.error_type,
                )
                if not e.retryable:
                    break

        error = chain.last_error
        logger.error(
            "Streaming failed after %d attempt(s): %s",
            chain.attempts,
            error.message if error else "no backend available",
        )
        yield StreamingChunk(
            id=f"error_{uuid.uuid4().hex}",
            backend=error.backend if error and error.backend else last_backend,
            finished=True,
            finish_reason=FinishReason.ERROR,
            processing_time_ms=(time.perf_counter() - started) * 1000,
            error_type=error.error_type if error else ErrorType.UNKNOWN,
        )

    # -- management --------------------------------------------------------

    def switch_backend(
        self,
        to_backend: str,
        conversation_id: str,
        branch_id: str,
        context: ConversationContext | None = None,
        reason: SwitchReason = SwitchReason.USER_REQUEST,
    ) -> ModelSwitchEvent:
        started = time.perf_counter()
        from_backend = self.config.default_backend
        if context is not None and context.branch_context and context.branch_context.backend:
            from_backend = context.branch_context.backend

        client = self._clients.get(to_backend)
        if client is None or not client.is_enabled:
            raise NoBackendAvailableError(f"Backend {to_backend} is not available", to_backend)

        summary = ""
        if context is not None:
            recent = context.recent_messages[-SWITCH_SUMMARY_MESSAGES:]
            summary = "\n".join(f"{m.role}: {m.content}" for m in recent)

        event = ModelSwitchEvent(
            from_backend=from_backend,
            to_backend=to_backend,
            reason=reason,
            conversation_id=conversation_id,
            branch_id=branch_id,
            context_preserved=bool(summary),
            switch_time_ms=(time.perf_counter() - started) * 1000,
        )
        if from_backend == to_backend:
            logger.debug("Conversation %s already on %s", conversation_id, to_backend)
            return event

        self._switch_history.append(event)
        logger.info(
            "Switched %s → %s for conversation %s (%s)",
            from_backend,
            to_backend,
            conversation_id,
            reason,
        )
        return event

    def get_switch_history(self) -> list[ModelSwitchEvent]:
        return list(self._switch_history)

    async def get_backends_status(self) -> OrchestratorStatus:
        """Probe every backend concurrently and report health, limits and metrics."""
        backend_ids = list(self._clients)
        metrics = {b: self.metrics.get(b) for b in backend_ids}
        statuses = await asyncio.gather(
            *(self._clients[b].get_status(metrics[b]) for b in backend_ids)
        )
        reports = {}
        for backend_id, status in zip(backend_ids, statuses, strict=True):
            client = self._clients[backend_id]
            reports[backend_id] = BackendStatusReport(
                **status.model_dump(),
                backend=backend_id,
                enabled=client.is_enabled,
                model=client.model_name,
                capabilities=client.capabilities,
                metrics=metrics[backend_id],
            )
        return OrchestratorStatus(
            backends=reports,
            default_backend=self.config.default_backend,
            fallback_chain=list(self.config.fallback_chain),
            total_switches=len(self._switch_history),
            retrieval_available=self.context_builder.retrieval_available,
        )

    def _switch_summary(self) -> SwitchSummary:
        events = list(self._switch_history)
        return SwitchSummary(
            total_switches=len(events),
            switch_reasons=dict(Counter(str(e.reason) for e in events)),
            common_pairs=dict(Counter(f"{e.from_backend}->{e.to_backend}" for e in events)),
            average_switch_time_ms=sum(e.switch_time_ms for e in events) / max(len(events), 1),
        )

    def _recommendations(self, analytics: dict[str, BackendAnalytics]) -> list[str]:
        recommendations: list[str] = []

        default = self.config.default_backend
        best, best_score = default, 0.0
        if default in analytics:
            best_score = analytics[default].performance
        for backend_id, data in analytics.items():
            if data.performance > best_score:
                best, best_score = backend_id, data.performance
        if best != default:
            recommendations.append(
                f"Consider switching default backend to {best} for better performance"
            )

        for backend_id, data in analytics.items():
            error_rate = data.metrics.error_rate
            latency = data.metrics.average_latency_ms
            if error_rate > HIGH_ERROR_RATE_THRESHOLD:
                recommendations.append(
                    f"Backend {backend_id} has high error rate ({error_rate * 100:.1f}%)"
                )
            if latency > HIGH_LATENCY_THRESHOLD_MS:
                recommendations.append(f"Backend {backend_id} has high latency ({latency:.0f}ms)")
        return recommendations

    def get_performance_analytics(self) -> PerformanceAnalytics:
        analytics: dict[str, BackendAnalytics] = {}
        for backend_id, metrics in self.metrics.snapshot().items():
            success_pct = 0.0
            if metrics.total_requests:
                success_pct = metrics.successful_requests / metrics.total_requests * 100
            analytics[backend_id] = BackendAnalytics(
                metrics=metrics,
                success_rate_pct=success_pct,
                average_cost=average_cost(metrics),
                reliability=reliability(metrics),
                performance=performance_score(metrics),
            )
        return PerformanceAnalytics(
            backends=analytics,
            switches=self._switch_summary(),
            recommendations=self._recommendations(analytics),
        )
