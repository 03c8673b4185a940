import httpx
import pytest

from ai_router.errors import (
    AllBackendsFailedError,
    BackendError,
    ErrorType,
    NoBackendAvailableError,
)
from ai_router.llm.orchestrator import AttemptChain, Orchestrator
from ai_router.schemas import (
    BackendCapabilities,
    BranchContext,
    ChatMessage,
    ContextRetrievalResult,
    ContextRetrievalSettings,
    ConversationContext,
    FinishReason,
    OrchestrationOptions,
    OrchestratorConfig,
    RetrievalMatch,
    Role,
    StreamFallbackMode,
    SwitchReason,
)
from tests.fakes import (
    EndlessByteStream,
    ScriptedBackend,
    backend_config,
    fail,
    malformed_stream,
    reply,
    scripted_client,
    scripted_registry,
    truncated_stream,
)


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class FakeRetriever:
    def __init__(
        self,
        result: ContextRetrievalResult | None = None,
        error: Exception | None = None,
    ) -> None:
        self.result = result or ContextRetrievalResult()
        self.error = error
        self.calls: list[tuple[str, str, int]] = []

    async def retrieve(self, query_text, context, max_results):
        self.calls.append((query_text, context.conversation_id, max_results))
        if self.error is not None:
            raise self.error
        return self.result


def _make_orchestrator(
    backends: dict[str, ScriptedBackend],
    configs: list | None = None,
    sleep: RecordingSleep | None = None,
    retriever: FakeRetriever | None = None,
    **config_kwargs,
) -> Orchestrator:
    configs = configs or [backend_config(backend_id) for backend_id in backends]
    config = OrchestratorConfig(
        backends=configs,
        default_backend=configs[0].id,
        **config_kwargs,
    )
    return Orchestrator(
        config,
        registry=scripted_registry(backends),
        retriever=retriever,
        sleep=sleep or RecordingSleep(),
    )


def _make_context(**kwargs) -> ConversationContext:
    values = {"conversation_id": "conv-1", "branch_id": "main"}
    values.update(kwargs)
    return ConversationContext(**values)


async def _collect(stream):
    return [chunk async for chunk in stream]


class TestAttemptChain:
    def _clients(self, *configs):
        return {c.id: scripted_client(ScriptedBackend(), c) for c in configs}

    def test_cycles_through_candidates(self):
        clients = self._clients(backend_config("alpha"), backend_config("beta"))
        chain = AttemptChain(clients, ["alpha", "beta"])
        assert [chain.next_client().backend_id for _ in range(3)] == ["alpha", "beta", "alpha"]
        assert chain.attempts == 3

    def test_skips_disabled_and_unknown(self):
        clients = self._clients(backend_config("alpha", enabled=False), backend_config("beta"))
        chain = AttemptChain(clients, ["ghost", "alpha", "beta"])
        assert chain.candidates == ["alpha", "beta"]
        assert chain.next_client().backend_id == "beta"

    def test_nothing_usable_without_error(self):
        clients = self._clients(backend_config("alpha", enabled=False))
        chain = AttemptChain(clients, ["alpha"])
        with pytest.raises(NoBackendAvailableError):
            chain.next_client()

    def test_nothing_usable_after_error_wraps_last_error(self):
        clients = self._clients(backend_config("alpha", rate_limit_rpm=1))
        chain = AttemptChain(clients, ["alpha"])
        chain.next_client()
        clients["alpha"].record_usage(1)
        chain.last_error = BackendError("boom", backend="alpha", error_type=ErrorType.API_ERROR)
        with pytest.raises(AllBackendsFailedError) as exc_info:
            chain.next_client()
        assert exc_info.value.attempts == 1

    def test_backoff_only_for_rate_limited_same_backend(self):
        clients = self._clients(backend_config("alpha"), backend_config("beta"))
        chain = AttemptChain(clients, ["alpha"])
        chain.next_client()
        chain.last_error = BackendError("slow down", error_type=ErrorType.RATE_LIMIT)
        assert chain.backoff() == 1.0

        chain = AttemptChain(clients, ["alpha", "beta"])
        chain.next_client()
        chain.last_error = BackendError("slow down", error_type=ErrorType.RATE_LIMIT)
        assert chain.backoff() == 0.0

        chain = AttemptChain(clients, ["alpha"])
        chain.next_client()
        chain.last_error = BackendError("down", error_type=ErrorType.API_ERROR)
        assert chain.backoff() == 0.0


class TestProcess:
    @pytest.mark.asyncio
    async def test_single_backend_success(self):
        alpha = ScriptedBackend(reply("Hello"))
        orchestrator = _make_orchestrator({"alpha": alpha})

        response = await orchestrator.process("hi", "main")

        assert response.backend == "alpha"
        assert response.content == "Hello"
        assert response.model_switch_event is None
        assert response.context_used is None
        assert alpha.calls == 1

    @pytest.mark.asyncio
    async def test_falls_back_to_next_backend(self):
        alpha = ScriptedBackend(fail(503))
        beta = ScriptedBackend(reply("from beta"))
        sleep = RecordingSleep()
        orchestrator = _make_orchestrator({"alpha": alpha, "beta": beta}, sleep=sleep)

        response = await orchestrator.process("hi", "main", context=_make_context())

        assert response.backend == "beta"
        assert response.content == "from beta"
        event = response.model_switch_event
        assert event.from_backend == "alpha"
        assert event.to_backend == "beta"
        assert event.reason == SwitchReason.FALLBACK
        assert event.conversation_id == "conv-1"
        assert orchestrator.get_switch_history() == [event]
        assert not any(sleep.delays)

    @pytest.mark.asyncio
    async def test_exhaustion_raises_after_max_retries(self):
        alpha = ScriptedBackend(fail(503))
        beta = ScriptedBackend(fail(502))
        orchestrator = _make_orchestrator({"alpha": alpha, "beta": beta})

        with pytest.raises(AllBackendsFailedError) as exc_info:
            await orchestrator.process("hi", "main", options=OrchestrationOptions(max_retries=3))

        assert exc_info.value.attempts == 3
        assert exc_info.value.last_error.error_type == ErrorType.API_ERROR
        assert alpha.calls + beta.calls == 3
        assert alpha.calls == 2

    @pytest.mark.asyncio
    async def test_non_retryable_error_surfaces_immediately(self):
        alpha = ScriptedBackend(fail(400, "bad prompt"))
        beta = ScriptedBackend(reply("never"))
        orchestrator = _make_orchestrator({"alpha": alpha, "beta": beta})

        with pytest.raises(BackendError) as exc_info:
            await orchestrator.process("hi", "main")

        assert not isinstance(exc_info.value, AllBackendsFailedError)
        assert exc_info.value.error_type == ErrorType.INVALID_REQUEST
        assert beta.calls == 0

    @pytest.mark.asyncio
    async def test_all_disabled_makes_no_calls(self):
        alpha = ScriptedBackend()
        beta = ScriptedBackend()
        configs = [
            backend_config("alpha", enabled=False),
            backend_config("beta", api_key=""),
        ]
        orchestrator = _make_orchestrator({"alpha": alpha, "beta": beta}, configs=configs)

        with pytest.raises(NoBackendAvailableError):
            await orchestrator.process("hi", "main")

        assert alpha.calls == 0
        assert beta.calls == 0

    @pytest.mark.asyncio
    async def test_exhausted_rate_limit_moves_to_next_backend(self):
        alpha = ScriptedBackend(reply("from alpha"))
        beta = ScriptedBackend(reply("from beta"))
        configs = [backend_config("alpha", rate_limit_rpm=1), backend_config("beta")]
        orchestrator = _make_orchestrator({"alpha": alpha, "beta": beta}, configs=configs)

        first = await orchestrator.process("hi", "main")
        second = await orchestrator.process("hi again", "main")

        assert first.backend == "alpha"
        assert second.backend == "beta"
        assert alpha.calls == 1

    @pytest.mark.asyncio
    async def test_rate_limited_retry_of_same_backend_backs_off(self):
        alpha = ScriptedBackend(fail(429, headers={"retry-after": "2"}), reply("ok"))
        sleep = RecordingSleep()
        orchestrator = _make_orchestrator({"alpha": alpha}, sleep=sleep)

        response = await orchestrator.process("hi", "main")

        assert response.content == "ok"
        assert sleep.delays == [1.0]
        assert alpha.calls == 2

    @pytest.mark.asyncio
    async def test_preferred_backend_wins_ties(self):
        alpha = ScriptedBackend(reply("a"))
        beta = ScriptedBackend(reply("b"))
        orchestrator = _make_orchestrator({"alpha": alpha, "beta": beta})

        response = await orchestrator.process("hi", "main", preferred_backend="beta")

        assert response.backend == "beta"
        assert response.model_switch_event is None

    @pytest.mark.asyncio
    async def test_unavailable_preference_records_optimization_switch(self):
        alpha = ScriptedBackend(reply("a"))
        beta = ScriptedBackend(reply("b"))
        configs = [backend_config("alpha"), backend_config("beta", enabled=False)]
        orchestrator = _make_orchestrator({"alpha": alpha, "beta": beta}, configs=configs)
        context = _make_context(branch_context=BranchContext(backend="beta"))

        response = await orchestrator.process("hi", "main", context=context)

        assert response.backend == "alpha"
        assert response.model_switch_event.reason == SwitchReason.OPTIMIZATION
        assert response.model_switch_event.from_backend == "beta"

    @pytest.mark.asyncio
    async def test_fallback_backends_option_overrides_configured_chain(self):
        alpha = ScriptedBackend(fail(503))
        beta = ScriptedBackend(reply("b"))
        gamma = ScriptedBackend(reply("g"))
        orchestrator = _make_orchestrator({"alpha": alpha, "beta": beta, "gamma": gamma})

        options = OrchestrationOptions(fallback_backends=["gamma"])
        response = await orchestrator.process("hi", "main", options=options)

        assert response.backend == "gamma"
        assert beta.calls == 0

    @pytest.mark.asyncio
    async def test_request_shaping(self):
        alpha = ScriptedBackend(reply("ok"))
        configs = [backend_config("alpha", system_prompt="You are terse.")]
        orchestrator = _make_orchestrator({"alpha": alpha}, configs=configs)
        history = [ChatMessage(role=Role.USER, content=f"m{i}") for i in range(12)]
        context = _make_context(recent_messages=history, custom_instructions="Use metric units.")

        await orchestrator.process(
            "hello", "main", context=context, options=OrchestrationOptions(timeout_ms=2000)
        )

        payload = alpha.payloads[0]
        system = payload["messages"][0]
        assert system["role"] == "system"
        assert system["content"].startswith("You are terse.")
        assert "Additional instructions: Use metric units." in system["content"]
        # 10 most recent history messages plus the new user message.
        conversation = payload["messages"][1:]
        assert [m["content"] for m in conversation] == [f"m{i}" for i in range(2, 12)] + ["hello"]
        assert payload["max_tokens"] == 200

    @pytest.mark.asyncio
    async def test_metrics_recorded_once_per_attempt(self):
        alpha = ScriptedBackend(fail(503))
        beta = ScriptedBackend(reply("ok"))
        caps = BackendCapabilities(price_per_input_token=0.01, price_per_output_token=0.02)
        configs = [backend_config("alpha"), backend_config("beta", capabilities=caps)]
        orchestrator = _make_orchestrator({"alpha": alpha, "beta": beta}, configs=configs)

        await orchestrator.process("hi", "main")

        alpha_metrics = orchestrator.metrics.get("alpha")
        beta_metrics = orchestrator.metrics.get("beta")
        assert (alpha_metrics.total_requests, alpha_metrics.failed_requests) == (1, 1)
        assert (beta_metrics.total_requests, beta_metrics.successful_requests) == (1, 1)
        assert beta_metrics.total_tokens == 12
        assert beta_metrics.total_cost == pytest.approx(5 * 0.01 + 7 * 0.02)


class TestContextAndOptimization:
    @pytest.mark.asyncio
    async def test_retrieved_documents_are_returned(self):
        match = RetrievalMatch(id="doc-1", content="Prior design notes", score=0.9)
        retriever = FakeRetriever(ContextRetrievalResult(hybrid_matches=[match]))
        orchestrator = _make_orchestrator({"alpha": ScriptedBackend()}, retriever=retriever)

        options = OrchestrationOptions(enable_context_retrieval=True, context_retrieval_limit=3)
        context = _make_context()
        response = await orchestrator.process("hi", "main", context=context, options=options)

        assert retriever.calls == [("hi", "conv-1", 3)]
        assert response.context_used.total_results == 1

    @pytest.mark.asyncio
    async def test_retrieval_skipped_unless_requested(self):
        retriever = FakeRetriever()
        orchestrator = _make_orchestrator({"alpha": ScriptedBackend()}, retriever=retriever)

        response = await orchestrator.process("hi", "main", context=_make_context())

        assert retriever.calls == []
        assert response.context_used is None

    @pytest.mark.asyncio
    async def test_retrieval_disabled_by_settings(self):
        retriever = FakeRetriever()
        orchestrator = _make_orchestrator(
            {"alpha": ScriptedBackend()},
            retriever=retriever,
            context_retrieval=ContextRetrievalSettings(enabled=False),
        )

        options = OrchestrationOptions(enable_context_retrieval=True)
        await orchestrator.process("hi", "main", context=_make_context(), options=options)

        assert retriever.calls == []

    @pytest.mark.asyncio
    async def test_retrieval_failure_does_not_fail_request(self):
        retriever = FakeRetriever(error=RuntimeError("gateway down"))
        orchestrator = _make_orchestrator(
            {"alpha": ScriptedBackend(reply("ok"))}, retriever=retriever
        )

        options = OrchestrationOptions(enable_context_retrieval=True)
        context = _make_context()
        response = await orchestrator.process("hi", "main", context=context, options=options)

        assert response.content == "ok"
        assert response.context_used is None

    @pytest.mark.asyncio
    async def test_optimized_prompt_is_sent(self):
        alpha = ScriptedBackend(reply("ok"))
        orchestrator = _make_orchestrator({"alpha": alpha})
        context = _make_context(branch_context=BranchContext(branch_summary="Planning a trip"))

        options = OrchestrationOptions(optimize_prompts=True)
        response = await orchestrator.process(
            "Where next?", "main", context=context, options=options
        )

        sent = alpha.payloads[0]["messages"][-1]["content"]
        assert sent.startswith("Previous conversation context: Planning a trip")
        assert sent.endswith("Current request: Where next?")
        assert response.optimizations.original_prompt == "Where next?"
        assert len(response.optimizations.transforms) == 1

    @pytest.mark.asyncio
    async def test_no_optimization_by_default(self):
        alpha = ScriptedBackend(reply("ok"))
        orchestrator = _make_orchestrator({"alpha": alpha})

        response = await orchestrator.process("Where next?", "main")

        assert response.optimizations is None
        assert alpha.payloads[0]["messages"][-1]["content"] == "Where next?"


class TestStreamProcess:
    @pytest.mark.asyncio
    async def test_single_terminal_chunk_and_same_content(self):
        alpha = ScriptedBackend(reply("Hel", "lo"))
        orchestrator = _make_orchestrator({"alpha": alpha})

        chunks = await _collect(orchestrator.stream_process("hi", "main"))
        blocking = await orchestrator.process("hi", "main")

        assert [c.delta for c in chunks if not c.finished] == ["Hel", "lo"]
        assert sum(c.finished for c in chunks) == 1
        assert chunks[-1].finished
        assert chunks[-1].finish_reason == FinishReason.STOP
        assert "".join(c.delta for c in chunks) == blocking.content

    @pytest.mark.asyncio
    async def test_failure_before_content_falls_back(self):
        alpha = ScriptedBackend(fail(503))
        beta = ScriptedBackend(reply("from beta"))
        orchestrator = _make_orchestrator({"alpha": alpha, "beta": beta})

        chunks = await _collect(orchestrator.stream_process("hi", "main"))

        assert [c.backend for c in chunks] == ["beta", "beta"]
        assert not any(c.restarted for c in chunks)
        assert orchestrator.get_switch_history()[0].reason == SwitchReason.FALLBACK

    @pytest.mark.asyncio
    async def test_mid_stream_failure_replaces_partial_content(self):
        alpha = ScriptedBackend(truncated_stream("par"))
        beta = ScriptedBackend(reply("full answer"))
        orchestrator = _make_orchestrator({"alpha": alpha, "beta": beta})

        chunks = await _collect(orchestrator.stream_process("hi", "main"))

        assert [(c.backend, c.delta) for c in chunks if not c.finished] == [
            ("alpha", "par"),
            ("beta", "full answer"),
        ]
        assert chunks[1].restarted is True
        assert sum(c.finished for c in chunks) == 1
        assert chunks[-1].backend == "beta"
        assert chunks[-1].finish_reason == FinishReason.STOP
        assert orchestrator.metrics.get("alpha").failed_requests == 1
        assert orchestrator.metrics.get("beta").successful_requests == 1

    @pytest.mark.asyncio
    async def test_malformed_event_mid_stream_falls_back(self):
        alpha = ScriptedBackend(malformed_stream("par"))
        beta = ScriptedBackend(reply("full answer"))
        orchestrator = _make_orchestrator({"alpha": alpha, "beta": beta})

        chunks = await _collect(orchestrator.stream_process("hi", "main"))

        assert [(c.backend, c.delta) for c in chunks if not c.finished] == [
            ("alpha", "par"),
            ("beta", "full answer"),
        ]
        assert chunks[1].restarted is True
        assert sum(c.finished for c in chunks) == 1
        assert chunks[-1].finish_reason == FinishReason.STOP
        assert orchestrator.metrics.get("alpha").failed_requests == 1

    @pytest.mark.asyncio
    async def test_mid_stream_failure_appends_in_append_mode(self):
        alpha = ScriptedBackend(truncated_stream("par"))
        beta = ScriptedBackend(reply("t two"))
        orchestrator = _make_orchestrator(
            {"alpha": alpha, "beta": beta},
            stream_fallback_mode=StreamFallbackMode.APPEND,
        )

        chunks = await _collect(orchestrator.stream_process("hi", "main"))

        assert "".join(c.delta for c in chunks) == "part two"
        assert not any(c.restarted for c in chunks)

    @pytest.mark.asyncio
    async def test_exhaustion_yields_one_error_chunk(self):
        alpha = ScriptedBackend(fail(503))
        beta = ScriptedBackend(fail(503))
        orchestrator = _make_orchestrator({"alpha": alpha, "beta": beta})

        chunks = await _collect(orchestrator.stream_process("hi", "main"))

        assert len(chunks) == 1
        chunk = chunks[0]
        assert chunk.finished
        assert chunk.finish_reason == FinishReason.ERROR
        assert chunk.error_type == ErrorType.API_ERROR
        assert chunk.id.startswith("error_")
        assert alpha.calls + beta.calls == 3

    @pytest.mark.asyncio
    async def test_non_retryable_error_stops_fallback(self):
        alpha = ScriptedBackend(fail(401, "invalid key"))
        beta = ScriptedBackend(reply("never"))
        orchestrator = _make_orchestrator({"alpha": alpha, "beta": beta})

        chunks = await _collect(orchestrator.stream_process("hi", "main"))

        assert len(chunks) == 1
        assert chunks[0].error_type == ErrorType.AUTHENTICATION
        assert chunks[0].backend == "alpha"
        assert beta.calls == 0

    @pytest.mark.asyncio
    async def test_no_backend_raises(self):
        configs = [backend_config("alpha", enabled=False)]
        orchestrator = _make_orchestrator({"alpha": ScriptedBackend()}, configs=configs)

        with pytest.raises(NoBackendAvailableError):
            await _collect(orchestrator.stream_process("hi", "main"))

    @pytest.mark.asyncio
    async def test_early_close_closes_upstream(self):
        stream = EndlessByteStream()
        alpha = ScriptedBackend(lambda request: httpx.Response(200, stream=stream))
        orchestrator = _make_orchestrator({"alpha": alpha})

        iterator = orchestrator.stream_process("hi", "main")
        first = await iterator.__anext__()
        assert first.delta == "x"
        await iterator.aclose()

        assert stream.closed is True
        assert alpha.calls == 1

    @pytest.mark.asyncio
    async def test_rate_limited_stream_retry_backs_off(self):
        alpha = ScriptedBackend(fail(429), reply("ok"))
        sleep = RecordingSleep()
        orchestrator = _make_orchestrator({"alpha": alpha}, sleep=sleep)

        chunks = await _collect(orchestrator.stream_process("hi", "main"))

        assert chunks[-1].finish_reason == FinishReason.STOP
        assert sleep.delays == [1.0]


class TestSwitchBackend:
    def _orchestrator(self):
        backends = {"alpha": ScriptedBackend(), "beta": ScriptedBackend()}
        configs = [backend_config("alpha"), backend_config("beta")]
        return _make_orchestrator(backends, configs=configs)

    def test_switch_from_default(self):
        orchestrator = self._orchestrator()

        event = orchestrator.switch_backend("beta", "conv-1", "main")

        assert event.from_backend == "alpha"
        assert event.to_backend == "beta"
        assert event.reason == SwitchReason.USER_REQUEST
        assert event.context_preserved is False
        assert orchestrator.get_switch_history() == [event]

    def test_switch_from_branch_backend_preserves_context(self):
        orchestrator = self._orchestrator()
        context = _make_context(
            branch_context=BranchContext(backend="beta"),
            recent_messages=[ChatMessage(role=Role.USER, content="earlier")],
        )

        event = orchestrator.switch_backend(
            "alpha", "conv-1", "main", context=context, reason=SwitchReason.FAILURE
        )

        assert event.from_backend == "beta"
        assert event.reason == SwitchReason.FAILURE
        assert event.context_preserved is True

    @pytest.mark.asyncio
    async def test_switch_to_current_backend_is_not_recorded(self):
        orchestrator = self._orchestrator()

        event = orchestrator.switch_backend("alpha", "conv-1", "main")

        assert event.from_backend == event.to_backend == "alpha"
        assert orchestrator.get_switch_history() == []
        status = await orchestrator.get_backends_status()
        assert status.total_switches == 0

    def test_switch_to_unknown_backend_raises(self):
        orchestrator = self._orchestrator()
        with pytest.raises(NoBackendAvailableError):
            orchestrator.switch_backend("ghost", "conv-1", "main")
        assert orchestrator.get_switch_history() == []

    def test_switch_to_disabled_backend_raises(self):
        configs = [backend_config("alpha"), backend_config("beta", enabled=False)]
        orchestrator = _make_orchestrator(
            {"alpha": ScriptedBackend(), "beta": ScriptedBackend()}, configs=configs
        )
        with pytest.raises(NoBackendAvailableError):
            orchestrator.switch_backend("beta", "conv-1", "main")


class TestStatusAndAnalytics:
    @pytest.mark.asyncio
    async def test_backends_status(self):
        alpha = ScriptedBackend()
        beta = ScriptedBackend(healthy=False)
        gamma = ScriptedBackend()
        configs = [
            backend_config("alpha"),
            backend_config("beta"),
            backend_config("gamma", enabled=False),
        ]
        orchestrator = _make_orchestrator(
            {"alpha": alpha, "beta": beta, "gamma": gamma}, configs=configs
        )

        status = await orchestrator.get_backends_status()

        reports = status.backends
        assert set(reports) == {"alpha", "beta", "gamma"}
        assert reports["alpha"].healthy is True
        assert reports["alpha"].enabled is True
        assert reports["alpha"].model == "gpt-4o-mini"
        assert reports["alpha"].rate_limit_status.remaining_requests == 100
        assert reports["alpha"].capabilities.rate_limit_rpm == 100
        assert reports["beta"].healthy is False
        assert reports["gamma"].healthy is False
        assert reports["gamma"].enabled is False
        assert gamma.calls == 0
        assert status.default_backend == "alpha"
        assert status.fallback_chain == ["alpha", "beta", "gamma"]
        assert status.total_switches == 0
        assert status.retrieval_available is False

    @pytest.mark.asyncio
    async def test_analytics_after_fallback(self):
        alpha = ScriptedBackend(fail(503))
        beta = ScriptedBackend(reply("ok"))
        orchestrator = _make_orchestrator({"alpha": alpha, "beta": beta})

        await orchestrator.process("hi", "main")
        analytics = orchestrator.get_performance_analytics()

        assert analytics.backends["alpha"].success_rate_pct == 0.0
        assert analytics.backends["beta"].success_rate_pct == 100.0
        assert analytics.switches.total_switches == 1
        assert analytics.switches.switch_reasons == {"fallback": 1}
        assert analytics.switches.common_pairs == {"alpha->beta": 1}
        assert "Consider switching default backend to beta for better performance" in (
            analytics.recommendations
        )
        assert "Backend alpha has high error rate (100.0%)" in analytics.recommendations

    def test_no_recommendations_without_traffic(self):
        orchestrator = _make_orchestrator({"alpha": ScriptedBackend(), "beta": ScriptedBackend()})

        analytics = orchestrator.get_performance_analytics()

        assert analytics.recommendations == []
        assert analytics.switches.total_switches == 0
        assert analytics.backends["alpha"].reliability == 1.0

    @pytest.mark.asyncio
    async def test_async_context_manager_closes_clients(self):
        orchestrator = _make_orchestrator({"alpha": ScriptedBackend()})
        async with orchestrator as entered:
            assert entered is orchestrator
        assert orchestrator.get_client("alpha") is not None
        assert orchestrator.get_client("ghost") is None
