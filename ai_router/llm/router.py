from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Protocol

from ai_router.llm.features import ContentFeature, detect_features
from ai_router.llm.metrics import PerformanceMetricsStore
from ai_router.schemas import (
    BackendCapabilities,
    BackendMetrics,
    ConversationContext,
    OrchestrationOptions,
    SelectorWeights,
)

logger = logging.getLogger(__name__)


class SelectableBackend(Protocol):
    @property
    def backend_id(self) -> str: ...

    @property
    def is_enabled(self) -> bool: ...

    @property
    def capabilities(self) -> BackendCapabilities: ...

    def can_admit(self) -> bool: ...


def is_available(client: SelectableBackend) -> bool:
    return client.is_enabled and client.can_admit()


def _score_backend(
    client: SelectableBackend,
    features: frozenset[ContentFeature],
    metrics: BackendMetrics,
    weights: SelectorWeights,
    current_backend: str | None,
) -> float:
    score = 0.0

    if client.backend_id == current_backend:
        score += weights.continuity_bonus

    feature_weights = client.capabilities.feature_weights
    # Fixed enum order keeps the float sum identical across processes.
    for feature in ContentFeature:
        if feature in features:
            score += feature_weights.get(feature, 0.0)

    score += metrics.success_rate * weights.reliability_weight
    score -= min(metrics.average_latency_ms / weights.latency_scale_ms, weights.max_latency_penalty)
    return score


class ModelSelector:
    """Deterministic weighted scorer over the registered backends.

    Iteration order of ``clients`` is the registration order and breaks ties:
    a later backend only wins with a strictly higher score.
    """

    def __init__(
        self,
        clients: Mapping[str, SelectableBackend],
        metrics: PerformanceMetricsStore,
        weights: SelectorWeights | None = None,
    ) -> None:
        self._clients = clients
        self._metrics = metrics
        self.weights = weights or SelectorWeights()

    def _evaluate(
        self,
        request_text: str,
        current_backend: str | None,
    ) -> list[tuple[str, float, bool]]:
        features = detect_features(request_text)
        evaluated: list[tuple[str, float, bool]] = []
        for backend_id, client in self._clients.items():
            if not is_available(client):
                evaluated.append((backend_id, self.weights.unavailable_score, False))
                continue
            score = _score_backend(
                client,
                features,
                self._metrics.get(backend_id),
                self.weights,
                current_backend,
            )
            evaluated.append((backend_id, score, True))
        return evaluated

    def score_all(
        self,
        request_text: str,
        current_backend: str | None = None,
    ) -> dict[str, float]:
        evaluated = self._evaluate(request_text, current_backend)
        return {backend_id: score for backend_id, score, _ in evaluated}

    def select(
        self,
        request_text: str,
        preferred_backend: str | None = None,
        context: ConversationContext | None = None,
        options: OrchestrationOptions | None = None,
    ) -> str | None:
        current = preferred_backend
        if current is None and options is not None:
            current = options.preferred_backend
        if current is None and context is not None and context.branch_context is not None:
            current = context.branch_context.backend

        evaluated = self._evaluate(request_text, current)
        candidates = [(backend_id, score) for backend_id, score, ok in evaluated if ok]

        if not candidates:
            logger.warning("Router: no enabled and admissible backend among %d", len(evaluated))
            return None

        chosen, best = candidates[0]
        for backend_id, score in candidates[1:]:
            if score > best:
                chosen, best = backend_id, score

        logger.info(
            "Router: current=%s → backend=%s (score=%.2f, %d candidates)",
            current,
            chosen,
            best,
            len(candidates),
        )
        return chosen


def get_fallback_chain(
    primary_backend: str | None,
    configured_chain: Iterable[str],
    known_backends: Iterable[str] | None = None,
) -> list[str]:
    known = set(known_backends) if known_backends is not None else None
    chain: list[str] = []
    if primary_backend:
        chain.append(primary_backend)
    for backend_id in configured_chain:
        if backend_id in chain:
            continue
        if known is not None and backend_id not in known:
            continue
        chain.append(backend_id)
    return chain
