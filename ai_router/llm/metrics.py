from __future__ import annotations

import logging
import threading
from collections.abc import Iterable
from datetime import UTC, datetime

from ai_router.constants import LATENCY_SCORE_SCALE_MS
from ai_router.schemas import BackendMetrics

logger = logging.getLogger(__name__)


class PerformanceMetricsStore:
    """Running per-backend aggregates, updated once per completed attempt.

    Each backend has its own lock; updates for different backends never
    contend. Reads return copies so callers cannot mutate the live aggregate.
    """

    def __init__(self, backends: Iterable[str] = ()) -> None:
        self._metrics: dict[str, BackendMetrics] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()
        for backend in backends:
            self.register(backend)

    def register(self, backend: str) -> None:
        with self._registry_lock:
            if backend not in self._metrics:
                self._metrics[backend] = BackendMetrics(backend=backend)
                self._locks[backend] = threading.Lock()

    def record(
        self,
        backend: str,
        latency_ms: float,
        success: bool,
        tokens: int = 0,
        cost: float = 0.0,
    ) -> None:
        if backend not in self._metrics:
            self.register(backend)
        with self._locks[backend]:
            m = self._metrics[backend]
            m.total_requests += 1
            m.last_request_at = datetime.now(UTC)
            if success:
                m.successful_requests += 1
            else:
                m.failed_requests += 1
            # Incremental weighted average keeps the mean consistent with total_requests.
            m.average_latency_ms += (latency_ms - m.average_latency_ms) / m.total_requests
            m.total_tokens += max(0, tokens)
            m.total_cost += max(0.0, cost)
            m.error_rate = m.failed_requests / m.total_requests
        logger.debug(
            "metrics: backend=%s success=%s latency=%.0fms tokens=%d",
            backend,
            success,
            latency_ms,
            tokens,
        )

    def get(self, backend: str) -> BackendMetrics:
        lock = self._locks.get(backend)
        if lock is None:
            return BackendMetrics(backend=backend)
        with lock:
            return self._metrics[backend].model_copy()

    def snapshot(self) -> dict[str, BackendMetrics]:
        return {backend: self.get(backend) for backend in list(self._metrics)}

    def reset(self) -> None:
        with self._registry_lock:
            for backend in self._metrics:
                self._metrics[backend] = BackendMetrics(backend=backend)


def reliability(metrics: BackendMetrics) -> float:
    return metrics.success_rate


def performance_score(metrics: BackendMetrics) -> float:
    latency_score = max(0.0, 1 - metrics.average_latency_ms / LATENCY_SCORE_SCALE_MS)
    return reliability(metrics) * 0.7 + latency_score * 0.3


def average_cost(metrics: BackendMetrics) -> float:
    return metrics.total_cost / max(metrics.total_requests, 1)
