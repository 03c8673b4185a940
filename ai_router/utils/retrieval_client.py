import logging
import time

import aiohttp
from pydantic import ValidationError

from ai_router.constants import (
    DEFAULT_SIMILARITY_THRESHOLD,
    RETRIEVAL_CIRCUIT_COOLDOWN,
    RETRIEVAL_GATEWAY_TIMEOUT,
    RETRIEVAL_GATEWAY_URL,
)
from ai_router.schemas import ContextRetrievalResult, ConversationContext

logger = logging.getLogger(__name__)


class RetrievalGatewayError(Exception):
    pass


class RetrievalGatewayClient:
    """HTTP client for an external hybrid (vector + full-text) retrieval service.

    A failed call opens the circuit for ``cooldown`` seconds; calls made while
    it is open fail fast without touching the network.
    """

    def __init__(
        self,
        base_url: str = RETRIEVAL_GATEWAY_URL,
        *,
        timeout: float = RETRIEVAL_GATEWAY_TIMEOUT,
        cooldown: float = RETRIEVAL_CIRCUIT_COOLDOWN,
        similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._cooldown = cooldown
        self.similarity_threshold = similarity_threshold
        self._circuit_open_until = 0.0

    def is_circuit_open(self) -> bool:
        return time.monotonic() < self._circuit_open_until

    def _trip_circuit(self) -> None:
        self._circuit_open_until = time.monotonic() + self._cooldown
        logger.warning("retrieval: circuit breaker tripped, skipping for %.0fs", self._cooldown)

    def _reset_circuit(self) -> None:
        self._circuit_open_until = 0.0

    async def retrieve(
        self,
        query_text: str,
        context: ConversationContext,
        max_results: int,
    ) -> ContextRetrievalResult:
        if not self.base_url:
            raise RetrievalGatewayError("retrieval gateway URL not configured")

        if self.is_circuit_open():
            raise RetrievalGatewayError("circuit breaker open, gateway recently failed")

        url = f"{self.base_url}/api/v1/retrieve"
        body = {
            "query": query_text,
            "conversation_id": context.conversation_id,
            "branch_id": context.branch_id,
            "project_id": context.project_id,
            "limit": max_results,
            "similarity_threshold": self.similarity_threshold,
        }
        timeout = aiohttp.ClientTimeout(total=self._timeout)

        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(url, json=body) as resp:
                    if resp.status == 200:
                        data = await resp.json()
                        result = ContextRetrievalResult.model_validate(data)
                        logger.info(
                            "retrieval: %d hybrid match(es) for conversation %s",
                            len(result.hybrid_matches),
                            context.conversation_id,
                        )
                        self._reset_circuit()
                        return result

                    text = await resp.text()
                    self._trip_circuit()
                    raise RetrievalGatewayError(f"gateway returned {resp.status}: {text[:200]}")
        except (aiohttp.ClientError, TimeoutError) as e:
            self._trip_circuit()
            raise RetrievalGatewayError(f"gateway connection failed: {e}") from e
        except ValidationError as e:
            self._trip_circuit()
            raise RetrievalGatewayError(f"gateway returned malformed result: {e}") from e

    async def check_health(self) -> bool:
        if not self.base_url or self.is_circuit_open():
            return False

        url = f"{self.base_url}/api/v1/health"
        timeout = aiohttp.ClientTimeout(total=3)

        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.get(url) as resp:
                    return resp.status == 200
        except (aiohttp.ClientError, TimeoutError):
            return False
