"""Configuration constants with trade-off documentation.

Each constant has a rationale explaining why this specific value was chosen.
Values that operators tune per deployment are read from the environment and
clamped, everything else is fixed here.
"""

import os

# =============================================================================
# Environment Variable Helpers
# =============================================================================


def _parse_int_env(name: str, default: int, min_val: int, max_val: int) -> int:
    """Parse an integer environment variable with bounds clamping.

    Returns default if env var is unset or unparseable. Clamps to [min_val, max_val].
    """
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return max(min_val, min(max_val, value))


# =============================================================================
# Rate Limiting
# =============================================================================

RATE_LIMIT_WINDOW_SECONDS = 60.0
# Why 60: Every supported provider publishes its quotas as requests-per-minute
# and tokens-per-minute. A fixed one-minute window mirrors those quotas directly.
# Windows roll over lazily on the next admission check, there is no timer.

# =============================================================================
# Fallback / Retry
# =============================================================================

DEFAULT_MAX_RETRIES = _parse_int_env("AI_ROUTER_MAX_RETRIES", default=3, min_val=1, max_val=10)
# Why 3: Total attempts across the whole fallback chain, not per backend.
# Three covers "preferred + two fallbacks" which is the common deployment, and
# caps the worst-case latency of a failing request at three upstream calls.

RATE_LIMIT_BACKOFF_SECONDS = 1.0
# Why 1s: Linear back-off (attempt × 1s) applies only when the same backend is
# retried after a 429. With max 3 attempts the total sleep is bounded by 3s.

# =============================================================================
# Request Shaping
# =============================================================================

MAX_HISTORY_MESSAGES = 10
# Why 10: Five user/assistant exchanges keep continuity without letting the
# history dominate the prompt. Older turns are represented by the branch summary.

SWITCH_SUMMARY_MESSAGES = 5
# Why 5: Explicit backend switches only need the last few turns to confirm that
# context can be carried over to the new backend.

MAX_SWITCH_HISTORY = 1000
# Why 1000: Switch events feed analytics only. A bounded history keeps a
# long-running process from growing without limit while still covering hours
# of traffic.

TIMEOUT_MAX_TOKENS_CAP = 4000
TIMEOUT_MS_PER_TOKEN = 10
# Why: A caller time budget is translated into a smaller max_tokens request
# (timeout_ms / 10, capped at 4000). The core never enforces a wall-clock
# timeout itself; that belongs to the HTTP transport.

DEFAULT_OUTPUT_TOKENS_ESTIMATE = 1000
# Why 1000: Cost estimates need an output size when the request leaves
# max_tokens unset. 1000 tokens is a typical chat answer.

MIN_TEMPERATURE = 0.1
MAX_TEMPERATURE = 1.0
TEMPERATURE_ADJUSTMENT = 0.2

# =============================================================================
# Analytics Thresholds
# =============================================================================

HIGH_ERROR_RATE_THRESHOLD = 0.1
# Why 10%: One failure in ten requests is where users start noticing fallbacks.

HIGH_LATENCY_THRESHOLD_MS = 5000.0
# Why 5s: Beyond five seconds to a complete answer the chat UI feels stalled.

LATENCY_SCORE_SCALE_MS = 10_000.0
# Why 10s: Latency contributes linearly to the performance score and reaches
# zero at ten seconds average latency.

# =============================================================================
# Transport
# =============================================================================

HTTP_CONNECT_TIMEOUT = 10.0
HTTP_READ_TIMEOUT = 120.0
# Why 120s read: Long completions on large-context backends can take over a
# minute before the final byte arrives. Streaming reads reset per chunk.

HEALTH_CHECK_TIMEOUT = 10.0

# =============================================================================
# Context Retrieval Gateway
# =============================================================================

RETRIEVAL_GATEWAY_URL = os.getenv("AI_ROUTER_RETRIEVAL_URL", "")
RETRIEVAL_GATEWAY_TIMEOUT = 15
RETRIEVAL_CIRCUIT_COOLDOWN = 120.0
# Why 120: 2-minute window balances quick recovery detection with avoiding
# repeated failures. Retrieval services typically recover within minutes.

DEFAULT_RETRIEVAL_LIMIT = 5
DEFAULT_SIMILARITY_THRESHOLD = 0.7
