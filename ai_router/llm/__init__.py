"""Routing layer for ai_router.

Content-aware backend selection, fallback chains and per-backend rate limits.
"""

from ai_router.llm.features import ContentFeature, detect_features
from ai_router.llm.rate_limit import RateLimitTracker
from ai_router.llm.router import ModelSelector, get_fallback_chain

__all__ = [
    "ContentFeature",
    "ModelSelector",
    "RateLimitTracker",
    "detect_features",
    "get_fallback_chain",
]
