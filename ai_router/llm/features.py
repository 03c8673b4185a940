from __future__ import annotations

import re
from dataclasses import dataclass
from enum import StrEnum


class ContentFeature(StrEnum):
    CODE = "code"
    CREATIVE = "creative"
    ANALYTICAL = "analytical"
    REALTIME = "realtime"
    LONG_CONTEXT = "long_context"
    VERY_LONG_CONTEXT = "very_long_context"


@dataclass(frozen=True)
class FeatureRule:
    pattern: re.Pattern[str] | None = None
    min_length: int | None = None
    case_sensitive: bool = False


FEATURE_RULES: dict[ContentFeature, FeatureRule] = {
    ContentFeature.CODE: FeatureRule(
        pattern=re.compile(r"```|function|class|import|export|console\.log"),
        case_sensitive=True,
    ),
    ContentFeature.CREATIVE: FeatureRule(
        pattern=re.compile(r"story|poem|creative|imagine|describe"),
    ),
    ContentFeature.ANALYTICAL: FeatureRule(
        pattern=re.compile(r"analyze|compare|evaluate|assess|review"),
    ),
    ContentFeature.REALTIME: FeatureRule(
        pattern=re.compile(r"current|recent|today|latest|now"),
    ),
    ContentFeature.LONG_CONTEXT: FeatureRule(min_length=10_000),
    ContentFeature.VERY_LONG_CONTEXT: FeatureRule(min_length=100_000),
}

# Temperature cues are narrower than the routing cues: "review" routes to an
# analytical backend but should not cool down a code-review answer twice.
CREATIVE_TEMPERATURE_CUES = re.compile(r"story|poem|creative|imagine|describe")
ANALYTICAL_TEMPERATURE_CUES = re.compile(r"analyze|compare|code|function|bug")


def _matches(rule: FeatureRule, text: str, lowered: str) -> bool:
    if rule.min_length is not None and len(text) <= rule.min_length:
        return False
    if rule.pattern is not None:
        haystack = text if rule.case_sensitive else lowered
        return rule.pattern.search(haystack) is not None
    return True


def detect_features(text: str) -> frozenset[ContentFeature]:
    lowered = text.lower()
    return frozenset(
        feature for feature, rule in FEATURE_RULES.items() if _matches(rule, text, lowered)
    )
