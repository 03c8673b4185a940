"""Static per-backend metadata.

A ``BackendProfile`` bundles everything about a backend family that does not
come from deployment configuration: wire dialect, default endpoint and model,
capabilities, persona, sampling defaults and prompt style. ``BackendConfig``
values always win over the profile defaults.
"""

from __future__ import annotations

from dataclasses import dataclass

from ai_router.llm.features import ContentFeature
from ai_router.providers.prompt_optimizer import (
    CLAUDE_STYLE,
    DEFAULT_STYLE,
    GEMINI_STYLE,
    GPT4_STYLE,
    GROK_STYLE,
    KIMI_STYLE,
    PromptStyle,
)
from ai_router.schemas import BackendCapabilities

DIALECT_OPENAI = "openai"
DIALECT_ANTHROPIC = "anthropic"
DIALECT_GEMINI = "gemini"


@dataclass(frozen=True)
class BackendProfile:
    kind: str
    dialect: str
    base_url: str
    model_name: str
    capabilities: BackendCapabilities
    persona: str
    base_temperature: float = 0.7
    default_max_tokens: int = 4096
    chars_per_token: float = 4.0
    prompt_style: PromptStyle = DEFAULT_STYLE


CLAUDE_CAPABILITIES = BackendCapabilities(
    max_context_tokens=200_000,
    supports_function_calling=True,
    supports_vision=True,
    price_per_input_token=0.000003,
    price_per_output_token=0.000015,
    rate_limit_rpm=5000,
    rate_limit_tpm=800_000,
    supported_languages=("en", "es", "fr", "de", "it", "pt", "ja", "ko", "zh"),
    strengths=("reasoning", "analysis", "long-context", "safety", "code-review"),
    weaknesses=("real-time-data",),
    feature_weights={
        ContentFeature.CODE: 0.2,
        ContentFeature.CREATIVE: 0.3,
        ContentFeature.ANALYTICAL: 0.4,
        ContentFeature.LONG_CONTEXT: 0.2,
    },
)

GPT4_CAPABILITIES = BackendCapabilities(
    max_context_tokens=128_000,
    supports_function_calling=True,
    price_per_input_token=0.00001,
    price_per_output_token=0.00003,
    rate_limit_rpm=10_000,
    rate_limit_tpm=2_000_000,
    supported_languages=("en", "es", "fr", "de", "it", "pt", "ru", "ja", "ko", "zh"),
    strengths=("code-generation", "function-calling", "general-knowledge", "creativity"),
    weaknesses=("very-long-context", "real-time-data"),
    feature_weights={
        ContentFeature.CODE: 0.3,
        ContentFeature.CREATIVE: 0.2,
        ContentFeature.ANALYTICAL: 0.2,
    },
)

KIMI_CAPABILITIES = BackendCapabilities(
    max_context_tokens=200_000,
    price_per_input_token=0.000001,
    price_per_output_token=0.000002,
    rate_limit_rpm=3000,
    rate_limit_tpm=1_000_000,
    supported_languages=("zh", "en"),
    strengths=("long-context", "document-analysis", "chinese-language", "cost-efficiency"),
    weaknesses=("function-calling", "vision"),
)

GROK_CAPABILITIES = BackendCapabilities(
    max_context_tokens=131_072,
    supports_function_calling=True,
    price_per_input_token=0.000005,
    price_per_output_token=0.000015,
    rate_limit_rpm=3000,
    rate_limit_tpm=300_000,
    supported_languages=("en", "es", "fr", "de"),
    strengths=("real-time-data", "conversational-tone", "current-events"),
    weaknesses=("very-long-context", "vision"),
    feature_weights={ContentFeature.REALTIME: 0.5},
)

GEMINI_CAPABILITIES = BackendCapabilities(
    max_context_tokens=1_048_576,
    supports_function_calling=True,
    supports_vision=True,
    price_per_input_token=0.00000125,
    price_per_output_token=0.000005,
    rate_limit_rpm=1500,
    rate_limit_tpm=32_000,
    supported_languages=("en", "es", "fr", "de", "it", "pt", "ja", "ko", "zh", "hi", "ar"),
    strengths=("very-long-context", "multimodal", "reasoning", "cost-efficiency"),
    weaknesses=("real-time-data",),
    feature_weights={
        ContentFeature.CODE: 0.25,
        ContentFeature.CREATIVE: 0.25,
        ContentFeature.ANALYTICAL: 0.3,
        ContentFeature.REALTIME: 0.2,
        ContentFeature.LONG_CONTEXT: 0.4,
        ContentFeature.VERY_LONG_CONTEXT: 0.3,
    },
)

GENERIC_PERSONA = (
    "You are a helpful AI assistant. Provide accurate, detailed, and well-structured responses."
)

PROFILES: dict[str, BackendProfile] = {
    "claude": BackendProfile(
        kind="claude",
        dialect=DIALECT_ANTHROPIC,
        base_url="https://api.anthropic.com",
        model_name="claude-3-sonnet-20240229",
        capabilities=CLAUDE_CAPABILITIES,
        persona=(
            "You are Claude, an AI assistant created by Anthropic. "
            "Be helpful, harmless, and honest."
        ),
        chars_per_token=3.5,
        prompt_style=CLAUDE_STYLE,
    ),
    "gpt4": BackendProfile(
        kind="gpt4",
        dialect=DIALECT_OPENAI,
        base_url="https://api.openai.com/v1",
        model_name="gpt-4-1106-preview",
        capabilities=GPT4_CAPABILITIES,
        persona=GENERIC_PERSONA,
        prompt_style=GPT4_STYLE,
    ),
    "kimi": BackendProfile(
        kind="kimi",
        dialect=DIALECT_OPENAI,
        base_url="https://api.moonshot.cn/v1",
        model_name="moonshot-v1-8k",
        capabilities=KIMI_CAPABILITIES,
        persona=(
            "You are Kimi, an AI assistant by Moonshot AI. "
            "Be helpful and efficient in your responses."
        ),
        base_temperature=0.6,
        chars_per_token=3.0,
        prompt_style=KIMI_STYLE,
    ),
    "grok": BackendProfile(
        kind="grok",
        dialect=DIALECT_OPENAI,
        base_url="https://api.x.ai/v1",
        model_name="grok-beta",
        capabilities=GROK_CAPABILITIES,
        persona=(
            "You are Grok, an AI assistant with access to real-time information. "
            "Be witty and informative."
        ),
        base_temperature=0.8,
        prompt_style=GROK_STYLE,
    ),
    "gemini": BackendProfile(
        kind="gemini",
        dialect=DIALECT_GEMINI,
        base_url="https://generativelanguage.googleapis.com",
        model_name="gemini-1.5-flash",
        capabilities=GEMINI_CAPABILITIES,
        persona=(
            "You are Gemini, a highly capable AI assistant created by Google. "
            "Be helpful, accurate, and provide well-structured responses."
        ),
        default_max_tokens=8192,
        prompt_style=GEMINI_STYLE,
    ),
    # Generic kinds for any OpenAI-compatible or Anthropic-compatible endpoint.
    "openai": BackendProfile(
        kind="openai",
        dialect=DIALECT_OPENAI,
        base_url="https://api.openai.com/v1",
        model_name="gpt-4o-mini",
        capabilities=BackendCapabilities(),
        persona=GENERIC_PERSONA,
    ),
    "anthropic": BackendProfile(
        kind="anthropic",
        dialect=DIALECT_ANTHROPIC,
        base_url="https://api.anthropic.com",
        model_name="claude-3-5-haiku-latest",
        capabilities=BackendCapabilities(max_context_tokens=200_000),
        persona=GENERIC_PERSONA,
        chars_per_token=3.5,
    ),
}


def get_profile(kind: str) -> BackendProfile | None:
    return PROFILES.get(kind)
