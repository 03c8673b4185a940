import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv
from pydantic import ValidationError

from ai_router.schemas import BackendConfig, OrchestratorConfig

load_dotenv()

logger = logging.getLogger(__name__)

_ENV_VAR_PATTERN = re.compile(r"\$\{([^}:]+)(?::-(.*?))?\}")

DEFAULT_BACKEND = "claude"
DEFAULT_FALLBACK_CHAIN = ("claude", "gpt4", "gemini", "kimi", "grok")

# (backend id, env prefix, rpm, tpm). Limits are conservative published tier-1 quotas.
ENV_BACKENDS: tuple[tuple[str, str, int, int], ...] = (
    ("claude", "ANTHROPIC", 5000, 800_000),
    ("gpt4", "OPENAI", 3500, 90_000),
    ("gemini", "GEMINI", 1500, 32_000),
    ("kimi", "KIMI", 60, 200_000),
    ("grok", "GROK", 200, 120_000),
)


def _substitute_env_vars(value: str) -> str:
    def _replace(match: re.Match[str]) -> str:
        var_name = match.group(1)
        default = match.group(2)
        env_val = os.environ.get(var_name)
        if env_val is not None:
            return env_val
        return default if default is not None else ""

    return _ENV_VAR_PATTERN.sub(_replace, value)


def _substitute_recursive(obj: Any) -> Any:
    if isinstance(obj, str):
        return _substitute_env_vars(obj)
    if isinstance(obj, dict):
        return {k: _substitute_recursive(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_substitute_recursive(item) for item in obj]
    return obj


def _parse_chain(raw: str | None) -> list[str]:
    if not raw:
        return list(DEFAULT_FALLBACK_CHAIN)
    return [item.strip() for item in raw.split(",") if item.strip()]


def load_yaml_config(config_path: str | None = None) -> OrchestratorConfig | None:
    if not config_path:
        return None

    path = Path(config_path)
    if not path.is_file():
        logger.warning("Router config file not found: %s", config_path)
        return None

    try:
        raw = path.read_text(encoding="utf-8")
        data = yaml.safe_load(raw)
    except (OSError, yaml.YAMLError) as e:
        logger.warning("Failed to load router config from %s: %s", config_path, e)
        return None

    if not isinstance(data, dict) or "backends" not in data:
        logger.warning("Router config missing 'backends' key: %s", config_path)
        return None

    raw_backends = data["backends"]
    if not isinstance(raw_backends, list) or not raw_backends:
        logger.warning("Router config 'backends' is empty or not a list: %s", config_path)
        return None

    backends: list[BackendConfig] = []
    seen: set[str] = set()
    for i, entry in enumerate(raw_backends):
        entry = _substitute_recursive(entry)
        try:
            cfg = BackendConfig.model_validate(entry)
        except ValidationError as e:
            logger.warning("Skipping invalid backend entry %d in %s: %s", i, config_path, e)
            continue
        if cfg.id in seen:
            logger.warning("Skipping duplicate backend '%s' in %s", cfg.id, config_path)
            continue
        seen.add(cfg.id)
        backends.append(cfg)

    if not backends:
        logger.warning("No valid backends loaded from %s", config_path)
        return None

    settings = _substitute_recursive({k: v for k, v in data.items() if k != "backends"})
    settings.setdefault("default_backend", backends[0].id)
    try:
        config = OrchestratorConfig.model_validate({**settings, "backends": backends})
    except ValidationError as e:
        logger.warning("Invalid router settings in %s: %s", config_path, e)
        return None

    logger.info("Loaded %d backend(s) from YAML config: %s", len(backends), config_path)
    return config


def build_env_config() -> OrchestratorConfig:
    """One backend per provider whose API key is present in the environment."""
    backends: list[BackendConfig] = []
    for backend_id, prefix, rpm, tpm in ENV_BACKENDS:
        api_key = os.environ.get(f"{prefix}_API_KEY", "")
        if not api_key:
            continue
        backends.append(
            BackendConfig(
                id=backend_id,
                api_key=api_key,
                base_url=os.environ.get(f"{prefix}_BASE_URL") or None,
                model_name=os.environ.get(f"{prefix}_MODEL") or None,
                rate_limit_rpm=rpm,
                rate_limit_tpm=tpm,
            )
        )

    if not backends:
        logger.warning("No provider API keys found in environment, no backends configured")

    return OrchestratorConfig(
        backends=backends,
        default_backend=os.environ.get("AI_ROUTER_DEFAULT_BACKEND", DEFAULT_BACKEND),
        fallback_chain=_parse_chain(os.environ.get("AI_ROUTER_FALLBACK_CHAIN")),
    )


def load_orchestrator_config(config_path: str | None = None) -> OrchestratorConfig:
    config_path = config_path or os.environ.get("AI_ROUTER_CONFIG_PATH", "")
    if config_path:
        config = load_yaml_config(config_path)
        if config is not None:
            return config
        logger.warning("Falling back to environment backends")
    return build_env_config()
