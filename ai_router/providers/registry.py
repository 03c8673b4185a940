"""Registration table mapping backend kinds to client factories.

The orchestrator builds its clients through ``create_client`` and never
switches on backend names. New kinds are added with ``register_backend``.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from ai_router.errors import ConfigError
from ai_router.providers.base import ProviderClient
from ai_router.providers.catalog import PROFILES, BackendProfile
from ai_router.providers.dialects import get_dialect
from ai_router.schemas import BackendConfig

logger = logging.getLogger(__name__)

ClientFactory = Callable[..., ProviderClient]


def profile_factory(profile: BackendProfile) -> ClientFactory:
    dialect = get_dialect(profile.dialect)

    def factory(config: BackendConfig, **kwargs: Any) -> ProviderClient:
        return ProviderClient(config, profile, dialect, **kwargs)

    return factory


class BackendRegistry:
    def __init__(self) -> None:
        self._factories: dict[str, ClientFactory] = {}

    def register_backend(
        self, kind: str, factory: ClientFactory, *, replace: bool = False
    ) -> None:
        if kind in self._factories and not replace:
            raise ConfigError(f"Backend kind already registered: {kind}")
        self._factories[kind] = factory
        logger.debug("Registered backend kind %s", kind)

    def kinds(self) -> list[str]:
        return list(self._factories)

    def __contains__(self, kind: object) -> bool:
        return kind in self._factories

    def create_client(self, config: BackendConfig, **kwargs: Any) -> ProviderClient:
        factory = self._factories.get(config.backend_kind)
        if factory is None:
            raise ConfigError(
                f"No client registered for backend kind '{config.backend_kind}' "
                f"(backend '{config.id}'). Known kinds: {', '.join(self._factories)}"
            )
        return factory(config, **kwargs)


def build_default_registry() -> BackendRegistry:
    registry = BackendRegistry()
    for kind, profile in PROFILES.items():
        registry.register_backend(kind, profile_factory(profile))
    return registry


default_registry = build_default_registry()


def register_backend(kind: str, factory: ClientFactory, *, replace: bool = False) -> None:
    default_registry.register_backend(kind, factory, replace=replace)


def create_client(config: BackendConfig, **kwargs: Any) -> ProviderClient:
    return default_registry.create_client(config, **kwargs)
