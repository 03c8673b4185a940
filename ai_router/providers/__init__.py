from ai_router.providers.base import ProviderClient
from ai_router.providers.registry import BackendRegistry, create_client, register_backend

__all__ = ["BackendRegistry", "ProviderClient", "create_client", "register_backend"]
