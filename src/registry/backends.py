"""
Backend Registry - Discovery and registration of registry client backends.

Built-in backends are registered explicitly; third-party backends are
discovered through the 'stepsync.backends' entry point group.
"""

import logging
from importlib.metadata import entry_points
from typing import Any, Dict, List, Optional, Type

from registry.base import RegistryClient

logger = logging.getLogger(__name__)

ENTRY_POINT_GROUP = "stepsync.backends"


class BackendRegistry:
    """Central registry of RegistryClient classes keyed by backend name."""

    def __init__(self):
        # Registered client classes (not instantiated)
        self._backends: Dict[str, Type[RegistryClient]] = {}
        # Backend configurations loaded from environment
        self._configs: Dict[str, Dict[str, Any]] = {}

    def register(self, client_class: Type[RegistryClient]) -> None:
        """
        Register a registry client class.

        Args:
            client_class: The RegistryClient subclass to register
        """
        name = client_class().name

        if name in self._backends:
            logger.warning(f"Overwriting existing registry backend: {name}")

        self._backends[name] = client_class
        self._configs[name] = client_class.load_config_from_env()
        logger.debug(f"Registered registry backend: {name}")

    async def create(
        self, name: str, config: Optional[Dict[str, Any]] = None
    ) -> RegistryClient:
        """
        Create and initialize a registry client.

        The environment-loaded configuration for the backend is merged with
        the given config, with the given values taking precedence.

        Raises:
            ValueError: If the backend name is not registered
        """
        if name not in self._backends:
            available = ", ".join(self._backends.keys()) or "none"
            raise ValueError(
                f"Unknown registry backend: {name}. Available backends: {available}"
            )

        merged = dict(self._configs.get(name, {}))
        merged.update(config or {})

        client = self._backends[name]()
        await client.initialize(merged)
        logger.info(f"Initialized registry backend: {name}")
        return client

    def list_backends(self) -> List[str]:
        """List all registered backend names."""
        return list(self._backends.keys())

    def has_backend(self, name: str) -> bool:
        return name in self._backends

    def get_backend_config(self, name: str) -> Dict[str, Any]:
        """Get the environment-loaded configuration for a backend."""
        return self._configs.get(name, {})


# Global registry instance
_registry: Optional[BackendRegistry] = None


def get_backend_registry() -> BackendRegistry:
    """Get the global backend registry, registering built-ins on first use."""
    global _registry
    if _registry is None:
        _registry = BackendRegistry()
        register_builtin_backends(_registry)
    return _registry


def reset_backend_registry() -> None:
    """Reset the global registry (mainly for testing)."""
    global _registry
    _registry = None


def register_builtin_backends(registry: BackendRegistry) -> None:
    """
    Register the built-in backends and discover installed ones via entry
    points.
    """
    from registry.memory import InMemoryRegistry
    from registry.webapi import WebApiRegistryClient

    registry.register(WebApiRegistryClient)
    registry.register(InMemoryRegistry)

    for ep in entry_points(group=ENTRY_POINT_GROUP):
        try:
            registry.register(ep.load())
        except Exception as e:
            logger.warning(f"Could not load registry backend {ep.name}: {e}")
