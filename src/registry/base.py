"""
Registry Client Base - Abstract interface for the remote plugin registry.

The reconciler only talks to the remote registry through this narrow set
of operations, so the applier can run against an in-memory fake as well as
the real Web API. Records are plain dicts keyed by platform field names.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional


class RegistryError(Exception):
    """Raised when a remote registry call fails."""

    def __init__(self, message: str, status: Optional[int] = None):
        self.message = message
        self.status = status
        super().__init__(message)


class TransientRegistryError(RegistryError):
    """Raised for failures worth retrying, such as throttling."""


class RegistryClient(ABC):
    """
    Abstract base class for remote registry clients.

    List operations return platform records for every plugin type, step
    or image whose plugin type belongs to the given scope (assembly).
    Create operations return the new record's identifier. All operations
    raise RegistryError on transport or authorization failures.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique identifier for this client backend (e.g., 'webapi')."""
        pass

    async def initialize(self, config: Dict[str, Any]) -> None:
        """
        Initialize the client with configuration.

        Args:
            config: Backend-specific configuration dictionary
        """

    async def close(self) -> None:
        """Release any held connections."""

    @abstractmethod
    async def list_plugin_types(self, scope: str) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    async def list_steps(self, scope: str) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    async def list_images(self, scope: str) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    async def create_plugin_type(self, record: Dict[str, Any]) -> str:
        pass

    @abstractmethod
    async def create_step(self, record: Dict[str, Any]) -> str:
        pass

    @abstractmethod
    async def update_step(self, step_id: str, changes: Dict[str, Any]) -> None:
        pass

    @abstractmethod
    async def create_image(self, record: Dict[str, Any]) -> str:
        pass

    @abstractmethod
    async def update_image(self, image_id: str, changes: Dict[str, Any]) -> None:
        pass

    @abstractmethod
    async def delete_plugin_type(self, plugin_type_id: str) -> None:
        pass

    @abstractmethod
    async def delete_step(self, step_id: str) -> None:
        pass

    @abstractmethod
    async def delete_image(self, image_id: str) -> None:
        pass

    @classmethod
    def load_config_from_env(cls) -> Dict[str, Any]:
        """
        Load backend-specific configuration from environment variables.

        Returns:
            Dictionary of configuration values for this backend.
        """
        return {}
