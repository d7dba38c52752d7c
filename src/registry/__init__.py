"""
Remote registry clients.

The reconciler reads and writes plugin types, steps and images through the
RegistryClient interface. Backends are looked up by name in the backend
registry (entry point group: 'stepsync.backends').
"""

from registry.backends import BackendRegistry, get_backend_registry
from registry.base import RegistryClient, RegistryError, TransientRegistryError

__all__ = [
    "BackendRegistry",
    "RegistryClient",
    "RegistryError",
    "TransientRegistryError",
    "get_backend_registry",
]
