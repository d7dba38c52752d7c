"""Dataverse Web API registry client."""

from registry.webapi.client import WebApiRegistryClient

__all__ = ["WebApiRegistryClient"]
