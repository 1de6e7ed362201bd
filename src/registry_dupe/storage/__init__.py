"""Registry access for registry-dupe."""
from .registry import RegistryCapability
from .registry_http import DockerAuth, RegistryHTTP, connect

__all__ = ["RegistryCapability", "DockerAuth", "RegistryHTTP", "connect"]
