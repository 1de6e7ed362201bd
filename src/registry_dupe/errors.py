"""
Error classes for registry replication.

Two layers of errors:

- ``RegistryError`` and subclasses are raised by registry handles and map
  HTTP status codes and transport failures to a small taxonomy.
- ``ReplicationError`` and subclasses name the job stage that failed. They
  are always chained from the registry error that caused them, so callers
  learn both *where* the job stopped and *why*.
"""
from __future__ import annotations


class RegistryError(Exception):
    """Base class for registry transport and protocol errors."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class RegistryAuthError(RegistryError):
    """
    Authentication or authorization error.

    Raised for HTTP 401/403 after the registry auth flow has been attempted.
    """
    pass


class RegistryNotFound(RegistryError):
    """Manifest, blob or repository does not exist (HTTP 404)."""
    pass


class UnsupportedMediaType(RegistryError):
    """
    Manifest media type not supported by the registry or by this client.

    Raised for HTTP 415 and for manifest lists, which cannot be replicated
    as a single manifest.
    """
    pass


class RegistryRateLimited(RegistryError):
    """Rate limit exceeded (HTTP 429)."""
    pass


class ReplicationError(Exception):
    """Base class for replication job failures."""

    stage = "replication"


class AuthenticationError(ReplicationError):
    """Connecting to a registry failed."""

    stage = "connect"

    def __init__(self, registry_url: str, reason: object = None):
        message = f"Unable to connect to registry {registry_url}"
        if reason is not None:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.registry_url = registry_url


class ManifestFetchError(ReplicationError):
    """The source manifest could not be retrieved."""

    stage = "fetch-manifest"

    def __init__(self, name: str, tag: str, reason: object = None):
        message = f"Unable to retrieve source manifest {name}:{tag}"
        if reason is not None:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.name = name
        self.tag = tag


class LayerError(ReplicationError):
    """Base class for failures tied to one layer."""

    def __init__(self, message: str, digest: str):
        super().__init__(message)
        self.digest = digest


class LayerExistenceCheckError(LayerError):
    """Asking the destination whether it holds a layer failed."""

    stage = "check-layer"

    def __init__(self, digest: str, reason: object = None):
        message = f"Unable to check if layer {digest} exists in destination registry"
        if reason is not None:
            message = f"{message}: {reason}"
        super().__init__(message, digest)


class LayerTransferError(LayerError):
    """Opening the source stream or uploading to the destination failed."""

    stage = "transfer-layer"

    def __init__(self, digest: str, reason: object = None):
        message = f"Unable to copy layer {digest}"
        if reason is not None:
            message = f"{message}: {reason}"
        super().__init__(message, digest)


class ManifestUploadError(ReplicationError):
    """The manifest could not be uploaded to the destination."""

    stage = "put-manifest"

    def __init__(self, name: str, tag: str, reason: object = None):
        message = f"Unable to upload manifest {name}:{tag} to destination registry"
        if reason is not None:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.name = name
        self.tag = tag


class ReplicationCancelled(ReplicationError):
    """Work stopped because another part of the job failed."""

    stage = "cancelled"


__all__ = [
    "RegistryError",
    "RegistryAuthError",
    "RegistryNotFound",
    "UnsupportedMediaType",
    "RegistryRateLimited",
    "ReplicationError",
    "AuthenticationError",
    "ManifestFetchError",
    "LayerError",
    "LayerExistenceCheckError",
    "LayerTransferError",
    "ManifestUploadError",
    "ReplicationCancelled",
]
