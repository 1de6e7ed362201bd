"""
Registry capability protocol.

Defines the repo-aware operations the replication engine needs from a
registry. Every operation is scoped to a repository name, which reflects how
the Distribution API works. Handles must be safe for concurrent use: one
handle per side is shared by all layer-copy workers.
"""
from __future__ import annotations

from typing import BinaryIO, Iterable, Optional, Protocol, Tuple, Union, runtime_checkable

from ..models import Manifest


@runtime_checkable
class RegistryCapability(Protocol):
    """Registry operations used by the replicators."""

    def connect(self) -> None:
        """
        Verify the registry is reachable and the credentials are accepted.

        Raises:
            RegistryAuthError: If authentication fails
            RegistryError: For transport errors
        """
        ...

    def fetch_manifest(self, name: str, tag: str) -> Manifest:
        """
        GET a manifest by tag, keeping its raw bytes.

        Raises:
            RegistryNotFound: If the manifest doesn't exist
            UnsupportedMediaType: For manifest lists or unknown schemas
            RegistryError: For other registry errors
        """
        ...

    def has_layer(self, name: str, digest: str) -> bool:
        """
        Check whether a blob exists in the repository.

        Returns False only for a definite "not found". Any other failure
        raises, so callers never mistake an outage for a missing blob.

        Raises:
            RegistryAuthError: If authentication fails
            RegistryError: For other registry errors
        """
        ...

    def open_layer_reader(self, name: str, digest: str) -> Tuple[BinaryIO, int]:
        """
        Open a streaming reader on a blob.

        Returns:
            (stream, total_length); total_length is -1 when the registry
            does not report one. The caller must close the stream.

        Raises:
            RegistryNotFound: If the blob doesn't exist
            RegistryError: For other registry errors
        """
        ...

    def upload_layer(self, name: str, digest: str,
                     stream: Union[BinaryIO, Iterable[bytes]],
                     size: Optional[int] = None) -> None:
        """
        Upload a blob under the given digest, streaming from ``stream``.

        Raises:
            RegistryError: If the upload fails
        """
        ...

    def put_manifest(self, name: str, tag: str, manifest: Manifest) -> str:
        """
        PUT the manifest's raw payload under ``name:tag``.

        Returns:
            Digest reported by the registry

        Raises:
            RegistryError: If the registry rejects the manifest
        """
        ...


__all__ = ["RegistryCapability"]
