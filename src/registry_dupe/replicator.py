"""
Layer and manifest replication.

``LayerReplicator`` copies one blob: it asks the destination whether the
digest is already stored and, if not, streams the blob from the source
straight into the destination upload. ``ManifestReplicator`` uploads the
source manifest bytes unchanged. Both raise typed ``ReplicationError``
subclasses and leave the abort decision to the orchestrator.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .errors import (
    LayerExistenceCheckError,
    LayerTransferError,
    ManifestUploadError,
    RegistryError,
    ReplicationCancelled,
)
from .models import LayerRef, Manifest
from .progress import ObserverFactory, ProgressReader, null_observer
from .storage.registry import RegistryCapability

logger = logging.getLogger(__name__)


class LayerOutcome(str, Enum):
    COPIED = "copied"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class LayerResult:
    digest: str
    outcome: LayerOutcome
    bytes_copied: int = 0


class LayerReplicator:
    """
    Copy single layers from a source registry to a destination registry.

    No hashing happens here: the bytes are trusted to match the digest the
    source registry served them under.
    """

    def __init__(self, source: RegistryCapability, destination: RegistryCapability, *,
                 observer_factory: Optional[ObserverFactory] = None,
                 logger: Optional[logging.Logger] = None):
        self.source = source
        self.destination = destination
        self.observer_factory = observer_factory or (lambda digest: null_observer)
        self.log = logger or logging.getLogger(__name__)

    def replicate_layer(self, manifest_name: str, layer: LayerRef, *,
                        index: Optional[int] = None,
                        cancel: Optional[threading.Event] = None) -> LayerResult:
        """
        Make sure the destination holds ``layer``.

        Args:
            manifest_name: Repository name, identical on both sides
            layer: Blob to replicate
            index: Position in the manifest, for log lines
            cancel: Job cancellation token; checked before the transfer starts
                and on every read of the source stream

        Returns:
            LayerResult saying whether the blob was copied or skipped

        Raises:
            LayerExistenceCheckError: If the destination HEAD fails
            LayerTransferError: If opening the source stream or uploading fails
            ReplicationCancelled: If the job was cancelled
        """
        digest = layer.digest
        prefix = f"#{index}: " if index is not None else ""
        self.log.debug(f"{prefix}Checking layer {digest}")

        try:
            exists = self.destination.has_layer(manifest_name, digest)
        except RegistryError as e:
            raise LayerExistenceCheckError(digest, e) from e

        if exists:
            self.log.info(f"Skipping {digest}")
            return LayerResult(digest=digest, outcome=LayerOutcome.SKIPPED)

        if cancel is not None and cancel.is_set():
            raise ReplicationCancelled(f"Transfer of {digest} cancelled")

        self.log.debug(f"{prefix}Downloading layer {digest}")
        try:
            stream, total = self.source.open_layer_reader(manifest_name, digest)
        except RegistryError as e:
            raise LayerTransferError(digest, e) from e

        try:
            reader = ProgressReader(stream, total, self.observer_factory(digest), cancel=cancel)
            self.destination.upload_layer(
                manifest_name, digest, reader, size=total if total >= 0 else None
            )
        except (RegistryError, OSError) as e:
            if cancel is not None and cancel.is_set():
                raise ReplicationCancelled(f"Transfer of {digest} cancelled") from e
            raise LayerTransferError(digest, e) from e
        finally:
            stream.close()

        self.log.debug(f"{prefix}Uploaded layer {digest} ({reader.progress} bytes)")
        return LayerResult(digest=digest, outcome=LayerOutcome.COPIED, bytes_copied=reader.progress)


class ManifestReplicator:
    """Upload a manifest exactly as it was fetched; nothing is re-signed or rewritten."""

    def __init__(self, destination: RegistryCapability, *, logger: Optional[logging.Logger] = None):
        self.destination = destination
        self.log = logger or logging.getLogger(__name__)

    def replicate_manifest(self, manifest_name: str, tag: str, manifest: Manifest) -> str:
        """
        Returns:
            Digest reported by the destination registry

        Raises:
            ManifestUploadError: If the destination rejects the manifest
        """
        try:
            digest = self.destination.put_manifest(manifest_name, tag, manifest)
        except RegistryError as e:
            raise ManifestUploadError(manifest_name, tag, e) from e
        self.log.debug(f"Destination stored manifest {manifest_name}:{tag} as {digest}")
        return digest


__all__ = ["LayerOutcome", "LayerResult", "LayerReplicator", "ManifestReplicator"]
