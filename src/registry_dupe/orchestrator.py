"""
Replication orchestrator.

Drives one job end to end:

1. fetch the manifest from the source
2. feed one work item per referenced blob into a bounded queue drained by a
   fixed pool of worker threads
3. join every worker
4. upload the manifest, but only if every layer was replicated

The orchestrator is the only place that decides to abort. The first worker
failure is recorded and sets a cancellation event; the producer stops
queueing, idle workers discard what is left in the queue, and in-flight
streams stop at their next read. Once all workers have exited the first
failure is raised and the manifest is never uploaded, so the destination
never references a manifest whose layers are missing.
"""
from __future__ import annotations

import logging
import queue
import threading
from dataclasses import dataclass
from typing import List, Optional, Tuple

from .errors import (
    LayerTransferError,
    ManifestFetchError,
    RegistryError,
    ReplicationCancelled,
    ReplicationError,
)
from .models import Manifest, ReplicationJob, WorkItem
from .progress import ObserverFactory
from .replicator import LayerOutcome, LayerReplicator, LayerResult, ManifestReplicator
from .settings import DEFAULT_CONCURRENCY
from .storage.registry import RegistryCapability

logger = logging.getLogger(__name__)

# Bounds queued work items independently of manifest size
DEFAULT_QUEUE_SIZE = 64

# Queue close marker, one per worker
_STOP = object()


@dataclass(frozen=True)
class ReplicationResult:
    """Summary of a completed job."""
    manifest_name: str
    manifest_tag: str
    manifest_digest: str
    layers: Tuple[LayerResult, ...]

    @property
    def layers_copied(self) -> int:
        return sum(1 for r in self.layers if r.outcome is LayerOutcome.COPIED)

    @property
    def layers_skipped(self) -> int:
        return sum(1 for r in self.layers if r.outcome is LayerOutcome.SKIPPED)

    @property
    def bytes_copied(self) -> int:
        return sum(r.bytes_copied for r in self.layers)


class ReplicationOrchestrator:
    """
    Copy a manifest and its layers between two registries.

    Example:
        >>> orchestrator = ReplicationOrchestrator(source, destination, concurrency=4)
        >>> result = orchestrator.copy("library/alpine", "3.19")
    """

    def __init__(self, source: RegistryCapability, destination: RegistryCapability,
                 concurrency: int = DEFAULT_CONCURRENCY, *,
                 observer_factory: Optional[ObserverFactory] = None,
                 queue_size: int = DEFAULT_QUEUE_SIZE,
                 logger: Optional[logging.Logger] = None):
        """
        Args:
            source: Connected handle for the source registry
            destination: Connected handle for the destination registry
            concurrency: Number of layer-copy workers (>= 1)
            observer_factory: Builds a progress observer per layer digest
            queue_size: Capacity of the work queue
            logger: Logger to use instead of the module logger

        Raises:
            ValueError: If concurrency or queue_size is less than 1
        """
        if concurrency < 1:
            raise ValueError(f"concurrency must be at least 1, got {concurrency}")
        if queue_size < 1:
            raise ValueError(f"queue_size must be at least 1, got {queue_size}")

        self.source = source
        self.destination = destination
        self.concurrency = concurrency
        self.queue_size = queue_size
        self.log = logger or logging.getLogger(__name__)
        self.layer_replicator = LayerReplicator(
            source, destination,
            observer_factory=observer_factory,
            logger=self.log,
        )
        self.manifest_replicator = ManifestReplicator(destination, logger=self.log)

    def copy(self, manifest_name: str, tag: str) -> ReplicationResult:
        """
        Replicate ``manifest_name:tag`` from source to destination.

        Returns:
            ReplicationResult with per-layer outcomes and the manifest digest

        Raises:
            ValueError: If the name or tag is empty
            ManifestFetchError: If the source manifest cannot be retrieved
            LayerExistenceCheckError: If checking a layer at the destination fails
            LayerTransferError: If copying a layer fails
            ManifestUploadError: If the destination rejects the manifest
        """
        job = ReplicationJob(manifest_name=manifest_name, manifest_tag=tag,
                             concurrency=self.concurrency)

        try:
            manifest = self.source.fetch_manifest(job.manifest_name, job.manifest_tag)
        except RegistryError as e:
            raise ManifestFetchError(job.manifest_name, job.manifest_tag, e) from e

        self.log.debug("Retrieved source manifest successfully.")
        self.log.info(f"Replicating {len(manifest.layers)} layers of {manifest_name}:{tag} "
                      f"with {job.concurrency} workers")

        results = self._replicate_layers(job, manifest)

        self.log.info("Uploading manifest...")
        digest = self.manifest_replicator.replicate_manifest(
            job.manifest_name, job.manifest_tag, manifest
        )

        # Report in manifest order regardless of completion order
        ordered = tuple(result for _, result in sorted(results, key=lambda pair: pair[0]))
        return ReplicationResult(
            manifest_name=job.manifest_name,
            manifest_tag=job.manifest_tag,
            manifest_digest=digest,
            layers=ordered,
        )

    def _replicate_layers(self, job: ReplicationJob,
                          manifest: Manifest) -> List[Tuple[int, LayerResult]]:
        """Run the worker pool; returns (index, result) pairs or raises the first failure."""
        tasks: queue.Queue = queue.Queue(maxsize=self.queue_size)
        cancel = threading.Event()
        lock = threading.Lock()
        failures: List[ReplicationError] = []
        results: List[Tuple[int, LayerResult]] = []

        def fail(item: WorkItem, exc: ReplicationError) -> None:
            with lock:
                first = not failures
                if first:
                    failures.append(exc)
            cancel.set()
            if first:
                self.log.error(f"#{item.index}: {exc}; cancelling remaining layers")
            else:
                self.log.debug(f"#{item.index}: additional failure after cancellation: {exc}")

        def worker() -> None:
            while True:
                item = tasks.get()
                if item is _STOP:
                    return
                if cancel.is_set():
                    continue
                try:
                    result = self.layer_replicator.replicate_layer(
                        job.manifest_name, item.layer, index=item.index, cancel=cancel
                    )
                except ReplicationCancelled:
                    continue
                except ReplicationError as e:
                    fail(item, e)
                    continue
                except Exception as e:
                    wrapped = LayerTransferError(item.layer.digest, e)
                    wrapped.__cause__ = e
                    fail(item, wrapped)
                    continue
                with lock:
                    results.append((item.index, result))

        workers = [
            threading.Thread(target=worker, name=f"layer-worker-{i}", daemon=True)
            for i in range(job.concurrency)
        ]
        for thread in workers:
            thread.start()

        try:
            for index, layer in enumerate(manifest.layers):
                if cancel.is_set():
                    break
                tasks.put(WorkItem(index=index, layer=layer))
        except BaseException:
            cancel.set()
            raise
        finally:
            # Close the queue even if the producer was interrupted
            for _ in workers:
                tasks.put(_STOP)
            for thread in workers:
                thread.join()

        if failures:
            raise failures[0]
        return results


__all__ = ["ReplicationOrchestrator", "ReplicationResult", "DEFAULT_QUEUE_SIZE"]
