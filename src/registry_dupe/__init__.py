"""
registry-dupe: copy a tagged image manifest and its layers between registries.

The manifest is uploaded byte-identical to what the source served, so any
embedded signature stays valid.
"""
__version__ = "0.1.0"

from .errors import (
    AuthenticationError,
    LayerExistenceCheckError,
    LayerTransferError,
    ManifestFetchError,
    ManifestUploadError,
    ReplicationCancelled,
    ReplicationError,
)
from .models import LayerRef, Manifest, ReplicationJob, WorkItem
from .orchestrator import ReplicationOrchestrator, ReplicationResult

__all__ = [
    "__version__",
    "AuthenticationError",
    "LayerExistenceCheckError",
    "LayerTransferError",
    "ManifestFetchError",
    "ManifestUploadError",
    "ReplicationCancelled",
    "ReplicationError",
    "LayerRef",
    "Manifest",
    "ReplicationJob",
    "WorkItem",
    "ReplicationOrchestrator",
    "ReplicationResult",
]
