"""
Data models for manifest replication.

The job, manifest and work item types are frozen dataclasses. Manifest
documents are parsed with Pydantic models only to discover which blobs they
reference; the raw payload is kept untouched and is what gets uploaded, so a
schema1 JWS signature survives the copy.
"""
from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from typing import List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import UnsupportedMediaType

# Manifest media types
SCHEMA1_MANIFEST = "application/vnd.docker.distribution.manifest.v1+json"
SCHEMA1_SIGNED_MANIFEST = "application/vnd.docker.distribution.manifest.v1+prettyjws"
SCHEMA2_MANIFEST = "application/vnd.docker.distribution.manifest.v2+json"
OCI_IMAGE_MANIFEST = "application/vnd.oci.image.manifest.v1+json"

# Multi-platform lists: not replicable as a single manifest
SCHEMA2_MANIFEST_LIST = "application/vnd.docker.distribution.manifest.list.v2+json"
OCI_IMAGE_INDEX = "application/vnd.oci.image.index.v1+json"

# Sent as the Accept header when fetching, in order of preference
ACCEPTED_MANIFEST_TYPES = [
    SCHEMA2_MANIFEST,
    OCI_IMAGE_MANIFEST,
    SCHEMA1_SIGNED_MANIFEST,
    SCHEMA1_MANIFEST,
]

SCHEMA1_TYPES = {SCHEMA1_MANIFEST, SCHEMA1_SIGNED_MANIFEST}
IMAGE_MANIFEST_TYPES = {SCHEMA2_MANIFEST, OCI_IMAGE_MANIFEST}
LIST_TYPES = {SCHEMA2_MANIFEST_LIST, OCI_IMAGE_INDEX}


class FSLayer(BaseModel):
    """Layer entry of a schema1 manifest."""
    blob_sum: str = Field(..., alias="blobSum")


class Schema1Manifest(BaseModel):
    """Docker image manifest, schema version 1 (optionally JWS-signed)."""
    model_config = ConfigDict(populate_by_name=True)

    schema_version: Literal[1] = Field(..., alias="schemaVersion")
    name: Optional[str] = None
    tag: Optional[str] = None
    fs_layers: List[FSLayer] = Field(..., alias="fsLayers")


class Descriptor(BaseModel):
    """Content descriptor used by schema2 and OCI manifests."""
    model_config = ConfigDict(populate_by_name=True)

    media_type: Optional[str] = Field(default=None, alias="mediaType")
    digest: str
    size: Optional[int] = None


class ImageManifest(BaseModel):
    """Docker schema2 or OCI image manifest."""
    model_config = ConfigDict(populate_by_name=True)

    schema_version: Literal[2] = Field(..., alias="schemaVersion")
    media_type: Optional[str] = Field(default=None, alias="mediaType")
    config: Descriptor
    layers: List[Descriptor] = Field(default_factory=list)


@dataclass(frozen=True)
class LayerRef:
    """A blob referenced by a manifest, identified by its digest."""
    digest: str
    size: Optional[int] = None
    media_type: Optional[str] = None


@dataclass(frozen=True)
class WorkItem:
    """One layer queued for replication; ``index`` is its position in the manifest."""
    index: int
    layer: LayerRef


@dataclass(frozen=True)
class ReplicationJob:
    """
    One replication request.

    Invariants:
    - manifest_name and manifest_tag are non-empty
    - concurrency >= 1 (zero workers would let the manifest be uploaded
      without any of its layers having been copied)
    """
    manifest_name: str
    manifest_tag: str
    concurrency: int = 4

    def __post_init__(self):
        if not self.manifest_name:
            raise ValueError("manifest_name is required")
        if not self.manifest_tag:
            raise ValueError("manifest_tag is required")
        if self.concurrency < 1:
            raise ValueError(f"concurrency must be at least 1, got {self.concurrency}")


@dataclass(frozen=True)
class Manifest:
    """
    A manifest exactly as served by the source registry.

    ``payload`` is never re-serialized. ``layers`` lists every blob the
    destination must hold before it will accept the manifest, in document
    order, duplicates included.
    """
    name: str
    tag: str
    media_type: str
    payload: bytes = field(repr=False)
    layers: Tuple[LayerRef, ...] = ()

    @property
    def digest(self) -> str:
        """Canonical digest of the payload."""
        return f"sha256:{hashlib.sha256(self.payload).hexdigest()}"

    @classmethod
    def from_payload(cls, name: str, tag: str, payload: bytes,
                     media_type: Optional[str] = None) -> Manifest:
        """
        Build a Manifest from raw registry bytes.

        Args:
            name: Repository name
            tag: Tag the manifest was fetched under
            payload: Raw manifest body
            media_type: Content-Type reported by the registry, if any

        Raises:
            UnsupportedMediaType: For manifest lists, unknown schemas or
                documents that do not parse
        """
        try:
            document = json.loads(payload)
        except (ValueError, UnicodeDecodeError) as e:
            raise UnsupportedMediaType(f"Invalid JSON in manifest {name}:{tag}: {e}")
        if not isinstance(document, dict):
            raise UnsupportedMediaType(f"Manifest {name}:{tag} is not a JSON object")

        media_type = _detect_media_type(document, media_type)
        if media_type in LIST_TYPES:
            raise UnsupportedMediaType(
                f"Manifest {name}:{tag} is a manifest list ({media_type}); "
                f"replicate a platform-specific manifest instead"
            )

        try:
            if media_type in SCHEMA1_TYPES:
                parsed = Schema1Manifest.model_validate(document)
                layers = tuple(LayerRef(digest=fs.blob_sum) for fs in parsed.fs_layers)
            elif media_type in IMAGE_MANIFEST_TYPES:
                image = ImageManifest.model_validate(document)
                descriptors = [image.config] + list(image.layers)
                layers = tuple(
                    LayerRef(digest=d.digest, size=d.size, media_type=d.media_type)
                    for d in descriptors
                )
            else:
                raise UnsupportedMediaType(
                    f"Unsupported manifest media type: {media_type}. "
                    f"Expected one of: {', '.join(ACCEPTED_MANIFEST_TYPES)}"
                )
        except ValidationError as e:
            raise UnsupportedMediaType(f"Malformed manifest {name}:{tag}: {e}") from e

        return cls(name=name, tag=tag, media_type=media_type, payload=payload, layers=layers)


def _detect_media_type(document: dict, reported: Optional[str]) -> str:
    """Pick the manifest media type from the Content-Type header or the document itself."""
    if reported:
        reported = reported.split(";", 1)[0].strip()
    if reported and reported not in ("application/json", "text/plain", "application/octet-stream"):
        return reported

    # Registries serving files directly may not report a useful type
    declared = document.get("mediaType")
    if declared:
        return declared
    if document.get("schemaVersion") == 1:
        return SCHEMA1_SIGNED_MANIFEST if "signatures" in document else SCHEMA1_MANIFEST
    if "manifests" in document:
        return OCI_IMAGE_INDEX
    return OCI_IMAGE_MANIFEST


__all__ = [
    "ACCEPTED_MANIFEST_TYPES",
    "SCHEMA1_MANIFEST",
    "SCHEMA1_SIGNED_MANIFEST",
    "SCHEMA2_MANIFEST",
    "SCHEMA2_MANIFEST_LIST",
    "OCI_IMAGE_MANIFEST",
    "OCI_IMAGE_INDEX",
    "LayerRef",
    "WorkItem",
    "ReplicationJob",
    "Manifest",
]
