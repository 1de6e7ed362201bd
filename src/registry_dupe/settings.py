"""
Settings and configuration for registry-dupe.

Centralizes configuration values and provides validation with fail-fast behavior.
Values arrive through the CLI, where every option can also be set with a
REGISTRY_DUPE_* environment variable.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

__all__ = ["Settings", "DEFAULT_CONCURRENCY"]

DEFAULT_CONCURRENCY = 4

# host[:port] or http(s)://host[:port][/path]
_URL_PATTERN = re.compile(r"^(?:https?://)?[a-zA-Z0-9.-]+(?::[0-9]+)?(?:/.*)?$")


@dataclass(frozen=True)
class Settings:
    """
    Configuration for one replication run.

    Registry settings:
        source_url: Source registry URL (required)
        dest_url: Destination registry URL (required)
        source_user / source_pass: Credentials for the source registry
        dest_user / dest_pass: Credentials for the destination registry
        insecure: Allow plain HTTP and skip TLS verification
        http_timeout_s: HTTP request timeout in seconds
        http_retry: Extra attempts for idempotent metadata requests on
            timeouts (0 = no retry). Blob transfers are never retried.

    Job settings:
        concurrency: Number of layer-copy workers (>= 1)
        progress_interval_s: Minimum seconds between progress updates
    """
    source_url: str
    dest_url: str
    source_user: Optional[str] = None
    source_pass: Optional[str] = None
    dest_user: Optional[str] = None
    dest_pass: Optional[str] = None
    insecure: bool = False
    http_timeout_s: float = 30.0
    http_retry: int = 0
    concurrency: int = DEFAULT_CONCURRENCY
    progress_interval_s: float = 1.0

    def __post_init__(self):
        """Validate settings on construction."""
        for label, url in (("source_url", self.source_url), ("dest_url", self.dest_url)):
            if not url:
                raise ValueError(f"{label} is required")
            if not _URL_PATTERN.match(url):
                raise ValueError(f"Invalid {label} format: {url}")

        if self.concurrency < 1:
            raise ValueError(f"concurrency must be at least 1, got {self.concurrency}")

        if self.http_timeout_s <= 0:
            raise ValueError(f"http_timeout_s must be positive, got {self.http_timeout_s}")

        if self.http_retry < 0:
            raise ValueError(f"http_retry must be non-negative, got {self.http_retry}")

        if self.progress_interval_s < 0:
            raise ValueError(f"progress_interval_s must be non-negative, got {self.progress_interval_s}")

        # A password without a username can never be sent
        if self.source_pass and not self.source_user:
            raise ValueError("source_pass specified but source_user is missing")
        if self.dest_pass and not self.dest_user:
            raise ValueError("dest_pass specified but dest_user is missing")

