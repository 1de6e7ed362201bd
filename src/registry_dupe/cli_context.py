"""
CLI Context for managing application dependencies.

Holds the settings and the two registry handles for a single command run,
avoiding global state and keeping dependency injection explicit.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Tuple

from .errors import AuthenticationError, RegistryError
from .settings import Settings
from .storage.registry_http import RegistryHTTP, connect

logger = logging.getLogger(__name__)


@dataclass
class CLIContext:
    """
    Shared context for a CLI command.

    Registry handles are connected on first access and reused. Use the
    context as a context manager so both HTTP clients get closed.
    """
    settings: Settings
    _source: Optional[RegistryHTTP] = None
    _destination: Optional[RegistryHTTP] = None

    @property
    def source(self) -> RegistryHTTP:
        """Connected source registry handle."""
        if self._source is None:
            self._source = self._connect(
                self.settings.source_url, self.settings.source_user, self.settings.source_pass
            )
        return self._source

    @property
    def destination(self) -> RegistryHTTP:
        """Connected destination registry handle."""
        if self._destination is None:
            self._destination = self._connect(
                self.settings.dest_url, self.settings.dest_user, self.settings.dest_pass
            )
        return self._destination

    def open_registries(self) -> Tuple[RegistryHTTP, RegistryHTTP]:
        """Connect both registries, source first."""
        return self.source, self.destination

    def _connect(self, url: str, username: Optional[str], password: Optional[str]) -> RegistryHTTP:
        logger.info(f"Connecting to registry {url}")
        try:
            return connect(
                url, username, password,
                insecure=self.settings.insecure,
                timeout_s=self.settings.http_timeout_s,
                retries=self.settings.http_retry,
            )
        except RegistryError as e:
            raise AuthenticationError(url, e) from e

    def close(self) -> None:
        for handle in (self._source, self._destination):
            if handle is not None:
                handle.close()
        self._source = None
        self._destination = None

    def __enter__(self) -> CLIContext:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
