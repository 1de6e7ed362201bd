"""
Transfer progress reporting.

A ``ProgressReader`` wraps the source blob stream and hands cumulative byte
counts to an observer. Observers are purely cosmetic: anything they raise is
logged and dropped so rendering can never break a transfer. The reader also
carries the job's cancellation token, which is how an in-flight stream learns
that another layer has failed.

The text observer draws one tqdm bar per layer; tqdm's ``mininterval``
decides how often a bar is redrawn.
"""
from __future__ import annotations

import logging
import threading
from typing import BinaryIO, Callable, Optional, Protocol, TextIO

from tqdm import tqdm

from .errors import ReplicationCancelled

logger = logging.getLogger(__name__)


class ProgressObserver(Protocol):
    """Receives (bytes transferred so far, total bytes or -1 when unknown)."""

    def __call__(self, progress: int, total: int) -> None:
        ...


ObserverFactory = Callable[[str], ProgressObserver]


def null_observer(progress: int, total: int) -> None:
    """Observer that renders nothing."""


class TextProgressObserver:
    """Per-layer tqdm bar, written to stderr unless ``file`` says otherwise."""

    def __init__(self, label: str, file: Optional[TextIO] = None, interval_s: float = 1.0):
        self.label = label
        self.file = file
        self.interval_s = interval_s
        self._bar: Optional[tqdm] = None

    def render(self, progress: int, total: int, elapsed: float = 0.0) -> str:
        """Status line for the given counts, e.g. ``label: 50%|#####     | 512/1.00k``."""
        return tqdm.format_meter(
            progress, total if total >= 0 else None, elapsed,
            prefix=self.label, unit="B", unit_scale=True, unit_divisor=1024, ascii=True,
        )

    def __call__(self, progress: int, total: int) -> None:
        if self._bar is None:
            self._bar = tqdm(
                total=total if total >= 0 else None, desc=self.label,
                unit="B", unit_scale=True, unit_divisor=1024, ascii=True,
                mininterval=self.interval_s, file=self.file, leave=True,
            )
        if total >= 0 and self._bar.total != total:
            self._bar.total = total
        self._bar.update(progress - self._bar.n)
        if total >= 0 and progress >= total:
            self._bar.close()


def text_observer_factory(file: Optional[TextIO] = None, interval_s: float = 1.0) -> ObserverFactory:
    """Observer factory labelling each bar with the layer digest."""

    def make(digest: str) -> ProgressObserver:
        return TextProgressObserver(f"Uploading layer {digest}", file=file, interval_s=interval_s)

    return make


class ProgressReader:
    """
    Binary stream wrapper that counts bytes and notifies an observer.

    The observer sees the running total after every non-empty read, then once
    more when the stream is exhausted. At that point the total is known even
    if the registry did not declare one, so the final report carries it.
    """

    def __init__(self, stream: BinaryIO, size: int, observer: ProgressObserver, *,
                 cancel: Optional[threading.Event] = None):
        self._stream = stream
        self.size = size
        self.progress = 0
        self._observer = observer
        self._cancel = cancel
        self._finished = False

    def read(self, n: int = -1) -> bytes:
        if self._cancel is not None and self._cancel.is_set():
            raise ReplicationCancelled("Transfer cancelled")
        chunk = self._stream.read(n)
        if chunk:
            self.progress += len(chunk)
            self._report(self.size)
        elif not self._finished:
            self._finished = True
            self._report(self.size if self.size >= 0 else self.progress)
        return chunk

    def _report(self, total: int) -> None:
        try:
            self._observer(self.progress, total)
        except Exception as e:
            logger.debug(f"Progress observer failed: {e}")


__all__ = [
    "ProgressObserver",
    "ObserverFactory",
    "ProgressReader",
    "TextProgressObserver",
    "null_observer",
    "text_observer_factory",
]
