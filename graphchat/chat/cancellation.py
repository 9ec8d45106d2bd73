"""Cooperative cancellation token shared by the controller, drivers and tools."""

from __future__ import annotations


class CancellationToken:
    """Flag polled at every suspension point of a turn.

    Setting it never interrupts an in-flight request; consumers check it and
    stop processing further results.
    """

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled
