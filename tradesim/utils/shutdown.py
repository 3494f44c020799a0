"""
Process-exit callbacks.

The live engine queues notifications during a run and must deliver
them once when the process ends, whether the run finished normally or
died with an unhandled exception.  `ShutdownScheduler` registers a
single `atexit` hook and runs the queued callbacks from it.
"""

from __future__ import annotations

import atexit
import logging
from typing import Any, Callable, List, Tuple

logger = logging.getLogger(__name__)


class ShutdownScheduler:
    """Run registered callbacks once, at interpreter exit."""

    def __init__(self, register_atexit: bool = True) -> None:
        self._callbacks: List[Tuple[Callable[..., Any], Tuple[Any, ...]]] = []
        self._fired = False
        if register_atexit:
            atexit.register(self.run_callbacks)

    def register(self, callback: Callable[..., Any], *args: Any) -> None:
        if not callable(callback):
            raise TypeError(f"Shutdown callback is not callable: {callback!r}")
        self._callbacks.append((callback, args))

    @property
    def fired(self) -> bool:
        return self._fired

    def run_callbacks(self) -> None:
        """Run every callback in registration order; later calls are no-ops.

        A failing callback is logged and does not prevent the others
        from running.
        """
        if self._fired:
            return
        self._fired = True
        for callback, args in self._callbacks:
            try:
                callback(*args)
            except Exception:
                logger.exception("Shutdown callback %r failed", callback)
