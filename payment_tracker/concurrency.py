"""
Generation Concurrency Gate

Keeps a process from running two generation passes at once. A trigger
that arrives while a pass is in flight is dropped, not queued.

The gate is an object handed to the orchestrator rather than module
state, so a host can give each tenant its own gate. It does not protect
against other processes writing to the same storage.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator


class ConcurrencyGate:
    """Non-blocking, non-reentrant latch for generation passes."""

    def __init__(self):
        self._busy = False

    @property
    def is_busy(self) -> bool:
        return self._busy

    @asynccontextmanager
    async def try_acquire(self) -> AsyncIterator[bool]:
        """
        Try to take the gate for the duration of the block.

        Yields True when the caller owns the gate and False when another
        pass holds it. The gate is released on every exit path, including
        exceptions, but only by the caller that took it.

        Usage:
            async with gate.try_acquire() as acquired:
                if not acquired:
                    return
                ...
        """
        # Check-and-set happens without an await in between, so it is atomic
        # for coroutines on one event loop
        if self._busy:
            yield False
            return

        self._busy = True
        try:
            yield True
        finally:
            self._busy = False


# Shared by the default orchestrator
default_gate = ConcurrencyGate()
