# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Two-party rendezvous used to pace the device against the routing hub.

The sequencer waits once after every device publish and the hub waits once
after applying it, so neither side can run ahead by more than one logical
event.  The barrier is reusable across iterations and has no timeout of its
own; an overall deadline is the caller's concern.
"""

from __future__ import annotations

import asyncio
import logging

__all__ = ["Rendezvous"]

_logger = logging.getLogger("hub_e2e.barrier")


class Rendezvous:
    """Reusable barrier releasing both parties once both have arrived."""

    __slots__ = ("_barrier", "_generation", "name")

    def __init__(self, name: str = "rendezvous") -> None:
        """Create a two-party barrier."""
        self.name = name
        self._barrier = asyncio.Barrier(2)
        self._generation = 0

    @property
    def generation(self) -> int:
        """Number of completed rendezvous so far."""
        return self._generation

    @property
    def broken(self) -> bool:
        """Whether :meth:`abort` was called."""
        return self._barrier.broken

    async def wait(self, party: str = "") -> int:
        """Block until the counterpart arrives.

        Returns:
            The generation number of the rendezvous just completed (starting at 1).

        Raises:
            asyncio.BrokenBarrierError: If the barrier was aborted.

        """
        index = await self._barrier.wait()
        # The last party to arrive resumes before the one it released.
        if index == 1:
            self._generation += 1
        _logger.debug("%s passed rendezvous %d", party or "party", self._generation, extra={"barrier": self.name})
        return self._generation

    async def abort(self) -> None:
        """Break the barrier, waking any waiter with ``BrokenBarrierError``.

        :func:`~hub_e2e.runner.run_e2e` calls this after a failed run.
        """
        await self._barrier.abort()
