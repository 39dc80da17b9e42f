"""Local ICE candidate collection for one negotiation round."""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import List, Optional

from ..errors import GatherTimeoutError
from ..net.protocol import IceCandidateDict


logger = logging.getLogger(__name__)


DEFAULT_GATHER_TIMEOUT = 10.0
DEFAULT_GATHER_INTERVAL = 0.2

# Pushed by the transport once candidate discovery is complete.
END_OF_CANDIDATES = None


class CandidateGatherer:
    """Pending queue fed by the transport, drained by `gather()`.

    The transport may push from any thread; the queue is lock protected.
    """

    def __init__(self, interval: float = DEFAULT_GATHER_INTERVAL):
        self.interval = interval
        self._pending: List[Optional[IceCandidateDict]] = []
        self._lock = threading.Lock()

    def push(self, candidate: Optional[IceCandidateDict]) -> None:
        with self._lock:
            self._pending.append(candidate)

    def end(self) -> None:
        self.push(END_OF_CANDIDATES)

    def reset(self) -> None:
        with self._lock:
            self._pending = []

    def __len__(self) -> int:
        with self._lock:
            return len(self._pending)

    def _take_if_complete(self) -> Optional[List[IceCandidateDict]]:
        with self._lock:
            if not any(c is END_OF_CANDIDATES for c in self._pending):
                return None
            collected, self._pending = self._pending, []
        return [c for c in collected if c is not END_OF_CANDIDATES]

    async def gather(self, timeout: float = DEFAULT_GATHER_TIMEOUT) -> List[IceCandidateDict]:
        """Wait for the end-of-candidates marker and return what was collected.

        Raises GatherTimeoutError if the marker does not show up within
        `timeout` seconds; the queue is left untouched in that case.
        """

        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            candidates = self._take_if_complete()
            if candidates is not None:
                logger.debug("gather complete candidates=%s", len(candidates))
                return candidates

            remaining = deadline - loop.time()
            if remaining <= 0:
                logger.warning("gather timed out after %.1fs pending=%s", timeout, len(self))
                raise GatherTimeoutError(f"no end-of-candidates within {timeout}s")
            await asyncio.sleep(min(self.interval, remaining))
