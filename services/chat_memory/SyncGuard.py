"""Mutual-exclusion guard for synchronization.

A single boolean flag, acquired by polling. Waiting callers are not queued:
a caller that cannot acquire within the timeout gets a BlockedError and is
expected to try again later.
"""

import asyncio
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable

from shared.exceptions import BlockedError
from shared.helper.HelperConfig import HelperConfig


class SyncGuard:
    def __init__(self, helper_config: HelperConfig, is_generating: Callable[[], bool] | None = None, timeout: float = 1.0, poll_interval: float = 0.1):
        self.logging = helper_config.get_logger()
        self._is_generating = is_generating
        self.timeout = timeout
        self.poll_interval = poll_interval
        self._locked = False

    def is_locked(self) -> bool:
        return self._locked

    def _is_busy(self) -> bool:
        return self._locked or (self._is_generating is not None and self._is_generating())

    async def acquire(self) -> None:
        """Waits until neither a sync nor a generation is in flight, then takes the flag.

        Raises:
            BlockedError: If the guard is still busy after the timeout.
        """
        deadline = time.monotonic() + self.timeout
        while self._is_busy():
            if time.monotonic() >= deadline:
                reason = "another synchronization" if self._locked else "a generation"
                raise BlockedError(
                    f"Could not start synchronization within {self.timeout:.1f}s: {reason} is in flight.",
                    operation="sync",
                )
            await asyncio.sleep(self.poll_interval)
        # no await between the check and the assignment, so no other task can interleave
        self._locked = True

    def release(self) -> None:
        self._locked = False

    @asynccontextmanager
    async def hold(self) -> AsyncIterator[None]:
        await self.acquire()
        try:
            yield
        finally:
            self.release()
