from __future__ import annotations

import asyncio


class StopToken:
    """Cooperative stop flag shared between the signal handler and the runner.

    The runner only samples it at series, event and document boundaries; setting it
    never interrupts a unit of work that has already started. ``set`` must be called
    on the event loop's thread, which is where loop signal handlers run.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    def set(self, reason: str = "requested") -> None:
        if self.reason is None:
            self.reason = reason
        self._event.set()

    def is_set(self) -> bool:
        return self._event.is_set()

    async def wait(self, timeout: float) -> bool:
        """Sleep up to ``timeout`` seconds, returning early (True) once the token is set."""
        if self._event.is_set():
            return True
        if timeout <= 0:
            return False
        try:
            await asyncio.wait_for(self._event.wait(), timeout)
        except TimeoutError:
            return False
        return True
