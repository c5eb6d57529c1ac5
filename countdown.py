import asyncio
import logging
from typing import Optional, Callable

logger = logging.getLogger(__name__)

IDLE = "idle"
TICKING = "ticking"
COMPLETE = "complete"


class Countdown:
    """Per-page countdown gate.

    Idle(seconds=N) -> Ticking -> Complete. ``on_complete`` fires exactly once,
    on the tick that brings ``remaining`` to zero; ticks after that are no-ops.
    """

    def __init__(self, seconds: int, on_complete: Optional[Callable[[], None]] = None):
        self.on_complete = on_complete
        self.reset(seconds)

    def reset(self, seconds: int) -> None:
        self.seconds = max(0, int(seconds or 0))
        self.remaining = self.seconds
        self.state = IDLE
        self._fired = False

    def start(self) -> None:
        if self.state != IDLE:
            return
        self.state = TICKING
        if self.remaining <= 0:
            self._complete()

    def tick(self) -> None:
        if self.state == IDLE:
            self.start()
        if self.state != TICKING:
            return
        self.remaining = max(0, self.remaining - 1)
        if self.remaining == 0:
            self._complete()

    def advance(self, elapsed_seconds: float) -> None:
        """Apply every whole second elapsed since the countdown started."""
        self.start()
        for _ in range(min(int(elapsed_seconds), self.remaining)):
            self.tick()

    def _complete(self) -> None:
        self.state = COMPLETE
        if self._fired:
            return
        self._fired = True
        logger.debug(f"Countdown of {self.seconds}s complete")
        if self.on_complete:
            self.on_complete()

    @property
    def complete(self) -> bool:
        return self.state == COMPLETE

    @property
    def progress(self) -> float:
        if self.seconds <= 0:
            return 100.0
        return (self.seconds - self.remaining) / self.seconds * 100

    async def run(self, interval: float = 1.0) -> None:
        # cancelling this task is the teardown path; completion does not fire
        self.start()
        while self.state == TICKING:
            await asyncio.sleep(interval)
            self.tick()
