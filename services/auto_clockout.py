"""
Per-session grace-period countdown.

Armed when a clocked-in worker leaves every work zone, cancelled when they
come back. Arming an armed timer does nothing (the clock is not reset);
cancelling an unarmed timer does nothing. While armed, `on_tick` is called
every `tick_seconds` with the seconds remaining, and `on_expire` is called
exactly once when the grace period runs out.
"""

import asyncio
import logging
from typing import Callable, Optional

logger = logging.getLogger(__name__)

DEFAULT_GRACE_SECONDS = 60.0


class AutoClockoutTimer:

    def __init__(self, tick_seconds: float = 1.0, name: str = "auto-clockout"):
        if tick_seconds <= 0:
            raise ValueError("tick_seconds must be positive")
        self.tick_seconds = tick_seconds
        self.name = name
        self._task: Optional[asyncio.Task] = None
        self._deadline: Optional[float] = None

    @property
    def is_armed(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def deadline(self) -> Optional[float]:
        """Event-loop time at which the countdown expires, None when unarmed."""
        return self._deadline if self.is_armed else None

    @property
    def seconds_remaining(self) -> float:
        if not self.is_armed:
            return 0.0
        return max(0.0, self._deadline - asyncio.get_running_loop().time())

    def arm(
        self,
        grace_seconds: float = DEFAULT_GRACE_SECONDS,
        on_tick: Optional[Callable[[float], None]] = None,
        on_expire: Optional[Callable[[], None]] = None,
    ) -> bool:
        """Start the countdown. Returns False if it was already running."""
        if self.is_armed:
            return False

        loop = asyncio.get_running_loop()
        self._deadline = loop.time() + grace_seconds
        self._task = loop.create_task(
            self._countdown(self._deadline, on_tick, on_expire),
            name=self.name,
        )
        logger.debug(f"[AUTO_CLOCKOUT] {self.name} armed for {grace_seconds}s")
        return True

    def cancel(self) -> bool:
        """Stop the countdown. Returns False if nothing was armed."""
        task = self._task
        self._task = None
        self._deadline = None
        if task is None or task.done():
            return False
        task.cancel()
        logger.debug(f"[AUTO_CLOCKOUT] {self.name} cancelled")
        return True

    async def _countdown(
        self,
        deadline: float,
        on_tick: Optional[Callable[[float], None]],
        on_expire: Optional[Callable[[], None]],
    ) -> None:
        loop = asyncio.get_running_loop()
        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            if on_tick is not None:
                try:
                    on_tick(round(remaining, 2))
                except Exception:
                    logger.exception(f"[AUTO_CLOCKOUT] {self.name} tick callback failed")
            await asyncio.sleep(min(self.tick_seconds, remaining))

        # Clear the handle before notifying so on_expire may re-arm
        if self._task is asyncio.current_task():
            self._task = None
            self._deadline = None
        logger.debug(f"[AUTO_CLOCKOUT] {self.name} expired")
        if on_expire is not None:
            on_expire()
