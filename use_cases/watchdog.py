"""One-shot timer that forces the bootstrap loading phase to end."""

import asyncio
import logging
from typing import Callable, Optional

from use_cases.cancellation import CancellationToken

log = logging.getLogger(__name__)

AUTH_WATCHDOG_SECONDS = 5.0


class SafetyWatchdog:
    def __init__(
        self,
        on_timeout: Callable[[], object],
        token: CancellationToken,
        timeout: float = AUTH_WATCHDOG_SECONDS,
    ):
        self.on_timeout = on_timeout
        self.token = token
        self.timeout = timeout
        self.fired = False
        self._handle: Optional[asyncio.TimerHandle] = None

    @property
    def armed(self) -> bool:
        return self._handle is not None

    def start(self) -> None:
        """Arm the timer on the running loop. Must be called from a coroutine."""
        if self._handle is not None or self.fired:
            return
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self.timeout, self._fire)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self) -> None:
        self._handle = None
        if self.token.cancelled:
            return
        self.fired = True
        log.warning("[auth] SAFETY TIMEOUT: force clearing loading state after %.1fs", self.timeout)
        self.on_timeout()
