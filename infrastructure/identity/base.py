"""Identity provider contract consumed by the auth lifecycle."""

import logging
from dataclasses import dataclass
from typing import Callable, Optional, Protocol

from use_cases.session_models import AuthChangeEvent, Session

log = logging.getLogger(__name__)

SessionChangeCallback = Callable[[AuthChangeEvent, Optional[Session]], None]


class AuthApiError(Exception):
    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status = status


@dataclass(frozen=True)
class SignInResponse:
    session: Optional[Session] = None
    error: Optional[AuthApiError] = None


@dataclass(frozen=True)
class SignOutResponse:
    error: Optional[AuthApiError] = None


class Subscription:
    """Cancellable handle returned by ``on_session_change``."""

    def __init__(self, on_unsubscribe: Callable[[], None]):
        self._on_unsubscribe = on_unsubscribe
        self.active = True

    def unsubscribe(self) -> None:
        if not self.active:
            return
        self.active = False
        self._on_unsubscribe()


class IdentityProvider(Protocol):
    async def get_current_session(self) -> Optional[Session]:
        ...

    def on_session_change(self, callback: SessionChangeCallback) -> Subscription:
        ...

    async def sign_in_with_password(self, email: str, password: str) -> SignInResponse:
        ...

    async def sign_out(self) -> SignOutResponse:
        ...

    def close(self) -> None:
        """Release background work such as scheduled token refreshes."""
        ...


class SessionChangeNotifier:
    """Fan-out of session change events to registered callbacks."""

    def __init__(self):
        self._callbacks = []

    def subscribe(self, callback: SessionChangeCallback) -> Subscription:
        self._callbacks.append(callback)

        def remove() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return Subscription(remove)

    def emit(self, event: AuthChangeEvent, session: Optional[Session]) -> None:
        for callback in list(self._callbacks):
            try:
                callback(event, session)
            except Exception:
                log.exception("Session change subscriber failed on %s", event)

    def __len__(self) -> int:
        return len(self._callbacks)
