"""Process-wide holder of the authentication state.

The store is created once by the application root and handed to whoever needs
to read or mutate it. All mutations go through the methods below, each of which
swaps the frozen ``SessionState`` and notifies subscribers synchronously.
"""

import logging
from typing import Callable, List, Optional

from use_cases import session_models
from use_cases.session_models import Session, SessionState

log = logging.getLogger(__name__)

StateListener = Callable[[SessionState], None]


class SessionStore:
    def __init__(self, state: Optional[SessionState] = None):
        self._state = state if state is not None else session_models.initial_state()
        self._listeners: List[StateListener] = []
        self.version = 0

    @property
    def state(self) -> SessionState:
        return self._state

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def apply_session(self, session: Optional[Session]) -> SessionState:
        return self._commit(session_models.apply_session(self._state, session))

    def set_role(self, role: Optional[str]) -> SessionState:
        return self._commit(session_models.set_role(self._state, role))

    def clear_loading(self) -> SessionState:
        return self._commit(session_models.clear_loading(self._state))

    def reset(self) -> SessionState:
        return self._commit(session_models.reset())

    def _commit(self, new_state: SessionState) -> SessionState:
        self._state = new_state
        self.version += 1
        for listener in list(self._listeners):
            try:
                listener(new_state)
            except Exception:
                log.exception("Session state listener failed")
        return new_state
