"""Single handle on the auth lifecycle, owned by the application root."""

import asyncio
from typing import Callable, Optional

from infrastructure.identity.base import IdentityProvider
from use_cases import auth_flow
from use_cases.auth_flow import SignInResult
from use_cases.role_resolver import RoleResolver
from use_cases.session_models import SessionState
from use_cases.session_reconciler import SessionReconciler
from use_cases.session_store import SessionStore
from use_cases.watchdog import AUTH_WATCHDOG_SECONDS


class AuthContext:
    def __init__(
        self,
        identity: IdentityProvider,
        resolver: RoleResolver,
        store: Optional[SessionStore] = None,
        watchdog_timeout: float = AUTH_WATCHDOG_SECONDS,
    ):
        self.identity = identity
        self.store = store if store is not None else SessionStore()
        self.reconciler = SessionReconciler(self.store, identity, resolver, watchdog_timeout=watchdog_timeout)

    @property
    def state(self) -> SessionState:
        return self.store.state

    @property
    def is_authenticated(self) -> bool:
        return self.store.state.is_authenticated

    @property
    def is_admin(self) -> bool:
        return self.store.state.is_admin

    def subscribe(self, listener: Callable[[SessionState], None]) -> Callable[[], None]:
        return self.store.subscribe(listener)

    async def start(self) -> None:
        await self.reconciler.start()

    async def close(self) -> None:
        await self.reconciler.teardown()
        self.identity.close()

    async def sign_in(self, email: str, password: str) -> SignInResult:
        return await auth_flow.sign_in(self.identity, email, password)

    async def sign_out(self) -> None:
        await auth_flow.sign_out(self.identity, self.store)

    async def wait_until_ready(self, timeout: Optional[float] = None) -> SessionState:
        """Wait for the loading phase to end. Returns the state at that moment."""
        if not self.store.state.loading:
            return self.store.state

        ready = asyncio.Event()

        def listener(state: SessionState) -> None:
            if not state.loading:
                ready.set()

        unsubscribe = self.store.subscribe(listener)
        try:
            await asyncio.wait_for(ready.wait(), timeout=timeout)
        finally:
            unsubscribe()
        return self.store.state
