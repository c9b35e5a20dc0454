"""
Session lifecycle orchestration.

Two sources feed the session store: a one-off probe of the current session at
startup and the identity provider's change stream. Both go through
``reconcile``. Each call is stamped with a generation number and a role lookup
result is only applied while its generation is still the newest one, so the
store always converges to the last observed session whatever the arrival order.
A safety watchdog ends the loading phase if nothing else does in time.
"""

import asyncio
import logging
from typing import Optional, Set

from infrastructure.identity.base import IdentityProvider, Subscription
from use_cases.cancellation import CancellationToken
from use_cases.role_resolver import RoleResolver
from use_cases.session_models import AuthChangeEvent, Session, SessionState
from use_cases.session_store import SessionStore
from use_cases.watchdog import AUTH_WATCHDOG_SECONDS, SafetyWatchdog

log = logging.getLogger(__name__)


class SessionReconciler:
    def __init__(
        self,
        store: SessionStore,
        identity: IdentityProvider,
        resolver: RoleResolver,
        watchdog_timeout: float = AUTH_WATCHDOG_SECONDS,
    ):
        self.store = store
        self.identity = identity
        self.resolver = resolver
        self.token = CancellationToken()
        self.watchdog = SafetyWatchdog(self.store.clear_loading, self.token, timeout=watchdog_timeout)
        self.subscription: Optional[Subscription] = None
        self.started = False
        self._generation = 0
        self._tasks: Set[asyncio.Task] = set()
        self._unwatch_store = None

    async def start(self) -> None:
        """Run the bootstrap. Never raises; a failure leaves a usable signed-out state."""
        if self.started:
            return
        self.started = True
        log.info("[auth] Initializing session lifecycle")

        self._unwatch_store = self.store.subscribe(self._on_state_change)
        self.watchdog.start()
        try:
            log.info("[auth] Setting up session change listener")
            self.subscription = self.identity.on_session_change(self._on_session_change)

            log.info("[auth] Getting initial session")
            try:
                session = await self.identity.get_current_session()
            except Exception as e:
                if self.token.cancelled:
                    return
                log.error("[auth] Error getting initial session: %s", e)
                session = None
            else:
                log.info("[auth] Initial session retrieved: %s", session is not None)

            if self.token.cancelled:
                return
            await self.reconcile(session, "initial")
        except Exception:
            if self.token.cancelled:
                return
            log.exception("[auth] Fatal error during auth initialization")
            self.store.clear_loading()

    async def reconcile(self, session: Optional[Session], source: str) -> None:
        if self.token.cancelled:
            return
        self._generation += 1
        generation = self._generation
        log.info("[auth] Session update from %s: %s", source, session is not None)

        previous = self.store.state
        self.store.apply_session(session)

        if session is None or session.principal is None:
            log.info("[auth] No session, clearing role and loading")
            self.store.set_role(None)
            return

        try:
            role = await self.resolver.resolve_role(session.principal.id, self.token)
        except Exception as e:
            log.error("[auth] Failed to fetch user role: %s", e)
            # Same principal keeps its role rather than flicker to "no role".
            same_principal = previous.principal is not None and previous.principal.id == session.principal.id
            role = previous.role if same_principal else None

        if self.token.cancelled:
            log.info("[auth] Dropping role result from %s, lifecycle torn down", source)
            return
        if generation != self._generation:
            log.info("[auth] Dropping stale role result from %s", source)
            return
        self.store.set_role(role)

    def _on_session_change(self, event: AuthChangeEvent, session: Optional[Session]) -> None:
        if self.token.cancelled:
            return
        log.info("[auth] Auth state change event: %s", event)
        task = asyncio.get_running_loop().create_task(self.reconcile(session, f"listener:{event}"))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _on_state_change(self, state: SessionState) -> None:
        if not state.loading:
            self.watchdog.cancel()

    async def wait_idle(self) -> None:
        """Wait until every scheduled listener reconciliation has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def teardown(self) -> None:
        if self.token.cancelled:
            return
        log.info("[auth] Cleaning up auth subscription")
        self.token.cancel()
        self.watchdog.cancel()
        if self.subscription is not None:
            self.subscription.unsubscribe()
        if self._unwatch_store is not None:
            self._unwatch_store()
        pending = [t for t in self._tasks if not t.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
