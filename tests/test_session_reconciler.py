import asyncio
import itertools

import pytest

from use_cases.role_resolver import RoleResolver
from use_cases.session_models import SessionState
from use_cases.session_reconciler import SessionReconciler
from use_cases.session_store import SessionStore

from fakes import HANG, FakeIdentityProvider, FakeRoleStore, make_session


def _build(identity, role_store, watchdog_timeout=1.0, attempt_timeout=0.05, retry_delay=0.1):
    store = SessionStore()
    resolver = RoleResolver(role_store, attempt_timeout=attempt_timeout, retry_delay=retry_delay)
    reconciler = SessionReconciler(store, identity, resolver, watchdog_timeout=watchdog_timeout)
    return store, reconciler


def test_bootstrap_without_session_settles_signed_out():
    identity = FakeIdentityProvider(session=None)
    store, reconciler = _build(identity, FakeRoleStore())

    async def run():
        await reconciler.start()
        state = store.state
        await reconciler.teardown()
        return state

    state = asyncio.run(run())
    assert state == SessionState(principal=None, session=None, role=None, loading=False)
    assert reconciler.watchdog.fired is False
    assert reconciler.watchdog.armed is False


def test_bootstrap_with_session_and_one_retry_resolves_admin():
    session = make_session("u1")
    identity = FakeIdentityProvider(session=session)
    role_store = FakeRoleStore(roles={"u1": "admin"}, script=[HANG])
    store, reconciler = _build(identity, role_store, watchdog_timeout=1.0, attempt_timeout=0.05, retry_delay=0.1)

    async def run():
        loop = asyncio.get_running_loop()
        started = loop.time()
        await reconciler.start()
        elapsed = loop.time() - started
        await reconciler.teardown()
        return elapsed

    elapsed = asyncio.run(run())
    assert store.state.session == session
    assert store.state.role == "admin"
    assert store.state.loading is False
    assert len(role_store.calls) == 2
    assert 0.1 <= elapsed < 1.0
    assert reconciler.watchdog.fired is False


def test_watchdog_clears_loading_when_provider_never_answers():
    identity = FakeIdentityProvider(never_respond=True)
    store, reconciler = _build(identity, FakeRoleStore(), watchdog_timeout=0.1)

    async def run():
        start_task = asyncio.create_task(reconciler.start())
        await asyncio.sleep(0.05)
        mid_state = store.state
        await asyncio.sleep(0.1)
        end_state = store.state
        await reconciler.teardown()
        start_task.cancel()
        await asyncio.gather(start_task, return_exceptions=True)
        return mid_state, end_state

    mid_state, end_state = asyncio.run(run())
    assert mid_state.loading is True
    assert end_state == SessionState(principal=None, session=None, role=None, loading=False)
    assert reconciler.watchdog.fired is True


def test_probe_error_is_reconciled_as_signed_out():
    identity = FakeIdentityProvider(probe_error=ConnectionError("offline"))
    store, reconciler = _build(identity, FakeRoleStore())

    asyncio.run(reconciler.start())

    assert store.state.loading is False
    assert store.state.session is None


def test_fatal_bootstrap_error_clears_loading():
    identity = FakeIdentityProvider()

    def broken_subscribe(_callback):
        raise RuntimeError("realtime unavailable")

    identity.on_session_change = broken_subscribe
    store, reconciler = _build(identity, FakeRoleStore())

    asyncio.run(reconciler.start())

    assert store.state.loading is False
    assert store.state.session is None


def test_session_is_pushed_before_role_lookup():
    session = make_session("u1")
    identity = FakeIdentityProvider(session=session)
    store, reconciler = _build(identity, FakeRoleStore(roles={"u1": "admin"}))
    seen = []
    store.subscribe(lambda s: seen.append((s.session is not None, s.role, s.loading)))

    asyncio.run(reconciler.start())

    assert seen[0] == (True, None, True)
    assert seen[-1] == (True, "admin", False)


def test_listener_events_update_state_after_bootstrap():
    session = make_session("u2")
    identity = FakeIdentityProvider(session=None)
    store, reconciler = _build(identity, FakeRoleStore(roles={"u2": "dispatcher"}))

    async def run():
        await reconciler.start()
        identity.emit("SIGNED_IN", session)
        await reconciler.wait_idle()
        signed_in = store.state
        identity.emit("SIGNED_OUT", None)
        await reconciler.wait_idle()
        return signed_in, store.state

    signed_in, signed_out = asyncio.run(run())
    assert signed_in.session == session
    assert signed_in.role == "dispatcher"
    assert signed_in.is_admin is False
    assert signed_out == SessionState(loading=False)


def test_subsequent_changes_never_reenter_loading():
    identity = FakeIdentityProvider(session=None)
    store, reconciler = _build(identity, FakeRoleStore(roles={"u3": "admin"}, delays={"u3": 0.02}))
    loading_flags = []

    async def run():
        await reconciler.start()
        store.subscribe(lambda s: loading_flags.append(s.loading))
        identity.emit("SIGNED_IN", make_session("u3"))
        await reconciler.wait_idle()

    asyncio.run(run())
    assert loading_flags
    assert not any(loading_flags)


def test_role_failure_preserves_previous_role():
    session = make_session("u1")
    identity = FakeIdentityProvider(session=session)
    store, reconciler = _build(identity, FakeRoleStore(roles={"u1": "admin"}))

    async def failing_resolve(_principal_id, _token=None):
        raise RuntimeError("resolver crashed")

    async def run():
        await reconciler.start()
        reconciler.resolver.resolve_role = failing_resolve
        identity.emit("TOKEN_REFRESHED", make_session("u1", token="access-rotated"))
        await reconciler.wait_idle()

    asyncio.run(run())
    assert store.state.role == "admin"
    assert store.state.session.access_token == "access-rotated"
    assert store.state.loading is False


def test_role_failure_for_new_principal_does_not_inherit_role():
    identity = FakeIdentityProvider(session=make_session("u1"))
    store, reconciler = _build(identity, FakeRoleStore(roles={"u1": "admin"}))

    async def failing_resolve(_principal_id, _token=None):
        raise RuntimeError("resolver crashed")

    async def run():
        await reconciler.start()
        reconciler.resolver.resolve_role = failing_resolve
        identity.emit("SIGNED_IN", make_session("u2"))
        await reconciler.wait_idle()

    asyncio.run(run())
    assert store.state.principal.id == "u2"
    assert store.state.role is None
    assert store.state.is_admin is False


def test_teardown_drops_in_flight_role_result():
    identity = FakeIdentityProvider(session=None)
    store, reconciler = _build(identity, FakeRoleStore(roles={"u1": "admin"}, delays={"u1": 0.05}))

    async def run():
        await reconciler.start()
        task = asyncio.create_task(reconciler.reconcile(make_session("u1"), "test"))
        await asyncio.sleep(0.01)
        version_before = store.version
        reconciler.token.cancel()
        await task
        return version_before

    version_before = asyncio.run(run())
    assert store.version == version_before
    assert store.state.role is None


def test_teardown_unsubscribes_and_ignores_later_events():
    identity = FakeIdentityProvider(session=None)
    store, reconciler = _build(identity, FakeRoleStore(roles={"u1": "admin"}))

    async def run():
        await reconciler.start()
        await reconciler.teardown()
        await reconciler.teardown()
        identity.emit("SIGNED_IN", make_session("u1"))
        await asyncio.sleep(0.01)

    asyncio.run(run())
    assert len(identity.notifier) == 0
    assert reconciler.subscription.active is False
    assert store.state.session is None


def test_teardown_cancels_pending_listener_tasks():
    identity = FakeIdentityProvider(session=None)
    role_store = FakeRoleStore(roles={"u1": "admin"}, delays={"u1": 0.2})
    store, reconciler = _build(identity, role_store, attempt_timeout=1.0)

    async def run():
        await reconciler.start()
        identity.emit("SIGNED_IN", make_session("u1"))
        await asyncio.sleep(0.01)
        await reconciler.teardown()

    asyncio.run(run())
    assert store.state.session is not None
    assert store.state.role is None
    assert not reconciler._tasks


SESSIONS = {
    "a": make_session("a"),
    "b": make_session("b"),
    None: None,
}


@pytest.mark.parametrize("order", list(itertools.permutations(["a", "b", None])))
def test_last_event_wins_in_any_interleaving(order):
    role_store = FakeRoleStore(
        roles={"a": "admin", "b": "driver"},
        delays={"a": 0.03, "b": 0.01},
    )
    identity = FakeIdentityProvider(session=None)
    store, reconciler = _build(identity, role_store, attempt_timeout=1.0)

    async def run():
        await reconciler.start()
        for key in order:
            identity.emit("SIGNED_IN" if key else "SIGNED_OUT", SESSIONS[key])
            await asyncio.sleep(0)
        await reconciler.wait_idle()

    asyncio.run(run())

    last = order[-1]
    assert store.state.session == SESSIONS[last]
    assert store.state.role == {"a": "admin", "b": "driver", None: None}[last]
    assert store.state.loading is False
