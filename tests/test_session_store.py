from use_cases.session_models import SessionState
from use_cases.session_store import SessionStore

from fakes import make_session


def test_store_starts_loading():
    store = SessionStore()
    assert store.state.loading is True
    assert store.version == 0


def test_mutations_notify_subscribers_in_order():
    store = SessionStore()
    seen = []
    store.subscribe(seen.append)

    session = make_session()
    store.apply_session(session)
    store.set_role("admin")
    store.reset()

    assert [s.session is not None for s in seen] == [True, True, False]
    assert seen[1].role == "admin"
    assert seen[1].loading is False
    assert seen[2] == SessionState(loading=False)
    assert store.version == 3


def test_unsubscribe_stops_notifications():
    store = SessionStore()
    seen = []
    unsubscribe = store.subscribe(seen.append)
    store.clear_loading()
    unsubscribe()
    unsubscribe()
    store.reset()
    assert len(seen) == 1


def test_failing_listener_does_not_break_store():
    store = SessionStore()
    seen = []

    def broken(_state):
        raise RuntimeError("boom")

    store.subscribe(broken)
    store.subscribe(seen.append)
    store.clear_loading()

    assert store.state.loading is False
    assert len(seen) == 1


def test_apply_same_session_twice_is_stable():
    store = SessionStore()
    session = make_session()
    first = store.apply_session(session)
    second = store.apply_session(session)
    assert first == second
