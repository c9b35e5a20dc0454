from pathlib import Path
from unittest.mock import patch

import pytest
from streamlit.testing.v1 import AppTest

from infrastructure.repositories.sqlite_local_storage import SQLiteLocalStorage
from use_cases.auth_context import AuthContext
from use_cases.bootstrap import StartupResult
from use_cases.role_resolver import RoleResolver

from fakes import FakeIdentityProvider, FakeRoleStore

APP_PATH = str(Path(__file__).resolve().parent.parent / "app.py")
LOGIN_TITLE = "🚗 Fleet Admin Console"


class FakeBackend:
    """One identity provider per visitor over a shared role table."""

    def __init__(self):
        self.role_store = FakeRoleStore(roles={"ops": "admin", "drv": "driver"})
        self.identities = {}

    async def run_startup(self, visitor_id=None):
        identity = FakeIdentityProvider(session=None, password="pw-123")
        self.identities.setdefault(visitor_id, []).append(identity)
        resolver = RoleResolver(self.role_store, attempt_timeout=0.5, retry_delay=0.01)
        context = AuthContext(identity, resolver, watchdog_timeout=1.0)
        await context.start()
        return StartupResult(status="CONTINUE", planned_steps=("start_session_lifecycle",), context=context)


@pytest.fixture
def backend(tmp_path):
    storage = SQLiteLocalStorage(str(tmp_path / "local_storage.db"))
    storage.init_db()
    fake = FakeBackend()
    with patch("use_cases.bootstrap.run_startup", side_effect=fake.run_startup), patch(
        "auth.get_local_storage", return_value=storage
    ):
        yield fake


def _titles(at):
    return [title.value for title in at.title]


def _sign_in(at, email, password):
    at.text_input[0].input(email)
    at.text_input[1].input(password)
    at.button[0].click().run()


def test_fresh_visitor_sees_login_form(backend):
    at = AppTest.from_file(APP_PATH, default_timeout=10).run()

    assert not at.exception
    assert _titles(at) == [LOGIN_TITLE]
    assert len(at.text_input) == 2


def test_admin_sign_in_does_not_leak_to_other_visitors(backend):
    alice = AppTest.from_file(APP_PATH, default_timeout=10).run()
    bob = AppTest.from_file(APP_PATH, default_timeout=10).run()

    _sign_in(alice, "ops@fleet.test", "pw-123")
    bob.run()

    assert not alice.exception
    assert _titles(alice) == ["📊 Dashboard"]
    assert not bob.exception
    assert _titles(bob) == [LOGIN_TITLE]
    assert len(bob.text_input) == 2
    assert len(backend.identities) == 2
    assert alice.session_state["visitor_id"] != bob.session_state["visitor_id"]


def test_logout_only_signs_out_that_visitor(backend):
    alice = AppTest.from_file(APP_PATH, default_timeout=10).run()
    bob = AppTest.from_file(APP_PATH, default_timeout=10).run()
    _sign_in(alice, "ops@fleet.test", "pw-123")
    _sign_in(bob, "ops@fleet.test", "pw-123")
    assert _titles(bob) == ["📊 Dashboard"]

    bob.button(key="logout_btn").click().run()
    alice.run()

    assert _titles(bob) == [LOGIN_TITLE]
    assert _titles(alice) == ["📊 Dashboard"]
    first_bob, second_bob = backend.identities[bob.session_state["visitor_id"]]
    assert first_bob.sign_out_calls == 1
    assert first_bob.closed is True
    assert second_bob.closed is False
    assert backend.identities[alice.session_state["visitor_id"]][0].sign_out_calls == 0


def test_wrong_password_shows_error_on_login_screen(backend):
    at = AppTest.from_file(APP_PATH, default_timeout=10).run()

    _sign_in(at, "ops@fleet.test", "nope")

    assert _titles(at) == [LOGIN_TITLE]
    assert [error.value for error in at.error] == ["Invalid login credentials"]


def test_non_admin_is_asked_for_admin_account(backend):
    at = AppTest.from_file(APP_PATH, default_timeout=10).run()

    _sign_in(at, "drv@fleet.test", "pw-123")

    assert _titles(at) == [LOGIN_TITLE]
    assert "Admin access required" in at.warning[0].value
