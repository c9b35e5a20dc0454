import asyncio
import concurrent.futures
import logging
import re
import threading
import uuid

import streamlit as st
import streamlit.components.v1 as components

import auth
from use_cases import bootstrap
from use_cases.auth_flow import SignInResult
from use_cases.session_models import SessionState, signed_out_state

"""
SESSION STATE CONTRACT

Every browser session owns its own auth lifecycle (an AuthRuntime). All of
them run on one asyncio loop in a background thread shared by the process.
Script runs talk to their runtime through the blocking wrappers below.

st.session_state keys:

visitor_id: str
    stable id of this browser, read from the fleet_visitor_id cookie
    scopes the persisted credential and the UI preferences
    default: new random id
    owner: auth/session_manager

visitor_cookie_set: bool
    the browser already holds the visitor cookie
    default: False
    owner: auth/session_manager

auth_runtime: AuthRuntime
    this visitor's auth lifecycle, closed and dropped on logout
    default: created on first access
    owner: auth/session_manager

auth_error: str | None
    last sign-in error to display on the login screen
    default: None
    owner: auth/session_manager

nav_page: str
    selected console section
    default: "Dashboard"
    owner: ui

Persisted preferences (local storage, per visitor):

sidebar-open:<visitor_id>: bool
    console sidebar expanded
    default: True
    owner: ui
"""

log = logging.getLogger(__name__)

SIDEBAR_PREF_KEY = "sidebar-open"
VISITOR_COOKIE = "fleet_visitor_id"
VISITOR_COOKIE_MAX_AGE = 2592000  # 30 days
CALL_TIMEOUT_SECONDS = 30

_VISITOR_ID_RE = re.compile(r"^[0-9a-f]{32}$")


class LoopThread:
    """Background event loop shared by every visitor's auth lifecycle."""

    def __init__(self):
        self.loop = asyncio.new_event_loop()
        self.thread = threading.Thread(target=self._run_loop, name="auth-lifecycle", daemon=True)
        self.thread.start()

    def _run_loop(self):
        asyncio.set_event_loop(self.loop)
        self.loop.run_forever()

    def call(self, coro, timeout=CALL_TIMEOUT_SECONDS):
        future = asyncio.run_coroutine_threadsafe(coro, self.loop)
        try:
            return future.result(timeout=timeout)
        except concurrent.futures.TimeoutError:
            future.cancel()
            raise

    def call_soon(self, callback):
        self.loop.call_soon_threadsafe(callback)

    def stop(self):
        self.loop.call_soon_threadsafe(self.loop.stop)
        self.thread.join(timeout=5)


class AuthRuntime:
    """One visitor's auth context, living on the shared loop."""

    def __init__(self, loop_thread: LoopThread, visitor_id=None, call_timeout=CALL_TIMEOUT_SECONDS):
        self.loop_thread = loop_thread
        self.visitor_id = visitor_id
        self.call_timeout = call_timeout
        self.context = None
        self.startup_error = None

    def call(self, coro, timeout=None):
        return self.loop_thread.call(coro, timeout=self.call_timeout if timeout is None else timeout)

    def start(self):
        try:
            result = self.call(bootstrap.run_startup(self.visitor_id))
        except concurrent.futures.TimeoutError:
            log.error("Auth lifecycle did not start within %ss", self.call_timeout)
            self.startup_error = "Authentication service did not respond"
            return None
        if result.status == "STOP":
            log.error("Auth lifecycle not started: %s", result.error)
            self.startup_error = result.error
        self.context = result.context
        return result

    def state(self) -> SessionState:
        if self.context is None:
            return signed_out_state()
        return self.context.state

    def wait_until_ready(self, timeout=None) -> SessionState:
        if self.context is None:
            return self.state()
        try:
            return self.loop_thread.call(self.context.wait_until_ready(timeout), timeout=None)
        except (asyncio.TimeoutError, concurrent.futures.TimeoutError):
            return self.state()

    def sign_in(self, email, password) -> SignInResult:
        if self.context is None:
            return SignInResult(error=self.startup_error or "Authentication is not available")
        try:
            result = self.call(self.context.sign_in(email, password))
        except concurrent.futures.TimeoutError:
            log.error("Sign in did not complete within %ss", self.call_timeout)
            return SignInResult(error="Sign in timed out. Please try again.")
        if result.ok:
            # The listener reconciles asynchronously; wait for the role before rerunning.
            try:
                self.call(self.context.reconciler.wait_idle())
            except concurrent.futures.TimeoutError:
                log.warning("Role not resolved within %ss after sign in", self.call_timeout)
        return result

    def sign_out(self):
        if self.context is None:
            return
        try:
            self.call(self.context.sign_out())
        except concurrent.futures.TimeoutError:
            log.error("Sign out did not complete within %ss, clearing local state", self.call_timeout)
            self.loop_thread.call_soon(self.context.store.reset)

    def close(self):
        context, self.context = self.context, None
        if context is None:
            return
        try:
            self.call(context.close())
        except concurrent.futures.TimeoutError:
            log.error("Auth lifecycle did not close within %ss", self.call_timeout)


@st.cache_resource
def get_loop_thread() -> LoopThread:
    return LoopThread()


def init_session_state():
    if "auth_error" not in st.session_state:
        st.session_state.auth_error = None
    if "nav_page" not in st.session_state:
        st.session_state.nav_page = "Dashboard"
    if "visitor_cookie_set" not in st.session_state:
        st.session_state.visitor_cookie_set = False


def get_visitor_id() -> str:
    visitor_id = st.session_state.get("visitor_id")
    if visitor_id:
        return visitor_id
    try:
        from_cookie = st.context.cookies.get(VISITOR_COOKIE)
    except Exception:
        # During some tests contexts might not be fully available
        from_cookie = None
    if from_cookie and _VISITOR_ID_RE.match(from_cookie):
        visitor_id = from_cookie
        st.session_state.visitor_cookie_set = True
    else:
        visitor_id = uuid.uuid4().hex
    st.session_state.visitor_id = visitor_id
    return visitor_id


def remember_visitor():
    """Store the visitor id in a browser cookie so the session survives reloads."""
    if st.session_state.get("visitor_cookie_set"):
        return
    components.html(
        f"""
        <script>
            var cookieStr = "{VISITOR_COOKIE}={get_visitor_id()}; path=/; max-age={VISITOR_COOKIE_MAX_AGE}; SameSite=Lax";
            document.cookie = cookieStr;
            try {{
                window.parent.document.cookie = cookieStr;
            }} catch (e) {{
                console.log("Cross-origin frame block, normal behavior if different origin");
            }}
        </script>
        """,
        height=0,
    )
    st.session_state.visitor_cookie_set = True


def get_runtime() -> AuthRuntime:
    runtime = st.session_state.get("auth_runtime")
    if runtime is None:
        runtime = AuthRuntime(get_loop_thread(), get_visitor_id())
        runtime.start()
        st.session_state.auth_runtime = runtime
    return runtime


def current_state() -> SessionState:
    return get_runtime().state()


def wait_until_ready(timeout=None) -> SessionState:
    return get_runtime().wait_until_ready(timeout)


def login(email, password) -> SignInResult:
    result = get_runtime().sign_in(email, password)
    st.session_state.auth_error = result.error
    return result


def logout():
    runtime = get_runtime()
    runtime.sign_out()
    runtime.close()
    st.session_state.pop("auth_runtime", None)
    st.session_state.auth_error = None
    st.rerun()


def _sidebar_pref_key() -> str:
    return f"{SIDEBAR_PREF_KEY}:{get_visitor_id()}"


def get_sidebar_open() -> bool:
    return bool(auth.get_local_storage().get_json(_sidebar_pref_key(), True))


def toggle_sidebar() -> bool:
    new_value = not get_sidebar_open()
    auth.get_local_storage().set_json(_sidebar_pref_key(), new_value)
    return new_value
