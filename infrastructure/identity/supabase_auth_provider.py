"""
Identity provider backed by the hosted auth REST API.

Blocking HTTP calls are made with ``requests`` and pushed off the event loop
with ``asyncio.to_thread``. The current session is persisted in the local
key/value storage so that it survives restarts. While a session is held, a
refresh is scheduled on the running loop shortly before the access token
expires, and each successful refresh emits ``TOKEN_REFRESHED``.
"""

import asyncio
import logging
import time
from typing import Optional
from urllib.parse import urlparse

import requests

from infrastructure.identity.base import (
    AuthApiError,
    SessionChangeCallback,
    SessionChangeNotifier,
    SignInResponse,
    SignOutResponse,
    Subscription,
)
from infrastructure.repositories.sqlite_local_storage import SQLiteLocalStorage
from use_cases.session_models import Session

log = logging.getLogger(__name__)

REFRESH_MARGIN_SECONDS = 60
REFRESH_RETRY_SECONDS = 10


def storage_key_for(base_url: str, visitor_id: Optional[str] = None) -> str:
    host = urlparse(base_url).hostname or "local"
    project_ref = host.split(".")[0]
    key = f"sb-{project_ref}-auth-token"
    return f"{key}:{visitor_id}" if visitor_id else key


def _error_message(resp) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text or f"HTTP {resp.status_code}"
    if isinstance(body, dict):
        for key in ("error_description", "msg", "message", "error"):
            if body.get(key):
                return str(body[key])
    return f"HTTP {resp.status_code}"


class SupabaseAuthProvider:
    def __init__(
        self,
        base_url: str,
        api_key: str,
        storage: SQLiteLocalStorage,
        request_timeout: float = 10,
        auto_refresh: bool = True,
        visitor_id: Optional[str] = None,
        refresh_margin: float = REFRESH_MARGIN_SECONDS,
        refresh_retry: float = REFRESH_RETRY_SECONDS,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.storage = storage
        self.request_timeout = request_timeout
        self.auto_refresh = auto_refresh
        self.refresh_margin = refresh_margin
        self.refresh_retry = refresh_retry
        self.storage_key = storage_key_for(self.base_url, visitor_id)
        self._notifier = SessionChangeNotifier()
        self._session: Optional[Session] = None
        self._refresh_handle: Optional[asyncio.TimerHandle] = None
        self._refresh_task: Optional[asyncio.Task] = None

    @property
    def current_access_token(self) -> Optional[str]:
        return self._session.access_token if self._session else None

    def _headers(self, access_token: Optional[str] = None):
        return {
            "apikey": self.api_key,
            "Authorization": f"Bearer {access_token or self.api_key}",
            "Content-Type": "application/json",
        }

    # --- persistence ---

    def _load_persisted(self) -> Optional[Session]:
        payload = self.storage.get_json(self.storage_key)
        if not payload:
            return None
        try:
            return Session.from_dict(payload)
        except (KeyError, TypeError, ValueError):
            log.warning("Discarding unreadable persisted session")
            self.storage.remove_item(self.storage_key)
            return None

    def _persist(self, session: Optional[Session]):
        self._session = session
        if session is None:
            self.storage.remove_item(self.storage_key)
        else:
            self.storage.set_json(self.storage_key, session.to_dict())

    # --- blocking API calls ---

    def _token_request(self, grant_type: str, body: dict) -> Session:
        resp = requests.post(
            f"{self.base_url}/auth/v1/token",
            headers=self._headers(),
            params={"grant_type": grant_type},
            json=body,
            timeout=self.request_timeout,
        )
        if resp.status_code != 200:
            raise AuthApiError(_error_message(resp), status=resp.status_code)
        return Session.from_dict(resp.json())

    def _logout_request(self, access_token: str):
        resp = requests.post(
            f"{self.base_url}/auth/v1/logout",
            headers=self._headers(access_token),
            timeout=self.request_timeout,
        )
        # 401/404 mean the token is already gone server-side.
        if resp.status_code not in (200, 204, 401, 404):
            raise AuthApiError(_error_message(resp), status=resp.status_code)

    # --- scheduled refresh ---

    def _schedule_refresh(self, session: Optional[Session]):
        self._cancel_refresh()
        if not (self.auto_refresh and session and session.refresh_token and session.expires_at):
            return
        delay = max(0.0, session.expires_at - time.time() - self.refresh_margin)
        log.debug("Access token refresh scheduled in %.0fs", delay)
        self._refresh_handle = asyncio.get_running_loop().call_later(
            delay, self._start_scheduled_refresh, session.refresh_token
        )

    def _start_scheduled_refresh(self, refresh_token: str):
        self._refresh_handle = None
        self._refresh_task = asyncio.get_running_loop().create_task(self._scheduled_refresh(refresh_token))

    async def _scheduled_refresh(self, refresh_token: str):
        log.info("Refreshing access token before expiry")
        try:
            await self.refresh_session(refresh_token)
        except requests.RequestException as e:
            log.warning("Token refresh failed, retrying in %.0fs: %s", self.refresh_retry, e)
            self._refresh_handle = asyncio.get_running_loop().call_later(
                self.refresh_retry, self._start_scheduled_refresh, refresh_token
            )

    def _cancel_refresh(self):
        if self._refresh_handle is not None:
            self._refresh_handle.cancel()
            self._refresh_handle = None
        task = self._refresh_task
        self._refresh_task = None
        # A refresh reschedules itself; never cancel the task doing that.
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    def close(self):
        """Stop background refreshes. Must run on the provider's event loop."""
        self._cancel_refresh()

    # --- IdentityProvider ---

    def on_session_change(self, callback: SessionChangeCallback) -> Subscription:
        return self._notifier.subscribe(callback)

    async def get_current_session(self) -> Optional[Session]:
        session = await asyncio.to_thread(self._load_persisted)
        if session is None:
            self._session = None
            return None
        if not session.is_expired():
            self._session = session
            self._schedule_refresh(session)
            return session
        if not (self.auto_refresh and session.refresh_token):
            log.info("Persisted session expired, no refresh possible")
            await asyncio.to_thread(self._persist, None)
            return None
        return await self.refresh_session(session.refresh_token)

    async def refresh_session(self, refresh_token: str) -> Optional[Session]:
        try:
            session = await asyncio.to_thread(
                self._token_request, "refresh_token", {"refresh_token": refresh_token}
            )
        except AuthApiError as e:
            log.warning("Session refresh rejected: %s", e.message)
            await asyncio.to_thread(self._persist, None)
            self._cancel_refresh()
            self._notifier.emit("SIGNED_OUT", None)
            return None
        await asyncio.to_thread(self._persist, session)
        self._schedule_refresh(session)
        self._notifier.emit("TOKEN_REFRESHED", session)
        return session

    async def sign_in_with_password(self, email: str, password: str) -> SignInResponse:
        try:
            session = await asyncio.to_thread(
                self._token_request, "password", {"email": email, "password": password}
            )
        except AuthApiError as e:
            return SignInResponse(session=None, error=e)
        await asyncio.to_thread(self._persist, session)
        self._schedule_refresh(session)
        self._notifier.emit("SIGNED_IN", session)
        return SignInResponse(session=session, error=None)

    async def sign_out(self) -> SignOutResponse:
        session = self._session
        error = None
        self._cancel_refresh()
        if session is not None:
            try:
                await asyncio.to_thread(self._logout_request, session.access_token)
            except AuthApiError as e:
                error = e
            except requests.RequestException as e:
                error = AuthApiError(f"network error: {e}")
        # The local credential is dropped whatever the server answered.
        await asyncio.to_thread(self._persist, None)
        self._notifier.emit("SIGNED_OUT", None)
        return SignOutResponse(error=error)
