"""Authentication flow orchestration (application layer)."""

import logging
from dataclasses import dataclass
from typing import Literal, Optional

from infrastructure.identity.base import IdentityProvider
from use_cases.session_models import SessionState
from use_cases.session_store import SessionStore

log = logging.getLogger(__name__)

AuthFlowStatus = Literal["LOADING", "CONTINUE", "STOP"]

MISSING_CREDENTIALS_MESSAGE = "Email and password are required"


@dataclass(frozen=True)
class AuthFlowResult:
    """Result contract for the console's auth gate."""

    status: AuthFlowStatus
    reason: str
    user_id: Optional[str] = None


@dataclass(frozen=True)
class SignInResult:
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def resolve_auth_gate(state: SessionState) -> AuthFlowResult:
    """Decide what the console shows for the current session state."""
    if state.loading:
        return AuthFlowResult(status="LOADING", reason="bootstrapping")
    if not state.is_authenticated:
        return AuthFlowResult(status="STOP", reason="auth_required")

    user_id = state.principal.id if state.principal is not None else None
    if not state.is_admin:
        return AuthFlowResult(status="STOP", reason="admin_required", user_id=user_id)
    return AuthFlowResult(status="CONTINUE", reason="authenticated", user_id=user_id)


async def sign_in(identity: IdentityProvider, email: str, password: str) -> SignInResult:
    """
    Forward credentials to the identity provider. The resulting session
    reaches the store through the provider's change stream, not from here.
    """
    email = (email or "").strip()
    if not email or not password:
        return SignInResult(error=MISSING_CREDENTIALS_MESSAGE)

    log.info("[auth] Attempting sign in for: %s", email)
    try:
        response = await identity.sign_in_with_password(email, password)
    except Exception as e:
        log.error("[auth] Unexpected sign in error: %s", e)
        return SignInResult(error=str(e) or e.__class__.__name__)

    if response.error is not None:
        log.warning("[auth] Sign in error: %s", response.error.message)
        return SignInResult(error=response.error.message)

    log.info("[auth] Sign in successful for: %s", email)
    return SignInResult(error=None)


async def sign_out(identity: IdentityProvider, store: SessionStore) -> None:
    """Sign out remotely, then always reset the local state."""
    log.info("[auth] Signing out user")
    try:
        response = await identity.sign_out()
    except Exception as e:
        log.error("[auth] Error during sign out: %s", e)
    else:
        if response.error is not None:
            log.error("[auth] Error during sign out: %s", response.error.message)
        else:
            log.info("[auth] Sign out successful")
    store.reset()
