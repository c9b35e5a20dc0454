"""Session DTOs and pure state transitions shared across application layers."""

import time
from dataclasses import dataclass, replace
from typing import Any, Dict, Literal, Optional

Role = Literal["admin", "customer", "driver", "vendor"]
AuthChangeEvent = Literal["INITIAL_SESSION", "SIGNED_IN", "SIGNED_OUT", "TOKEN_REFRESHED", "USER_UPDATED"]


@dataclass(frozen=True)
class Principal:
    id: str
    email: Optional[str] = None


@dataclass(frozen=True)
class Session:
    """Credential bundle issued by the identity provider."""

    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[int] = None
    principal: Optional[Principal] = None
    token_type: str = "bearer"

    def is_expired(self, now: Optional[float] = None, leeway: int = 10) -> bool:
        if self.expires_at is None:
            return False
        now = time.time() if now is None else now
        return now + leeway >= self.expires_at

    def to_dict(self) -> Dict[str, Any]:
        user = None
        if self.principal is not None:
            user = {"id": self.principal.id, "email": self.principal.email}
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "expires_at": self.expires_at,
            "token_type": self.token_type,
            "user": user,
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "Session":
        """Build a session from a persisted record or an auth API token response."""
        user = payload.get("user") or None
        principal = Principal(id=str(user["id"]), email=user.get("email")) if user else None

        expires_at = payload.get("expires_at")
        if expires_at is None and payload.get("expires_in") is not None:
            expires_at = int(time.time()) + int(payload["expires_in"])

        return cls(
            access_token=payload["access_token"],
            refresh_token=payload.get("refresh_token"),
            expires_at=int(expires_at) if expires_at is not None else None,
            principal=principal,
            token_type=payload.get("token_type") or "bearer",
        )


@dataclass(frozen=True)
class SessionState:
    principal: Optional[Principal] = None
    session: Optional[Session] = None
    role: Optional[str] = None
    loading: bool = True

    @property
    def is_authenticated(self) -> bool:
        return self.session is not None

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def initial_state() -> SessionState:
    return SessionState(loading=True)


def signed_out_state() -> SessionState:
    return SessionState(principal=None, session=None, role=None, loading=False)


def apply_session(state: SessionState, session: Optional[Session]) -> SessionState:
    """Push a newly observed session. Loading is left as is."""
    if session is None:
        return replace(state, principal=None, session=None, role=None)
    return replace(state, principal=session.principal, session=session)


def set_role(state: SessionState, role: Optional[str]) -> SessionState:
    # A role without a session is never kept.
    if state.session is None:
        role = None
    return replace(state, role=role, loading=False)


def clear_loading(state: SessionState) -> SessionState:
    return replace(state, loading=False)


def reset() -> SessionState:
    return signed_out_state()


def is_admin(state: SessionState) -> bool:
    return state.is_admin


def is_authenticated(state: SessionState) -> bool:
    return state.is_authenticated
