"""Application layer contracts for orchestrating high-level flows."""

from .cancellation import CancellationToken, OperationCancelled
from .session_models import AuthChangeEvent, Principal, Role, Session, SessionState, is_admin, is_authenticated
from .session_store import SessionStore

__all__ = [
    "AuthChangeEvent",
    "CancellationToken",
    "OperationCancelled",
    "Principal",
    "Role",
    "Session",
    "SessionState",
    "SessionStore",
    "is_admin",
    "is_authenticated",
]
