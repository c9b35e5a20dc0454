"""Startup orchestration for the auth lifecycle."""

import logging
from dataclasses import dataclass, field
from typing import Literal, Optional, Tuple

import auth
from use_cases.auth_context import AuthContext

log = logging.getLogger(__name__)

StartupStatus = Literal["CONTINUE", "STOP"]


@dataclass(frozen=True)
class StartupResult:
    """Result contract for startup/bootstrap orchestration."""

    status: StartupStatus
    planned_steps: Tuple[str, ...]
    context: Optional[AuthContext] = field(default=None, compare=False)
    error: Optional[str] = None


def build_auth_context(visitor_id: Optional[str] = None) -> AuthContext:
    identity = auth.build_identity_provider(visitor_id)
    return AuthContext(
        identity,
        auth.build_role_resolver(auth.build_role_repo(identity)),
        watchdog_timeout=auth.get_watchdog_timeout(),
    )


async def run_startup(visitor_id: Optional[str] = None) -> StartupResult:
    """Wire one visitor's collaborators from configuration and start its session lifecycle."""
    executed_steps = []

    try:
        auth.get_local_storage()
        executed_steps.append("init_local_storage")
        context = build_auth_context(visitor_id)
        executed_steps.append("build_auth_context")
    except auth.ConfigurationError as e:
        log.error("Auth is not configured: %s", e)
        return StartupResult(status="STOP", planned_steps=tuple(executed_steps), error=str(e))

    await context.start()
    executed_steps.append("start_session_lifecycle")

    return StartupResult(status="CONTINUE", planned_steps=tuple(executed_steps), context=context)
