"""Role lookup for an authenticated principal with bounded retries."""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from infrastructure.repositories.base import RoleStore, TransientLookupError
from use_cases.cancellation import CancellationToken

log = logging.getLogger(__name__)

ROLE_LOOKUP_TIMEOUT_SECONDS = 3.0
ROLE_LOOKUP_RETRIES = 2
ROLE_LOOKUP_BACKOFF_SECONDS = 1.0


class RoleResolver:
    def __init__(
        self,
        role_store: RoleStore,
        attempt_timeout: float = ROLE_LOOKUP_TIMEOUT_SECONDS,
        max_retries: int = ROLE_LOOKUP_RETRIES,
        retry_delay: float = ROLE_LOOKUP_BACKOFF_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.role_store = role_store
        self.attempt_timeout = attempt_timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self._sleep = sleep

    async def resolve_role(self, principal_id: str, token: Optional[CancellationToken] = None) -> Optional[str]:
        """
        Returns the principal's role, or None when there is no role record or
        the lookup could not be completed. Never raises lookup errors.
        """
        attempts = self.max_retries + 1
        for attempt in range(1, attempts + 1):
            log.info("[auth] Fetching role for %s (attempt %d/%d)", principal_id, attempt, attempts)
            try:
                role = await asyncio.wait_for(self.role_store.afetch_role(principal_id), timeout=self.attempt_timeout)
            except asyncio.TimeoutError:
                log.warning("[auth] Role lookup timed out after %.1fs", self.attempt_timeout)
            except TransientLookupError as e:
                log.warning("[auth] Role lookup network error: %s", e)
            except Exception as e:
                log.error("[auth] Role lookup failed, not retrying: %s", e)
                return None
            else:
                if role is None:
                    log.info("[auth] No role record for %s", principal_id)
                else:
                    log.info("[auth] Role resolved: %s", role)
                return role

            if attempt == attempts:
                break
            if token is not None and token.cancelled:
                log.info("[auth] Role lookup abandoned, lifecycle torn down")
                return None
            log.info("[auth] Retrying role lookup in %.1fs", self.retry_delay)
            await self._sleep(self.retry_delay)
            if token is not None and token.cancelled:
                log.info("[auth] Role lookup abandoned, lifecycle torn down")
                return None

        log.error("[auth] Role lookup gave up after %d attempts", attempts)
        return None
