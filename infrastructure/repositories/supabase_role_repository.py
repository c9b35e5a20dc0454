import asyncio
import logging
from typing import Callable, Optional

import requests

from infrastructure.repositories.base import LookupRejectedError, TransientLookupError

log = logging.getLogger(__name__)


class SupabaseRoleRepository:
    """Reads a principal's role from the ``users`` table over the REST API."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        table: str = "users",
        request_timeout: float = 10,
        token_source: Optional[Callable[[], Optional[str]]] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.table = table
        self.request_timeout = request_timeout
        self.token_source = token_source

    def _headers(self):
        # Row level security sees the signed-in user when a token is available.
        access_token = self.token_source() if self.token_source else None
        return {
            "apikey": self.api_key,
            "Authorization": f"Bearer {access_token or self.api_key}",
            "Accept": "application/json",
        }

    def fetch_role(self, principal_id: str) -> Optional[str]:
        try:
            resp = requests.get(
                f"{self.base_url}/rest/v1/{self.table}",
                headers=self._headers(),
                params={"select": "role", "id": f"eq.{principal_id}"},
                timeout=self.request_timeout,
            )
        except (requests.Timeout, requests.ConnectionError) as e:
            raise TransientLookupError(f"network error: {e}") from e

        log.debug("Role lookup for %s answered HTTP %s", principal_id, resp.status_code)
        if resp.status_code >= 500 or resp.status_code == 429:
            raise TransientLookupError(f"role store unavailable ({resp.status_code})")
        if resp.status_code != 200:
            raise LookupRejectedError(f"role store rejected lookup ({resp.status_code}): {resp.text}")

        rows = resp.json()
        if not rows:
            return None
        if len(rows) > 1:
            raise LookupRejectedError(f"expected at most one role row for {principal_id}, got {len(rows)}")
        return rows[0].get("role") or None

    async def afetch_role(self, principal_id: str) -> Optional[str]:
        return await asyncio.to_thread(self.fetch_role, principal_id)
