"""Role store contract consumed by the role resolver."""

from typing import Optional, Protocol


class RoleLookupError(Exception):
    pass


class TransientLookupError(RoleLookupError):
    """Network-class failure worth retrying."""


class LookupRejectedError(RoleLookupError):
    pass


class RoleStore(Protocol):
    async def afetch_role(self, principal_id: str) -> Optional[str]:
        ...
