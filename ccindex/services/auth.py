"""Authorization boundary.

The index engine never authenticates anyone; it receives an already
established :class:`~ccindex.models.Principal` and asks an
:class:`AuthContext` two questions about it.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from ccindex.models import AuthConfig, IndexEntry, Principal


@runtime_checkable
class AuthContext(Protocol):
    """Privilege checks supplied by the embedding service."""

    def is_moderator(self, principal: Principal | None) -> bool:
        """Whether the principal may moderate and see non-approved entries."""
        ...

    def owns(self, principal: Principal | None, entry: IndexEntry) -> bool:
        """Whether the principal uploaded ``entry``."""
        ...


class RoleAuthContext:
    """Auth context that grants moderator privilege by role name."""

    def __init__(self, config: AuthConfig | None = None):
        config = config or AuthConfig()
        self.moderator_roles = frozenset(config.moderator_roles)

    def is_moderator(self, principal: Principal | None) -> bool:
        if principal is None:
            return False
        return bool(principal.roles & self.moderator_roles)

    def owns(self, principal: Principal | None, entry: IndexEntry) -> bool:
        if principal is None:
            return False
        return principal.user_id == entry.uploader_id

    def can_modify(self, principal: Principal | None, entry: IndexEntry) -> bool:
        """Owner or moderator."""
        return self.owns(principal, entry) or self.is_moderator(principal)
