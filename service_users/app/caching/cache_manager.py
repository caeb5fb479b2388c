"""
Process-wide caches for the user edit workflow.
"""

import time
from typing import Any, Callable, Dict, List, Optional, TYPE_CHECKING

from shared.logging import get_logger
from .read_through import Patch, ReadThroughLoader
from ..domain.models import USER_COLLECTION_FIELDS, Permission, Role, UserDetail

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from ..adapters.users_client import UsersApiClient
    from shared.metrics import MetricsCollector


DEFAULT_USER_DETAIL_TTL = 10.0
DEFAULT_CATALOG_TTL = 20.0

ROLES_KEY = "roles"
PERMISSIONS_KEY = "permissions"


class UserCacheManager:
    """One read-through loader per resource kind.

    Built once by the composition root and handed to every consumer (edit
    controller, users table, lock screen) so they all share the same
    per-kind state.
    """

    def __init__(
        self,
        client: "UsersApiClient",
        *,
        user_detail_ttl: float = DEFAULT_USER_DETAIL_TTL,
        catalog_ttl: float = DEFAULT_CATALOG_TTL,
        metrics: Optional["MetricsCollector"] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.client = client
        self.logger = get_logger("users.cache_manager")

        self.user_details: ReadThroughLoader[UserDetail] = ReadThroughLoader(
            "user_detail",
            client.fetch_user,
            user_detail_ttl,
            collection_fields=USER_COLLECTION_FIELDS,
            clock=clock,
            metrics=metrics,
        )
        self.roles: ReadThroughLoader[List[Role]] = ReadThroughLoader(
            "roles",
            self._fetch_roles,
            catalog_ttl,
            clock=clock,
            metrics=metrics,
        )
        self.permissions: ReadThroughLoader[List[Permission]] = ReadThroughLoader(
            "permissions",
            self._fetch_permissions,
            catalog_ttl,
            clock=clock,
            metrics=metrics,
        )

    async def _fetch_roles(self, _key: str) -> List[Role]:
        return await self.client.fetch_roles()

    async def _fetch_permissions(self, _key: str) -> List[Permission]:
        return await self.client.fetch_permissions()

    # User detail

    async def get_user_detail(self, user_id: str) -> Optional[UserDetail]:
        """Load a user's detail record (also used for hover prefetch)."""
        return await self.user_details.load(user_id)

    prefetch_user_detail = get_user_detail

    def peek_user_detail(self, user_id: str) -> Optional[UserDetail]:
        return self.user_details.peek(user_id)

    def invalidate_user_detail(self, user_id: str) -> None:
        self.user_details.invalidate(user_id)

    def begin_user_mutation(self, user_id: str) -> None:
        self.user_details.begin_mutation(user_id)

    def merge_user_detail(self, user_id: str, patch: Patch) -> Optional[UserDetail]:
        return self.user_details.merge_patch(user_id, patch)

    async def refresh_user_detail(self, user_id: str) -> Optional[UserDetail]:
        """Drop whatever is cached and load authoritative state."""
        self.user_details.invalidate(user_id)
        return await self.user_details.load(user_id)

    # Catalogs

    async def get_roles(self) -> List[Role]:
        return await self.roles.load(ROLES_KEY) or []

    async def get_permissions(self) -> List[Permission]:
        return await self.permissions.load(PERMISSIONS_KEY) or []

    def invalidate_roles(self) -> None:
        self.roles.invalidate(ROLES_KEY)

    def invalidate_permissions(self) -> None:
        self.permissions.invalidate(PERMISSIONS_KEY)

    def get_cache_stats(self) -> Dict[str, Any]:
        return {
            "user_detail": self.user_details.stats(),
            "roles": self.roles.stats(),
            "permissions": self.permissions.stats(),
        }
