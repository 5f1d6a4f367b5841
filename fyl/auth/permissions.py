"""
Admin and collaborator permission checks.

Super admins may do everything. Collaborators have a row in `admins` and
per-section rows in `admin_permissions` (can_view / can_edit / can_delete).
Answers are cached per user for a minute.
"""

import time
from typing import Callable, Optional

from postgrest.exceptions import APIError
from rich.console import Console
from supabase import Client

from config.settings import config
from fyl.backend import procedures
from fyl.backend.client import call_rpc
from fyl.errors import PermissionDeniedError, RpcError

console = Console()

PERMISSION_KEYS = (
    "products",
    "fyl-products",
    "stock",
    "orders",
    "daily-sales",
    "statistics",
    "closed-orders",
    "import",
    "export",
    "publications",
    "move-stock",
    "public-sales",
    "offers",
    "search",
    "labels",
    "customers",
    "meta-feed",
)

ACTIONS = ("view", "edit", "delete")

ROLE_SUPER_ADMIN = "super_admin"


def full_access() -> dict:
    return {key: {"can_view": True, "can_edit": True, "can_delete": True} for key in PERMISSION_KEYS}


class PermissionService:
    """Permission lookups for back-office users, cached per user id."""

    def __init__(
        self,
        client: Client,
        ttl_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.client = client
        self.ttl_seconds = (
            ttl_seconds if ttl_seconds is not None else config.permissions.cache_ttl_seconds
        )
        self._clock = clock
        self._super_admin: dict[str, tuple[float, bool]] = {}
        self._permissions: dict[str, tuple[float, dict]] = {}

    def clear_cache(self) -> None:
        self._super_admin.clear()
        self._permissions.clear()

    def _cached(self, cache: dict, user_id: str):
        entry = cache.get(user_id)
        if entry and self._clock() - entry[0] < self.ttl_seconds:
            return entry[1]
        return None

    def _admin_row(self, user_id: str, columns: str = "id, role") -> Optional[dict]:
        result = (
            self.client.table("admins")
            .select(columns)
            .eq("user_id", user_id)
            .limit(1)
            .execute()
        )
        return result.data[0] if result.data else None

    def is_super_admin(self, user_id: Optional[str]) -> bool:
        if not user_id:
            return False
        cached = self._cached(self._super_admin, user_id)
        if cached is not None:
            return cached

        try:
            data = call_rpc(self.client, procedures.IS_SUPER_ADMIN, {"check_user_id": user_id})
        except RpcError as e:
            console.print(f"[red]Error checking super admin: {e}[/red]")
            return False

        value = bool(data)
        self._super_admin[user_id] = (self._clock(), value)
        return value

    def user_permissions(self, user_id: Optional[str]) -> dict:
        """
        Permissions per section for a user.

        Returns:
            {permission_key: {"can_view", "can_edit", "can_delete"}}; every key
            fully enabled for super admins, {} for unknown users
        """
        if not user_id:
            return {}
        cached = self._cached(self._permissions, user_id)
        if cached is not None:
            return cached

        if self.is_super_admin(user_id):
            permissions = full_access()
            self._permissions[user_id] = (self._clock(), permissions)
            return permissions

        try:
            admin = self._admin_row(user_id, "id")
            if not admin:
                return {}
            rows = (
                self.client.table("admin_permissions")
                .select("permission_key, can_view, can_edit, can_delete")
                .eq("admin_id", admin["id"])
                .execute()
            ).data or []
        except APIError as e:
            console.print(f"[red]Error loading permissions: {e.message}[/red]")
            return {}

        permissions = {
            row["permission_key"]: {
                "can_view": bool(row.get("can_view")),
                "can_edit": bool(row.get("can_edit")),
                "can_delete": bool(row.get("can_delete")),
            }
            for row in rows
        }
        self._permissions[user_id] = (self._clock(), permissions)
        return permissions

    def check_permission(self, user_id: Optional[str], permission_key: str, action: str = "view") -> bool:
        if not user_id:
            return False
        if action not in ACTIONS:
            raise ValueError(f"Unknown action '{action}'. Use one of: {', '.join(ACTIONS)}")
        if self.is_super_admin(user_id):
            return True

        try:
            data = call_rpc(
                self.client,
                procedures.HAS_PERMISSION,
                {"check_user_id": user_id, "permission_key": permission_key, "action": action},
            )
        except RpcError as e:
            console.print(f"[red]Error checking permission {permission_key}: {e}[/red]")
            return False
        return bool(data)

    def check_many(self, user_id: Optional[str], checks: list[tuple[str, str]]) -> dict:
        """Check several (key, action) pairs; results keyed by permission key."""
        return {key: self.check_permission(user_id, key, action) for key, action in checks}

    def is_admin(self, user_id: Optional[str]) -> bool:
        """Super admins and collaborators: anyone with a row in admins."""
        if not user_id:
            return False
        try:
            return self._admin_row(user_id) is not None
        except APIError as e:
            console.print(f"[red]Error checking admin: {e.message}[/red]")
            return False

    def user_role(self, user_id: Optional[str]) -> Optional[str]:
        if not user_id:
            return None
        if self.is_super_admin(user_id):
            return ROLE_SUPER_ADMIN
        try:
            row = self._admin_row(user_id, "role")
        except APIError:
            return None
        return row.get("role") if row else None

    def require_permission(self, user_id: Optional[str], permission_key: str, action: str = "view") -> None:
        """
        Raises:
            PermissionDeniedError: the user lacks the permission
        """
        if not self.check_permission(user_id, permission_key, action):
            raise PermissionDeniedError(f"No tienes permiso para {action} {permission_key}.")
