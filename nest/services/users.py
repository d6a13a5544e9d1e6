"""Profile lookups used to pick notification recipients."""

from typing import Any
from uuid import UUID

import asyncpg

ROLE_ADMIN = "Admin"
ROLE_SUPER_ADMIN = "SuperAdmin"
ADMIN_ROLES = (ROLE_ADMIN, ROLE_SUPER_ADMIN)
STATUS_ACTIVE = "Active"

PROFILE_COLUMNS = "id, email, full_name, role, status, notification_preferences"


async def get_profile(
    conn: asyncpg.Connection, user_id: UUID
) -> dict[str, Any] | None:
    """Get a profile by ID."""
    result = await conn.fetchrow(
        f"SELECT {PROFILE_COLUMNS} FROM profiles WHERE id = $1",
        user_id,
    )
    return dict(result) if result else None


async def list_active_admins(conn: asyncpg.Connection) -> list[dict[str, Any]]:
    """Every active profile that passes the admin check, SuperAdmins included."""
    results = await conn.fetch(
        f"""
        SELECT {PROFILE_COLUMNS}
        FROM profiles
        WHERE role = ANY($1::text[]) AND status = $2
        ORDER BY created_at
        """,
        list(ADMIN_ROLES),
        STATUS_ACTIVE,
    )
    return [dict(row) for row in results]


async def list_active_users(conn: asyncpg.Connection) -> list[dict[str, Any]]:
    """Every active profile, admins included."""
    results = await conn.fetch(
        f"""
        SELECT {PROFILE_COLUMNS}
        FROM profiles
        WHERE status = $1
        ORDER BY created_at
        """,
        STATUS_ACTIVE,
    )
    return [dict(row) for row in results]


def display_name(profile: dict[str, Any] | None, fallback: str = "there") -> str:
    if not profile:
        return fallback
    return profile.get("full_name") or profile.get("email") or fallback
