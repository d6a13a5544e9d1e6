"""Push subscription (user_push_tokens) service functions."""

import json
from typing import Any
from uuid import UUID

import asyncpg


def serialize_subscription(subscription: dict[str, Any] | str) -> str:
    """Store subscriptions as a JSON string blob."""
    if isinstance(subscription, str):
        return subscription
    return json.dumps(subscription, separators=(",", ":"), sort_keys=True)


async def register_push_token(
    conn: asyncpg.Connection,
    user_id: UUID,
    token: dict[str, Any] | str,
    client_info: dict[str, Any] | None = None,
) -> dict | None:
    """Upsert a subscription; the token is unique across users."""
    result = await conn.fetchrow(
        """
        INSERT INTO user_push_tokens (user_id, token, client_info)
        VALUES ($1, $2, $3)
        ON CONFLICT (token) DO UPDATE
        SET user_id = EXCLUDED.user_id,
            client_info = EXCLUDED.client_info,
            updated_at = CURRENT_TIMESTAMP
        RETURNING id, user_id, token, client_info, created_at, updated_at
        """,
        user_id,
        serialize_subscription(token),
        client_info,
    )
    return dict(result) if result else None


async def get_push_tokens(conn: asyncpg.Connection, user_id: UUID) -> list[dict]:
    results = await conn.fetch(
        "SELECT id, user_id, token FROM user_push_tokens WHERE user_id = $1",
        user_id,
    )
    return [dict(row) for row in results]


async def has_push_token(conn: asyncpg.Connection, user_id: UUID) -> bool:
    result = await conn.fetchval(
        "SELECT EXISTS (SELECT 1 FROM user_push_tokens WHERE user_id = $1)",
        user_id,
    )
    return bool(result)


async def delete_push_token(conn: asyncpg.Connection, token: str) -> bool:
    """Delete one subscription by its token. Deleting a missing row is a no-op."""
    result = await conn.execute(
        "DELETE FROM user_push_tokens WHERE token = $1",
        token,
    )
    return int(result.split()[-1]) > 0


async def delete_user_push_token(
    conn: asyncpg.Connection, user_id: UUID, token: dict[str, Any] | str
) -> bool:
    """Explicit unsubscribe, scoped to the owner."""
    result = await conn.execute(
        "DELETE FROM user_push_tokens WHERE user_id = $1 AND token = $2",
        user_id,
        serialize_subscription(token),
    )
    return int(result.split()[-1]) > 0
