from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

import asyncpg

_PROFILE_COLUMNS = """
  user_id::text AS user_id,
  persona_path,
  persona_width,
  persona_height,
  persona_content_type,
  consent_version,
  consent_accepted_at,
  free_generation_quota,
  free_generation_used,
  quota_renewal_at,
  garment_path,
  garment_expires_at,
  created_at,
  updated_at
"""


class ProfilesRepo:
    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def get_profile(self, user_id: str) -> Optional[Dict[str, Any]]:
        sql = f"SELECT {_PROFILE_COLUMNS} FROM profiles WHERE user_id = $1::uuid"
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(sql, user_id)
        return dict(row) if row else None

    async def create_default_profile(
        self,
        user_id: str,
        *,
        consent_version: str,
        free_generation_quota: int,
        quota_renewal_at: datetime,
    ) -> None:
        """Concurrent bootstraps are fine: the loser's insert is a no-op."""
        sql = """
        INSERT INTO profiles (
            user_id, consent_version, consent_accepted_at,
            free_generation_quota, free_generation_used, quota_renewal_at,
            created_at, updated_at
        )
        VALUES ($1::uuid, $2, now(), $3, 0, $4, now(), now())
        ON CONFLICT (user_id) DO NOTHING
        """
        async with self.pool.acquire() as conn:
            await conn.execute(sql, user_id, consent_version, free_generation_quota, quota_renewal_at)

    async def record_generation(
        self,
        user_id: str,
        *,
        garment_path: str,
        garment_expires_at: datetime,
        free_generation_used: int,
    ) -> None:
        """
        Writes the absolute counter computed from the caller's snapshot.
        Last write wins: two concurrent creations can both land on the same value.
        """
        sql = """
        UPDATE profiles
           SET garment_path = $2,
               garment_expires_at = $3,
               free_generation_used = $4,
               updated_at = now()
         WHERE user_id = $1::uuid
        """
        async with self.pool.acquire() as conn:
            await conn.execute(sql, user_id, garment_path, garment_expires_at, free_generation_used)

    async def accept_consent(self, user_id: str, *, version: str, accepted_at: datetime) -> Optional[Dict[str, Any]]:
        sql = f"""
        UPDATE profiles
           SET consent_version = $2,
               consent_accepted_at = $3,
               updated_at = now()
         WHERE user_id = $1::uuid
        RETURNING {_PROFILE_COLUMNS}
        """
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(sql, user_id, version, accepted_at)
        return dict(row) if row else None

    async def set_persona(
        self,
        user_id: str,
        *,
        path: str,
        width: int,
        height: int,
        content_type: str,
        updated_at: datetime,
    ) -> Optional[Dict[str, Any]]:
        sql = f"""
        UPDATE profiles
           SET persona_path = $2,
               persona_width = $3,
               persona_height = $4,
               persona_content_type = $5,
               updated_at = $6
         WHERE user_id = $1::uuid
        RETURNING {_PROFILE_COLUMNS}
        """
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(sql, user_id, path, width, height, content_type, updated_at)
        return dict(row) if row else None
