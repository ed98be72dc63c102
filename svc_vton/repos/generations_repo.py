from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Iterable, Optional

import asyncpg

_GENERATION_COLUMNS = """
  id::text AS id,
  user_id::text AS user_id,
  status,
  persona_path_snapshot,
  garment_path_snapshot,
  vertex_job_id,
  result_path,
  error_reason,
  user_rating,
  created_at,
  started_at,
  completed_at,
  expires_at,
  rated_at
"""

# Columns a lifecycle transition may touch. Snapshot paths are write-once and never listed here.
_TRANSITION_FIELDS = ("status", "started_at", "completed_at", "result_path", "error_reason")


class GenerationsRepo:
    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def insert_generation(self, row: Dict[str, Any]) -> Dict[str, Any]:
        sql = f"""
        INSERT INTO vton_generations (
            id, user_id, status,
            persona_path_snapshot, garment_path_snapshot,
            expires_at, created_at
        )
        VALUES ($1::uuid, $2::uuid, $3, $4, $5, $6, $7)
        RETURNING {_GENERATION_COLUMNS}
        """
        async with self.pool.acquire() as conn:
            inserted = await conn.fetchrow(
                sql,
                row["id"],
                row["user_id"],
                row["status"],
                row["persona_path_snapshot"],
                row["garment_path_snapshot"],
                row["expires_at"],
                row["created_at"],
            )
        if not inserted:
            raise RuntimeError("generation_insert_returned_no_row")
        return dict(inserted)

    async def set_vertex_job_id(self, generation_id: str, vertex_job_id: str) -> None:
        sql = """
        UPDATE vton_generations
           SET vertex_job_id = $2
         WHERE id = $1::uuid
           AND vertex_job_id IS NULL
        """
        async with self.pool.acquire() as conn:
            await conn.execute(sql, generation_id, vertex_job_id)

    async def get_generation(self, generation_id: str, user_id: str) -> Optional[Dict[str, Any]]:
        sql = f"""
        SELECT {_GENERATION_COLUMNS}
          FROM vton_generations
         WHERE id = $1::uuid
           AND user_id = $2::uuid
        """
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(sql, generation_id, user_id)
        return dict(row) if row else None

    async def get_by_vertex_job_id(self, vertex_job_id: str) -> Optional[Dict[str, Any]]:
        sql = f"""
        SELECT {_GENERATION_COLUMNS}
          FROM vton_generations
         WHERE vertex_job_id = $1
         ORDER BY created_at DESC
         LIMIT 1
        """
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(sql, vertex_job_id)
        return dict(row) if row else None

    async def apply_transition(
        self,
        generation_id: str,
        *,
        from_statuses: Iterable[str],
        changes: Dict[str, Any],
    ) -> Optional[Dict[str, Any]]:
        """
        Conditional update: only applies while the row is still in one of from_statuses.
        Returns the updated row, or None when another writer got there first.
        """
        unknown = set(changes) - set(_TRANSITION_FIELDS)
        if unknown:
            raise ValueError(f"unsupported transition fields: {sorted(unknown)}")

        assignments = []
        params: list[Any] = [generation_id, list(from_statuses)]
        for name in _TRANSITION_FIELDS:
            if name in changes:
                params.append(changes[name])
                assignments.append(f"{name} = ${len(params)}")
        if not assignments:
            raise ValueError("transition requires at least one change")

        sql = f"""
        UPDATE vton_generations
           SET {", ".join(assignments)}
         WHERE id = $1::uuid
           AND status = ANY($2::text[])
        RETURNING {_GENERATION_COLUMNS}
        """
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(sql, *params)
        return dict(row) if row else None

    async def set_rating(
        self,
        generation_id: str,
        user_id: str,
        *,
        rating: int,
        rated_at: datetime,
        now: datetime,
    ) -> Optional[Dict[str, Any]]:
        sql = f"""
        UPDATE vton_generations
           SET user_rating = $3,
               rated_at = $4
         WHERE id = $1::uuid
           AND user_id = $2::uuid
           AND status = 'succeeded'
           AND (expires_at IS NULL OR expires_at > $5)
        RETURNING {_GENERATION_COLUMNS}
        """
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(sql, generation_id, user_id, rating, rated_at, now)
        return dict(row) if row else None
