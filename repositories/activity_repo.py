# ============================================================================
# ACTIVITY REPOSITORY
# ============================================================================
# EPOCH: 1 - AGENT DEPLOYMENT
# STATUS: Core - Activity log persistence
# PURPOSE: Database access for activity_log table
# LAST_REVIEWED: 19 OCT 2026
# ============================================================================
"""
Activity Repository

Append-only audit trail of job and task lifecycle transitions.
"""

from typing import List

from psycopg import sql
from psycopg.types.json import Json

from core.models import ActivityEntry, ActivityType
from infrastructure.base_repository import AsyncBaseRepository
from .base import ActivityStore
from .database import TABLE_ACTIVITY


class ActivityRepository(AsyncBaseRepository, ActivityStore):
    """PostgreSQL repository for ActivityEntry records."""

    async def append(self, entry: ActivityEntry) -> ActivityEntry:
        row = await self._fetch_one(
            sql.SQL(
                "INSERT INTO {} (entity_type, entity_id, action, metadata, created_at) "
                "VALUES (%s, %s, %s, %s, %s) RETURNING activity_id"
            ).format(TABLE_ACTIVITY),
            (
                entry.entity_type.value,
                entry.entity_id,
                entry.action.value,
                Json(entry.metadata),
                entry.created_at,
            ),
            "activity append",
            entry.entity_id,
        )
        entry.activity_id = row["activity_id"]
        return entry

    async def list_for(
        self,
        entity_type: ActivityType,
        entity_id: int,
        limit: int = 100,
    ) -> List[ActivityEntry]:
        """Oldest first."""
        rows = await self._fetch_all(
            sql.SQL(
                "SELECT * FROM {} WHERE entity_type = %s AND entity_id = %s "
                "ORDER BY activity_id LIMIT %s"
            ).format(TABLE_ACTIVITY),
            (entity_type.value, entity_id, limit),
            "activity list",
            entity_id,
        )
        return [
            ActivityEntry.model_validate({**row, "metadata": row.get("metadata") or {}})
            for row in rows
        ]


__all__ = ["ActivityRepository"]
