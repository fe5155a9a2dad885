# ============================================================================
# TASK REPOSITORY
# ============================================================================
# EPOCH: 1 - AGENT DEPLOYMENT
# STATUS: Core - Task CRUD operations
# PURPOSE: Database access for deployment_tasks table
# LAST_REVIEWED: 19 OCT 2026
# ============================================================================
"""
Task Repository

CRUD operations for deployment tasks. error_details and deployment_logs
are JSONB; generation and version are plain integer columns.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from psycopg import sql
from psycopg.rows import dict_row
from psycopg.types.json import Json

from core.contracts import TaskStatus
from core.models import DeploymentTask
from infrastructure.base_repository import AsyncBaseRepository
from .base import TaskStore
from .database import TABLE_TASKS

_COLUMNS = (
    "job_id", "target_host", "target_ip", "target_os", "status",
    "current_step", "attempt_count", "max_retries", "agent_id",
    "installed_version", "installation_path", "service_status",
    "error_message", "error_code", "error_details", "deployment_logs",
    "created_at", "started_at", "completed_at", "last_contact_at",
    "updated_at", "generation", "repair_active", "version",
)

_IMMUTABLE = ("job_id", "target_host", "target_ip", "created_at", "version")

_INSERT = sql.SQL("INSERT INTO {} ({}) VALUES ({}) RETURNING task_id").format(
    TABLE_TASKS,
    sql.SQL(", ").join(map(sql.Identifier, _COLUMNS)),
    sql.SQL(", ").join(map(sql.Placeholder, _COLUMNS)),
)

_UPDATE = sql.SQL(
    "UPDATE {} SET {}, version = version + 1 "
    "WHERE task_id = %(task_id)s AND version = %(version)s"
).format(
    TABLE_TASKS,
    sql.SQL(", ").join(
        sql.SQL("{} = {}").format(sql.Identifier(c), sql.Placeholder(c))
        for c in _COLUMNS
        if c not in _IMMUTABLE
    ),
)


class TaskRepository(AsyncBaseRepository, TaskStore):
    """PostgreSQL repository for DeploymentTask entities."""

    async def create_many(self, tasks: List[DeploymentTask]) -> List[DeploymentTask]:
        """
        Insert tasks in one transaction.

        task_ids come from the SERIAL column, so insertion order is id order.
        """
        job_id = tasks[0].job_id if tasks else None
        with self._error_context("task creation", job_id):
            async with self._connection() as conn:
                async with conn.transaction():
                    async with conn.cursor(row_factory=dict_row) as cur:
                        for task in tasks:
                            task.version = 1
                            await cur.execute(_INSERT, self._params(task))
                            task.task_id = (await cur.fetchone())["task_id"]

        if tasks:
            self.logger.debug(f"Created {len(tasks)} tasks for job {job_id}")
        return tasks

    async def get(self, task_id: int) -> Optional[DeploymentTask]:
        row = await self._fetch_one(
            sql.SQL("SELECT * FROM {} WHERE task_id = %s").format(TABLE_TASKS),
            (task_id,),
            "task lookup",
            task_id,
        )
        return self._row_to_task(row) if row else None

    async def update(self, task: DeploymentTask) -> bool:
        """Write the task if the stored version still matches."""
        task.updated_at = datetime.now(timezone.utc)
        updated = await self._execute(_UPDATE, self._params(task), "task update", task.task_id)
        if updated == 0:
            self._log_conflict("Task", task.task_id, task.version)
            return False

        task.version += 1
        return True

    async def list_by_job(self, job_id: int) -> List[DeploymentTask]:
        rows = await self._fetch_all(
            sql.SQL("SELECT * FROM {} WHERE job_id = %s ORDER BY task_id").format(TABLE_TASKS),
            (job_id,),
            "task list",
            job_id,
        )
        return [self._row_to_task(row) for row in rows]

    async def list_by_status(
        self,
        statuses: Iterable[TaskStatus],
        limit: int = 1000,
    ) -> List[DeploymentTask]:
        rows = await self._fetch_all(
            sql.SQL(
                "SELECT * FROM {} WHERE status = ANY(%s) ORDER BY task_id LIMIT %s"
            ).format(TABLE_TASKS),
            ([s.value for s in statuses], limit),
            "task list by status",
        )
        return [self._row_to_task(row) for row in rows]

    async def delete_by_job(self, job_id: int) -> int:
        return await self._execute(
            sql.SQL("DELETE FROM {} WHERE job_id = %s").format(TABLE_TASKS),
            (job_id,),
            "task delete",
            job_id,
        )

    async def count_by_status(self) -> Dict[str, int]:
        rows = await self._fetch_all(
            sql.SQL("SELECT status, COUNT(*) AS n FROM {} GROUP BY status").format(TABLE_TASKS),
            None,
            "task status counts",
        )
        return {row["status"]: row["n"] for row in rows}

    @staticmethod
    def _params(task: DeploymentTask) -> Dict[str, Any]:
        params = task.model_dump(
            exclude={"error_details", "deployment_logs", "is_terminal", "is_repairing"}
        )
        params["status"] = task.status.value
        params["service_status"] = task.service_status.value if task.service_status else None
        params["error_details"] = (
            Json(task.error_details.model_dump(mode="json")) if task.error_details else None
        )
        params["deployment_logs"] = Json(
            [entry.model_dump(mode="json") for entry in task.deployment_logs]
        )
        return params

    @staticmethod
    def _row_to_task(row: Dict[str, Any]) -> DeploymentTask:
        data = dict(row)
        data["deployment_logs"] = data.get("deployment_logs") or []
        data["updated_at"] = data.get("updated_at") or data["created_at"]
        return DeploymentTask.model_validate(data)


__all__ = ["TaskRepository"]
