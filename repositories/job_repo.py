# ============================================================================
# JOB REPOSITORY
# ============================================================================
# EPOCH: 1 - AGENT DEPLOYMENT
# STATUS: Core - Job CRUD operations
# PURPOSE: Database access for deployment_jobs table
# LAST_REVIEWED: 19 OCT 2026
# ============================================================================
"""
Job Repository

CRUD operations for deployment jobs. Target spec and progress are stored
as JSONB; version backs optimistic locking.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from psycopg import sql
from psycopg.types.json import Json

from core.contracts import JobStatus
from core.models import DeploymentJob, JobProgress, TargetSpec
from infrastructure.base_repository import AsyncBaseRepository
from .base import JobStore
from .database import TABLE_JOBS

_INSERT_COLUMNS = (
    "name", "description", "targets", "target_os", "max_retries", "status",
    "progress", "cancel_reason", "owner", "tenant_id", "created_at",
    "started_at", "completed_at", "updated_at", "version",
)

# Columns the engine rewrites after creation
_MUTABLE_COLUMNS = (
    "status", "progress", "max_retries", "cancel_reason",
    "started_at", "completed_at", "updated_at",
)


class JobRepository(AsyncBaseRepository, JobStore):
    """PostgreSQL repository for DeploymentJob entities."""

    async def create(self, job: DeploymentJob) -> DeploymentJob:
        """Insert a job; job_id is assigned by the SERIAL column."""
        job.version = 1
        row = await self._fetch_one(
            sql.SQL("INSERT INTO {} ({}) VALUES ({}) RETURNING job_id").format(
                TABLE_JOBS,
                sql.SQL(", ").join(map(sql.Identifier, _INSERT_COLUMNS)),
                sql.SQL(", ").join(map(sql.Placeholder, _INSERT_COLUMNS)),
            ),
            self._params(job),
            "job creation",
        )
        job.job_id = row["job_id"]
        self.logger.debug(f"Created job {job.job_id} ({job.name})")
        return job

    async def get(self, job_id: int) -> Optional[DeploymentJob]:
        row = await self._fetch_one(
            sql.SQL("SELECT * FROM {} WHERE job_id = %s").format(TABLE_JOBS),
            (job_id,),
            "job lookup",
            job_id,
        )
        return self._row_to_job(row) if row else None

    async def update(self, job: DeploymentJob) -> bool:
        """Write mutable columns if the stored version still matches."""
        job.updated_at = datetime.now(timezone.utc)
        updated = await self._execute(
            sql.SQL(
                "UPDATE {} SET {}, version = version + 1 "
                "WHERE job_id = %(job_id)s AND version = %(version)s"
            ).format(
                TABLE_JOBS,
                sql.SQL(", ").join(
                    sql.SQL("{} = {}").format(sql.Identifier(c), sql.Placeholder(c))
                    for c in _MUTABLE_COLUMNS
                ),
            ),
            self._params(job),
            "job update",
            job.job_id,
        )
        if updated == 0:
            self._log_conflict("Job", job.job_id, job.version)
            return False

        job.version += 1
        return True

    async def delete(self, job_id: int) -> bool:
        deleted = await self._execute(
            sql.SQL("DELETE FROM {} WHERE job_id = %s").format(TABLE_JOBS),
            (job_id,),
            "job delete",
            job_id,
        )
        return deleted > 0

    @staticmethod
    def _where(status: Optional[JobStatus], owner: Optional[str]):
        clauses = []
        params: List[Any] = []
        if status is not None:
            clauses.append(sql.SQL("status = %s"))
            params.append(status.value)
        if owner is not None:
            clauses.append(sql.SQL("owner = %s"))
            params.append(owner)
        if not clauses:
            return sql.SQL(""), params
        return sql.SQL(" WHERE ") + sql.SQL(" AND ").join(clauses), params

    async def list(
        self,
        status: Optional[JobStatus] = None,
        owner: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[DeploymentJob]:
        """List jobs newest first."""
        where, params = self._where(status, owner)
        rows = await self._fetch_all(
            sql.SQL(
                "SELECT * FROM {}{} ORDER BY created_at DESC, job_id DESC LIMIT %s OFFSET %s"
            ).format(TABLE_JOBS, where),
            (*params, limit, offset),
            "job list",
        )
        return [self._row_to_job(row) for row in rows]

    async def count(
        self,
        status: Optional[JobStatus] = None,
        owner: Optional[str] = None,
    ) -> int:
        where, params = self._where(status, owner)
        row = await self._fetch_one(
            sql.SQL("SELECT COUNT(*) AS n FROM {}{}").format(TABLE_JOBS, where),
            params,
            "job count",
        )
        return row["n"]

    async def count_by_status(self) -> Dict[str, int]:
        rows = await self._fetch_all(
            sql.SQL("SELECT status, COUNT(*) AS n FROM {} GROUP BY status").format(TABLE_JOBS),
            None,
            "job status counts",
        )
        return {row["status"]: row["n"] for row in rows}

    @staticmethod
    def _params(job: DeploymentJob) -> Dict[str, Any]:
        params = job.model_dump(
            include={
                "job_id", "name", "description", "target_os", "max_retries",
                "cancel_reason", "owner", "tenant_id", "created_at",
                "started_at", "completed_at", "updated_at", "version",
            }
        )
        params["status"] = job.status.value
        params["targets"] = Json(job.targets.model_dump())
        params["progress"] = Json(job.progress.model_dump(exclude={"percent_complete"}))
        return params

    @staticmethod
    def _row_to_job(row: Dict[str, Any]) -> DeploymentJob:
        data = dict(row)
        data["targets"] = TargetSpec.model_validate(data.get("targets") or {})
        data["progress"] = JobProgress.model_validate(data.get("progress") or {})
        data["updated_at"] = data.get("updated_at") or data["created_at"]
        return DeploymentJob.model_validate(data)


__all__ = ["JobRepository"]
