# ============================================================================
# IN-MEMORY STORES
# ============================================================================
# EPOCH: 1 - AGENT DEPLOYMENT
# STATUS: Core - Process-local persistence
# PURPOSE: Dict-backed JobStore / TaskStore / ActivityStore
# LAST_REVIEWED: 19 OCT 2026
# EXPORTS: InMemoryJobStore, InMemoryTaskStore, InMemoryActivityStore
# ============================================================================
"""
In-Memory Stores

Same contracts as the PostgreSQL repositories. Entities are deep-copied on
the way in and on the way out, so callers never share mutable state with
the store and optimistic version checks behave like the database ones.
"""

import itertools
import logging
from collections import Counter
from typing import Dict, Iterable, List, Optional

from core.contracts import JobStatus, TaskStatus
from core.models import ActivityEntry, ActivityType, DeploymentJob, DeploymentTask
from .base import ActivityStore, JobStore, TaskStore

logger = logging.getLogger(__name__)


class InMemoryJobStore(JobStore):
    """Dict-backed job store."""

    def __init__(self):
        self._jobs: Dict[int, DeploymentJob] = {}
        self._ids = itertools.count(1)

    async def create(self, job: DeploymentJob) -> DeploymentJob:
        job.job_id = next(self._ids)
        job.version = 1
        self._jobs[job.job_id] = job.model_copy(deep=True)
        logger.debug(f"Created job {job.job_id}")
        return job

    async def get(self, job_id: int) -> Optional[DeploymentJob]:
        stored = self._jobs.get(job_id)
        return stored.model_copy(deep=True) if stored else None

    async def update(self, job: DeploymentJob) -> bool:
        stored = self._jobs.get(job.job_id)
        if stored is None:
            return False
        if stored.version != job.version:
            logger.debug(
                f"Version conflict updating job {job.job_id} "
                f"(expected {job.version}, stored {stored.version})"
            )
            return False
        job.version += 1
        self._jobs[job.job_id] = job.model_copy(deep=True)
        return True

    async def delete(self, job_id: int) -> bool:
        return self._jobs.pop(job_id, None) is not None

    def _filtered(
        self,
        status: Optional[JobStatus],
        owner: Optional[str],
    ) -> List[DeploymentJob]:
        jobs = [
            j for j in self._jobs.values()
            if (status is None or j.status == status)
            and (owner is None or j.owner == owner)
        ]
        jobs.sort(key=lambda j: (j.created_at, j.job_id), reverse=True)
        return jobs

    async def list(
        self,
        status: Optional[JobStatus] = None,
        owner: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[DeploymentJob]:
        jobs = self._filtered(status, owner)[offset:offset + limit]
        return [j.model_copy(deep=True) for j in jobs]

    async def count(
        self,
        status: Optional[JobStatus] = None,
        owner: Optional[str] = None,
    ) -> int:
        return len(self._filtered(status, owner))

    async def count_by_status(self) -> Dict[str, int]:
        return dict(Counter(j.status.value for j in self._jobs.values()))


class InMemoryTaskStore(TaskStore):
    """Dict-backed task store."""

    def __init__(self):
        self._tasks: Dict[int, DeploymentTask] = {}
        self._ids = itertools.count(1)

    async def create_many(self, tasks: List[DeploymentTask]) -> List[DeploymentTask]:
        for task in tasks:
            task.task_id = next(self._ids)
            task.version = 1
            self._tasks[task.task_id] = task.model_copy(deep=True)
        return tasks

    async def get(self, task_id: int) -> Optional[DeploymentTask]:
        stored = self._tasks.get(task_id)
        return stored.model_copy(deep=True) if stored else None

    async def update(self, task: DeploymentTask) -> bool:
        stored = self._tasks.get(task.task_id)
        if stored is None or stored.version != task.version:
            return False
        task.version += 1
        self._tasks[task.task_id] = task.model_copy(deep=True)
        return True

    async def list_by_job(self, job_id: int) -> List[DeploymentTask]:
        return [
            t.model_copy(deep=True)
            for t in sorted(self._tasks.values(), key=lambda t: t.task_id)
            if t.job_id == job_id
        ]

    async def list_by_status(
        self,
        statuses: Iterable[TaskStatus],
        limit: int = 1000,
    ) -> List[DeploymentTask]:
        wanted = set(statuses)
        matches = [
            t for t in sorted(self._tasks.values(), key=lambda t: t.task_id)
            if t.status in wanted
        ]
        return [t.model_copy(deep=True) for t in matches[:limit]]

    async def delete_by_job(self, job_id: int) -> int:
        doomed = [tid for tid, t in self._tasks.items() if t.job_id == job_id]
        for tid in doomed:
            del self._tasks[tid]
        return len(doomed)

    async def count_by_status(self) -> Dict[str, int]:
        return dict(Counter(t.status.value for t in self._tasks.values()))


class InMemoryActivityStore(ActivityStore):
    """List-backed activity store."""

    def __init__(self):
        self._entries: List[ActivityEntry] = []
        self._ids = itertools.count(1)

    async def append(self, entry: ActivityEntry) -> ActivityEntry:
        entry.activity_id = next(self._ids)
        self._entries.append(entry.model_copy(deep=True))
        return entry

    async def list_for(
        self,
        entity_type: ActivityType,
        entity_id: int,
        limit: int = 100,
    ) -> List[ActivityEntry]:
        matches = [
            e for e in self._entries
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]
        return [e.model_copy(deep=True) for e in matches[:limit]]


__all__ = ["InMemoryJobStore", "InMemoryTaskStore", "InMemoryActivityStore"]
