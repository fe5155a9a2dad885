# ============================================================================
# STORE INTERFACES
# ============================================================================
# EPOCH: 1 - AGENT DEPLOYMENT
# STATUS: Core - Persistence contracts
# PURPOSE: Abstract job / task / activity stores shared by every backend
# LAST_REVIEWED: 19 OCT 2026
# EXPORTS: JobStore, TaskStore, ActivityStore
# ============================================================================
"""
Store Interfaces

Services and orchestrator components depend on these interfaces only.
Two backends implement them:

- repositories.memory  - in-process dicts (tests, single-process runs)
- repositories.*_repo  - PostgreSQL via psycopg3 + psycopg_pool

Update semantics (both backends):
    update(entity) succeeds only if the stored version equals
    entity.version. On success the stored version and entity.version
    are both incremented and True is returned. On conflict nothing is
    written and False is returned; the caller re-reads and retries.
"""

from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional

from core.contracts import JobStatus, TaskStatus
from core.models import ActivityEntry, ActivityType, DeploymentJob, DeploymentTask


class JobStore(ABC):
    """Persistence for DeploymentJob."""

    @abstractmethod
    async def create(self, job: DeploymentJob) -> DeploymentJob:
        """Persist a new job and assign its job_id."""

    @abstractmethod
    async def get(self, job_id: int) -> Optional[DeploymentJob]:
        ...

    @abstractmethod
    async def update(self, job: DeploymentJob) -> bool:
        """Optimistic update; False on version conflict or missing row."""

    @abstractmethod
    async def delete(self, job_id: int) -> bool:
        ...

    @abstractmethod
    async def list(
        self,
        status: Optional[JobStatus] = None,
        owner: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[DeploymentJob]:
        """Jobs newest first."""

    @abstractmethod
    async def count(
        self,
        status: Optional[JobStatus] = None,
        owner: Optional[str] = None,
    ) -> int:
        ...

    @abstractmethod
    async def count_by_status(self) -> Dict[str, int]:
        ...


class TaskStore(ABC):
    """Persistence for DeploymentTask."""

    @abstractmethod
    async def create_many(self, tasks: List[DeploymentTask]) -> List[DeploymentTask]:
        """Persist tasks in order, assigning ascending task_ids."""

    @abstractmethod
    async def get(self, task_id: int) -> Optional[DeploymentTask]:
        ...

    @abstractmethod
    async def update(self, task: DeploymentTask) -> bool:
        """Optimistic update; False on version conflict or missing row."""

    @abstractmethod
    async def list_by_job(self, job_id: int) -> List[DeploymentTask]:
        """All tasks of a job ordered by task_id."""

    @abstractmethod
    async def list_by_status(
        self,
        statuses: Iterable[TaskStatus],
        limit: int = 1000,
    ) -> List[DeploymentTask]:
        """Tasks in any of the given statuses, ordered by task_id."""

    @abstractmethod
    async def delete_by_job(self, job_id: int) -> int:
        """Remove every task of a job; returns the number removed."""

    @abstractmethod
    async def count_by_status(self) -> Dict[str, int]:
        ...


class ActivityStore(ABC):
    """Append-only audit trail."""

    @abstractmethod
    async def append(self, entry: ActivityEntry) -> ActivityEntry:
        ...

    @abstractmethod
    async def list_for(
        self,
        entity_type: ActivityType,
        entity_id: int,
        limit: int = 100,
    ) -> List[ActivityEntry]:
        """Entries for one entity, oldest first."""


__all__ = ["JobStore", "TaskStore", "ActivityStore"]
