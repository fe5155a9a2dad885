# ============================================================================
# TASK SERVICE
# ============================================================================
# EPOCH: 1 - AGENT DEPLOYMENT
# STATUS: Core - Task reads and compare-and-set mutation
# PURPOSE: Single path through which every component mutates a task
# LAST_REVIEWED: 19 OCT 2026
# ============================================================================
"""
Task Service

Tasks are written concurrently by the task executor, the job controller,
the retry/repair manager and the watchdog. Every write goes through
mutate(), which re-reads the task, applies the change and writes with an
optimistic version check, retrying on conflict. The mutation callable sees
the freshest state on every attempt, so guards inside it (status,
generation) are always evaluated against what is actually stored.
"""

import logging
from typing import Callable, List, Optional

from core.errors import ConflictError, NotFoundError
from core.models import DeploymentTask
from repositories.base import TaskStore

logger = logging.getLogger(__name__)

# Returns False to leave the task untouched
TaskMutation = Callable[[DeploymentTask], bool]


class TaskService:
    """Service for task reads and version-checked writes."""

    MAX_CAS_ATTEMPTS = 20

    def __init__(self, store: TaskStore):
        self.store = store

    async def get(self, task_id: int) -> Optional[DeploymentTask]:
        return await self.store.get(task_id)

    async def get_or_raise(self, task_id: int) -> DeploymentTask:
        task = await self.store.get(task_id)
        if task is None:
            raise NotFoundError("Task", task_id)
        return task

    async def list_for_job(self, job_id: int) -> List[DeploymentTask]:
        return await self.store.list_by_job(job_id)

    async def mutate(
        self,
        task_id: int,
        mutation: TaskMutation,
    ) -> Optional[DeploymentTask]:
        """
        Apply mutation with compare-and-set semantics.

        Exceptions raised by the mutation propagate unchanged and nothing
        is written.

        Returns:
            The stored task after the write, or None if the task does not
            exist or the mutation declined
        """
        for attempt in range(1, self.MAX_CAS_ATTEMPTS + 1):
            task = await self.store.get(task_id)
            if task is None:
                return None
            if not mutation(task):
                return None
            if await self.store.update(task):
                return task
            logger.debug(f"Version conflict on task {task_id}, attempt {attempt}")

        logger.error(f"Gave up updating task {task_id} after {self.MAX_CAS_ATTEMPTS} conflicts")
        raise ConflictError(f"Task {task_id} is being modified concurrently", task_id)


__all__ = ["TaskService", "TaskMutation"]
