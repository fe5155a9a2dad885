# ============================================================================
# ORCHESTRATOR MODULE
# ============================================================================
# EPOCH: 1 - AGENT DEPLOYMENT
# STATUS: Core - Job execution runtime
# PURPOSE: Expansion, scheduling, aggregation and lifecycle control
# LAST_REVIEWED: 19 OCT 2026
# ============================================================================
"""
Orchestrator Module

Usage:
    from orchestrator import Orchestrator

    orchestrator = Orchestrator(job_store, task_store, activity, locks, steps)
    await orchestrator.start()
"""

from .loop import Orchestrator
from .scheduler import TaskScheduler, WorkItem
from .aggregator import JobAggregator, compute_progress, derive_status
from .controller import JobController
from .retry import RetryManager
from .expander import TaskSeed, build_tasks, count_targets, expand_targets

__all__ = [
    "Orchestrator",
    "TaskScheduler",
    "WorkItem",
    "JobAggregator",
    "compute_progress",
    "derive_status",
    "JobController",
    "RetryManager",
    "TaskSeed",
    "build_tasks",
    "count_targets",
    "expand_targets",
]
