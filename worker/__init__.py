# ============================================================================
# WORKER MODULE
# ============================================================================
# EPOCH: 1 - AGENT DEPLOYMENT
# STATUS: Core - Task execution components
# PURPOSE: Step executors and the per-task pipeline driver
# LAST_REVIEWED: 19 OCT 2026
# ============================================================================
"""
Worker Module

- steps: StepExecutor capability (simulated and handler-registry backed)
- executor: drives one task through its pipeline
"""

from worker.steps import (
    StepExecutor,
    SimulatedStepExecutor,
    RegisteredStepExecutor,
    STEP_ACTIONS_BY_STATUS,
)
from worker.executor import DeploymentTaskExecutor

__all__ = [
    "StepExecutor",
    "SimulatedStepExecutor",
    "RegisteredStepExecutor",
    "STEP_ACTIONS_BY_STATUS",
    "DeploymentTaskExecutor",
]
