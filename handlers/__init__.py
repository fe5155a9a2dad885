# ============================================================================
# STEP HANDLERS
# ============================================================================
# EPOCH: 1 - AGENT DEPLOYMENT
# STATUS: Core - Step handler registration and lookup
# PURPOSE: Register and discover pipeline step handlers
# LAST_REVIEWED: 19 OCT 2026
# ============================================================================
"""
Step Handler Registry

Provides a decorator-based registration system for pipeline step handlers.

Usage:
    from handlers import register_step_handler, StepContext, StepResult

    @register_step_handler("install", os_family="windows")
    async def install_msi(ctx: StepContext) -> StepResult:
        # Do work
        return StepResult.success_result({"package": "agent.msi"})
"""

from handlers.registry import (
    STEP_ACTIONS,
    register_step_handler,
    get_step_handler,
    get_step_handler_or_raise,
    list_step_handlers,
    missing_step_handlers,
    clear_step_handlers,
    execute_step_handler,
    StepHandlerFunc,
    StepContext,
    StepResult,
    HandlerError,
    HandlerNotFoundError,
    DuplicateHandlerError,
)

# Import handler modules to trigger registration
import handlers.network  # noqa: F401 - import for side effects

__all__ = [
    "STEP_ACTIONS",
    "register_step_handler",
    "get_step_handler",
    "get_step_handler_or_raise",
    "list_step_handlers",
    "missing_step_handlers",
    "clear_step_handlers",
    "execute_step_handler",
    "StepHandlerFunc",
    "StepContext",
    "StepResult",
    "HandlerError",
    "HandlerNotFoundError",
    "DuplicateHandlerError",
]
