# ============================================================================
# STEP HANDLER REGISTRY
# ============================================================================
# EPOCH: 1 - AGENT DEPLOYMENT
# STATUS: Core - Step handler registration and lookup
# PURPOSE: Register and discover pipeline step handlers by step and OS family
# LAST_REVIEWED: 19 OCT 2026
# ============================================================================
"""
Step Handler Registry

Central registry for pipeline step handlers. RegisteredStepExecutor uses
this to find the function that performs a step on a given target OS.

Design:
- Handlers are registered at import time via decorator
- Key is (action, os_family); os_family None means "any OS"
- Lookup prefers the OS-specific handler, then the generic one
- Fail-fast on duplicate registration
- Supports both sync and async handlers
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Union

logger = logging.getLogger(__name__)

STEP_ACTIONS = ("connect", "download", "install", "configure", "verify")


# ============================================================================
# HANDLER TYPES
# ============================================================================

@dataclass
class StepContext:
    """
    Context passed to step handlers.

    Contains everything a handler needs to act on one target.
    """
    task_id: int
    job_id: int
    target_host: str
    target_ip: Optional[str]
    target_os: str
    action: str
    attempt: int
    generation: int
    repair: bool = False
    installation_path: str = ""
    agent_version: str = ""
    params: Dict[str, Any] = field(default_factory=dict)

    # Log callback (message, level) appended to the task's deployment log
    log_callback: Optional[Callable[[str, str], None]] = None

    @property
    def address(self) -> str:
        """IP if known, else hostname."""
        return self.target_ip or self.target_host

    def log(self, message: str, level: str = "info") -> None:
        """Append to the task's deployment log if a callback is available."""
        if self.log_callback:
            self.log_callback(message, level)


@dataclass
class StepResult:
    """
    Result returned by step handlers.

    Handlers return this to indicate success/failure, or raise StepFailure.
    """
    success: bool = True
    output: Dict[str, Any] = field(default_factory=dict)
    error_message: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)
    suggested_fix: Optional[str] = None

    @classmethod
    def success_result(
        cls,
        output: Optional[Dict[str, Any]] = None,
    ) -> "StepResult":
        """Create a success result."""
        return cls(success=True, output=output or {})

    @classmethod
    def failure_result(
        cls,
        error_message: str,
        details: Optional[Dict[str, Any]] = None,
        suggested_fix: Optional[str] = None,
    ) -> "StepResult":
        """Create a failure result."""
        return cls(
            success=False,
            error_message=error_message,
            details=details or {},
            suggested_fix=suggested_fix,
        )


# Handler function type
StepHandlerFunc = Callable[[StepContext], Union[StepResult, Awaitable[StepResult]]]


# ============================================================================
# EXCEPTIONS
# ============================================================================

class HandlerError(Exception):
    """Base exception for handler errors."""
    pass


class HandlerNotFoundError(HandlerError):
    """Raised when no handler covers an action/OS pair."""
    def __init__(self, action: str, os_family: Optional[str]):
        self.action = action
        self.os_family = os_family
        super().__init__(f"No step handler for {action} on {os_family or 'any OS'}")


class DuplicateHandlerError(HandlerError):
    """Raised when an action/OS pair is already registered."""
    def __init__(self, action: str, os_family: Optional[str]):
        self.action = action
        self.os_family = os_family
        super().__init__(f"Step handler already registered: {action} on {os_family or 'any OS'}")


# ============================================================================
# REGISTRY
# ============================================================================

_HandlerKey = Tuple[str, Optional[str]]

_handlers: Dict[_HandlerKey, StepHandlerFunc] = {}
_handler_metadata: Dict[_HandlerKey, Dict[str, Any]] = {}


def register_step_handler(
    action: str,
    *,
    os_family: Optional[str] = None,
    description: str = "",
) -> Callable[[StepHandlerFunc], StepHandlerFunc]:
    """
    Decorator to register a step handler.

    Args:
        action: One of connect / download / install / configure / verify
        os_family: windows / linux / macos, or None for any OS
        description: Human-readable description

    Example:
        @register_step_handler("install", os_family="linux")
        async def install_deb(ctx: StepContext) -> StepResult:
            ...
            return StepResult.success_result({"package": "agent.deb"})
    """
    if action not in STEP_ACTIONS:
        raise ValueError(f"Unknown step action: {action}")

    def decorator(func: StepHandlerFunc) -> StepHandlerFunc:
        key = (action, os_family)
        if key in _handlers:
            raise DuplicateHandlerError(action, os_family)

        _handlers[key] = func
        _handler_metadata[key] = {
            "action": action,
            "os_family": os_family,
            "description": description,
            "function": func.__name__,
            "module": func.__module__,
            "is_async": asyncio.iscoroutinefunction(func),
            "registered_at": datetime.now(timezone.utc).isoformat(),
        }

        logger.debug(
            f"Registered step handler: {action}/{os_family or '*'} "
            f"({func.__module__}.{func.__name__})"
        )
        return func

    return decorator


def get_step_handler(action: str, os_family: Optional[str] = None) -> Optional[StepHandlerFunc]:
    """OS-specific handler if registered, else the generic one, else None."""
    return _handlers.get((action, os_family)) or _handlers.get((action, None))


def get_step_handler_or_raise(action: str, os_family: Optional[str] = None) -> StepHandlerFunc:
    handler = get_step_handler(action, os_family)
    if handler is None:
        raise HandlerNotFoundError(action, os_family)
    return handler


def list_step_handlers() -> List[Dict[str, Any]]:
    """All registered handlers with metadata."""
    return list(_handler_metadata.values())


def missing_step_handlers(os_family: Optional[str] = None) -> List[str]:
    """Actions with no handler for the given OS family."""
    return [a for a in STEP_ACTIONS if get_step_handler(a, os_family) is None]


def clear_step_handlers() -> None:
    """
    Clear all registered handlers.

    Primarily for testing.
    """
    _handlers.clear()
    _handler_metadata.clear()
    logger.debug("Cleared all step handlers")


# ============================================================================
# ASYNC HANDLER EXECUTION
# ============================================================================

async def execute_step_handler(
    context: StepContext,
) -> StepResult:
    """
    Execute the handler for context.action on context.target_os.

    Sync handlers run in the default thread pool. Exceptions propagate to
    the caller, which records them as step failures.

    Raises:
        HandlerNotFoundError if no handler covers the action
    """
    handler = get_step_handler_or_raise(context.action, context.target_os)

    if asyncio.iscoroutinefunction(handler):
        return await handler(context)

    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, handler, context)


# ============================================================================
# EXPORTS
# ============================================================================

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
