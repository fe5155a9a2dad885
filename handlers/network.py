# ============================================================================
# NETWORK HANDLERS
# ============================================================================
# EPOCH: 1 - AGENT DEPLOYMENT
# STATUS: Handlers - Reachability checks
# PURPOSE: TCP management-port probe, used by the connect step and preflight
# LAST_REVIEWED: 19 OCT 2026
# ============================================================================
"""
Network Handlers

Windows targets are managed over WinRM, everything else over SSH. The
connect step succeeds once the management port accepts a TCP connection.
"""

import asyncio
import logging
import time
from typing import Any, Dict, Optional

from core.contracts import TargetOS
from handlers.registry import (
    register_step_handler,
    StepContext,
    StepResult,
)

logger = logging.getLogger(__name__)

MANAGEMENT_PORTS = {
    TargetOS.WINDOWS: 5985,
    TargetOS.LINUX: 22,
    TargetOS.MACOS: 22,
}


def management_port(target_os: Optional[str]) -> int:
    parsed = TargetOS.parse(target_os or "")
    return MANAGEMENT_PORTS.get(parsed, 22)


async def tcp_probe(host: str, port: int, timeout: float = 5.0) -> Dict[str, Any]:
    """
    Open and close a TCP connection.

    Returns:
        Dict with reachable, latency_ms and error (None when reachable)
    """
    started = time.monotonic()
    try:
        _, writer = await asyncio.wait_for(
            asyncio.open_connection(host, port), timeout=timeout
        )
    except (OSError, asyncio.TimeoutError) as e:
        return {
            "host": host,
            "port": port,
            "reachable": False,
            "latency_ms": None,
            "error": str(e) or e.__class__.__name__,
        }

    writer.close()
    await writer.wait_closed()
    return {
        "host": host,
        "port": port,
        "reachable": True,
        "latency_ms": round((time.monotonic() - started) * 1000, 1),
        "error": None,
    }


async def probe_hostname(hostname: str) -> bool:
    """Reachability probe for preflight: any management port answers."""
    for port in sorted(set(MANAGEMENT_PORTS.values())):
        result = await tcp_probe(hostname, port, timeout=3.0)
        if result["reachable"]:
            return True
    return False


@register_step_handler(
    "connect",
    description="Open a TCP connection to the target's management port",
)
async def connect_handler(ctx: StepContext) -> StepResult:
    """Succeeds when WinRM (Windows) or SSH (Linux/macOS) is reachable."""
    port = management_port(ctx.target_os)
    result = await tcp_probe(ctx.address, port)

    if not result["reachable"]:
        logger.info(f"Connect to {ctx.address}:{port} failed: {result['error']}")
        return StepResult.failure_result(
            f"Cannot reach {ctx.address}:{port}: {result['error']}",
            details={"network_info": result},
            suggested_fix=(
                "Check that the target is online and that the management "
                f"port {port} is open in the firewall"
            ),
        )

    ctx.log(f"Connected to {ctx.address}:{port} in {result['latency_ms']} ms")
    return StepResult.success_result(output={"network_info": result})


__all__ = ["tcp_probe", "probe_hostname", "management_port", "MANAGEMENT_PORTS"]
