# ============================================================================
# PRE-FLIGHT VALIDATION
# ============================================================================
# EPOCH: 1 - AGENT DEPLOYMENT
# STATUS: Service - Submission pre-flight validation
# PURPOSE: Reject malformed target specs before any task exists
# LAST_REVIEWED: 19 OCT 2026
# ============================================================================
"""
Pre-flight Validation

Runs once in JobService.create_job, before expansion. Every check is
cheap (parsing, counting) except the optional reachability probe, which
runs only when the cheap checks pass.

PreflightResult collects ALL errors (not fail-fast on first), so the
caller can fix a request in one round trip.
"""

import re
from collections import Counter
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional

from core.contracts import TargetOS
from core.errors import ValidationError
from core.logging import get_logger
from core.models import TargetSpec
from orchestrator.expander import count_targets, parse_ip_range, parse_segment

logger = get_logger(__name__)

# RFC 1123 label: alphanumerics and hyphens, no leading/trailing hyphen
_LABEL = re.compile(r"^(?!-)[A-Za-z0-9-]{1,63}(?<!-)$")

ReachabilityProbe = Callable[[str], Awaitable[bool]]


def is_valid_hostname(hostname: str) -> bool:
    """RFC 1123 host name check."""
    name = hostname[:-1] if hostname.endswith(".") else hostname
    if not name or len(name) > 253:
        return False
    return all(_LABEL.match(label) for label in name.split("."))


# ============================================================================
# RESULT
# ============================================================================

@dataclass
class PreflightResult:
    """
    Result of pre-flight validation.

    target_count is an upper bound (exact unless IP entries overlap).
    """
    valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    target_count: int = 0


# ============================================================================
# VALIDATOR
# ============================================================================

class TargetValidator:
    """
    Pre-flight checks for a deployment request.

    Args:
        max_targets_per_job: reject specs expanding beyond this
        probe: optional async callable hostname -> reachable
    """

    def __init__(
        self,
        max_targets_per_job: int = 4096,
        probe: Optional[ReachabilityProbe] = None,
    ):
        self.max_targets_per_job = max_targets_per_job
        self.probe = probe

    async def validate(self, spec: TargetSpec, target_os: str) -> PreflightResult:
        """
        Run all pre-flight checks.

        Returns:
            PreflightResult with collected errors and warnings.
        """
        errors: List[str] = []
        warnings: List[str] = []

        # 1. Something to deploy to
        if spec.is_empty:
            errors.append("No targets specified: provide ip_ranges, hostnames or ip_segments")

        # 2. Target OS
        if TargetOS.parse(target_os) is None:
            errors.append(
                f"Unknown target OS '{target_os}': expected one of "
                f"{', '.join(os.value for os in TargetOS)}"
            )

        # 3. Entry syntax
        errors.extend(self._check_ranges(spec.ip_ranges))
        errors.extend(self._check_segments(spec.ip_segments))
        errors.extend(self._check_hostnames(spec.hostnames))
        warnings.extend(self._duplicate_hostnames(spec.hostnames))

        # 4. Size (only meaningful once every entry parses)
        target_count = 0
        if not errors:
            target_count = count_targets(spec)
            if target_count > self.max_targets_per_job:
                errors.append(
                    f"Target spec expands to {target_count} targets, "
                    f"more than the limit of {self.max_targets_per_job}"
                )

        # 5. Reachability (expensive, last)
        if not errors and self.probe is not None:
            errors.extend(await self._check_reachability(spec.hostnames))

        if errors:
            logger.info(f"Pre-flight rejected target spec with {len(errors)} error(s)")

        return PreflightResult(
            valid=len(errors) == 0,
            errors=errors,
            warnings=warnings,
            target_count=target_count,
        )

    async def validate_or_raise(self, spec: TargetSpec, target_os: str) -> PreflightResult:
        """
        Raises:
            ValidationError carrying every collected error
        """
        result = await self.validate(spec, target_os)
        if not result.valid:
            raise ValidationError(
                f"Invalid deployment request: {'; '.join(result.errors)}",
                errors=result.errors,
            )
        return result

    # ================================================================
    # CHECKS
    # ================================================================

    def _check_ranges(self, entries: List[str]) -> List[str]:
        errors = []
        for entry in entries:
            try:
                parse_ip_range(entry)
            except ValueError as e:
                errors.append(f"Invalid IP range '{entry}': {e}")
        return errors

    def _check_segments(self, entries: List[str]) -> List[str]:
        errors = []
        for entry in entries:
            try:
                parse_segment(entry)
            except ValueError as e:
                errors.append(f"Invalid IP segment '{entry}': {e}")
        return errors

    def _check_hostnames(self, entries: List[str]) -> List[str]:
        return [
            f"Invalid hostname '{entry}'"
            for entry in entries
            if not is_valid_hostname(entry.strip())
        ]

    def _duplicate_hostnames(self, entries: List[str]) -> List[str]:
        counts = Counter(entry.strip().lower() for entry in entries)
        return [
            f"Hostname '{name}' listed {count} times; one task is created per entry"
            for name, count in counts.items()
            if count > 1
        ]

    async def _check_reachability(self, hostnames: List[str]) -> List[str]:
        errors = []
        for hostname in hostnames:
            try:
                reachable = await self.probe(hostname.strip())
            except Exception as e:
                logger.warning(f"Reachability probe for {hostname} raised: {e}")
                reachable = False
            if not reachable:
                errors.append(f"Target '{hostname}' is unreachable")
        return errors


__all__ = ["TargetValidator", "PreflightResult", "ReachabilityProbe", "is_valid_hostname"]
