# ============================================================================
# TARGET EXPANDER
# ============================================================================
# EPOCH: 1 - AGENT DEPLOYMENT
# STATUS: Core - Target spec expansion
# PURPOSE: Turn a declarative target spec into ordered task seeds
# LAST_REVIEWED: 19 OCT 2026
# EXPORTS: TaskSeed, expand_targets, build_tasks, parse_ip_range,
#          parse_segment, count_targets, host_name_for
# ============================================================================
"""
Target Expander

Expansion is a pure function of the spec. Order:
    1. hostnames, one seed per entry, in entry order
    2. ip_ranges, each entry in address order
    3. ip_segments, each entry's usable hosts in address order

An IP address already emitted by an earlier range or segment entry is
skipped. Hostname entries are never deduplicated against IPs.

Accepted range formats:
    10.0.0.1-10.0.0.20   full range
    10.0.0.1-20          last-octet shorthand
    10.0.0.7             single address
    10.0.0.0/29          CIDR (usable hosts)
"""

import ipaddress
from dataclasses import dataclass
from typing import Iterator, List, Optional, Tuple

from core.models import DeploymentTask, TargetSpec


@dataclass(frozen=True)
class TaskSeed:
    """What expansion yields before a task is persisted."""
    target_host: str
    target_ip: Optional[str] = None


def host_name_for(ip: str) -> str:
    """10.0.0.5 -> host-10-0-0-5"""
    return "host-" + ip.replace(".", "-")


def parse_ip_range(entry: str) -> Tuple[ipaddress.IPv4Address, ipaddress.IPv4Address]:
    """
    Parse one ip_ranges entry into inclusive (first, last).

    Raises:
        ValueError: unparsable entry or reversed range
    """
    text = entry.strip()
    if not text:
        raise ValueError("empty IP range")

    if "/" in text:
        network = parse_segment(text)
        hosts = _usable_bounds(network)
        return hosts

    if "-" not in text:
        address = ipaddress.IPv4Address(text)
        return address, address

    start_text, end_text = (part.strip() for part in text.split("-", 1))
    start = ipaddress.IPv4Address(start_text)
    if end_text.isdigit():
        last_octet = int(end_text)
        if last_octet > 255:
            raise ValueError(f"last octet out of range in '{entry}'")
        prefix = start_text.rsplit(".", 1)[0]
        end = ipaddress.IPv4Address(f"{prefix}.{last_octet}")
    else:
        end = ipaddress.IPv4Address(end_text)

    if end < start:
        raise ValueError(f"reversed IP range '{entry}'")
    return start, end


def parse_segment(entry: str) -> ipaddress.IPv4Network:
    """
    Parse one ip_segments entry (CIDR). Host bits are allowed and ignored.

    Raises:
        ValueError: not an IPv4 CIDR
    """
    text = entry.strip()
    if "/" not in text:
        raise ValueError(f"'{entry}' is not in CIDR notation")
    return ipaddress.IPv4Network(text, strict=False)


def _usable_bounds(
    network: ipaddress.IPv4Network,
) -> Tuple[ipaddress.IPv4Address, ipaddress.IPv4Address]:
    if network.prefixlen >= 31:
        return network.network_address, network.broadcast_address
    return network.network_address + 1, network.broadcast_address - 1


def _range_size(first: ipaddress.IPv4Address, last: ipaddress.IPv4Address) -> int:
    return int(last) - int(first) + 1


def _walk(first: ipaddress.IPv4Address, last: ipaddress.IPv4Address) -> Iterator[ipaddress.IPv4Address]:
    for value in range(int(first), int(last) + 1):
        yield ipaddress.IPv4Address(value)


def count_targets(spec: TargetSpec) -> int:
    """
    Upper bound on the number of seeds, without materializing them.

    Exact unless range/segment entries overlap.
    """
    total = len(spec.hostnames)
    for entry in spec.ip_ranges:
        total += _range_size(*parse_ip_range(entry))
    for entry in spec.ip_segments:
        total += _range_size(*_usable_bounds(parse_segment(entry)))
    return total


def expand_targets(spec: TargetSpec) -> List[TaskSeed]:
    """
    Expand a validated spec into seeds.

    Raises:
        ValueError: on malformed entries (the validator reports these first)
    """
    seeds = [TaskSeed(target_host=hostname.strip()) for hostname in spec.hostnames]

    seen = set()
    bounds = [parse_ip_range(entry) for entry in spec.ip_ranges]
    bounds += [_usable_bounds(parse_segment(entry)) for entry in spec.ip_segments]

    for first, last in bounds:
        for address in _walk(first, last):
            ip = str(address)
            if ip in seen:
                continue
            seen.add(ip)
            seeds.append(TaskSeed(target_host=host_name_for(ip), target_ip=ip))

    return seeds


def build_tasks(
    job_id: int,
    spec: TargetSpec,
    target_os: str,
    max_retries: int,
) -> List[DeploymentTask]:
    """One pending task per seed, in seed order."""
    return [
        DeploymentTask(
            job_id=job_id,
            target_host=seed.target_host,
            target_ip=seed.target_ip,
            target_os=target_os,
            max_retries=max_retries,
        )
        for seed in expand_targets(spec)
    ]


__all__ = [
    "TaskSeed",
    "host_name_for",
    "parse_ip_range",
    "parse_segment",
    "count_targets",
    "expand_targets",
    "build_tasks",
]
