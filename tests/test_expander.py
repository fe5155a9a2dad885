# ============================================================================
# TARGET EXPANSION TESTS
# ============================================================================
# EPOCH: 1 - AGENT DEPLOYMENT
# STATUS: Tests - Target expander
# PURPOSE: Verify range / segment / hostname expansion and determinism
# LAST_REVIEWED: 19 OCT 2026
# ============================================================================
"""
Target Expansion Tests

Run with:
    pytest tests/test_expander.py -v
"""

import ipaddress

import pytest

from core.contracts import TaskStatus
from core.models import TargetSpec
from orchestrator.expander import (
    build_tasks,
    count_targets,
    expand_targets,
    host_name_for,
    parse_ip_range,
    parse_segment,
)


class TestParsing:

    def test_full_range(self):
        first, last = parse_ip_range("10.0.0.1-10.0.0.20")
        assert str(first) == "10.0.0.1"
        assert str(last) == "10.0.0.20"

    def test_last_octet_shorthand(self):
        first, last = parse_ip_range("192.168.1.10-12")
        assert (str(first), str(last)) == ("192.168.1.10", "192.168.1.12")

    def test_single_address(self):
        first, last = parse_ip_range("10.1.1.1")
        assert first == last == ipaddress.IPv4Address("10.1.1.1")

    def test_cidr_in_range_uses_usable_hosts(self):
        first, last = parse_ip_range("10.0.1.0/30")
        assert (str(first), str(last)) == ("10.0.1.1", "10.0.1.2")

    @pytest.mark.parametrize("entry", [
        "10.0.0.20-10.0.0.1",
        "10.0.0.5-3",
        "10.0.0.1-300",
        "not-an-ip",
        "10.0.0.256",
        "",
    ])
    def test_invalid_ranges(self, entry):
        with pytest.raises(ValueError):
            parse_ip_range(entry)

    def test_segment_requires_cidr(self):
        with pytest.raises(ValueError):
            parse_segment("10.0.0.0")

    def test_segment_host_bits_ignored(self):
        assert str(parse_segment("10.0.0.7/29")) == "10.0.0.0/29"


class TestExpansion:

    def test_hostnames_one_task_each(self):
        seeds = expand_targets(TargetSpec(hostnames=["h1", "h2"]))
        assert [s.target_host for s in seeds] == ["h1", "h2"]
        assert all(s.target_ip is None for s in seeds)

    def test_range_host_names(self):
        seeds = expand_targets(TargetSpec(ip_ranges=["10.0.0.1-3"]))
        assert [s.target_ip for s in seeds] == ["10.0.0.1", "10.0.0.2", "10.0.0.3"]
        assert seeds[0].target_host == "host-10-0-0-1"
        assert host_name_for("172.16.5.4") == "host-172-16-5-4"

    def test_segment_enumerates_usable_hosts(self):
        seeds = expand_targets(TargetSpec(ip_segments=["10.0.1.0/28"]))
        assert len(seeds) == 14
        assert seeds[0].target_ip == "10.0.1.1"
        assert seeds[-1].target_ip == "10.0.1.14"

    def test_point_to_point_segment_keeps_both_addresses(self):
        seeds = expand_targets(TargetSpec(ip_segments=["10.0.0.0/31"]))
        assert [s.target_ip for s in seeds] == ["10.0.0.0", "10.0.0.1"]

    def test_order_hostnames_ranges_segments(self):
        spec = TargetSpec(
            ip_segments=["10.9.0.0/30"],
            ip_ranges=["10.0.0.1"],
            hostnames=["db-01"],
        )
        hosts = [s.target_host for s in expand_targets(spec)]
        assert hosts == ["db-01", "host-10-0-0-1", "host-10-9-0-1", "host-10-9-0-2"]

    def test_duplicate_addresses_emitted_once(self):
        spec = TargetSpec(ip_ranges=["10.0.0.1-4", "10.0.0.3-6"], ip_segments=["10.0.0.0/29"])
        ips = [s.target_ip for s in expand_targets(spec)]
        assert ips == [f"10.0.0.{n}" for n in range(1, 7)]
        assert count_targets(spec) >= len(ips)

    def test_deterministic(self):
        spec = TargetSpec(hostnames=["a", "b"], ip_ranges=["10.0.0.1-5"], ip_segments=["10.1.0.0/29"])
        assert expand_targets(spec) == expand_targets(spec)

    def test_build_tasks(self):
        spec = TargetSpec(hostnames=["a"], ip_ranges=["10.0.0.1-2"])
        tasks = build_tasks(7, spec, "windows", 5)
        assert len(tasks) == 3
        for task in tasks:
            assert task.job_id == 7
            assert task.status == TaskStatus.PENDING
            assert task.attempt_count == 0
            assert task.max_retries == 5
            assert task.target_os == "windows"
