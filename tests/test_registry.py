"""
Unit tests for the service health registry.

Tests cover:
- Verdict application (failure counting, uptime accumulation)
- Overall health classification
- Restart budget bookkeeping
- Copy semantics of returned records
"""

from datetime import datetime, timedelta, timezone

import pytest

from recovery.registry import ServiceHealthRegistry, apply_verdict, classify_overall
from recovery.types import (
    OverallHealth,
    ProbeVerdict,
    ServiceHealthRecord,
    ServiceStatus,
)

T0 = datetime(2026, 10, 18, 9, 0, 0, tzinfo=timezone.utc)


def _record(name: str, status: ServiceStatus) -> ServiceHealthRecord:
    return ServiceHealthRecord(name=name, status=status)


class TestApplyVerdict:
    """Test the pure verdict application function."""

    def test_first_failure_creates_record(self):
        """Test a failed verdict on an unseen service."""
        record = apply_verdict(None, "alpha", ProbeVerdict.failed("down"), T0)

        assert record.name == "alpha"
        assert record.status == ServiceStatus.FAILED
        assert record.consecutive_failures == 1
        assert record.last_error == "down"
        assert record.last_checked_at == T0

    def test_healthy_resets_failures(self):
        """Test a healthy verdict resets consecutive failures."""
        previous = ServiceHealthRecord(
            name="alpha", status=ServiceStatus.FAILED, consecutive_failures=4, restart_count=2
        )
        record = apply_verdict(previous, "alpha", ProbeVerdict.healthy(), T0)

        assert record.status == ServiceStatus.HEALTHY
        assert record.consecutive_failures == 0
        assert record.last_error is None
        assert record.restart_count == 2

    def test_uptime_accumulates_between_healthy_observations(self):
        """Test uptime grows by the real elapsed time."""
        first = apply_verdict(None, "alpha", ProbeVerdict.healthy(), T0)
        second = apply_verdict(first, "alpha", ProbeVerdict.healthy(), T0 + timedelta(seconds=3))
        third = apply_verdict(second, "alpha", ProbeVerdict.healthy(), T0 + timedelta(seconds=5))

        assert first.uptime_ms == 0
        assert second.uptime_ms == pytest.approx(3000)
        assert third.uptime_ms == pytest.approx(5000)

    def test_uptime_resets_when_unhealthy(self):
        """Test uptime drops to zero on leaving healthy."""
        healthy = ServiceHealthRecord(
            name="alpha", status=ServiceStatus.HEALTHY, last_checked_at=T0, uptime_ms=9000
        )
        record = apply_verdict(healthy, "alpha", ProbeVerdict(ServiceStatus.DEGRADED), T0)

        assert record.uptime_ms == 0
        assert record.consecutive_failures == 1

    def test_unknown_keeps_failure_count(self):
        """Test an unknown verdict leaves consecutive failures unchanged."""
        previous = ServiceHealthRecord(
            name="alpha", status=ServiceStatus.FAILED, consecutive_failures=2
        )
        record = apply_verdict(previous, "alpha", ProbeVerdict(ServiceStatus.UNKNOWN), T0)

        assert record.consecutive_failures == 2
        assert record.status == ServiceStatus.UNKNOWN

    def test_previous_record_not_mutated(self):
        """Test the input record is left untouched."""
        previous = ServiceHealthRecord(name="alpha", status=ServiceStatus.HEALTHY)
        apply_verdict(previous, "alpha", ProbeVerdict.failed("boom"), T0)

        assert previous.status == ServiceStatus.HEALTHY
        assert previous.consecutive_failures == 0

    def test_healthy_always_has_zero_failures(self):
        """Test healthy implies zero consecutive failures across a verdict sequence."""
        verdicts = [
            ProbeVerdict.failed("a"),
            ProbeVerdict(ServiceStatus.CRITICAL),
            ProbeVerdict(ServiceStatus.UNKNOWN),
            ProbeVerdict.healthy(),
            ProbeVerdict(ServiceStatus.DEGRADED),
            ProbeVerdict(ServiceStatus.UNKNOWN),
            ProbeVerdict.healthy(),
        ]
        record = None
        for i, verdict in enumerate(verdicts):
            record = apply_verdict(record, "alpha", verdict, T0 + timedelta(seconds=i))
            if record.status == ServiceStatus.HEALTHY:
                assert record.consecutive_failures == 0


class TestClassifyOverall:
    """Test overall health classification."""

    def test_empty_is_unknown(self):
        assert classify_overall([], {"alpha"}) == OverallHealth.UNKNOWN

    def test_all_healthy(self):
        records = [_record("a", ServiceStatus.HEALTHY), _record("b", ServiceStatus.HEALTHY)]
        assert classify_overall(records, {"a"}) == OverallHealth.HEALTHY

    def test_degraded(self):
        records = [_record("a", ServiceStatus.HEALTHY), _record("b", ServiceStatus.DEGRADED)]
        assert classify_overall(records, {"a"}) == OverallHealth.DEGRADED

    def test_non_critical_failure_is_critical(self):
        records = [_record("a", ServiceStatus.HEALTHY), _record("b", ServiceStatus.FAILED)]
        assert classify_overall(records, {"a"}) == OverallHealth.CRITICAL

    @pytest.mark.parametrize("status", [ServiceStatus.FAILED, ServiceStatus.CRITICAL])
    def test_critical_service_failure_is_emergency(self, status):
        records = [_record("core", status), _record("b", ServiceStatus.HEALTHY)]
        assert classify_overall(records, {"core"}) == OverallHealth.EMERGENCY

    def test_healthy_non_critical_records_never_mask_emergency(self):
        """Test adding healthy non-critical records keeps an emergency verdict."""
        records = [_record("core", ServiceStatus.FAILED)]
        for i in range(25):
            records.append(_record(f"svc-{i}", ServiceStatus.HEALTHY))
            assert classify_overall(records, {"core"}) == OverallHealth.EMERGENCY

    def test_degraded_critical_service_is_not_emergency(self):
        records = [_record("core", ServiceStatus.DEGRADED)]
        assert classify_overall(records, {"core"}) == OverallHealth.DEGRADED


class TestServiceHealthRegistry:
    """Test ServiceHealthRegistry functionality."""

    def test_upsert_and_get(self):
        registry = ServiceHealthRegistry()
        registry.upsert("alpha", ProbeVerdict.failed("down"), now=T0)

        assert "alpha" in registry
        assert len(registry) == 1
        assert registry.get("alpha").status == ServiceStatus.FAILED
        assert registry.get("missing") is None

    def test_returned_records_are_copies(self):
        """Test callers cannot mutate registry state through returned records."""
        registry = ServiceHealthRegistry()
        returned = registry.upsert("alpha", ProbeVerdict.failed("down"), now=T0)
        returned.restart_count = 99
        registry.records()[0].status = ServiceStatus.HEALTHY

        stored = registry.get("alpha")
        assert stored.restart_count == 0
        assert stored.status == ServiceStatus.FAILED

    def test_restart_count_survives_verdicts(self):
        registry = ServiceHealthRegistry()
        registry.upsert("alpha", ProbeVerdict.failed("down"), now=T0)

        assert registry.increment_restart_count("alpha") == 1
        registry.upsert("alpha", ProbeVerdict.healthy(), now=T0 + timedelta(seconds=1))

        assert registry.get("alpha").restart_count == 1

    def test_reset_restart_count(self):
        registry = ServiceHealthRegistry()
        registry.upsert("alpha", ProbeVerdict.failed("down"), now=T0)
        registry.increment_restart_count("alpha")
        registry.increment_restart_count("alpha")

        registry.reset_restart_count("alpha")
        registry.reset_restart_count("unknown-service")

        assert registry.get("alpha").restart_count == 0

    def test_note_error(self):
        registry = ServiceHealthRegistry()
        registry.upsert("alpha", ProbeVerdict.failed("probe error"), now=T0)
        registry.note_error("alpha", "restart failed")

        assert registry.get("alpha").last_error == "restart failed"

    def test_records_in_first_seen_order_and_clear(self):
        registry = ServiceHealthRegistry()
        for name in ("b", "a", "c"):
            registry.upsert(name, ProbeVerdict.healthy(), now=T0)

        assert [r.name for r in registry.records()] == ["b", "a", "c"]

        registry.clear()
        assert len(registry) == 0
