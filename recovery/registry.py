"""
Service Health Registry

In-memory table of ServiceHealthRecord keyed by service name. Records are
created lazily on the first probe of a name and are only cleared when the
engine is restarted. The registry is mutated exclusively by the engine, under
the engine's lock.
"""

import logging
from dataclasses import replace
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from recovery.types import (
    OverallHealth,
    ProbeVerdict,
    ServiceHealthRecord,
    ServiceStatus,
)
from utils.time import utc_now

logger = logging.getLogger(__name__)


def apply_verdict(
    previous: Optional[ServiceHealthRecord],
    name: str,
    verdict: ProbeVerdict,
    now: datetime,
) -> ServiceHealthRecord:
    """
    Compute the next record for a service from its previous record and a verdict.

    Pure function: ``previous`` is never modified.

    - HEALTHY resets consecutive_failures and accumulates uptime by the real
      time elapsed since the last healthy observation.
    - Any other known status increments consecutive_failures and zeroes uptime.
    - UNKNOWN leaves consecutive_failures untouched and zeroes uptime.
    - restart_count is carried over unchanged.
    """
    base = previous if previous is not None else ServiceHealthRecord(name=name)
    status = verdict.status

    if status == ServiceStatus.HEALTHY:
        consecutive_failures = 0
        uptime_ms = 0.0
        if base.status == ServiceStatus.HEALTHY and base.last_checked_at is not None:
            elapsed_ms = max(0.0, (now - base.last_checked_at).total_seconds() * 1000)
            uptime_ms = base.uptime_ms + elapsed_ms
        last_error = None
    elif status == ServiceStatus.UNKNOWN:
        consecutive_failures = base.consecutive_failures
        uptime_ms = 0.0
        last_error = verdict.error
    else:
        consecutive_failures = base.consecutive_failures + 1
        uptime_ms = 0.0
        last_error = verdict.error

    return replace(
        base,
        status=status,
        last_checked_at=now,
        consecutive_failures=consecutive_failures,
        uptime_ms=uptime_ms,
        last_error=last_error,
        response_time_ms=verdict.response_time_ms,
        pid=verdict.pid,
    )


def classify_overall(
    records: Iterable[ServiceHealthRecord], critical_service_names: Iterable[str]
) -> OverallHealth:
    """
    Aggregate individual records into one OverallHealth.

    A failed or critical record for a critical service always yields
    EMERGENCY, however healthy the remaining services are. Otherwise the
    worst non-critical status wins; an empty set is UNKNOWN.
    """
    records = list(records)
    if not records:
        return OverallHealth.UNKNOWN

    critical_names = set(critical_service_names)

    if any(r.name in critical_names and r.status.is_unhealthy for r in records):
        return OverallHealth.EMERGENCY
    if any(r.status.is_unhealthy for r in records):
        return OverallHealth.CRITICAL
    if any(r.status == ServiceStatus.DEGRADED for r in records):
        return OverallHealth.DEGRADED
    return OverallHealth.HEALTHY


class ServiceHealthRegistry:
    """Registry of per-service health records."""

    def __init__(self):
        self._records: Dict[str, ServiceHealthRecord] = {}

    def upsert(
        self, name: str, verdict: ProbeVerdict, now: Optional[datetime] = None
    ) -> ServiceHealthRecord:
        """Apply a probe verdict to a service, creating its record if needed."""
        previous = self._records.get(name)
        record = apply_verdict(previous, name, verdict, now or utc_now())
        self._records[name] = record

        if previous is not None and previous.status != record.status:
            logger.info(
                f"Service {name} transitioned {previous.status.value} -> {record.status.value}"
            )
        return replace(record)

    def get(self, name: str) -> Optional[ServiceHealthRecord]:
        """Get a copy of a service's record."""
        record = self._records.get(name)
        return replace(record) if record is not None else None

    def records(self) -> List[ServiceHealthRecord]:
        """Copies of every record, in first-seen order."""
        return [replace(r) for r in self._records.values()]

    def increment_restart_count(self, name: str) -> int:
        """Count one restart attempt against the service's retry budget."""
        record = self._records.get(name) or ServiceHealthRecord(name=name)
        record = replace(record, restart_count=record.restart_count + 1)
        self._records[name] = record
        return record.restart_count

    def note_error(self, name: str, message: Optional[str]) -> None:
        """Record a failed action's message as the service's last error."""
        record = self._records.get(name)
        if record is None or not message:
            return
        self._records[name] = replace(record, last_error=message)

    def reset_restart_count(self, name: str) -> None:
        """Operator reset of the retry budget."""
        record = self._records.get(name)
        if record is None:
            return
        self._records[name] = replace(record, restart_count=0)
        logger.info(f"Restart count reset for {name}")

    def clear(self) -> None:
        self._records.clear()

    def __contains__(self, name: str) -> bool:
        return name in self._records

    def __len__(self) -> int:
        return len(self._records)
