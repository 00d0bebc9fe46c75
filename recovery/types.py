"""
Shared types for the auto-recovery engine.

Defines the health/status enumerations, the probe and action result
structures exchanged with pluggable collaborators, and the records held by
the ServiceHealthRegistry and RecoveryLedger.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class ServiceStatus(Enum):
    """Health status of a single monitored service."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    CRITICAL = "critical"
    FAILED = "failed"
    UNKNOWN = "unknown"

    @property
    def is_unhealthy(self) -> bool:
        """True for the statuses that make a service eligible for remediation."""
        return self in (ServiceStatus.FAILED, ServiceStatus.CRITICAL)


class OverallHealth(Enum):
    """Aggregated health across every monitored service."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    CRITICAL = "critical"
    EMERGENCY = "emergency"
    UNKNOWN = "unknown"


class ActionKind(Enum):
    """Kinds of recovery action recorded in the ledger."""

    RESTART = "restart"
    CLEANUP = "cleanup"
    REPAIR = "repair"
    ESCALATE = "escalate"


# Kinds an operator (or the engine) may ask a RecoveryAction to perform
PERFORMABLE_KINDS = (ActionKind.RESTART, ActionKind.CLEANUP, ActionKind.REPAIR)


class RecoveryMode(Enum):
    """Process-wide monitoring mode."""

    NORMAL = "normal"
    RECOVERY = "recovery"


class ServiceState(Enum):
    """Derived per-service position in the engine state machine."""

    IDLE = "idle"
    MONITORING = "monitoring"
    REMEDIATING = "remediating"
    ESCALATED = "escalated"


@dataclass
class ProbeVerdict:
    """Result returned by a HealthProbe."""

    status: ServiceStatus
    response_time_ms: Optional[float] = None
    error: Optional[str] = None
    pid: Optional[int] = None

    @classmethod
    def healthy(cls, response_time_ms: Optional[float] = None, pid: Optional[int] = None) -> "ProbeVerdict":
        return cls(ServiceStatus.HEALTHY, response_time_ms=response_time_ms, pid=pid)

    @classmethod
    def failed(cls, error: str, response_time_ms: Optional[float] = None) -> "ProbeVerdict":
        return cls(ServiceStatus.FAILED, response_time_ms=response_time_ms, error=error)


@dataclass
class ActionOutcome:
    """Result returned by a RecoveryAction."""

    success: bool
    details: str
    error: Optional[str] = None


@dataclass
class ServiceHealthRecord:
    """Current health of one monitored service."""

    name: str
    status: ServiceStatus = ServiceStatus.UNKNOWN
    last_checked_at: Optional[datetime] = None
    consecutive_failures: int = 0
    uptime_ms: float = 0.0
    restart_count: int = 0
    last_error: Optional[str] = None
    response_time_ms: Optional[float] = None
    pid: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "name": self.name,
            "status": self.status.value,
            "last_checked_at": self.last_checked_at.isoformat()
            if self.last_checked_at
            else None,
            "consecutive_failures": self.consecutive_failures,
            "uptime_ms": self.uptime_ms,
            "restart_count": self.restart_count,
            "last_error": self.last_error,
            "response_time_ms": self.response_time_ms,
            "pid": self.pid,
        }


@dataclass(frozen=True)
class RecoveryActionRecord:
    """One attempted remediation. Immutable once created."""

    id: str
    timestamp: datetime
    service: str
    action: ActionKind
    success: bool
    duration_ms: int
    details: str
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "service": self.service,
            "action": self.action.value,
            "success": self.success,
            "duration_ms": self.duration_ms,
            "details": self.details,
            "error": self.error,
        }


@dataclass
class SystemHealth:
    """Snapshot returned by the control surface's status query."""

    overall: OverallHealth
    services: List[ServiceHealthRecord]
    actions: List[RecoveryActionRecord]
    recovery_mode: RecoveryMode
    monitoring: bool
    last_full_check: Optional[datetime] = None
    escalated_services: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "overall": self.overall.value,
            "services": [s.to_dict() for s in self.services],
            "actions": [a.to_dict() for a in self.actions],
            "recovery_mode": self.recovery_mode.value,
            "monitoring": self.monitoring,
            "last_full_check": self.last_full_check.isoformat()
            if self.last_full_check
            else None,
            "escalated_services": list(self.escalated_services),
        }
