"""
Auto-recovery package for the CES services.

Monitors logical services, remediates failures within a bounded retry budget,
records every attempt in a durable ledger, and escalates to an operator when
automatic recovery is exhausted.
"""

from recovery.capabilities import CapabilityRegistry, ServiceCapability
from recovery.config import EngineConfig, load_engine_config
from recovery.engine import RecoveryEngine, create_recovery_engine
from recovery.exceptions import ConfigurationError, RecoveryError, UnknownActionError
from recovery.interfaces import (
    CleanupCapability,
    HealthProbe,
    RecoveryAction,
    SessionController,
)
from recovery.ledger import RecoveryLedger
from recovery.types import (
    ActionKind,
    ActionOutcome,
    OverallHealth,
    ProbeVerdict,
    RecoveryActionRecord,
    RecoveryMode,
    ServiceHealthRecord,
    ServiceState,
    ServiceStatus,
    SystemHealth,
)

__version__ = "1.0.0"

__all__ = [
    "ActionKind",
    "ActionOutcome",
    "CapabilityRegistry",
    "CleanupCapability",
    "ConfigurationError",
    "EngineConfig",
    "HealthProbe",
    "OverallHealth",
    "ProbeVerdict",
    "RecoveryAction",
    "RecoveryActionRecord",
    "RecoveryEngine",
    "RecoveryError",
    "RecoveryLedger",
    "RecoveryMode",
    "ServiceCapability",
    "ServiceHealthRecord",
    "ServiceState",
    "ServiceStatus",
    "SessionController",
    "SystemHealth",
    "UnknownActionError",
    "create_recovery_engine",
    "load_engine_config",
]
