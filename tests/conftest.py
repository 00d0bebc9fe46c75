"""
Shared test configuration and fixtures for the auto-recovery engine.

Provides an EngineConfig factory with fast intervals and ledger/export paths
under tmp_path, and an engine factory that wires fake probes and actions
through a CapabilityRegistry.
"""

from typing import Dict, Tuple
from unittest.mock import AsyncMock, Mock

import pytest

from notifier.alerts import EscalationNotifier
from recovery.capabilities import CapabilityRegistry, ServiceCapability
from recovery.config import EngineConfig
from recovery.engine import RecoveryEngine
from recovery.interfaces import HealthProbe, RecoveryAction
from recovery.ledger import RecoveryLedger


@pytest.fixture
def make_config(tmp_path):
    """Factory for EngineConfig with fast intervals and tmp_path storage."""

    def _make(**overrides) -> EngineConfig:
        data = {
            "monitored_services": ["alpha"],
            "critical_service_names": [],
            "monitoring_interval_ms": 100,
            "health_check_timeout_ms": 200,
            "action_timeout_ms": 500,
            "recovery_mode_interval_floor_ms": 100,
            "repair_delay_ms": 0,
            "project_root": tmp_path,
            "ledger_path": tmp_path / "logs" / "recovery.log",
            "export_dir": tmp_path / "exports",
        }
        data.update(overrides)
        return EngineConfig(**data)

    return _make


@pytest.fixture
def notifier():
    """Escalation notifier double."""
    mock = Mock(spec=EscalationNotifier)
    mock.notify_escalation = AsyncMock(return_value=True)
    return mock


@pytest.fixture
def make_engine(make_config, notifier):
    """Factory building a RecoveryEngine over fake capabilities."""

    def _make(
        services: Dict[str, Tuple[HealthProbe, RecoveryAction]], **config_overrides
    ) -> RecoveryEngine:
        config_overrides.setdefault("monitored_services", list(services))
        config = make_config(**config_overrides)
        registry = CapabilityRegistry()
        for name, (probe, action) in services.items():
            registry.register(name, ServiceCapability(probe, action))
        ledger = RecoveryLedger(config.resolved_ledger_path, config.ledger_capacity)
        return RecoveryEngine(config, capabilities=registry, ledger=ledger, notifier=notifier)

    return _make
