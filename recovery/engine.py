"""
Auto-Recovery Engine - Monitoring and Remediation Orchestration

This module implements the control loop that keeps the CES services alive.
On every tick it probes each monitored service, updates the
ServiceHealthRegistry, and decides whether a remediation is permitted. It then
runs RecoveryActions within a bounded retry budget, records every attempt in
the RecoveryLedger, and escalates to recovery mode when a service exhausts its
budget while still unhealthy.

Key Features:
- Full health sweep on start, so the first status query reflects real data
- Hard per-probe and per-action deadlines; collaborator failures never escape a tick
- Sequential remediation within a tick (cleanup can affect several services)
- Retry budget counted on restart attempts, reset only by an operator
- Escalation with ledger entry, recovery mode and operator alert
- Manual triggers that bypass the budget but are serialized against the loop

Per-service state (derived, never stored):
    IDLE -> MONITORING -> REMEDIATING -> MONITORING
                                   \\-> ESCALATED -> (operator action) -> MONITORING
"""

import asyncio
import logging
from collections import defaultdict
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Set, Union

from notifier.alerts import EscalationNotifier
from recovery.capabilities import CapabilityRegistry, ServiceCapability
from recovery.config import EngineConfig, ensure_engine_config
from recovery.exceptions import ConfigurationError, UnknownActionError
from recovery.interfaces import CleanupCapability, SessionController
from recovery.ledger import RecoveryLedger
from recovery.registry import ServiceHealthRegistry, classify_overall
from recovery.reporting import render_export, write_export_file
from recovery.types import (
    PERFORMABLE_KINDS,
    ActionKind,
    ActionOutcome,
    OverallHealth,
    ProbeVerdict,
    RecoveryActionRecord,
    RecoveryMode,
    ServiceHealthRecord,
    ServiceState,
    SystemHealth,
)
from recovery.scheduler import TickScheduler
from utils.logger import generate_correlation_id, get_logger
from utils.time import elapsed_ms, monotonic_ms, utc_now

logger = get_logger(__name__)

ESCALATION_DETAILS = "Recovery escalated - entering recovery mode"


class RecoveryEngine:
    """
    Owns the monitoring loop and the shared recovery state.

    All mutation of the registry, ledger, escalation set and recovery mode
    happens under one asyncio lock: the periodic tick holds it for its whole
    duration and manual operations queue behind it.
    """

    def __init__(
        self,
        config: Union[EngineConfig, Dict[str, Any], None] = None,
        capabilities: Optional[CapabilityRegistry] = None,
        ledger: Optional[RecoveryLedger] = None,
        notifier: Optional[EscalationNotifier] = None,
    ):
        """
        Args:
            config: Validated EngineConfig, or raw settings validated at start()
            capabilities: Probe/action registry; defaults to the CES services
            ledger: Recovery ledger; defaults to the configured durable log
            notifier: Escalation notifier; defaults to one using webhook_url
        """
        self._raw_config = config if config is not None else {}
        self.config: Optional[EngineConfig] = (
            config if isinstance(config, EngineConfig) else None
        )
        self.capabilities = capabilities
        self.ledger = ledger
        self.notifier = notifier
        self.registry = ServiceHealthRegistry()

        # Engine state
        self.recovery_mode = RecoveryMode.NORMAL
        self._running = False
        self._scheduler: Optional[TickScheduler] = None
        self._lock = asyncio.Lock()
        self._lifecycle_lock = asyncio.Lock()
        self._pending_config: Optional[EngineConfig] = None
        self._escalated: Set[str] = set()
        self._incident_remediations: Dict[str, int] = defaultdict(int)
        self._remediating: Optional[str] = None
        self.last_full_check: Optional[datetime] = None

        # Statistics
        self.started_at: Optional[datetime] = None
        self.ticks_completed = 0
        self.total_failures_handled = 0
        self.total_recoveries_successful = 0
        self.total_escalations = 0

        logger.info("RecoveryEngine initialized")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> bool:
        """
        Start monitoring.

        Runs a full health sweep before the periodic loop is armed. A stop()
        issued during the sweep waits for start() to finish.

        Returns:
            True if the engine started, False if it was already running or is
            disabled by configuration

        Raises:
            ConfigurationError: if the configuration is invalid
        """
        async with self._lifecycle_lock:
            if self._running:
                logger.warning("Auto-recovery is already running")
                return False

            config = self._validate_config()
            if not config.enabled:
                logger.warning("Auto-recovery is disabled by configuration, not starting")
                return False

            self._running = True
            self._ensure_components()

            logger.info(
                "Starting auto-recovery system "
                f"(interval={config.monitoring_interval_ms}ms, "
                f"timeout={config.health_check_timeout_ms}ms, "
                f"critical={sorted(config.critical_service_names)})"
            )
            start_time = monotonic_ms()

            try:
                async with self._lock:
                    self.registry.clear()
                    self._escalated.clear()
                    self._incident_remediations.clear()
                    self.started_at = utc_now()
                    await self._full_sweep()
            except BaseException:
                self._running = False
                raise

            self._scheduler = TickScheduler(self._tick, self._interval_seconds)
            self._scheduler.start()

            logger.info(f"Auto-recovery system is now active (startup {elapsed_ms(start_time)}ms)")
            return True

    async def stop(self) -> None:
        """
        Stop monitoring after the in-flight tick (if any) completes.

        Waits for a start() in progress, so no tick fires once this returns.
        """
        async with self._lifecycle_lock:
            if not self._running:
                logger.warning("Auto-recovery is not running")
                return

            logger.info("Stopping auto-recovery system")
            self._running = False
            if self._scheduler is not None:
                await self._scheduler.stop()
            stats = self.get_engine_stats()
            self._scheduler = None
            logger.info(f"Auto-recovery system stopped: {stats}")

    def reload_config(self, config: Union[EngineConfig, Dict[str, Any]]) -> EngineConfig:
        """
        Replace the configuration snapshot.

        While running, the new snapshot is applied atomically at the start of
        the next tick; otherwise it takes effect immediately.

        Raises:
            ConfigurationError: if the new configuration is invalid (the
                current snapshot is kept)
        """
        new_config = ensure_engine_config(config)
        if self._running:
            self._pending_config = new_config
            logger.info("Configuration reload staged for next tick")
        else:
            self.config = new_config
            self._raw_config = new_config
            logger.info("Configuration reloaded")
        return new_config

    # ------------------------------------------------------------------
    # Control surface
    # ------------------------------------------------------------------

    def status(self) -> SystemHealth:
        """Current overall health, records, recent actions and mode."""
        config = self.config or ensure_engine_config(self._raw_config)
        services = set(config.all_services())
        records = [r for r in self.registry.records() if r.name in services]
        actions = self.ledger.recent(config.status_action_limit) if self.ledger else []
        return SystemHealth(
            overall=classify_overall(records, config.critical_service_names),
            services=records,
            actions=actions,
            recovery_mode=self.recovery_mode,
            monitoring=self._running,
            last_full_check=self.last_full_check,
            escalated_services=sorted(self._escalated),
        )

    async def trigger_recovery(
        self, service: str, kind: Union[ActionKind, str] = ActionKind.RESTART
    ) -> bool:
        """
        Manually run a recovery action, bypassing the retry budget.

        The attempt is recorded in the ledger and clears any escalation of the
        service.

        Returns:
            The action's own success flag

        Raises:
            UnknownActionError: if ``kind`` is not restart, cleanup or repair
        """
        action = self._parse_kind(kind, service)
        self._validate_config()
        self._ensure_components()

        async with self._lock:
            logger.info(f"Manually triggering {action.value} for {service}")
            entry = await self._run_action(service, action)
            if service in self._escalated:
                self._escalated.discard(service)
                logger.info(f"Escalation for {service} cleared by operator")
        return entry.success

    async def set_recovery_mode(self, enabled: bool) -> None:
        """
        Enter or leave recovery mode.

        Entering clamps the tick interval to the recovery floor from the next
        sleep on. Leaving restores the configured interval and clears every
        escalation.
        """
        async with self._lock:
            self._set_mode(RecoveryMode.RECOVERY if enabled else RecoveryMode.NORMAL)
            if not enabled and self._escalated:
                logger.info(f"Escalations cleared by operator: {sorted(self._escalated)}")
                self._escalated.clear()

    async def reset_restart_count(self, service: str) -> None:
        """Operator reset of a service's retry budget and escalation."""
        async with self._lock:
            self.registry.reset_restart_count(service)
            self._escalated.discard(service)

    def export_ledger(self, fmt: str = "json") -> str:
        """Render the ledger and registry snapshot as json, csv or html."""
        config = self._validate_config()
        entries = self.ledger.entries() if self.ledger else []
        return render_export(fmt, entries, self.status(), config)

    def write_export(self, fmt: str = "json", directory: Optional[Path] = None) -> Path:
        """Write an export file and return its path."""
        config = self._validate_config()
        content = self.export_ledger(fmt)
        path = write_export_file(content, fmt, Path(directory or config.resolved_export_dir))
        logger.info(f"Recovery data exported to: {path}")
        return path

    def service_state(self, service: str) -> ServiceState:
        """Derived state-machine position of a service."""
        if not self._running:
            return ServiceState.IDLE
        if service in self._escalated:
            return ServiceState.ESCALATED
        if self._remediating == service:
            return ServiceState.REMEDIATING
        return ServiceState.MONITORING

    def escalated_services(self) -> List[str]:
        return sorted(self._escalated)

    def get_engine_stats(self) -> Dict[str, Any]:
        """Get engine statistics."""
        return {
            "running": self._running,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "recovery_mode": self.recovery_mode.value,
            "ticks_completed": self.ticks_completed,
            "total_failures_handled": self.total_failures_handled,
            "total_recoveries_successful": self.total_recoveries_successful,
            "total_escalations": self.total_escalations,
            "ledger_size": len(self.ledger) if self.ledger else 0,
            "scheduler_ticks": self._scheduler.ticks_run if self._scheduler else 0,
        }

    async def run_tick(self) -> OverallHealth:
        """Run one check-and-remediate cycle immediately."""
        self._validate_config()
        self._ensure_components()
        return await self._tick()

    async def check_all(self) -> SystemHealth:
        """Probe every monitored service once, without remediating."""
        self._validate_config()
        self._ensure_components()
        async with self._lock:
            await self._full_sweep()
        return self.status()

    # ------------------------------------------------------------------
    # Monitoring loop
    # ------------------------------------------------------------------

    def _interval_seconds(self) -> float:
        config = self._pending_config or self.config
        return config.effective_interval_ms(self.recovery_mode) / 1000

    async def _full_sweep(self) -> None:
        logger.info("Performing full health check")
        for name in self.config.all_services():
            await self._probe_service(name)
        self.last_full_check = utc_now()
        logger.info("Full health check completed")

    async def _tick(self) -> OverallHealth:
        correlation_id = generate_correlation_id()
        async with self._lock:
            self._apply_pending_config()
            config = self.config

            for name in config.all_services():
                await self._probe_service(name)

            services = set(config.all_services())
            records = [r for r in self.registry.records() if r.name in services]
            overall = classify_overall(records, config.critical_service_names)
            if overall != OverallHealth.HEALTHY:
                logger.debug(
                    f"Overall health: {overall.value}",
                    extra={"correlation_id": correlation_id},
                )

            for record in sorted(records, key=lambda r: r.name):
                if record.status.is_unhealthy:
                    await self._remediate_or_escalate(record, correlation_id)

            self.ticks_completed += 1
            return overall

    def _apply_pending_config(self) -> None:
        if self._pending_config is None:
            return
        self.config = self._pending_config
        self._raw_config = self._pending_config
        self._pending_config = None
        logger.info("Applied reloaded configuration")

    async def _probe_service(self, name: str) -> ServiceHealthRecord:
        timeout_ms = self.config.health_check_timeout_ms
        timeout = timeout_ms / 1000
        start = monotonic_ms()

        try:
            capability = self._resolve(name)
            verdict = await asyncio.wait_for(capability.probe.check(name, timeout), timeout=timeout)
        except asyncio.TimeoutError:
            verdict = ProbeVerdict.failed(f"Health check timeout after {timeout_ms}ms")
        except Exception as e:
            verdict = ProbeVerdict.failed(str(e) or e.__class__.__name__)

        if not isinstance(verdict, ProbeVerdict):
            verdict = ProbeVerdict.failed(f"Probe returned invalid result: {verdict!r}")
        if verdict.response_time_ms is None:
            verdict.response_time_ms = float(elapsed_ms(start))

        record = self.registry.upsert(name, verdict)
        if record.status.is_unhealthy:
            logger.warning(
                f"Service {name} is {record.status.value}"
                + (f": {record.last_error}" if record.last_error else "")
            )
        elif record.consecutive_failures == 0:
            self._incident_remediations.pop(name, None)
        return record

    async def _remediate_or_escalate(
        self, record: ServiceHealthRecord, correlation_id: str
    ) -> None:
        config = self.config
        name = record.name

        if name in self._escalated or not config.auto_restart_enabled:
            return

        if record.restart_count >= config.max_restart_attempts:
            logger.error(
                f"{name} exceeded max restart attempts ({config.max_restart_attempts}), escalating",
                extra={"correlation_id": correlation_id},
            )
            await self._escalate(name)
            return

        kind = ActionKind.RESTART
        if config.auto_cleanup_on_failure and self._incident_remediations[name] == 0:
            kind = ActionKind.CLEANUP

        logger.warning(
            f"Auto-recovering {name} with {kind.value} (restart attempts so far: {record.restart_count})",
            extra={"correlation_id": correlation_id},
        )
        self.total_failures_handled += 1
        await self._run_action(name, kind)
        self._incident_remediations[name] += 1

    async def _run_action(self, service: str, kind: ActionKind) -> RecoveryActionRecord:
        config = self.config
        timeout_ms = config.action_timeout_ms
        self._remediating = service
        start = monotonic_ms()

        if kind == ActionKind.RESTART:
            self.registry.increment_restart_count(service)

        try:
            capability = self._resolve(service)
            outcome = await asyncio.wait_for(
                capability.action.perform(service, kind), timeout=timeout_ms / 1000
            )
        except asyncio.TimeoutError:
            outcome = ActionOutcome(
                success=False,
                details=f"{kind.value} did not complete",
                error=f"Recovery action timeout after {timeout_ms}ms",
            )
        except Exception as e:
            outcome = ActionOutcome(
                success=False,
                details=f"{kind.value} failed with error",
                error=str(e) or e.__class__.__name__,
            )
        finally:
            self._remediating = None

        if not isinstance(outcome, ActionOutcome):
            outcome = ActionOutcome(
                success=False,
                details=f"{kind.value} returned an invalid result",
                error=f"Recovery action returned invalid result: {outcome!r}",
            )

        duration = elapsed_ms(start)
        entry = self.ledger.record(
            service, kind, outcome.success, duration, outcome.details, outcome.error
        )

        if outcome.success:
            self.total_recoveries_successful += 1
            logger.info(f"{service} {kind.value} completed successfully ({duration}ms)")
        else:
            message = outcome.error or outcome.details
            self.registry.note_error(service, message)
            logger.error(f"{service} {kind.value} failed ({duration}ms): {message}")
        return entry

    async def _escalate(self, service: str) -> None:
        self._escalated.add(service)
        self.total_escalations += 1
        entry = self.ledger.record(service, ActionKind.ESCALATE, True, 0, ESCALATION_DETAILS)
        logger.critical(f"Escalating recovery for {service}")
        self._set_mode(RecoveryMode.RECOVERY)

        if self.config.notification_enabled:
            try:
                await self.notifier.notify_escalation(service, entry)
            except Exception as e:
                logger.exception(f"Escalation notification for {service} failed: {e}")

    def _set_mode(self, mode: RecoveryMode) -> None:
        if self.recovery_mode == mode:
            return
        self.recovery_mode = mode
        if mode == RecoveryMode.RECOVERY:
            logger.warning("System is now in recovery mode - enhanced monitoring active")
        else:
            logger.info("System returned to normal monitoring")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _validate_config(self) -> EngineConfig:
        if self.config is None:
            self.config = ensure_engine_config(self._raw_config)
        return self.config

    def _ensure_components(self) -> None:
        config = self.config
        if self.capabilities is None:
            from recovery.services import build_default_capabilities

            self.capabilities = build_default_capabilities(config)
        if self.ledger is None:
            self.ledger = RecoveryLedger(config.resolved_ledger_path, config.ledger_capacity)
        if self.notifier is None:
            self.notifier = EscalationNotifier(config.webhook_url)

    def _resolve(self, service: str) -> ServiceCapability:
        return self.capabilities.resolve(service)

    @staticmethod
    def _parse_kind(kind: Union[ActionKind, str], service: str) -> ActionKind:
        try:
            action = kind if isinstance(kind, ActionKind) else ActionKind(str(kind).lower())
        except ValueError:
            raise UnknownActionError(str(kind), service=service) from None
        if action not in PERFORMABLE_KINDS:
            raise UnknownActionError(action.value, service=service)
        return action


def create_recovery_engine(
    config: Union[EngineConfig, Dict[str, Any], None] = None,
    session: Optional[SessionController] = None,
    cleanup: Optional[CleanupCapability] = None,
    preload_history: bool = False,
) -> RecoveryEngine:
    """
    Create an engine wired to the default CES service capabilities.

    Raises:
        ConfigurationError: if the configuration is invalid
    """
    from recovery.services import build_default_capabilities

    engine_config = ensure_engine_config(config)
    capabilities = build_default_capabilities(engine_config, session=session, cleanup=cleanup)
    ledger = RecoveryLedger(
        engine_config.resolved_ledger_path,
        engine_config.ledger_capacity,
        preload=preload_history,
    )
    return RecoveryEngine(
        engine_config,
        capabilities=capabilities,
        ledger=ledger,
        notifier=EscalationNotifier(engine_config.webhook_url),
    )
