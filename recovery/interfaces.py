"""
Pluggable contracts for the auto-recovery engine.

This module defines the interfaces the engine consumes: health probes,
recovery actions, and the cleanup/session capabilities provided by the
surrounding system. Implementations are registered per service name through
the CapabilityRegistry, so tests can inject fakes without touching the engine.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from recovery.exceptions import UnknownActionError
from recovery.types import ActionKind, ActionOutcome, ProbeVerdict

logger = logging.getLogger(__name__)


class HealthProbe(ABC):
    """Read-only health check for one logical service."""

    @abstractmethod
    async def check(self, service: str, timeout: float) -> ProbeVerdict:
        """
        Check the health of a service.

        Implementations must not block past ``timeout`` seconds. On timeout
        they return a FAILED verdict whose error mentions the timeout.
        """


class CleanupCapability(ABC):
    """Broad environment reset provided by the surrounding system."""

    @abstractmethod
    async def execute_clean_reset(
        self,
        preserve_sessions: bool = True,
        preserve_logs: bool = True,
        kill_node_processes: bool = False,
        clear_system_cache: bool = True,
    ) -> Dict[str, Any]:
        """Perform the reset and return a report of what was done."""


class SessionController(ABC):
    """Lifecycle of the stateful session subsystem."""

    @abstractmethod
    async def start_session(self, force: bool = False) -> Dict[str, Any]:
        """Start (or with ``force``, re-create) the session."""

    @abstractmethod
    async def close_session(self, save: bool = True) -> None:
        """Close the active session, saving state when requested."""

    @abstractmethod
    async def get_session_status(self) -> Dict[str, Any]:
        """Return at least ``{"initialized": bool, "active": bool}``."""


class RecoveryAction(ABC):
    """
    Side-effecting remediation for one logical service.

    Subclasses implement ``restart`` and may override ``cleanup`` and
    ``repair``. The default cleanup delegates to the shared CleanupCapability;
    the default repair runs cleanup, waits ``repair_delay`` seconds, then
    restarts, and succeeds only if the restart does. Every operation must be
    safe to retry.
    """

    def __init__(
        self,
        cleanup_capability: Optional[CleanupCapability] = None,
        repair_delay: float = 2.0,
    ):
        self.cleanup_capability = cleanup_capability
        self.repair_delay = repair_delay

    async def perform(self, service: str, kind: ActionKind) -> ActionOutcome:
        """Dispatch to the operation named by ``kind``."""
        if kind == ActionKind.RESTART:
            return await self.restart(service)
        if kind == ActionKind.CLEANUP:
            return await self.cleanup(service)
        if kind == ActionKind.REPAIR:
            return await self.repair(service)
        raise UnknownActionError(kind.value, service=service)

    @abstractmethod
    async def restart(self, service: str) -> ActionOutcome:
        """Restart the service."""

    async def cleanup(self, service: str) -> ActionOutcome:
        """Reset the environment around the service."""
        if self.cleanup_capability is None:
            return ActionOutcome(
                success=False,
                details="Service cleanup failed",
                error="No cleanup capability configured",
            )

        report = await self.cleanup_capability.execute_clean_reset(
            preserve_sessions=True,
            preserve_logs=True,
            kill_node_processes="node" in service,
            clear_system_cache=True,
        )
        errors = (report or {}).get("errors") or []
        if errors:
            logger.warning(f"Cleanup for {service} reported errors: {errors}")
        return ActionOutcome(success=True, details="Service cleanup completed")

    async def repair(self, service: str) -> ActionOutcome:
        """Cleanup, pause, then restart."""
        cleaned = await self.cleanup(service)
        if not cleaned.success:
            logger.warning(
                f"Cleanup step of repair for {service} failed: {cleaned.error or cleaned.details}"
            )

        await asyncio.sleep(self.repair_delay)

        restarted = await self.restart(service)
        if restarted.success:
            return ActionOutcome(success=True, details="Service repair completed")
        return ActionOutcome(
            success=False,
            details="Service repair failed",
            error=restarted.error or restarted.details,
        )
