"""
Scriptable fake collaborators for engine tests.
"""

import asyncio
from typing import List, Optional, Tuple

from recovery.interfaces import HealthProbe, RecoveryAction
from recovery.types import ActionKind, ActionOutcome, ProbeVerdict, ServiceStatus


class FakeProbe(HealthProbe):
    """Probe returning scripted statuses, then ``default`` forever."""

    def __init__(
        self,
        statuses: Optional[List[ServiceStatus]] = None,
        default: ServiceStatus = ServiceStatus.HEALTHY,
        delay: float = 0.0,
        error: Optional[Exception] = None,
    ):
        self.script = list(statuses or [])
        self.default = default
        self.delay = delay
        self.error = error
        self.calls = 0

    def set_status(self, status: ServiceStatus) -> None:
        self.script.clear()
        self.default = status

    async def check(self, service: str, timeout: float) -> ProbeVerdict:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        status = self.script.pop(0) if self.script else self.default
        if status == ServiceStatus.HEALTHY:
            return ProbeVerdict.healthy(response_time_ms=1.0)
        return ProbeVerdict(status, response_time_ms=1.0, error=f"{service} is {status.value}")


class FakeAction(RecoveryAction):
    """Action recording every call; optionally heals its probe on restart."""

    def __init__(
        self,
        success: bool = True,
        delay: float = 0.0,
        error: Optional[Exception] = None,
        heals: Optional[FakeProbe] = None,
    ):
        super().__init__(cleanup_capability=None, repair_delay=0.0)
        self.success = success
        self.delay = delay
        self.error = error
        self.heals = heals
        self.calls: List[Tuple[str, ActionKind]] = []

    async def perform(self, service: str, kind: ActionKind) -> ActionOutcome:
        self.calls.append((service, kind))
        return await super().perform(service, kind)

    async def restart(self, service: str) -> ActionOutcome:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        if not self.success:
            return ActionOutcome(False, "Service restart failed", error="restart failed")
        if self.heals is not None:
            self.heals.set_status(ServiceStatus.HEALTHY)
        return ActionOutcome(True, "Service restarted successfully")

    async def cleanup(self, service: str) -> ActionOutcome:
        if self.error is not None:
            raise self.error
        return ActionOutcome(True, "Service cleanup completed")

    def kinds(self) -> List[ActionKind]:
        return [kind for _, kind in self.calls]
