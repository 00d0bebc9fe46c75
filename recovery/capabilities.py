"""
Registry of probe/action implementations keyed by service name.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from recovery.interfaces import HealthProbe, RecoveryAction

logger = logging.getLogger(__name__)


@dataclass
class ServiceCapability:
    """The probe and action registered for one service."""

    probe: HealthProbe
    action: RecoveryAction


CapabilityFactory = Callable[[str], ServiceCapability]


class CapabilityRegistry:
    """
    Maps service names to their ServiceCapability.

    Names that were never registered are resolved through ``fallback`` (the
    generic process-pattern capability in production) and the result is
    cached, so the fallback behaves like any other registration.
    """

    def __init__(self, fallback: Optional[CapabilityFactory] = None):
        self._capabilities: Dict[str, ServiceCapability] = {}
        self._fallback = fallback

    def register(self, name: str, capability: ServiceCapability) -> None:
        """Register (or replace) the capability for a service."""
        if name in self._capabilities:
            logger.warning(f"Capability for {name} already registered, replacing")
        self._capabilities[name] = capability
        logger.debug(f"Registered capability for {name}")

    def resolve(self, name: str) -> ServiceCapability:
        """
        Return the capability for ``name``.

        Raises:
            KeyError: if the name is unregistered and no fallback is set
        """
        capability = self._capabilities.get(name)
        if capability is not None:
            return capability

        if self._fallback is None:
            raise KeyError(f"No capability registered for service '{name}'")

        capability = self._fallback(name)
        self._capabilities[name] = capability
        logger.info(f"Using fallback capability for {name}")
        return capability

    def names(self) -> List[str]:
        return list(self._capabilities)

    def __contains__(self, name: str) -> bool:
        return name in self._capabilities
