"""
Custom exceptions for the auto-recovery engine.
"""

from typing import Optional


class RecoveryError(Exception):
    """
    Raised when a recovery operation cannot be carried out.

    Failures of probes and actions inside a monitoring tick are never raised;
    this exception is reserved for the control surface.
    """

    def __init__(
        self,
        message: str,
        service: Optional[str] = None,
        action: Optional[str] = None,
    ):
        """
        Initialize RecoveryError.

        Args:
            message: Human-readable error message
            service: Name of the service the operation targeted
            action: Recovery action kind involved
        """
        super().__init__(message)
        self.service = service
        self.action = action

    def __str__(self) -> str:
        """String representation with additional context."""
        msg = super().__str__()
        if self.service:
            msg = f"[{self.service}] {msg}"
        if self.action:
            msg += f" (action: {self.action})"
        return msg


class UnknownActionError(RecoveryError):
    """Raised when a recovery action kind is not one of restart/cleanup/repair."""

    def __init__(self, kind: str, service: Optional[str] = None):
        super().__init__(
            f"Unknown recovery action '{kind}', expected restart, cleanup or repair",
            service=service,
            action=kind,
        )


class ConfigurationError(Exception):
    """
    Raised when the engine configuration is invalid.

    The engine refuses to start (or to apply a reload) with an invalid
    configuration; `field` names the offending setting.
    """

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field

    def __str__(self) -> str:
        msg = super().__str__()
        if self.field:
            msg = f"Invalid configuration field '{self.field}': {msg}"
        return msg
