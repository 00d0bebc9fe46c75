"""
recovery/config.py

Configuration for the auto-recovery engine.

Handles configuration loading and validation with support for:
- JSON configuration files (``auto_recovery`` section)
- Environment variable overrides (CES_* variables, .env files)
- Explicit runtime overrides
- Strict validation through pydantic, reported per field
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Set, Union

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_serializer, field_validator

from recovery.exceptions import ConfigurationError
from recovery.types import RecoveryMode

logger = logging.getLogger(__name__)


CLI_SERVICE = "claude-code-cli"
MCP_SERVICE = "mcp-servers"
SESSION_SERVICE = "session-system"
DEV_SERVICE = "dev-servers"

DEFAULT_MONITORED_SERVICES = [CLI_SERVICE, MCP_SERVICE, SESSION_SERVICE, DEV_SERVICE]
DEFAULT_CRITICAL_SERVICES = {CLI_SERVICE, SESSION_SERVICE, MCP_SERVICE}

# Environment variable -> EngineConfig field
ENV_VARS = {
    "CES_AUTO_RECOVERY_ENABLED": "enabled",
    "CES_RECOVERY_CHECK_INTERVAL": "monitoring_interval_ms",
    "CES_HEALTH_CHECK_TIMEOUT": "health_check_timeout_ms",
    "CES_RECOVERY_TIMEOUT": "action_timeout_ms",
    "CES_MAX_RESTART_ATTEMPTS": "max_restart_attempts",
    "CES_AUTO_RESTART_ENABLED": "auto_restart_enabled",
    "CES_AUTO_CLEANUP_ENABLED": "auto_cleanup_on_failure",
    "CES_NOTIFICATIONS_ENABLED": "notification_enabled",
    "CES_CRITICAL_SERVICES": "critical_service_names",
    "CES_MONITORED_SERVICES": "monitored_services",
    "CES_PROJECT_ROOT": "project_root",
    "CES_RECOVERY_WEBHOOK_URL": "webhook_url",
}


class EngineConfig(BaseModel):
    """Auto-recovery engine configuration with strict validation."""

    model_config = {"protected_namespaces": (), "extra": "forbid"}

    enabled: bool = True
    monitoring_interval_ms: int = Field(10000, ge=100, description="Tick interval in ms")
    health_check_timeout_ms: int = Field(5000, ge=1, description="Per-probe deadline in ms")
    action_timeout_ms: int = Field(10000, ge=1, description="Per-action deadline in ms")
    max_restart_attempts: int = Field(3, ge=0, description="Automatic restart budget per service")
    critical_service_names: Set[str] = Field(default_factory=lambda: set(DEFAULT_CRITICAL_SERVICES))
    monitored_services: List[str] = Field(default_factory=lambda: list(DEFAULT_MONITORED_SERVICES))
    auto_restart_enabled: bool = True
    auto_cleanup_on_failure: bool = False
    notification_enabled: bool = True
    recovery_mode_interval_floor_ms: int = Field(5000, ge=100)
    repair_delay_ms: int = Field(2000, ge=0)
    ledger_capacity: int = Field(1000, ge=1)
    status_action_limit: int = Field(50, ge=1)
    project_root: Path = Path(".")
    ledger_path: Optional[Path] = None
    export_dir: Optional[Path] = None
    webhook_url: Optional[str] = None

    @field_validator("critical_service_names", "monitored_services", mode="before")
    @classmethod
    def _split_names(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [name.strip() for name in value.split(",") if name.strip()]
        return value

    @field_validator("monitored_services")
    @classmethod
    def _unique_names(cls, value: List[str]) -> List[str]:
        seen: List[str] = []
        for name in value:
            if not name:
                raise ValueError("service names must be non-empty")
            if name not in seen:
                seen.append(name)
        return seen

    @field_serializer("critical_service_names")
    def _serialize_critical(self, value: Set[str]) -> List[str]:
        return sorted(value)

    @property
    def resolved_ledger_path(self) -> Path:
        """Durable recovery log location."""
        if self.ledger_path is not None:
            return Path(self.ledger_path)
        return Path(self.project_root) / ".claude" / "logs" / "recovery.log"

    @property
    def resolved_export_dir(self) -> Path:
        """Directory receiving exported reports."""
        if self.export_dir is not None:
            return Path(self.export_dir)
        return Path(self.project_root) / ".claude" / "exports"

    def all_services(self) -> List[str]:
        """Monitored services followed by any critical service not listed there."""
        names = list(self.monitored_services)
        names.extend(sorted(n for n in self.critical_service_names if n not in names))
        return names

    def effective_interval_ms(self, mode: RecoveryMode) -> int:
        """Tick interval, clamped to the floor while in recovery mode."""
        if mode == RecoveryMode.RECOVERY:
            return min(self.monitoring_interval_ms, self.recovery_mode_interval_floor_ms)
        return self.monitoring_interval_ms


def build_engine_config(data: Optional[Dict[str, Any]] = None) -> EngineConfig:
    """
    Validate raw settings into an EngineConfig.

    Raises:
        ConfigurationError: naming the first invalid field
    """
    try:
        return EngineConfig(**(data or {}))
    except ValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first.get("loc", ())) or None
        raise ConfigurationError(first.get("msg", str(e)), field=field) from e


def ensure_engine_config(config: Union[EngineConfig, Dict[str, Any], None]) -> EngineConfig:
    """Accept either a validated EngineConfig or a raw dict."""
    if isinstance(config, EngineConfig):
        return config
    return build_engine_config(config)


def _env_overrides() -> Dict[str, Any]:
    overrides = {}
    for env_name, field in ENV_VARS.items():
        value = os.getenv(env_name)
        if value is not None and value != "":
            overrides[field] = value
    return overrides


def load_engine_config(
    config_path: Optional[Union[str, Path]] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> EngineConfig:
    """
    Load the engine configuration.

    Precedence (lowest to highest): model defaults, the ``auto_recovery``
    section of the JSON file, CES_* environment variables, explicit overrides.

    Args:
        config_path: Optional JSON configuration file
        overrides: Optional explicit settings

    Returns:
        Validated EngineConfig

    Raises:
        ConfigurationError: if the file is unreadable or any field is invalid
    """
    load_dotenv()

    data: Dict[str, Any] = {}
    if config_path is not None:
        path = Path(config_path)
        try:
            with open(path, "r", encoding="utf-8") as f:
                raw = json.load(f)
        except FileNotFoundError as e:
            raise ConfigurationError(f"Config file not found: {path}") from e
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Config file {path} is not valid JSON: {e}") from e

        section = raw.get("auto_recovery", raw) if isinstance(raw, dict) else None
        if not isinstance(section, dict):
            raise ConfigurationError(
                "auto_recovery section must be an object", field="auto_recovery"
            )
        data.update(section)
        logger.info(f"Loaded recovery configuration from {path}")

    data.update(_env_overrides())
    if overrides:
        data.update(overrides)

    return build_engine_config(data)
