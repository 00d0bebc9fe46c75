"""
Status reports and ledger exports.

``render_status`` produces the colored console report. The ``export_*``
functions render the ledger together with a registry snapshot; they are pure,
so the same state always renders byte-identical output.
"""

import csv
import html
import io
import json
import logging
from pathlib import Path
from typing import Callable, Dict, List, Sequence

from colorama import Fore, Style

from recovery.config import EngineConfig
from recovery.types import (
    OverallHealth,
    RecoveryActionRecord,
    RecoveryMode,
    ServiceStatus,
    SystemHealth,
)
from utils.time import file_timestamp

logger = logging.getLogger(__name__)

CSV_HEADERS = ["timestamp", "service", "action", "success", "duration", "details", "error"]
CONSOLE_ACTION_LIMIT = 5
HTML_ACTION_LIMIT = 20

EXPORT_FORMATS = ("json", "csv", "html")

_OVERALL_COLORS = {
    OverallHealth.HEALTHY: Fore.GREEN,
    OverallHealth.DEGRADED: Fore.YELLOW,
    OverallHealth.CRITICAL: Fore.RED,
    OverallHealth.EMERGENCY: Fore.RED + Style.BRIGHT,
    OverallHealth.UNKNOWN: Fore.WHITE,
}

_STATUS_ICONS = {
    ServiceStatus.HEALTHY: "🟢",
    ServiceStatus.DEGRADED: "🟡",
    ServiceStatus.CRITICAL: "🔴",
    ServiceStatus.FAILED: "❌",
    ServiceStatus.UNKNOWN: "⚪",
}


def format_uptime(ms: float) -> str:
    """Human-readable uptime: ``Xd Yh``, ``Xh Ym``, ``Xm Ys`` or ``Xs``."""
    seconds = int(ms // 1000)
    minutes = seconds // 60
    hours = minutes // 60
    days = hours // 24

    if days > 0:
        return f"{days}d {hours % 24}h"
    if hours > 0:
        return f"{hours}h {minutes % 60}m"
    if minutes > 0:
        return f"{minutes}m {seconds % 60}s"
    return f"{seconds}s"


def _enabled(flag: bool) -> str:
    return f"{Fore.GREEN}✅ Enabled{Style.RESET_ALL}" if flag else f"{Fore.RED}❌ Disabled{Style.RESET_ALL}"


def render_status(health: SystemHealth, config: EngineConfig) -> str:
    """Colored multi-section status report for the console."""
    lines: List[str] = []
    heading = Fore.BLUE + Style.BRIGHT

    lines.append(f"{Fore.CYAN}🏥 AUTO-RECOVERY SYSTEM STATUS{Style.RESET_ALL}")
    lines.append(f"{Fore.CYAN}{'═' * 32}{Style.RESET_ALL}")
    lines.append("")

    color = _OVERALL_COLORS.get(health.overall, Fore.WHITE)
    last_check = health.last_full_check.strftime("%H:%M:%S") if health.last_full_check else "never"
    lines.append(f"{heading}📊 OVERALL HEALTH{Style.RESET_ALL}")
    lines.append(f"   Status: {color}{health.overall.value.upper()}{Style.RESET_ALL}")
    lines.append(f"   Monitoring: {'🟢 Active' if health.monitoring else '🔴 Inactive'}")
    lines.append(
        f"   Recovery Mode: {'🟡 Active' if health.recovery_mode == RecoveryMode.RECOVERY else '🟢 Normal'}"
    )
    if health.escalated_services:
        lines.append(f"   {Fore.RED}Escalated: {', '.join(health.escalated_services)}{Style.RESET_ALL}")
    lines.append(f"   Last Check: {last_check}")
    lines.append("")

    lines.append(f"{heading}🔧 SERVICE HEALTH{Style.RESET_ALL}")
    if not health.services:
        lines.append(f"{Style.DIM}   No services monitored{Style.RESET_ALL}")
    for service in health.services:
        lines.append(f"   {_STATUS_ICONS.get(service.status, '⚪')} {service.name}")
        lines.append(
            f"{Style.DIM}      Status: {service.status.value} | "
            f"Uptime: {format_uptime(service.uptime_ms)} | "
            f"Restarts: {service.restart_count}{Style.RESET_ALL}"
        )
        if service.last_error:
            lines.append(f"{Fore.RED}      Last Error: {service.last_error}{Style.RESET_ALL}")
    lines.append("")

    lines.append(f"{heading}📋 RECENT RECOVERY ACTIONS{Style.RESET_ALL}")
    recent = health.actions[-CONSOLE_ACTION_LIMIT:]
    if not recent:
        lines.append(f"{Style.DIM}   No recent actions{Style.RESET_ALL}")
    for action in recent:
        icon = "✅" if action.success else "❌"
        lines.append(
            f"   {icon} [{action.timestamp.strftime('%H:%M:%S')}] {action.service}: {action.action.value}"
        )
        lines.append(f"{Style.DIM}      Duration: {action.duration_ms}ms | {action.details}{Style.RESET_ALL}")
        if action.error:
            lines.append(f"{Fore.RED}      Error: {action.error}{Style.RESET_ALL}")
    lines.append("")

    lines.append(f"{heading}⚙️ CONFIGURATION{Style.RESET_ALL}")
    lines.append(f"   Auto-restart: {_enabled(config.auto_restart_enabled)}")
    lines.append(f"   Auto-cleanup: {_enabled(config.auto_cleanup_on_failure)}")
    lines.append(f"   Max Restarts: {config.max_restart_attempts}")
    lines.append(
        f"   Check Interval: {config.effective_interval_ms(health.recovery_mode)}ms"
    )
    lines.append(f"   Critical Services: {', '.join(sorted(config.critical_service_names))}")
    return "\n".join(lines)


def export_json(
    entries: Sequence[RecoveryActionRecord], health: SystemHealth, config: EngineConfig
) -> str:
    data = {
        "system_health": health.to_dict(),
        "configuration": config.model_dump(mode="json"),
        "service_health": [s.to_dict() for s in health.services],
        "recovery_actions": [e.to_dict() for e in entries],
    }
    return json.dumps(data, indent=2, default=str)


def export_csv(
    entries: Sequence[RecoveryActionRecord], health: SystemHealth, config: EngineConfig
) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(CSV_HEADERS)
    for entry in entries:
        writer.writerow(
            [
                entry.timestamp.isoformat(),
                entry.service,
                entry.action.value,
                "true" if entry.success else "false",
                entry.duration_ms,
                entry.details,
                entry.error or "",
            ]
        )
    return buffer.getvalue()


def export_html(
    entries: Sequence[RecoveryActionRecord], health: SystemHealth, config: EngineConfig
) -> str:
    esc = html.escape
    services = "".join(
        f'\n    <div class="status {esc(s.status.value)}">'
        f"<strong>{esc(s.name)}</strong>: {esc(s.status.value)}"
        f"<br>Uptime: {format_uptime(s.uptime_ms)}"
        f"<br>Restarts: {s.restart_count}</div>"
        for s in health.services
    )
    actions = "".join(
        f'\n    <div class="action {"success" if a.success else "failure"}">'
        f"<strong>[{esc(a.timestamp.isoformat())}]</strong> {esc(a.service)}: {esc(a.action.value)}"
        f"<br>{esc(a.details)}"
        + (f"<br><em>Error: {esc(a.error)}</em>" if a.error else "")
        + "</div>"
        for a in list(entries)[-HTML_ACTION_LIMIT:]
    )
    return f"""<!DOCTYPE html>
<html>
<head>
    <title>CES Auto-Recovery Report</title>
    <style>
        body {{ font-family: Arial, sans-serif; margin: 20px; }}
        .header {{ color: #2c3e50; }}
        .status {{ padding: 10px; margin: 10px 0; border-radius: 5px; }}
        .healthy {{ background-color: #d4edda; }}
        .degraded {{ background-color: #fff3cd; }}
        .critical, .failed, .emergency {{ background-color: #f8d7da; }}
        .action {{ margin: 5px 0; padding: 5px; border-left: 3px solid #ccc; }}
        .success {{ border-left-color: #28a745; }}
        .failure {{ border-left-color: #dc3545; }}
    </style>
</head>
<body>
    <h1 class="header">CES Auto-Recovery Report</h1>

    <h2>System Health</h2>
    <div class="status {esc(health.overall.value)}">Overall Status: {esc(health.overall.value.upper())}</div>
    <p>Recovery Mode: {esc(health.recovery_mode.value)}</p>

    <h2>Services</h2>{services}

    <h2>Recovery Actions</h2>{actions}
</body>
</html>
"""


_EXPORTERS: Dict[str, Callable[..., str]] = {
    "json": export_json,
    "csv": export_csv,
    "html": export_html,
}


def render_export(
    fmt: str,
    entries: Sequence[RecoveryActionRecord],
    health: SystemHealth,
    config: EngineConfig,
) -> str:
    """
    Render an export document.

    Raises:
        ValueError: for a format other than json, csv or html
    """
    exporter = _EXPORTERS.get(fmt.lower())
    if exporter is None:
        raise ValueError(f"Unsupported export format '{fmt}', expected one of {EXPORT_FORMATS}")
    return exporter(entries, health, config)


def write_export_file(content: str, fmt: str, directory: Path) -> Path:
    """Write ``content`` to a timestamped export file in ``directory``."""
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / f"ces-recovery-{file_timestamp()}.{fmt.lower()}"
    with open(path, "w", encoding="utf-8") as f:
        f.write(content)
    return path
