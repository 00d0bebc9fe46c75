"""
Concrete probes and actions for the CES services.

Each logical service pairs a HealthProbe with a RecoveryAction:

- claude-code-cli: ``claude --version`` check, process restart, reinstall
- mcp-servers: ecosystem.json check, activation script, init script repair
- session-system: SessionController status, close/start cycle, state wipe
- dev-servers: listening-port check, dev script respawn

Anything else falls back to a psutil process-pattern capability.
"""

import asyncio
import json
import logging
import os
import re
import shutil
import subprocess
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import psutil

from recovery.capabilities import CapabilityRegistry, ServiceCapability
from recovery.config import (
    CLI_SERVICE,
    DEV_SERVICE,
    MCP_SERVICE,
    SESSION_SERVICE,
    EngineConfig,
)
from recovery.interfaces import (
    CleanupCapability,
    HealthProbe,
    RecoveryAction,
    SessionController,
)
from recovery.types import ActionOutcome, ProbeVerdict, ServiceStatus
from utils.time import utc_now

logger = logging.getLogger(__name__)

COMMON_DEV_PORTS = (3000, 3001, 4200, 5000, 8000, 8080)
DEV_PROCESS_PATTERN = r"\b(npm|yarn|pnpm)\s+(run\s+)?dev\b"
NODE_PROCESS_PATTERN = r"(^|/)node(\s|$)"
CLI_PROCESS_PATTERN = r"(^|/)claude(\s|$)"
CLI_VERSION_COMMAND = ("claude", "--version")
CLI_INSTALL_COMMAND = ("npm", "install", "-g", "@anthropic-ai/claude-code")
MCP_ACTIVATE_SCRIPT = "ces-mcp-activate.sh"
MCP_INIT_SCRIPT = "ces-init-private.sh"


# ----------------------------------------------------------------------
# Process and command helpers
# ----------------------------------------------------------------------


def run_command(
    cmd: Sequence[str], cwd: Optional[Path] = None, timeout: float = 30.0
) -> Tuple[int, str, str]:
    """Run a command and return (returncode, stdout, stderr)."""
    try:
        result = subprocess.run(
            list(cmd),
            cwd=str(cwd) if cwd else None,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
        return result.returncode, result.stdout, result.stderr
    except subprocess.TimeoutExpired:
        return -1, "", f"Command timed out after {timeout}s"
    except FileNotFoundError:
        return -1, "", f"Command not found: {cmd[0]}"


async def run_command_async(
    cmd: Sequence[str], cwd: Optional[Path] = None, timeout: float = 30.0
) -> Tuple[int, str, str]:
    return await asyncio.to_thread(run_command, cmd, cwd, timeout)


def find_processes(pattern: str) -> List[psutil.Process]:
    """Processes whose command line matches ``pattern``, excluding this one."""
    regex = re.compile(pattern)
    own = {os.getpid(), os.getppid()}
    matches = []
    for proc in psutil.process_iter(["pid", "name", "cmdline"]):
        info = proc.info
        if info.get("pid") in own:
            continue
        cmdline = " ".join(info.get("cmdline") or []) or (info.get("name") or "")
        if cmdline and regex.search(cmdline):
            matches.append(proc)
    return matches


def terminate_processes(pattern: str, grace_seconds: float = 3.0) -> int:
    """Terminate matching processes, killing any that outlive the grace period."""
    procs = find_processes(pattern)
    for proc in procs:
        try:
            proc.terminate()
        except (psutil.NoSuchProcess, psutil.AccessDenied) as e:
            logger.debug(f"Could not terminate {proc.pid}: {e}")

    _, alive = psutil.wait_procs(procs, timeout=grace_seconds)
    for proc in alive:
        try:
            proc.kill()
        except (psutil.NoSuchProcess, psutil.AccessDenied) as e:
            logger.debug(f"Could not kill {proc.pid}: {e}")

    if procs:
        logger.info(f"Terminated {len(procs)} process(es) matching {pattern!r}")
    return len(procs)


def listening_ports(ports: Sequence[int]) -> List[int]:
    """Which of ``ports`` have a listening inet socket."""
    try:
        connections = psutil.net_connections(kind="inet")
    except psutil.AccessDenied:
        logger.debug("Not permitted to list network connections")
        return []
    wanted = set(ports)
    return sorted(
        {
            conn.laddr.port
            for conn in connections
            if conn.status == psutil.CONN_LISTEN and conn.laddr and conn.laddr.port in wanted
        }
    )


def _timeout_verdict(timeout: float) -> ProbeVerdict:
    return ProbeVerdict.failed(f"Health check timeout after {int(timeout * 1000)}ms")


# ----------------------------------------------------------------------
# Generic process-pattern capability
# ----------------------------------------------------------------------


class ProcessPatternProbe(HealthProbe):
    """Healthy while at least one process matches the pattern."""

    def __init__(self, pattern: Optional[str] = None):
        self.pattern = pattern

    async def check(self, service: str, timeout: float) -> ProbeVerdict:
        pattern = self.pattern or re.escape(service)
        try:
            procs = await asyncio.wait_for(
                asyncio.to_thread(find_processes, pattern), timeout=timeout
            )
        except asyncio.TimeoutError:
            return _timeout_verdict(timeout)

        if procs:
            return ProbeVerdict.healthy(pid=procs[0].pid)
        return ProbeVerdict.failed(f"No running process matches '{service}'")


class ProcessPatternAction(RecoveryAction):
    """Restart by terminating matching processes and letting a supervisor respawn them."""

    def __init__(
        self,
        pattern: Optional[str] = None,
        cleanup_capability: Optional[CleanupCapability] = None,
        repair_delay: float = 2.0,
        settle_delay: float = 2.0,
    ):
        super().__init__(cleanup_capability, repair_delay)
        self.pattern = pattern
        self.settle_delay = settle_delay

    async def restart(self, service: str) -> ActionOutcome:
        pattern = self.pattern or re.escape(service)
        killed = await asyncio.to_thread(terminate_processes, pattern)
        await asyncio.sleep(self.settle_delay)
        return ActionOutcome(
            success=True, details=f"Service restarted successfully ({killed} process(es) terminated)"
        )


def generic_process_capability(
    name: str,
    cleanup: Optional[CleanupCapability] = None,
    repair_delay: float = 2.0,
) -> ServiceCapability:
    """Fallback capability for services without a dedicated implementation."""
    return ServiceCapability(
        probe=ProcessPatternProbe(),
        action=ProcessPatternAction(cleanup_capability=cleanup, repair_delay=repair_delay),
    )


# ----------------------------------------------------------------------
# claude-code-cli
# ----------------------------------------------------------------------


class CliToolProbe(HealthProbe):
    """Runs the CLI's version command."""

    def __init__(self, command: Sequence[str] = CLI_VERSION_COMMAND, marker: str = "claude"):
        self.command = tuple(command)
        self.marker = marker

    async def check(self, service: str, timeout: float) -> ProbeVerdict:
        returncode, stdout, stderr = await run_command_async(self.command, timeout=timeout)
        if returncode == 0 and self.marker in stdout.lower():
            return ProbeVerdict.healthy()
        if "timed out" in stderr:
            return _timeout_verdict(timeout)
        return ProbeVerdict.failed(stderr.strip() or f"{' '.join(self.command)} exited with {returncode}")


class CliToolAction(RecoveryAction):
    """Kills stale CLI processes, or reinstalls the CLI on repair."""

    def __init__(
        self,
        cleanup_capability: Optional[CleanupCapability] = None,
        repair_delay: float = 2.0,
        settle_delay: float = 2.0,
        version_command: Sequence[str] = CLI_VERSION_COMMAND,
        install_command: Sequence[str] = CLI_INSTALL_COMMAND,
    ):
        super().__init__(cleanup_capability, repair_delay)
        self.settle_delay = settle_delay
        self.version_command = tuple(version_command)
        self.install_command = tuple(install_command)

    async def _verify(self) -> Tuple[bool, str]:
        returncode, _, stderr = await run_command_async(self.version_command, timeout=10.0)
        return returncode == 0, stderr.strip()

    async def restart(self, service: str) -> ActionOutcome:
        await asyncio.to_thread(terminate_processes, CLI_PROCESS_PATTERN)
        await asyncio.sleep(self.settle_delay)

        ok, error = await self._verify()
        if ok:
            return ActionOutcome(success=True, details="Service restarted successfully")
        return ActionOutcome(success=False, details="Service restart failed", error=error or None)

    async def repair(self, service: str) -> ActionOutcome:
        logger.info("Reinstalling Claude Code CLI")
        returncode, _, stderr = await run_command_async(self.install_command, timeout=60.0)
        if returncode != 0:
            return ActionOutcome(
                success=False,
                details="Service repair failed",
                error=stderr.strip() or f"install exited with {returncode}",
            )

        ok, error = await self._verify()
        if ok:
            return ActionOutcome(success=True, details="Service repair completed")
        return ActionOutcome(success=False, details="Service repair failed", error=error or None)


# ----------------------------------------------------------------------
# mcp-servers
# ----------------------------------------------------------------------


class McpServersProbe(HealthProbe):
    """Healthy when the ecosystem config declares at least one MCP server."""

    def __init__(self, project_root: Path):
        self.config_path = Path(project_root) / ".claude" / "ecosystem.json"

    async def check(self, service: str, timeout: float) -> ProbeVerdict:
        if not self.config_path.exists():
            return ProbeVerdict(
                ServiceStatus.DEGRADED, error=f"MCP config not found: {self.config_path}"
            )
        try:
            with open(self.config_path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            return ProbeVerdict(ServiceStatus.DEGRADED, error=f"MCP config unreadable: {e}")

        servers = data.get("mcpServers") if isinstance(data, dict) else None
        if servers:
            return ProbeVerdict.healthy()
        return ProbeVerdict(ServiceStatus.DEGRADED, error="No MCP servers configured")


class McpServersAction(RecoveryAction):
    """Runs the MCP activation script (restart) or init script (repair)."""

    def __init__(
        self,
        project_root: Path,
        cleanup_capability: Optional[CleanupCapability] = None,
        repair_delay: float = 2.0,
    ):
        super().__init__(cleanup_capability, repair_delay)
        self.project_root = Path(project_root)

    async def _run_script(self, script: str, args: Sequence[str], timeout: float) -> Optional[str]:
        """Run a project script; returns an error message or None on success."""
        path = self.project_root / script
        if not path.exists():
            return f"Script not found: {path}"
        returncode, _, stderr = await run_command_async(
            ["bash", str(path), *args], cwd=self.project_root, timeout=timeout
        )
        if returncode != 0:
            return stderr.strip() or f"{script} exited with {returncode}"
        return None

    async def restart(self, service: str) -> ActionOutcome:
        error = await self._run_script(MCP_ACTIVATE_SCRIPT, [], timeout=30.0)
        if error is None:
            return ActionOutcome(success=True, details="Service restarted successfully")
        return ActionOutcome(success=False, details="Service restart failed", error=error)

    async def repair(self, service: str) -> ActionOutcome:
        error = await self._run_script(MCP_INIT_SCRIPT, ["--mcp-only"], timeout=60.0)
        if error is None:
            return ActionOutcome(success=True, details="Service repair completed")
        return ActionOutcome(success=False, details="Service repair failed", error=error)


# ----------------------------------------------------------------------
# session-system
# ----------------------------------------------------------------------


class FileSessionController(SessionController):
    """Keeps the current session as a JSON document under .claude/session."""

    def __init__(self, project_root: Path):
        self.session_dir = Path(project_root) / ".claude" / "session"
        self.session_file = self.session_dir / "current.json"

    def _read(self) -> Optional[Dict[str, Any]]:
        try:
            with open(self.session_file, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError):
            return None
        return data if isinstance(data, dict) else None

    def _write(self, data: Dict[str, Any]) -> None:
        self.session_dir.mkdir(parents=True, exist_ok=True)
        with open(self.session_file, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)

    async def start_session(self, force: bool = False) -> Dict[str, Any]:
        existing = self._read()
        if existing is not None and existing.get("active") and not force:
            return existing

        session = {
            "id": str(uuid.uuid4()),
            "started_at": utc_now().isoformat(),
            "active": True,
        }
        self._write(session)
        logger.info(f"Session {session['id']} started")
        return session

    async def close_session(self, save: bool = True) -> None:
        existing = self._read()
        if existing is None:
            return
        if save:
            existing["active"] = False
            existing["closed_at"] = utc_now().isoformat()
            self._write(existing)
        else:
            self.session_file.unlink(missing_ok=True)
        logger.info(f"Session {existing.get('id')} closed")

    async def get_session_status(self) -> Dict[str, Any]:
        data = self._read()
        return {
            "initialized": data is not None,
            "active": bool(data and data.get("active")),
            "session_id": data.get("id") if data else None,
        }


class SessionSystemProbe(HealthProbe):
    """Critical while the session subsystem reports itself uninitialized."""

    def __init__(self, session: SessionController):
        self.session = session

    async def check(self, service: str, timeout: float) -> ProbeVerdict:
        try:
            status = await asyncio.wait_for(self.session.get_session_status(), timeout=timeout)
        except asyncio.TimeoutError:
            return _timeout_verdict(timeout)

        if status.get("initialized"):
            return ProbeVerdict.healthy()
        return ProbeVerdict(ServiceStatus.CRITICAL, error="Session system not initialized")


class SessionSystemAction(RecoveryAction):
    """Cycles the session (restart) or wipes and re-creates it (repair)."""

    def __init__(
        self,
        session: SessionController,
        session_dir: Path,
        cleanup_capability: Optional[CleanupCapability] = None,
        repair_delay: float = 2.0,
        settle_delay: float = 1.0,
    ):
        super().__init__(cleanup_capability, repair_delay)
        self.session = session
        self.session_dir = Path(session_dir)
        self.settle_delay = settle_delay

    async def restart(self, service: str) -> ActionOutcome:
        await self.session.close_session(save=True)
        await asyncio.sleep(self.settle_delay)
        await self.session.start_session(force=False)
        return ActionOutcome(success=True, details="Service restarted successfully")

    async def repair(self, service: str) -> ActionOutcome:
        await asyncio.to_thread(shutil.rmtree, self.session_dir, ignore_errors=True)
        self.session_dir.mkdir(parents=True, exist_ok=True)
        await self.session.start_session(force=True)
        return ActionOutcome(success=True, details="Service repair completed")


# ----------------------------------------------------------------------
# dev-servers
# ----------------------------------------------------------------------


class DevServersProbe(HealthProbe):
    """Healthy when anything listens on one of the common dev ports."""

    def __init__(self, ports: Sequence[int] = COMMON_DEV_PORTS):
        self.ports = tuple(ports)

    async def check(self, service: str, timeout: float) -> ProbeVerdict:
        try:
            found = await asyncio.wait_for(
                asyncio.to_thread(listening_ports, self.ports), timeout=timeout
            )
        except asyncio.TimeoutError:
            return _timeout_verdict(timeout)

        if found:
            return ProbeVerdict.healthy()
        return ProbeVerdict(
            ServiceStatus.DEGRADED,
            error=f"No development server listening on {', '.join(map(str, self.ports))}",
        )


class DevServersAction(RecoveryAction):
    """Kills running dev servers and respawns the project's dev script."""

    def __init__(
        self,
        project_root: Path,
        cleanup_capability: Optional[CleanupCapability] = None,
        repair_delay: float = 2.0,
        settle_delay: float = 2.0,
    ):
        super().__init__(cleanup_capability, repair_delay)
        self.project_root = Path(project_root)
        self.settle_delay = settle_delay

    def _has_dev_script(self) -> bool:
        package_json = self.project_root / "package.json"
        try:
            with open(package_json, "r", encoding="utf-8") as f:
                pkg = json.load(f)
        except (OSError, json.JSONDecodeError):
            return False
        return bool(isinstance(pkg, dict) and (pkg.get("scripts") or {}).get("dev"))

    async def restart(self, service: str) -> ActionOutcome:
        await asyncio.to_thread(terminate_processes, DEV_PROCESS_PATTERN)
        await asyncio.sleep(self.settle_delay)

        if not self._has_dev_script():
            return ActionOutcome(
                success=False,
                details="Service restart failed",
                error="No dev script found in package.json",
            )

        try:
            subprocess.Popen(
                ["npm", "run", "dev"],
                cwd=str(self.project_root),
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                start_new_session=True,
            )
        except OSError as e:
            return ActionOutcome(success=False, details="Service restart failed", error=str(e))
        return ActionOutcome(success=True, details="Service restarted successfully")


# ----------------------------------------------------------------------
# Cleanup
# ----------------------------------------------------------------------


class ProcessCleanup(CleanupCapability):
    """Terminates stray processes and clears project caches."""

    def __init__(self, project_root: Path, process_patterns: Sequence[str] = ()):
        self.project_root = Path(project_root)
        self.process_patterns = tuple(process_patterns)

    async def execute_clean_reset(
        self,
        preserve_sessions: bool = True,
        preserve_logs: bool = True,
        kill_node_processes: bool = False,
        clear_system_cache: bool = True,
    ) -> Dict[str, Any]:
        report: Dict[str, Any] = {"processes_terminated": 0, "removed": [], "errors": []}

        patterns = list(self.process_patterns)
        if kill_node_processes:
            patterns.append(NODE_PROCESS_PATTERN)
        for pattern in patterns:
            report["processes_terminated"] += await asyncio.to_thread(terminate_processes, pattern)

        claude_dir = self.project_root / ".claude"
        targets = []
        if clear_system_cache:
            targets.append(claude_dir / "cache")
        if not preserve_sessions:
            targets.append(claude_dir / "session")
        if not preserve_logs:
            targets.append(claude_dir / "logs")

        for target in targets:
            if not target.exists():
                continue
            try:
                await asyncio.to_thread(shutil.rmtree, target)
                report["removed"].append(str(target))
            except OSError as e:
                report["errors"].append(f"{target}: {e}")

        logger.info(
            f"Clean reset terminated {report['processes_terminated']} process(es), "
            f"removed {len(report['removed'])} path(s)"
        )
        return report


# ----------------------------------------------------------------------
# Wiring
# ----------------------------------------------------------------------


def build_default_capabilities(
    config: EngineConfig,
    session: Optional[SessionController] = None,
    cleanup: Optional[CleanupCapability] = None,
) -> CapabilityRegistry:
    """Register the CES service capabilities, with the process fallback for the rest."""
    root = Path(config.project_root)
    cleanup = cleanup or ProcessCleanup(root)
    session = session or FileSessionController(root)
    delay = config.repair_delay_ms / 1000

    registry = CapabilityRegistry(
        fallback=lambda name: generic_process_capability(name, cleanup, delay)
    )
    registry.register(
        CLI_SERVICE,
        ServiceCapability(CliToolProbe(), CliToolAction(cleanup, repair_delay=delay)),
    )
    registry.register(
        MCP_SERVICE,
        ServiceCapability(McpServersProbe(root), McpServersAction(root, cleanup, delay)),
    )
    registry.register(
        SESSION_SERVICE,
        ServiceCapability(
            SessionSystemProbe(session),
            SessionSystemAction(session, root / ".claude" / "session", cleanup, delay),
        ),
    )
    registry.register(
        DEV_SERVICE,
        ServiceCapability(DevServersProbe(), DevServersAction(root, cleanup, delay)),
    )
    return registry
