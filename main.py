#!/usr/bin/env python3
"""
Main entry point for the CES auto-recovery system.
Handles configuration, mode selection, and engine startup.
"""

import argparse
import asyncio
import logging
import signal
import sys
from typing import List, Optional

from recovery.config import EngineConfig, load_engine_config
from recovery.engine import RecoveryEngine, create_recovery_engine
from recovery.exceptions import ConfigurationError, RecoveryError
from recovery.reporting import EXPORT_FORMATS, render_status
from recovery.types import PERFORMABLE_KINDS, RecoveryMode
from utils.logger import setup_logging

logger = logging.getLogger(__name__)


def parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="CES Auto-Recovery System",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py --start                          # Monitor and self-heal until interrupted
  python main.py --start --recovery-mode on       # Start with enhanced monitoring
  python main.py --status                         # Run one health sweep and show status
  python main.py --trigger session-system         # Manually restart a service
  python main.py --trigger mcp-servers --action repair
  python main.py --export html                    # Export recovery history
  python main.py --config ces.json --status       # Use a JSON config file
        """,
    )

    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--start", action="store_true", help="Start monitoring in the foreground")
    mode.add_argument("--status", action="store_true", help="Check all services and show status")
    mode.add_argument("--trigger", metavar="SERVICE", help="Manually run a recovery action on SERVICE")
    mode.add_argument("--export", choices=EXPORT_FORMATS, help="Export recovery history")

    parser.add_argument(
        "--action",
        choices=[kind.value for kind in PERFORMABLE_KINDS],
        default="restart",
        help="Recovery action for --trigger (default: restart)",
    )
    parser.add_argument(
        "--recovery-mode",
        choices=["on", "off"],
        help="Enable or disable recovery mode (enhanced monitoring)",
    )
    parser.add_argument("--config", metavar="PATH", help="JSON configuration file")

    return parser.parse_args(argv)


class RecoveryCLI:
    """
    Command line front end for the recovery engine.
    Handles initialization and dispatches the selected mode.
    """

    def __init__(self, args: argparse.Namespace):
        self.args = args
        self.config: Optional[EngineConfig] = None
        self.engine: Optional[RecoveryEngine] = None
        self.logger: logging.Logger = logging.getLogger(__name__)

    def initialize(self) -> None:
        """
        Load configuration and build the engine.

        Raises:
            ConfigurationError: if the configuration is invalid
        """
        self.config = load_engine_config(self.args.config)
        self.engine = create_recovery_engine(self.config, preload_history=True)

    async def run(self) -> int:
        """Run the selected mode and return the process exit code."""
        args = self.args
        if args.start:
            return await self.run_monitor()
        if args.trigger:
            return await self.run_trigger(args.trigger, args.action)
        if args.export:
            return self.run_export(args.export)
        if args.recovery_mode and not args.status:
            return self.show_recovery_mode(args.recovery_mode == "on")
        return await self.show_status()

    async def run_monitor(self) -> int:
        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop_event.set)
            except (NotImplementedError, RuntimeError):
                # Platforms without signal handler support fall back to KeyboardInterrupt
                pass

        if self.args.recovery_mode == "on":
            await self.engine.set_recovery_mode(True)

        if not await self.engine.start():
            self.logger.error("Auto-recovery did not start")
            return 1

        print("✅ Auto-recovery system is now active (Ctrl+C to stop)")
        try:
            await stop_event.wait()
        finally:
            await self.engine.stop()
        return 0

    async def run_trigger(self, service: str, action: str) -> int:
        print(f"🔄 Triggering {action} for {service}...")
        success = await self.engine.trigger_recovery(service, action)
        if success:
            print(f"✅ {service} {action} completed successfully")
            return 0
        print(f"❌ {service} {action} failed", file=sys.stderr)
        return 1

    def run_export(self, fmt: str) -> int:
        path = self.engine.write_export(fmt)
        print(f"✅ Recovery data exported to: {path}")
        return 0

    def show_recovery_mode(self, enabled: bool) -> int:
        mode = RecoveryMode.RECOVERY if enabled else RecoveryMode.NORMAL
        interval = self.config.effective_interval_ms(mode)
        if enabled:
            print(f"🚑 Recovery mode enabled: checks every {interval}ms while monitoring")
        else:
            print(f"✅ Normal monitoring: checks every {interval}ms")
        return 0

    async def show_status(self) -> int:
        if self.args.recovery_mode:
            await self.engine.set_recovery_mode(self.args.recovery_mode == "on")
        health = await self.engine.check_all()
        print(render_status(health, self.config))
        return 0


async def main(args: Optional[argparse.Namespace] = None) -> int:
    """Main async entry point."""
    if args is None:
        args = parse_arguments()

    setup_logging()
    cli = RecoveryCLI(args)
    try:
        cli.initialize()
        return await cli.run()
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2
    except RecoveryError as e:
        logger.error(f"Recovery command failed: {e}")
        return 1


def cli() -> None:
    """Console script entry point."""
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        print("Application terminated by user", file=sys.stderr)
        sys.exit(0)


if __name__ == "__main__":
    cli()
