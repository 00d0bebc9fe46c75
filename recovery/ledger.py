"""
Recovery Ledger

Append-only record of every recovery attempt, kept in two tiers:

- a bounded in-memory ring buffer (oldest entries evicted first) serving
  "recent actions" queries and exports;
- an unbounded durable log file, one line per action, flushed and fsync'ed on
  every append.

Log line format::

    [2026-10-18T09:00:00.123456+00:00] session-system:restart FAILED (1503ms) id=<uuid> - Service restart failed | Error: boom

The durable log alone is enough to rebuild the remediation history
(see ``load_history``).
"""

import logging
import os
import re
import uuid
from collections import deque
from datetime import datetime
from pathlib import Path
from typing import Deque, List, Optional, Union

from recovery.types import ActionKind, RecoveryActionRecord
from utils.time import parse_iso, utc_now

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 1000

_ERROR_SEPARATOR = " | Error: "

_LINE_PATTERN = re.compile(
    r"^\[(?P<timestamp>[^\]]+)\] "
    r"(?P<service>.+):(?P<action>restart|cleanup|repair|escalate) "
    r"(?P<outcome>SUCCESS|FAILED) "
    r"\((?P<duration>\d+)ms\) "
    r"id=(?P<id>\S+) - "
    r"(?P<rest>.*)$"
)


def _single_line(text: str) -> str:
    return " ".join(text.splitlines())


def format_line(record: RecoveryActionRecord) -> str:
    """Render a record as one durable log line (without trailing newline)."""
    line = (
        f"[{record.timestamp.isoformat()}] {record.service}:{record.action.value} "
        f"{'SUCCESS' if record.success else 'FAILED'} ({record.duration_ms}ms) "
        f"id={record.id} - {_single_line(record.details)}"
    )
    if record.error:
        line += f"{_ERROR_SEPARATOR}{_single_line(record.error)}"
    return line


def parse_line(line: str) -> Optional[RecoveryActionRecord]:
    """Parse a durable log line back into a record; None if malformed."""
    match = _LINE_PATTERN.match(line.rstrip("\n"))
    if not match:
        return None

    timestamp = parse_iso(match.group("timestamp"))
    if timestamp is None:
        return None

    rest = match.group("rest")
    details, error = rest, None
    if _ERROR_SEPARATOR in rest:
        details, error = rest.rsplit(_ERROR_SEPARATOR, 1)

    return RecoveryActionRecord(
        id=match.group("id"),
        timestamp=timestamp,
        service=match.group("service"),
        action=ActionKind(match.group("action")),
        success=match.group("outcome") == "SUCCESS",
        duration_ms=int(match.group("duration")),
        details=details,
        error=error,
    )


def load_history(
    path: Union[str, Path], limit: Optional[int] = None
) -> List[RecoveryActionRecord]:
    """
    Rebuild recovery history from a durable log.

    Malformed lines are skipped with a warning. With ``limit``, only the most
    recent records are returned.
    """
    path = Path(path)
    if not path.exists():
        return []

    history: Deque[RecoveryActionRecord] = deque(maxlen=limit)
    with open(path, "r", encoding="utf-8") as f:
        for lineno, line in enumerate(f, start=1):
            if not line.strip():
                continue
            record = parse_line(line)
            if record is None:
                logger.warning(f"Skipping malformed recovery log line {lineno} in {path}")
                continue
            history.append(record)
    return list(history)


class RecoveryLedger:
    """Two-tier append-only ledger of recovery actions."""

    def __init__(
        self,
        log_path: Optional[Union[str, Path]] = None,
        capacity: int = DEFAULT_CAPACITY,
        preload: bool = False,
    ):
        """
        Args:
            log_path: Durable log file; None keeps the ledger memory-only
            capacity: Maximum records held in memory
            preload: Prime the in-memory tier from the existing durable log
        """
        if capacity < 1:
            raise ValueError("Ledger capacity must be at least 1")

        self.log_path = Path(log_path) if log_path is not None else None
        self.capacity = capacity
        self._entries: Deque[RecoveryActionRecord] = deque(maxlen=capacity)
        self._last_timestamp: Optional[datetime] = None
        self.total_appended = 0

        if preload and self.log_path is not None:
            for record in load_history(self.log_path, limit=capacity):
                self._entries.append(record)
            if self._entries:
                self._last_timestamp = self._entries[-1].timestamp
            logger.info(f"Loaded {len(self._entries)} recovery actions from {self.log_path}")

    def record(
        self,
        service: str,
        action: ActionKind,
        success: bool,
        duration_ms: int,
        details: str,
        error: Optional[str] = None,
    ) -> RecoveryActionRecord:
        """Create, store and persist a new record."""
        timestamp = utc_now()
        if self._last_timestamp is not None and timestamp < self._last_timestamp:
            timestamp = self._last_timestamp

        entry = RecoveryActionRecord(
            id=str(uuid.uuid4()),
            timestamp=timestamp,
            service=service,
            action=action,
            success=success,
            duration_ms=max(0, int(duration_ms)),
            details=details,
            error=error or None,
        )
        self.append(entry)
        return entry

    def append(self, entry: RecoveryActionRecord) -> None:
        """Append an existing record to both tiers."""
        if self._last_timestamp is not None and entry.timestamp < self._last_timestamp:
            raise ValueError(
                f"Recovery action {entry.id} is older than the last recorded action"
            )

        self._entries.append(entry)
        self._last_timestamp = entry.timestamp
        self.total_appended += 1
        self._persist(entry)

    def _persist(self, entry: RecoveryActionRecord) -> None:
        if self.log_path is None:
            return
        try:
            self.log_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.log_path, "a", encoding="utf-8") as f:
                f.write(format_line(entry) + "\n")
                f.flush()
                os.fsync(f.fileno())
        except OSError as e:
            # I/O issue writing the durable log, log and continue (non-fatal)
            logger.exception(f"Failed to write recovery action to {self.log_path}: {e}")

    def recent(self, n: int) -> List[RecoveryActionRecord]:
        """The last ``n`` records, oldest first."""
        if n <= 0:
            return []
        return list(self._entries)[-n:]

    def entries(self) -> List[RecoveryActionRecord]:
        """Every in-memory record, oldest first."""
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)
