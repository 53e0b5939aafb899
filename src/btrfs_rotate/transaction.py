"""Transaction logging for backup runs.

Appends one JSON record per line to an audit log so that interrupted or
failed runs can be reconstructed after the fact. Logging is disabled until
a path is set with :func:`set_transaction_log`.
"""

import json
import logging
import os
import threading
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger(__name__)

_transaction_log_path: Optional[Path] = None
_lock = threading.Lock()


def set_transaction_log(path: Path | str | None) -> None:
    """Set (or with None, disable) the transaction log file."""
    global _transaction_log_path

    if path is None:
        _transaction_log_path = None
        return

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    _transaction_log_path = path
    logger.debug("Transaction log: %s", path)


def log_transaction(
    action: str,
    status: str,
    source: Optional[str] = None,
    destination: Optional[str] = None,
    snapshot: Optional[str] = None,
    parent: Optional[str] = None,
    duration_seconds: Optional[float] = None,
    error: Optional[str] = None,
    details: Optional[dict[str, Any]] = None,
) -> None:
    """Append a transaction record, leaving out fields that are None.

    Write errors are reported as warnings; the audit log never aborts a run.
    """
    if _transaction_log_path is None:
        return

    record: dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "pid": os.getpid(),
        "action": action,
        "status": status,
    }
    optional = {
        "source": source,
        "destination": destination,
        "snapshot": snapshot,
        "parent": parent,
        "duration_seconds": (
            round(duration_seconds, 3) if duration_seconds is not None else None
        ),
        "error": error,
        "details": details,
    }
    record.update({k: v for k, v in optional.items() if v is not None})

    with _lock:
        try:
            with open(_transaction_log_path, "a", encoding="utf-8") as f:
                f.write(json.dumps(record) + "\n")
        except OSError as e:
            logger.warning(
                "Could not write transaction log %s: %s", _transaction_log_path, e
            )


def read_transaction_log(
    path: Path | str | None = None,
    limit: Optional[int] = None,
    action_filter: Optional[str] = None,
    status_filter: Optional[str] = None,
) -> list[dict[str, Any]]:
    """Read records from a transaction log, most recent first.

    Args:
        path: Log file, the current transaction log if omitted
        limit: Maximum number of records to return
        action_filter: Only return records with this action
        status_filter: Only return records with this status
    """
    path = Path(path) if path is not None else _transaction_log_path
    if path is None or not path.exists():
        return []

    records = []
    with open(path, encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                record = json.loads(line)
            except json.JSONDecodeError:
                logger.debug("Skipping malformed transaction record: %r", line)
                continue
            if action_filter and record.get("action") != action_filter:
                continue
            if status_filter and record.get("status") != status_filter:
                continue
            records.append(record)

    records.reverse()
    if limit is not None:
        records = records[:limit]
    return records


class TransactionContext:
    """Log a started record on entry and a completed or failed one on exit."""

    def __init__(self, action: str, **fields: Any) -> None:
        self.action = action
        self.fields = fields
        self.details: dict[str, Any] = {}
        self.error: Optional[str] = None
        self._start = 0.0

    def set_snapshot(self, name: str) -> None:
        self.fields["snapshot"] = name

    def set_parent(self, name: str) -> None:
        self.fields["parent"] = name

    def add_detail(self, key: str, value: Any) -> None:
        self.details[key] = value

    def fail(self, message: str) -> None:
        """Remember an error message for the failed record."""
        self.error = message

    def __enter__(self) -> "TransactionContext":
        self._start = time.monotonic()
        log_transaction(action=self.action, status="started", **self.fields)
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> bool:
        duration = time.monotonic() - self._start
        details = self.details or None
        if exc_type is None:
            log_transaction(
                action=self.action,
                status="completed",
                duration_seconds=duration,
                details=details,
                **self.fields,
            )
        else:
            log_transaction(
                action=self.action,
                status="failed",
                duration_seconds=duration,
                error=self.error or str(exc_value),
                details=details,
                **self.fields,
            )
        return False
