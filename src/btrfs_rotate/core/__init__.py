"""Core backup operations for btrfs-rotate.

The subvolume inspector, snapshot manager and transfer executor wrap the
btrfs command line tool; the orchestrator in ``operations`` sequences them.
"""

from .inspector import WEEKDAYS, SubvolumeInfo, SubvolumeInspector, weekday_label
from .layout import BackupLayout, BackupMode, SlotState, select_mode
from .operations import BackupOrchestrator, BackupResult, Stage, run_backup
from .snapshots import SnapshotManager
from .transfer import TransferExecutor

__all__ = [
    "WEEKDAYS",
    "SubvolumeInfo",
    "SubvolumeInspector",
    "weekday_label",
    "BackupLayout",
    "BackupMode",
    "SlotState",
    "select_mode",
    "BackupOrchestrator",
    "BackupResult",
    "Stage",
    "run_backup",
    "SnapshotManager",
    "TransferExecutor",
]
