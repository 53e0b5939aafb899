"""Configuration schema definitions using dataclasses.

Defines the structure for TOML configuration with sensible defaults.
"""

from dataclasses import dataclass
from typing import Optional


@dataclass
class Config:
    """Root configuration object, read from the ``[global]`` table.

    Attributes:
        btrfs_command: Name or path of the btrfs executable
        snapshot_dir: Directory below the source root that holds its slots
        btrfs_debug: Pass -vv to btrfs send / receive
        lock_file: Exclusive lock held for the duration of a run (None = no lock)
        transaction_log: JSON lines audit log (None = disabled)
        quiet: Suppress non-essential output
        verbose: Enable verbose output
    """

    btrfs_command: str = "btrfs"
    snapshot_dir: str = ".snapshots"
    btrfs_debug: bool = False
    lock_file: Optional[str] = None
    transaction_log: Optional[str] = None
    quiet: bool = False
    verbose: bool = False
