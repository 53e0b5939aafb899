# pyright: standard

"""btrfs-rotate: btrfs_rotate/__util__.py
Errors and helpers shared by every module.
"""

import logging
import os
import re
import subprocess
from pathlib import Path

logger = logging.getLogger(__name__)

# Inode number of the root directory of every btrfs subvolume.
BTRFS_FIRST_FREE_OBJECTID = 256


class AbortError(Exception):
    """Raised when the current run cannot continue."""


class UsageError(AbortError):
    """Bad command line arguments."""


class NotASubvolumeError(AbortError):
    """A backup root is not a btrfs subvolume."""

    def __init__(self, path) -> None:
        self.path = Path(path)
        super().__init__(f"{self.path} is not a btrfs subvolume")


class InspectionError(AbortError):
    """Metadata of an existing path could not be read."""

    def __init__(self, path, reason: str) -> None:
        self.path = Path(path)
        self.reason = reason
        super().__init__(f"Inspecting subvolume {self.path} failed ({reason})")


class SnapshotCreateError(AbortError):
    """A read-only snapshot could not be created."""

    def __init__(self, path, reason: str) -> None:
        self.path = Path(path)
        self.reason = reason
        super().__init__(f"Creating readonly snapshot {self.path} failed ({reason})")


class DeletionError(AbortError):
    """A subvolume still exists after it was deleted."""

    def __init__(self, path) -> None:
        self.path = Path(path)
        super().__init__(
            f"Subvolume {self.path} cannot be deleted (busy or not a subvolume?)"
        )


class PromotionError(AbortError):
    """A slot rename failed."""

    def __init__(self, source, target, reason: str) -> None:
        self.source = Path(source)
        self.target = Path(target)
        self.reason = reason
        super().__init__(f"Renaming {self.source} to {self.target} failed ({reason})")


class SnapshotTransferError(AbortError):
    """btrfs send/receive did not finish successfully."""

    def __init__(self, message: str, exit_status: int | None = None) -> None:
        self.exit_status = exit_status
        super().__init__(message)


def log_heading(caption: str) -> str:
    """Formatted heading for logging output sections."""
    return f"{f'--[ {caption} ]':-<50}"


def exec_subprocess(command, method="run", **kwargs):
    """Run ``command`` (an argument vector) with the given subprocess method."""
    logger.debug("Executing: %s", command)
    func = getattr(subprocess, method)
    try:
        return func(command, **kwargs)
    except FileNotFoundError as e:
        raise AbortError(f"Command not found: {command[0]}") from e
    except OSError as e:
        raise AbortError(f"Cannot execute {command[0]}: {e}") from e


def read_mounts() -> list[tuple[str, str]]:
    """Return (mount point, filesystem type) pairs from /proc/mounts."""
    mounts = []
    try:
        with open("/proc/mounts", encoding="utf-8") as f:
            for line in f:
                fields = line.split()
                if len(fields) < 3:
                    continue
                # Mount points escape whitespace as octal sequences.
                mount_point = re.sub(
                    r"\\([0-7]{3})", lambda m: chr(int(m.group(1), 8)), fields[1]
                )
                mounts.append((mount_point, fields[2]))
    except OSError as e:
        logger.debug("Cannot read /proc/mounts: %s", e)
    return mounts


def is_btrfs(path) -> bool:
    """Checks whether path is inside a btrfs file system."""
    path = os.path.normpath(os.path.abspath(path))
    best_match = ""
    best_match_fs_type = ""
    for mount_point, fs_type in read_mounts():
        candidate = mount_point.rstrip("/") + "/"
        if (path == mount_point or (path + "/").startswith(candidate)) and len(
            mount_point
        ) > len(best_match):
            best_match = mount_point
            best_match_fs_type = fs_type
    return best_match_fs_type == "btrfs"
