"""Snapshot creation, deletion and slot renames."""

import logging
import os
import subprocess
from pathlib import Path

from .. import __util__
from .inspector import SubvolumeInspector

logger = logging.getLogger(__name__)


class SnapshotManager:
    """Mutating subvolume operations used to stage and rotate snapshots."""

    def __init__(self, btrfs_command: str = "btrfs", inspector=None) -> None:
        self.btrfs_command = btrfs_command
        self.inspector = inspector or SubvolumeInspector(btrfs_command)

    def delete_if_exists(self, path) -> None:
        """Recursively delete the subvolume at ``path`` if there is one.

        The delete command is not retried; success is decided by whether the
        path is gone afterwards.

        Raises:
            DeletionError: if the path still exists after deletion
        """
        path = Path(path)
        if not self.inspector.is_subvolume(path):
            logger.debug("No subvolume to delete at %s", path)
            return

        logger.info("Deleting subvolume %s", path)
        cmd = [self.btrfs_command, "subvolume", "delete", "-R", str(path)]
        result = __util__.exec_subprocess(
            cmd, capture_output=True, text=True, check=False
        )
        if result.returncode != 0:
            logger.debug(
                "Delete of %s exited with %d: %s",
                path,
                result.returncode,
                (result.stderr or "").strip(),
            )
        if path.exists():
            raise __util__.DeletionError(path)

    def create_readonly_snapshot(self, source, destination) -> None:
        """Snapshot ``source`` read-only at ``destination``.

        Raises:
            SnapshotCreateError: with the reason reported by btrfs
        """
        logger.info("%s -> %s", source, destination)
        cmd = [
            self.btrfs_command,
            "subvolume",
            "snapshot",
            "-r",
            str(source),
            str(destination),
        ]
        result = __util__.exec_subprocess(
            cmd, capture_output=True, text=True, check=False
        )
        if result.returncode != 0:
            reason = (result.stderr or "").strip() or f"exit status {result.returncode}"
            raise __util__.SnapshotCreateError(destination, reason)

    def promote(self, old_path, new_path) -> None:
        """Atomically rename ``old_path`` to ``new_path``.

        Raises:
            PromotionError: if the target slot is occupied or the rename fails
        """
        old_path, new_path = Path(old_path), Path(new_path)
        if os.path.lexists(new_path):
            raise __util__.PromotionError(old_path, new_path, "target exists")
        logger.info("Renaming %s -> %s", old_path, new_path.name)
        try:
            os.rename(old_path, new_path)
        except OSError as e:
            raise __util__.PromotionError(old_path, new_path, e.strerror or str(e))

    def flush(self) -> None:
        """Force pending writes to stable storage."""
        try:
            __util__.exec_subprocess(["sync"], method="check_call")
        except subprocess.CalledProcessError as e:
            raise __util__.AbortError(f"sync failed with exit status {e.returncode}")

    def ensure_directory(self, path) -> None:
        """Create ``path`` if it does not exist yet."""
        path = Path(path)
        if path.is_dir():
            return
        logger.info("Creating directory: %s", path)
        try:
            path.mkdir(exist_ok=True)
        except OSError as e:
            raise __util__.AbortError(f"Error creating directory {path}: {e}")
