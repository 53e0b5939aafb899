"""Subvolume metadata queries.

Read-only access to the facts the rotation logic depends on: whether a path
is a subvolume, its lineage UUID, the UUID it was received from and its
creation time.
"""

import logging
import os
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional

from .. import __util__

logger = logging.getLogger(__name__)

# Sunday first, matching struct tm's tm_wday.
WEEKDAYS = ("Sun", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat")

CREATION_TIME_FORMAT = "%Y-%m-%d %H:%M:%S %z"


@dataclass(frozen=True)
class SubvolumeInfo:
    """Metadata of one subvolume as reported by ``btrfs subvolume show``."""

    path: Path
    name: str
    uuid: Optional[str] = None
    parent_uuid: Optional[str] = None
    received_uuid: Optional[str] = None
    creation_time: Optional[datetime] = None


def weekday_label(moment: datetime) -> str:
    """Return the weekday label of ``moment`` in local calendar time."""
    return WEEKDAYS[moment.astimezone().isoweekday() % 7]


def _uuid_or_none(value: str) -> Optional[str]:
    value = value.strip()
    if not value or value == "-":
        return None
    return value


def parse_subvolume_show(output: str, path) -> SubvolumeInfo:
    """Parse the output of ``btrfs subvolume show``.

    The first line echoes the path and is skipped; the remaining
    ``Key: value`` lines are matched by key.
    """
    values = {}
    for line in output.splitlines()[1:]:
        key, sep, value = line.partition(":")
        if not sep:
            continue
        values.setdefault(key.strip(), value.strip())

    creation_time = None
    raw_time = values.get("Creation time", "-")
    if raw_time and raw_time != "-":
        try:
            creation_time = datetime.strptime(raw_time, CREATION_TIME_FORMAT)
        except ValueError:
            raise __util__.InspectionError(
                path, f"unparsable creation time {raw_time!r}"
            )

    return SubvolumeInfo(
        path=Path(path),
        name=values.get("Name", Path(path).name),
        uuid=_uuid_or_none(values.get("UUID", "-")),
        parent_uuid=_uuid_or_none(values.get("Parent UUID", "-")),
        received_uuid=_uuid_or_none(values.get("Received UUID", "-")),
        creation_time=creation_time,
    )


class SubvolumeInspector:
    """Query subvolume metadata through the btrfs command line tool."""

    def __init__(self, btrfs_command: str = "btrfs") -> None:
        self.btrfs_command = btrfs_command

    def is_subvolume(self, path) -> bool:
        """Checks whether the given path is a btrfs subvolume."""
        path = Path(path)
        try:
            st = os.stat(path)
        except OSError:
            return False
        if not path.is_dir() or not __util__.is_btrfs(path):
            return False
        # subvolumes always have inode 256
        return st.st_ino == __util__.BTRFS_FIRST_FREE_OBJECTID

    def info(self, path) -> Optional[SubvolumeInfo]:
        """Return metadata for ``path``, or None if it does not exist.

        Raises:
            InspectionError: if the path exists but cannot be inspected
        """
        path = Path(path)
        try:
            if not path.exists():
                return None
        except OSError as e:
            raise __util__.InspectionError(path, e.strerror or str(e)) from e

        cmd = [self.btrfs_command, "subvolume", "show", str(path)]
        result = __util__.exec_subprocess(
            cmd, capture_output=True, text=True, check=False
        )
        if result.returncode != 0:
            reason = (result.stderr or "").strip() or f"exit status {result.returncode}"
            raise __util__.InspectionError(path, reason)

        info = parse_subvolume_show(result.stdout, path)
        logger.debug(
            "%s: uuid=%s received_uuid=%s created=%s",
            path,
            info.uuid,
            info.received_uuid,
            info.creation_time,
        )
        return info

    def weekday_of(self, path) -> str:
        """Return the weekday label of the creation time of ``path``."""
        info = self.info(path)
        if info is None:
            raise __util__.InspectionError(path, "no such subvolume")
        if info.creation_time is None:
            raise __util__.InspectionError(path, "creation time unknown")
        return weekday_label(info.creation_time)
