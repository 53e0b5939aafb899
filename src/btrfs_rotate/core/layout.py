"""Retention slot layout and the run mode decision table.

Slots per side::

    <source>/.snapshots/{head,head.new,Sun..Sat}
    <destination>/{head,head.new,Sun..Sat}

The mode of a run is a pure function of which slots are occupied and how
their UUIDs relate, see :func:`select_mode`.
"""

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

from .inspector import WEEKDAYS, SubvolumeInfo

HEAD = "head"
HEAD_NEW = "head.new"


class BackupMode(Enum):
    """How a run brings the destination up to date."""

    FULL = "full"
    INCREMENTAL = "incremental"
    RESUME = "resume"  # staged transfer finished, promotion interrupted


@dataclass(frozen=True)
class BackupLayout:
    """Slot paths of one source/destination pair."""

    source: Path
    destination: Path
    snapshot_dir: str = ".snapshots"

    def __post_init__(self):
        object.__setattr__(self, "source", Path(self.source))
        object.__setattr__(self, "destination", Path(self.destination))

    @property
    def snapshot_root(self) -> Path:
        return self.source / self.snapshot_dir

    @property
    def source_head(self) -> Path:
        return self.snapshot_root / HEAD

    @property
    def source_head_new(self) -> Path:
        return self.snapshot_root / HEAD_NEW

    @property
    def destination_head(self) -> Path:
        return self.destination / HEAD

    @property
    def destination_head_new(self) -> Path:
        return self.destination / HEAD_NEW

    def source_slot(self, weekday: str) -> Path:
        _check_weekday(weekday)
        return self.snapshot_root / weekday

    def destination_slot(self, weekday: str) -> Path:
        _check_weekday(weekday)
        return self.destination / weekday


def _check_weekday(weekday: str) -> None:
    if weekday not in WEEKDAYS:
        raise ValueError(f"Not a weekday slot: {weekday!r}")


@dataclass(frozen=True)
class SlotState:
    """Occupancy of the head slots on both sides at the start of a run."""

    source_head: Optional[SubvolumeInfo] = None
    source_head_new: Optional[SubvolumeInfo] = None
    destination_head: Optional[SubvolumeInfo] = None
    destination_head_new: Optional[SubvolumeInfo] = None

    def describe(self) -> list[str]:
        """Human readable lines, one per slot."""
        return [
            f"source {HEAD}: {_describe(self.source_head, 'uuid')}",
            f"source {HEAD_NEW}: {_describe(self.source_head_new, 'uuid')}",
            f"destination {HEAD}: {_describe(self.destination_head, 'received_uuid')}",
            f"destination {HEAD_NEW}: "
            f"{_describe(self.destination_head_new, 'received_uuid')}",
        ]


def _describe(info: Optional[SubvolumeInfo], attribute: str) -> str:
    if info is None:
        return "absent"
    return f"{attribute.replace('_', ' ')} {getattr(info, attribute) or '-'}"


def incremental_possible(
    source_head: Optional[SubvolumeInfo], destination_head: Optional[SubvolumeInfo]
) -> bool:
    """True iff the destination head was received from the source head."""
    if source_head is None or destination_head is None:
        return False
    if source_head.uuid is None or destination_head.received_uuid is None:
        return False
    return source_head.uuid == destination_head.received_uuid


def staged_transfer_completed(state: SlotState) -> bool:
    """True iff the destination ``head.new`` is a finished receive of the
    source's staged snapshot.

    btrfs receive only records the received UUID once the stream is complete,
    so a partial receive never matches. When the source side was already
    promoted, the staged snapshot is the source ``head``.
    """
    staged = state.destination_head_new
    if staged is None or staged.received_uuid is None:
        return False
    if state.source_head_new is not None:
        return staged.received_uuid == state.source_head_new.uuid
    if state.source_head is not None:
        return staged.received_uuid == state.source_head.uuid
    return False


def select_mode(state: SlotState) -> BackupMode:
    """Decide how to run from the occupancy of the head slots.

    =========================================  ===========
    condition                                  mode
    =========================================  ===========
    destination head.new received from the     RESUME
    source's staged snapshot
    destination head received from source      INCREMENTAL
    head
    anything else                              FULL
    =========================================  ===========
    """
    if staged_transfer_completed(state):
        return BackupMode.RESUME
    if incremental_possible(state.source_head, state.destination_head):
        return BackupMode.INCREMENTAL
    return BackupMode.FULL
