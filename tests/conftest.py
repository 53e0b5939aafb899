"""Pytest configuration and shared fixtures."""

import itertools
import uuid
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from btrfs_rotate import __util__
from btrfs_rotate.core.inspector import SubvolumeInfo, weekday_label
from btrfs_rotate.core.layout import BackupLayout
from btrfs_rotate.core.operations import BackupOrchestrator

SOURCE = Path("/mnt/data")
DESTINATION = Path("/mnt/backup")

# A Sunday, at noon so the local weekday matches in any timezone close to UTC.
FIRST_DAY = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)


class Interrupted(BaseException):
    """Simulates the process being killed between two operations."""


class FakeBtrfs:
    """In-memory stand-in for the inspector, snapshot manager and transfer
    executor.

    Subvolumes are kept in a dict keyed by path. ``btrfs receive`` is
    modelled by creating a subvolume whose received UUID is the UUID of the
    sent snapshot.
    """

    def __init__(self, now=FIRST_DAY):
        self.now = now
        self.subvolumes: dict[Path, SubvolumeInfo] = {}
        self.directories: set[Path] = set()
        self.flushes = 0
        self.renames = 0
        self.transfers: list[tuple] = []
        self.fail_transfer_with = None
        self.interrupt_at_rename = None
        self.interrupt_transfer = False
        self._counter = itertools.count()

    def add_subvolume(self, path, received_uuid=None, creation_time=None):
        path = Path(path)
        info = SubvolumeInfo(
            path=path,
            name=path.name,
            uuid=str(uuid.UUID(int=next(self._counter) + 1)),
            received_uuid=received_uuid,
            creation_time=creation_time or self.now,
        )
        self.subvolumes[path] = info
        return info

    def advance(self, days=1):
        self.now = self.now + timedelta(days=days)

    def names(self, directory) -> set[str]:
        directory = Path(directory)
        return {p.name for p in self.subvolumes if p.parent == directory}

    # Inspector

    def is_subvolume(self, path):
        return Path(path) in self.subvolumes

    def info(self, path):
        return self.subvolumes.get(Path(path))

    def weekday_of(self, path):
        info = self.subvolumes.get(Path(path))
        if info is None:
            raise __util__.InspectionError(path, "no such subvolume")
        return weekday_label(info.creation_time)

    # Snapshot manager

    def delete_if_exists(self, path):
        self.subvolumes.pop(Path(path), None)

    def create_readonly_snapshot(self, source, destination):
        destination = Path(destination)
        if Path(source) not in self.subvolumes:
            raise __util__.SnapshotCreateError(destination, "Not a Btrfs subvolume")
        if destination in self.subvolumes:
            raise __util__.SnapshotCreateError(destination, "File exists")
        self.add_subvolume(destination)

    def promote(self, old_path, new_path):
        old_path, new_path = Path(old_path), Path(new_path)
        if self.interrupt_at_rename is not None and self.renames == self.interrupt_at_rename:
            raise Interrupted()
        if new_path in self.subvolumes:
            raise __util__.PromotionError(old_path, new_path, "target exists")
        info = self.subvolumes.pop(old_path)
        self.subvolumes[new_path] = replace(info, path=new_path, name=new_path.name)
        self.renames += 1

    def flush(self):
        self.flushes += 1

    def ensure_directory(self, path):
        self.directories.add(Path(path))

    # Transfer executor

    def full_transfer(self, snapshot, destination):
        self._receive(Path(snapshot), Path(destination), None)

    def incremental_transfer(self, snapshot, parent, destination):
        parent = Path(parent)
        base = self.subvolumes.get(Path(destination) / parent.name)
        assert base is not None, "parent missing at destination"
        assert base.received_uuid == self.subvolumes[parent].uuid, "lineage mismatch"
        self._receive(Path(snapshot), Path(destination), parent)

    def _receive(self, snapshot, destination, parent):
        self.transfers.append((snapshot, parent))
        target = destination / snapshot.name
        if self.interrupt_transfer:
            self.add_subvolume(target)
            raise Interrupted()
        if self.fail_transfer_with is not None:
            # A partial receive is left behind without a received UUID.
            self.add_subvolume(target)
            raise __util__.SnapshotTransferError(
                "btrfs send/receive failed", exit_status=self.fail_transfer_with
            )
        self.add_subvolume(target, received_uuid=self.subvolumes[snapshot].uuid)


@pytest.fixture
def fake_btrfs():
    """A fake btrfs with both backup roots present."""
    fake = FakeBtrfs()
    fake.add_subvolume(SOURCE)
    fake.add_subvolume(DESTINATION)
    return fake


@pytest.fixture
def layout():
    return BackupLayout(SOURCE, DESTINATION)


@pytest.fixture
def make_orchestrator(fake_btrfs, layout):
    """Factory for orchestrators wired to the fake btrfs."""

    def factory(dry_run=False):
        return BackupOrchestrator(
            layout,
            inspector=fake_btrfs,
            snapshots=fake_btrfs,
            transfer=fake_btrfs,
            dry_run=dry_run,
        )

    return factory


@pytest.fixture
def tmp_config_dir(tmp_path):
    """Create a temporary config directory."""
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    return config_dir


@pytest.fixture
def sample_config_toml():
    """Return a sample valid TOML configuration string."""
    return """
[global]
btrfs_command = "/usr/sbin/btrfs"
snapshot_dir = ".rotations"
btrfs_debug = true
lock_file = "/run/btrfs-rotate.lock"
transaction_log = "/var/log/btrfs-rotate/transactions.jsonl"
verbose = true
"""


@pytest.fixture
def config_file(tmp_config_dir, sample_config_toml):
    """Create a temporary config file with sample content."""
    config_path = tmp_config_dir / "config.toml"
    config_path.write_text(sample_config_toml)
    return config_path


SHOW_OUTPUT = """\
/mnt/data/.snapshots/head
\tName: \t\t\thead
\tUUID: \t\t\t2c5a9d8e-4b1f-4a63-9e1c-0d3f7a9b1e55
\tParent UUID: \t\t8f1e2d3c-5b6a-4978-8c9d-0e1f2a3b4c5d
\tReceived UUID: \t\t-
\tCreation time: \t\t2026-10-18 12:00:00 +0000
\tSubvolume ID: \t\t412
\tGeneration: \t\t10321
\tGen at creation: \t10320
\tParent ID: \t\t5
\tTop level ID: \t\t5
\tFlags: \t\t\treadonly
\tSend transid: \t\t0
\tSend time: \t\t2026-10-18 12:00:00 +0000
\tReceive transid: \t0
\tReceive time: \t\t-
\tSnapshot(s):
"""


@pytest.fixture
def show_output():
    """Sample ``btrfs subvolume show`` output for a source head snapshot."""
    return SHOW_OUTPUT
