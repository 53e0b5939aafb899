"""Core backup operations: mode selection, staging, transfer and rotation.

A run moves through the stages

    Validating -> ModeSelection -> Staging -> Transferring -> Retiring
    -> Promoting -> Done

and stops at the first failure. Nothing is rolled back: staged snapshots
stay on disk, and the next run either resumes them or clears them out.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional

from .. import __util__
from ..config import Config
from ..transaction import log_transaction
from .inspector import WEEKDAYS, SubvolumeInfo, SubvolumeInspector
from .layout import BackupLayout, BackupMode, SlotState, select_mode
from .snapshots import SnapshotManager
from .transfer import TransferExecutor

logger = logging.getLogger(__name__)


class Stage(Enum):
    """Stages of a backup run, in order."""

    VALIDATING = "validating"
    MODE_SELECTION = "mode selection"
    STAGING = "staging"
    TRANSFERRING = "transferring"
    RETIRING = "retiring"
    PROMOTING = "promoting"
    DONE = "done"


@dataclass
class BackupResult:
    """Outcome of one run.

    ``stage`` is the last stage entered; when ``error`` is set the run failed
    in that stage.
    """

    layout: BackupLayout
    mode: Optional[BackupMode] = None
    stage: Stage = Stage.VALIDATING
    error: Optional[Exception] = None
    state: Optional[SlotState] = None
    resumed: bool = False
    dry_run: bool = False
    retired: list[Path] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.error is None and self.stage is Stage.DONE


class BackupOrchestrator:
    """Rotating weekday backups of one source subvolume onto a destination."""

    def __init__(
        self,
        layout: BackupLayout,
        inspector=None,
        snapshots=None,
        transfer=None,
        dry_run: bool = False,
    ) -> None:
        self.layout = layout
        self.inspector = inspector or SubvolumeInspector()
        self.snapshots = snapshots or SnapshotManager(inspector=self.inspector)
        self.transfer = transfer or TransferExecutor()
        self.dry_run = dry_run

    def run(self) -> BackupResult:
        """Execute one backup run and report how far it got."""
        result = BackupResult(layout=self.layout, dry_run=self.dry_run)
        source = str(self.layout.source)
        destination = str(self.layout.destination)

        logger.info(__util__.log_heading(f"{source} -> {destination}"))
        if not self.dry_run:
            log_transaction(
                action="backup", status="started", source=source, destination=destination
            )
        run_start = time.monotonic()

        try:
            self._run(result)
        except __util__.AbortError as e:
            result.error = e
            logger.error("Backup failed while %s: %s", result.stage.value, e)
            if not self.dry_run:
                log_transaction(
                    action="backup",
                    status="failed",
                    source=source,
                    destination=destination,
                    duration_seconds=time.monotonic() - run_start,
                    error=str(e),
                    details=self._details(result),
                )
            return result

        if not self.dry_run:
            log_transaction(
                action="backup",
                status="completed",
                source=source,
                destination=destination,
                duration_seconds=time.monotonic() - run_start,
                details=self._details(result),
            )
        return result

    def observe(self) -> SlotState:
        """Read the occupancy of the head slots on both sides."""
        return SlotState(
            source_head=self._inspect(self.layout.source_head),
            source_head_new=self._inspect(self.layout.source_head_new),
            destination_head=self._inspect(self.layout.destination_head),
            destination_head_new=self._inspect(self.layout.destination_head_new),
        )

    def _run(self, result: BackupResult) -> None:
        result.stage = Stage.VALIDATING
        self._validate()

        result.stage = Stage.MODE_SELECTION
        state = self.observe()
        mode = select_mode(state)
        result.state, result.mode = state, mode

        if self.dry_run:
            self._report(result)
            result.stage = Stage.DONE
            return

        if mode is BackupMode.RESUME:
            logger.info("Found a completed transfer from an interrupted run")
            self._resume(state, result)
            result.resumed = True

            result.stage = Stage.MODE_SELECTION
            state = self.observe()
            mode = select_mode(state)
            result.state, result.mode = state, mode
            if mode is BackupMode.RESUME:
                raise __util__.AbortError(
                    f"{self.layout.destination_head_new} is still pending after resume"
                )

        if mode is BackupMode.INCREMENTAL:
            logger.info("Incremental backup")
            self._incremental(result)
        else:
            logger.info("Full backup")
            self._full(state, result)

        result.stage = Stage.DONE
        logger.info("Done.")

    def _validate(self) -> None:
        for root in (self.layout.source, self.layout.destination):
            if not self.inspector.is_subvolume(root):
                raise __util__.NotASubvolumeError(root)

    def _inspect(self, path) -> Optional[SubvolumeInfo]:
        if not self.inspector.is_subvolume(path):
            return None
        return self.inspector.info(path)

    def _full(self, state: SlotState, result: BackupResult) -> None:
        layout = self.layout
        result.stage = Stage.STAGING
        self.snapshots.delete_if_exists(layout.source_head_new)
        self.snapshots.delete_if_exists(layout.destination_head_new)

        if state.source_head is not None:
            result.retired.append(self._retire(layout.source_head, layout.source_slot))

        destination_head = state.destination_head
        if destination_head is not None:
            if destination_head.received_uuid is None:
                logger.warning(
                    "%s is an incomplete receive, discarding it", layout.destination_head
                )
                self.snapshots.delete_if_exists(layout.destination_head)
            else:
                result.retired.append(
                    self._retire(layout.destination_head, layout.destination_slot)
                )

        self.snapshots.flush()
        self.snapshots.ensure_directory(layout.snapshot_root)
        self.snapshots.create_readonly_snapshot(layout.source, layout.source_head)
        self.snapshots.flush()

        result.stage = Stage.TRANSFERRING
        self.transfer.full_transfer(layout.source_head, layout.destination)

    def _incremental(self, result: BackupResult) -> None:
        layout = self.layout
        result.stage = Stage.STAGING
        self.snapshots.delete_if_exists(layout.destination_head_new)
        self.snapshots.delete_if_exists(layout.source_head_new)
        self.snapshots.create_readonly_snapshot(layout.source, layout.source_head_new)
        self.snapshots.flush()

        result.stage = Stage.TRANSFERRING
        self.transfer.incremental_transfer(
            layout.source_head_new, layout.source_head, layout.destination
        )

        result.stage = Stage.RETIRING
        weekday = self.inspector.weekday_of(layout.source_head)
        self._rotate(
            result,
            weekday,
            retire_source=True,
            retire_destination=True,
            promote_source=True,
        )

    def _resume(self, state: SlotState, result: BackupResult) -> None:
        """Finish the rotation of a staged snapshot that was fully received."""
        source_pending = state.source_head_new is not None
        retire_source = source_pending and state.source_head is not None
        retire_destination = state.destination_head is not None

        result.stage = Stage.RETIRING
        weekday = None
        if retire_source:
            weekday = self.inspector.weekday_of(self.layout.source_head)
        elif retire_destination:
            weekday = self._retired_weekday(
                state.destination_head
            ) or self.inspector.weekday_of(self.layout.destination_head)

        self._rotate(
            result,
            weekday,
            retire_source=retire_source,
            retire_destination=retire_destination,
            promote_source=source_pending,
        )

    def _retired_weekday(self, destination_head: SubvolumeInfo) -> Optional[str]:
        """Find the source weekday slot holding the origin of ``destination_head``."""
        if destination_head.received_uuid is None:
            return None
        for weekday in WEEKDAYS:
            info = self._inspect(self.layout.source_slot(weekday))
            if info is not None and info.uuid == destination_head.received_uuid:
                return weekday
        return None

    def _retire(self, head: Path, slot_for) -> Path:
        """Move ``head`` into the weekday slot of its creation time."""
        slot = slot_for(self.inspector.weekday_of(head))
        self.snapshots.delete_if_exists(slot)
        self.snapshots.promote(head, slot)
        return slot

    def _rotate(
        self,
        result: BackupResult,
        weekday: Optional[str],
        retire_source: bool,
        retire_destination: bool,
        promote_source: bool,
    ) -> None:
        """Retire the old heads, then promote ``head.new`` to ``head``.

        Old heads leave their slot before the new ones move in, so an
        interrupt between the renames leaves a state that the next run
        recognizes and resumes.
        """
        layout = self.layout
        result.stage = Stage.RETIRING
        if weekday is not None:
            if retire_source:
                self.snapshots.delete_if_exists(layout.source_slot(weekday))
            if retire_destination:
                self.snapshots.delete_if_exists(layout.destination_slot(weekday))
        self.snapshots.flush()

        if retire_source:
            self.snapshots.promote(layout.source_head, layout.source_slot(weekday))
            result.retired.append(layout.source_slot(weekday))
        if retire_destination:
            self.snapshots.promote(
                layout.destination_head, layout.destination_slot(weekday)
            )
            result.retired.append(layout.destination_slot(weekday))

        result.stage = Stage.PROMOTING
        if promote_source:
            self.snapshots.promote(layout.source_head_new, layout.source_head)
        self.snapshots.promote(layout.destination_head_new, layout.destination_head)
        self.snapshots.flush()

    def _report(self, result: BackupResult) -> None:
        logger.info("Dry run, no changes will be made")
        for line in result.state.describe():
            logger.info("  %s", line)
        logger.info("Would perform a %s backup", result.mode.value)

    @staticmethod
    def _details(result: BackupResult) -> dict:
        details = {"stage": result.stage.value}
        if result.mode is not None:
            details["mode"] = result.mode.value
        if result.resumed:
            details["resumed"] = True
        if result.retired:
            details["retired"] = [str(path) for path in result.retired]
        return details


def run_backup(source, destination, config: Config | None = None, dry_run=False):
    """Back up ``source`` onto ``destination`` with collaborators built from
    ``config``.

    Returns:
        BackupResult of the run
    """
    config = config or Config()
    inspector = SubvolumeInspector(config.btrfs_command)
    orchestrator = BackupOrchestrator(
        BackupLayout(source, destination, snapshot_dir=config.snapshot_dir),
        inspector=inspector,
        snapshots=SnapshotManager(config.btrfs_command, inspector=inspector),
        transfer=TransferExecutor(config.btrfs_command, btrfs_debug=config.btrfs_debug),
        dry_run=dry_run,
    )
    return orchestrator.run()
