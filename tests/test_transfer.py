"""Tests for the send/receive pipeline."""

import logging
import subprocess
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from btrfs_rotate import __util__
from btrfs_rotate.core.transfer import TransferExecutor
from btrfs_rotate.transaction import read_transaction_log, set_transaction_log


@pytest.fixture
def quiet_root_logger():
    root = logging.getLogger()
    previous = root.level
    root.setLevel(logging.WARNING)
    yield
    root.setLevel(previous)


@pytest.fixture
def info_root_logger():
    root = logging.getLogger()
    previous = root.level
    root.setLevel(logging.INFO)
    yield
    root.setLevel(previous)


def fake_processes(send_rc=0, receive_rc=0):
    send = MagicMock()
    send.wait.return_value = send_rc
    receive = MagicMock()
    receive.wait.return_value = receive_rc
    return send, receive


class TestCommandConstruction:
    """Tests for send and receive argument vectors."""

    def test_full_send(self, info_root_logger):
        """Test a full send has no parent."""
        executor = TransferExecutor()

        cmd = executor._build_send_command(Path("/mnt/data/.snapshots/head.new"))

        assert cmd == ["btrfs", "send", "/mnt/data/.snapshots/head.new"]

    def test_incremental_send(self, info_root_logger):
        """Test an incremental send names its parent with -p."""
        executor = TransferExecutor("/usr/sbin/btrfs")

        cmd = executor._build_send_command(
            Path("/mnt/data/.snapshots/head.new"),
            parent=Path("/mnt/data/.snapshots/head"),
        )

        assert cmd == [
            "/usr/sbin/btrfs",
            "send",
            "-p",
            "/mnt/data/.snapshots/head",
            "/mnt/data/.snapshots/head.new",
        ]

    def test_quiet_send(self, quiet_root_logger):
        """Test send progress is suppressed when logging is quiet."""
        executor = TransferExecutor()

        cmd = executor._build_send_command(Path("/snap"))

        assert "--quiet" in cmd

    def test_debug_flags(self, info_root_logger):
        """Test btrfs_debug adds verbose flags to both sides."""
        executor = TransferExecutor(btrfs_debug=True)

        assert executor._build_send_command(Path("/snap"))[:3] == ["btrfs", "send", "-vv"]
        assert executor._build_receive_command(Path("/mnt/backup")) == [
            "btrfs",
            "receive",
            "-vv",
            "/mnt/backup",
        ]


class TestTransfer:
    """Tests for running the pipeline."""

    def test_pipes_send_into_receive(self, info_root_logger):
        """Test receive reads from send's stdout and the parent closes it."""
        executor = TransferExecutor()
        send, receive = fake_processes()

        with patch(
            "btrfs_rotate.__util__.exec_subprocess", side_effect=[send, receive]
        ) as mock_exec, patch("btrfs_rotate.transaction.log_transaction"):
            executor.full_transfer("/mnt/data/.snapshots/head.new", "/mnt/backup")

        send_call, receive_call = mock_exec.call_args_list
        assert send_call.kwargs["stdout"] == subprocess.PIPE
        assert receive_call.kwargs["stdin"] is send.stdout
        assert receive_call[0][0] == ["btrfs", "receive", "/mnt/backup"]
        send.stdout.close.assert_called_once()

    def test_nonzero_exit_raises(self, info_root_logger):
        """Test a failing receive raises with its exit status."""
        executor = TransferExecutor()
        send, receive = fake_processes(receive_rc=1)

        with patch(
            "btrfs_rotate.__util__.exec_subprocess", side_effect=[send, receive]
        ), patch("btrfs_rotate.transaction.log_transaction") as mock_log:
            with pytest.raises(__util__.SnapshotTransferError) as excinfo:
                executor.incremental_transfer(
                    "/mnt/data/.snapshots/head.new",
                    "/mnt/data/.snapshots/head",
                    "/mnt/backup",
                )

        assert excinfo.value.exit_status == 1
        statuses = [c.kwargs["status"] for c in mock_log.call_args_list]
        assert statuses == ["started", "failed"]

    def test_send_failure_reported_first(self, info_root_logger):
        """Test the send status wins when both sides fail."""
        executor = TransferExecutor()
        send, receive = fake_processes(send_rc=2, receive_rc=1)

        with patch(
            "btrfs_rotate.__util__.exec_subprocess", side_effect=[send, receive]
        ), patch("btrfs_rotate.transaction.log_transaction"):
            with pytest.raises(__util__.SnapshotTransferError) as excinfo:
                executor.full_transfer("/snap", "/mnt/backup")

        assert excinfo.value.exit_status == 2

    def test_success_records_transaction(self, info_root_logger):
        """Test a completed transfer is recorded with its parent."""
        executor = TransferExecutor()
        send, receive = fake_processes()

        with patch(
            "btrfs_rotate.__util__.exec_subprocess", side_effect=[send, receive]
        ), patch("btrfs_rotate.transaction.log_transaction") as mock_log:
            executor.incremental_transfer(
                "/mnt/data/.snapshots/head.new",
                "/mnt/data/.snapshots/head",
                "/mnt/backup",
            )

        final = mock_log.call_args_list[-1].kwargs
        assert final["status"] == "completed"
        assert final["snapshot"] == "head.new"
        assert final["parent"] == "/mnt/data/.snapshots/head"

    def test_missing_receive_kills_send(self, info_root_logger):
        """Test send is stopped when receive cannot start."""
        executor = TransferExecutor()
        send, _ = fake_processes()

        with patch(
            "btrfs_rotate.__util__.exec_subprocess",
            side_effect=[send, __util__.AbortError("Command not found: btrfs")],
        ), patch("btrfs_rotate.transaction.log_transaction"):
            with pytest.raises(__util__.SnapshotTransferError) as excinfo:
                executor.full_transfer("/snap", "/mnt/backup")

        send.kill.assert_called_once()
        assert excinfo.value.exit_status is None
        assert "Command not found" in str(excinfo.value)

    def test_missing_btrfs_binary(self, info_root_logger, tmp_path):
        """Test a btrfs command that does not exist fails the transfer."""
        executor = TransferExecutor(str(tmp_path / "missing" / "btrfs"))

        with pytest.raises(__util__.SnapshotTransferError) as excinfo:
            executor.full_transfer("/snap", "/mnt/backup")

        assert excinfo.value.exit_status is None
        assert "Command not found" in str(excinfo.value)

    def test_non_executable_btrfs(self, info_root_logger, tmp_path):
        """Test a btrfs command without execute permission fails the transfer."""
        btrfs = tmp_path / "btrfs"
        btrfs.write_text("not a program\n")
        btrfs.chmod(0o644)
        executor = TransferExecutor(str(btrfs))

        with pytest.raises(__util__.SnapshotTransferError) as excinfo:
            executor.full_transfer("/snap", "/mnt/backup")

        assert excinfo.value.exit_status is None
        assert "Cannot execute" in str(excinfo.value)

    def test_records_reach_transaction_log(self, info_root_logger, tmp_path):
        """Test a transfer writes its started and completed records."""
        log_path = tmp_path / "transactions.jsonl"
        executor = TransferExecutor()
        send, receive = fake_processes()

        set_transaction_log(log_path)
        try:
            with patch(
                "btrfs_rotate.__util__.exec_subprocess", side_effect=[send, receive]
            ):
                executor.full_transfer("/mnt/data/.snapshots/head", "/mnt/backup")
        finally:
            set_transaction_log(None)

        completed, started = read_transaction_log(log_path)
        assert started["status"] == "started"
        assert completed["status"] == "completed"
        assert completed["snapshot"] == "head"
        assert "parent" not in completed
        assert "duration_seconds" in completed
