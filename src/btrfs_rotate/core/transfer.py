"""btrfs send | btrfs receive between a source snapshot and a destination."""

import logging
import shlex
import subprocess
import time
from pathlib import Path

from .. import __util__
from ..transaction import TransactionContext

logger = logging.getLogger(__name__)


class TransferExecutor:
    """Stream snapshots to a destination directory with btrfs send/receive.

    Both processes are started from argument vectors and connected by a
    pipe; the call blocks until both have exited. There is no timeout.
    """

    def __init__(self, btrfs_command: str = "btrfs", btrfs_debug: bool = False) -> None:
        self.btrfs_command = btrfs_command
        self.btrfs_flags = ["-vv"] if btrfs_debug else []

    def full_transfer(self, snapshot, destination) -> None:
        """Send the whole of ``snapshot`` into ``destination``."""
        self._transfer(Path(snapshot), Path(destination))

    def incremental_transfer(self, snapshot, parent, destination) -> None:
        """Send the delta of ``snapshot`` relative to ``parent``.

        ``parent`` must already exist at the destination under its own name.
        """
        self._transfer(Path(snapshot), Path(destination), parent=Path(parent))

    def _build_send_command(self, snapshot, parent=None):
        cmd = [self.btrfs_command, "send", *self.btrfs_flags]
        log_level = logging.getLogger().getEffectiveLevel()
        if log_level >= logging.WARNING:
            cmd += ["--quiet"]
        if parent:
            cmd += ["-p", str(parent)]
        cmd += [str(snapshot)]
        return cmd

    def _build_receive_command(self, destination):
        return [self.btrfs_command, "receive", *self.btrfs_flags, str(destination)]

    def _transfer(self, snapshot: Path, destination: Path, parent=None) -> None:
        send_cmd = self._build_send_command(snapshot, parent=parent)
        receive_cmd = self._build_receive_command(destination)
        logger.info("%s | %s", shlex.join(send_cmd), shlex.join(receive_cmd))

        transfer_start = time.monotonic()
        with TransactionContext(
            "transfer",
            source=str(snapshot),
            destination=str(destination),
            snapshot=snapshot.name,
            parent=str(parent) if parent else None,
        ):
            return_codes = self._run_pipeline(send_cmd, receive_cmd)
            failed = [rc for rc in return_codes if rc != 0]
            if failed:
                raise __util__.SnapshotTransferError(
                    f"btrfs send/receive failed with return codes: {return_codes}",
                    exit_status=failed[0],
                )

        logger.info(
            "Transfer completed successfully in %.1fs", time.monotonic() - transfer_start
        )

    def _run_pipeline(self, send_cmd, receive_cmd) -> list[int]:
        """Run send piped into receive; return [send_rc, receive_rc]."""
        loglevel = logging.getLogger().getEffectiveLevel()
        receive_stdout = subprocess.DEVNULL if loglevel >= logging.WARNING else None

        send_process = None
        try:
            send_process = __util__.exec_subprocess(
                send_cmd, method="Popen", stdout=subprocess.PIPE
            )
            receive_process = __util__.exec_subprocess(
                receive_cmd,
                method="Popen",
                stdin=send_process.stdout,
                stdout=receive_stdout,
            )
        except __util__.AbortError as e:
            if send_process is not None:
                send_process.kill()
                send_process.wait()
            raise __util__.SnapshotTransferError(
                f"Could not start btrfs send/receive: {e}"
            ) from e

        # Only receive may hold the read end, so send sees EPIPE if it dies.
        send_process.stdout.close()
        return_code_receive = receive_process.wait()
        return_code_send = send_process.wait()

        logger.debug(
            "send exited with %d, receive exited with %d",
            return_code_send,
            return_code_receive,
        )
        return [return_code_send, return_code_receive]
