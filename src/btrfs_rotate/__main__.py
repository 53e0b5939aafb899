# pyright: standard

"""btrfs-rotate: btrfs_rotate/__main__.py.

Back up a btrfs subvolume onto another one, incrementally when possible,
rotating one snapshot per weekday on both sides.

Usage: btrfs-rotate [options] SOURCE DESTINATION

Exit status is 0 on success, -1 on usage errors and 1 on any failure.
"""

import os
import sys

from filelock import FileLock, Timeout

from . import __util__
from .__logger__ import create_logger, logger
from .cli.common import apply_overrides, create_parser, get_log_level
from .config import Config, ConfigError, find_config_file, load_config
from .core.operations import run_backup
from .transaction import set_transaction_log

EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_USAGE = -1


def main(argv=None) -> int:
    """Main function; returns the process exit status."""
    parser = create_parser()
    try:
        args = parser.parse_args(argv)
    except __util__.UsageError as e:
        parser.print_usage(sys.stderr)
        print(f"{parser.prog}: error: {e}", file=sys.stderr)
        return EXIT_USAGE

    try:
        config_path = find_config_file(args.config)
        config, warnings = load_config(config_path) if config_path else (Config(), [])
    except ConfigError as e:
        create_logger(get_log_level(args))
        logger.error("Configuration error: %s", e)
        return EXIT_FAILURE

    config = apply_overrides(config, args)
    create_logger(get_log_level(args, config))
    if config_path:
        logger.debug("Loaded configuration from: %s", config_path)
    for warning in warnings:
        logger.warning("Config: %s", warning)

    if os.geteuid() != 0:
        logger.warning("Not running as root; btrfs operations will likely fail")

    try:
        set_transaction_log(config.transaction_log)
    except OSError as e:
        logger.error("Cannot use transaction log %s: %s", config.transaction_log, e)
        return EXIT_FAILURE

    lock = FileLock(config.lock_file, timeout=0) if config.lock_file else None
    try:
        if lock is not None:
            try:
                lock.acquire()
            except Timeout:
                logger.error(
                    "Another run holds the lock %s, refusing to start", config.lock_file
                )
                return EXIT_FAILURE
            except OSError as e:
                logger.error("Cannot acquire lock %s: %s", config.lock_file, e)
                return EXIT_FAILURE
            logger.debug("Acquired lock %s", config.lock_file)

        result = run_backup(args.source, args.destination, config, dry_run=args.dry_run)
    finally:
        if lock is not None and lock.is_locked:
            lock.release()
        set_transaction_log(None)

    return EXIT_SUCCESS if result.ok else EXIT_FAILURE


def run() -> None:
    """Console script entry point."""
    sys.exit(main())


if __name__ == "__main__":
    run()
