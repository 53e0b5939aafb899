"""Shared CLI utilities and argument parsers."""

import argparse

from .. import __util__, __version__
from ..config import Config


class ArgumentParser(argparse.ArgumentParser):
    """ArgumentParser that raises UsageError instead of exiting."""

    def error(self, message):
        raise __util__.UsageError(message)


def create_global_parser() -> argparse.ArgumentParser:
    """Create a parser with global options that can be used as a parent."""
    parser = argparse.ArgumentParser(add_help=False)
    add_verbosity_args(parser)
    return parser


def add_verbosity_args(parser: argparse.ArgumentParser) -> None:
    """Add verbosity-related arguments to a parser."""
    group = parser.add_argument_group("Output options")
    group.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose output",
    )
    group.add_argument(
        "-q",
        "--quiet",
        action="store_true",
        help="Suppress non-essential output",
    )
    group.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug output",
    )


def create_parser() -> ArgumentParser:
    """Create the argument parser for ``btrfs-rotate SOURCE DESTINATION``."""
    parser = ArgumentParser(
        prog="btrfs-rotate",
        description=(
            "Back up a btrfs subvolume onto another one, incrementally when "
            "possible, keeping one snapshot per weekday on both sides."
        ),
        parents=[create_global_parser()],
    )
    parser.add_argument(
        "-V",
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-c",
        "--config",
        metavar="FILE",
        help="Path to configuration file",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show which kind of backup would run without making changes",
    )
    parser.add_argument(
        "--lock-file",
        metavar="FILE",
        help="Hold an exclusive lock on FILE for the duration of the run",
    )
    parser.add_argument(
        "--transaction-log",
        metavar="FILE",
        help="Append a JSON record per operation to FILE",
    )
    parser.add_argument(
        "--btrfs-debug",
        action="store_true",
        default=None,
        help="Enable debugging on btrfs send / receive",
    )
    parser.add_argument("source", help="Source subvolume")
    parser.add_argument("destination", help="Destination subvolume")
    return parser


def apply_overrides(config: Config, args: argparse.Namespace) -> Config:
    """Let command line options take precedence over the config file."""
    if getattr(args, "lock_file", None):
        config.lock_file = args.lock_file
    if getattr(args, "transaction_log", None):
        config.transaction_log = args.transaction_log
    if getattr(args, "btrfs_debug", None):
        config.btrfs_debug = True
    return config


def get_log_level(args: argparse.Namespace, config: Config | None = None) -> str:
    """Determine log level from parsed arguments.

    Args:
        args: Parsed command line arguments
        config: Loaded configuration, consulted when no flag is given

    Returns:
        Log level string (DEBUG, INFO, WARNING, ERROR)
    """
    if getattr(args, "debug", False):
        return "DEBUG"
    elif getattr(args, "quiet", False):
        return "WARNING"
    elif getattr(args, "verbose", False):
        return "DEBUG"
    elif config is not None and config.quiet:
        return "WARNING"
    elif config is not None and config.verbose:
        return "DEBUG"
    else:
        return "INFO"
