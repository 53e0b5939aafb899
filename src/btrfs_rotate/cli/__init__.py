"""Command line interface for btrfs-rotate."""

from .common import create_parser, get_log_level

__all__ = ["create_parser", "get_log_level"]
