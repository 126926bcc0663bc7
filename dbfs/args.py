"""Module defining the command-line arguments and providing a parser for them."""

from __future__ import annotations

import argparse
from typing import List, Optional

from dbfs.constants import DEFAULT_DUMP_PATH, VERSION


class Arguments(argparse.Namespace):
    """Parsed command-line arguments."""

    config: str
    mount_path: str
    dump_path: str

    foreground: bool
    verbose: bool

    sqlcmd: str
    timeout: int
    max_queries: int

    @classmethod
    def parse(cls, args: Optional[List[str]] = None) -> Arguments:
        """
        Parse command-line arguments from the given list of strings.

        Defaults to sys.argv if none are specified.
        """
        return cls._get_parser().parse_args(args, namespace=cls())

    @classmethod
    def _get_parser(cls) -> argparse.ArgumentParser:
        parser = argparse.ArgumentParser(
            description="Expose SQL Server metadata views as files.",
            usage="dbfs -c config -m mount_path [option...]",
        )

        parser.add_argument(
            "--version",
            action="version",
            version=f"%(prog)s {VERSION}",
            help="show the program version",
        )

        # Primary arguments
        parser.add_argument(
            "-c",
            "--config",
            type=str,
            required=True,
            help="path to config file with the servers to expose",
        )
        parser.add_argument(
            "-m",
            "--mount-path",
            type=str,
            required=True,
            help="directory to mount the file system on",
        )
        parser.add_argument(
            "-d",
            "--dump-path",
            type=str,
            default=DEFAULT_DUMP_PATH,
            help=f"directory that stores the file contents (default is {DEFAULT_DUMP_PATH})",
        )

        # Stay attached to the terminal instead of running in the background
        parser.add_argument(
            "-f", "--foreground", action="store_true", help="run in the foreground"
        )

        # Enable debug output
        parser.add_argument(
            "-v", "--verbose", action="store_true", help="enable debug information"
        )

        # Query execution
        parser.add_argument(
            "--sqlcmd",
            type=str,
            default="sqlcmd",
            help="path to the sqlcmd executable",
        )
        parser.add_argument(
            "--timeout",
            type=cls._parse_timeout,
            default=0,
            help="query timeout in seconds, 0 waits indefinitely",
        )
        parser.add_argument(
            "--max-queries",
            type=cls._parse_max_queries,
            default=4,
            help="maximum number of queries running at the same time",
        )

        return parser

    @staticmethod
    def _parse_timeout(arg: str) -> int:
        try:
            val = int(arg)
            assert val >= 0
            return val
        except (ValueError, AssertionError):
            raise argparse.ArgumentTypeError("expected number >= 0")

    @staticmethod
    def _parse_max_queries(arg: str) -> int:
        try:
            val = int(arg)
            assert val > 0
            return val
        except (ValueError, AssertionError):
            raise argparse.ArgumentTypeError("expected number > 0")
