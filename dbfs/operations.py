"""Module that implements mounting the file system based on the command-line arguments."""

import contextlib
import getpass
import os
import sys
from typing import Optional

import fasteners

from dbfs.args import Arguments
from dbfs.config import Config, ServerEntry, ServerRegistry
import dbfs.constants as constants
from dbfs.filesystem import DatabaseFileSystem
from dbfs.filesystem.fuse import FUSE, FuseConfig
from dbfs.logger import log
from dbfs.query import QueryClient


class MountOperations:
    """Class that encapsulates loading the config and running the FUSE file system."""

    def __init__(self, args: Arguments):
        """Initialize the operations based on command-line arguments."""
        self._args = args

        # Pipe to the parent process that waits for the mount in the background case.
        self._ready_fd: Optional[int] = None

    def run(self) -> int:
        """Mount the file system until it is unmounted and clean up in case of errors."""
        with contextlib.ExitStack() as stack:
            return self._run(stack)

        # https://github.com/python/mypy/issues/7726
        assert False, "unreachable"

    def _run(self, stack: contextlib.ExitStack) -> int:
        """Run the actual operations."""
        if not os.path.isdir(self._args.mount_path):
            raise RuntimeError(f"mount path {self._args.mount_path} is not a directory")

        servers = Config.load(self._args.config).servers

        if sys.stdin.isatty():
            servers = servers.with_passwords(self._prompt_password)

        if not self._args.foreground:
            self._daemonize()

        # Two instances sharing a dump directory would empty each other's files.
        dump_path = os.path.abspath(self._args.dump_path)
        lock = fasteners.InterProcessLock(f"{dump_path}.lock")

        if not lock.acquire(blocking=False):
            raise RuntimeError(f"dump directory {dump_path} is used by another dbfs")

        stack.callback(lock.release)

        return self._mount(servers, dump_path)

    def _mount(self, servers: ServerRegistry, dump_path: str) -> int:
        """Prepare the dump directory and run the FUSE main loop."""
        client = QueryClient(
            sqlcmd=self._args.sqlcmd,
            timeout=self._args.timeout,
            max_queries=self._args.max_queries,
        )

        fs = DatabaseFileSystem(dump_path, servers, client, self._mounted)
        fs.setup()

        # File contents only exist once a file has been opened, so the kernel must not
        # cache the (empty) size of a file from before it was opened.
        config = FuseConfig()
        config.direct_io = True

        log.info(f"mounting {constants.FILESYSTEM_NAME} at {self._args.mount_path}")

        instance = FUSE(fs, config)
        return instance.mount(constants.FILESYSTEM_NAME, self._args.mount_path)

    @staticmethod
    def _prompt_password(server: ServerEntry) -> str:
        return getpass.getpass(
            f"Password for {server.username}@{server.hostname} ({server.name}): "
        )

    def _mounted(self) -> None:
        """Report that the file system is available."""
        log.info(f"mounted at {self._args.mount_path}")

        if self._ready_fd is not None:
            os.write(self._ready_fd, b"\0")
            os.close(self._ready_fd)
            self._ready_fd = None

    def _daemonize(self) -> None:
        """
        Detach from the terminal by continuing in a forked session leader.

        The parent stays around until the file system has been mounted, so that its
        exit code tells whether mounting succeeded.
        """
        read_fd, write_fd = os.pipe()

        if os.fork() > 0:
            os.close(write_fd)

            # Reading stops at end of file if the child exits without mounting.
            with os.fdopen(read_fd, "rb") as ready:
                mounted = ready.read(1) == b"\0"

            os._exit(0 if mounted else constants.DBFS_ERROR_CODE)

        os.close(read_fd)
        os.setsid()

        self._ready_fd = write_fd
