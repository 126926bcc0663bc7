"""
Module that keeps the custom query directories in sync with the user's query files.

Every server may have a directory with query files somewhere on disk. Its customQueries
directory in the file system shows one file per query file, which has the result of the
query as contents when it's opened. The dump directory contains an empty placeholder for
every query file so that the files show up in directory listings.
"""

import os
import threading
from typing import Dict

import fasteners

from dbfs.config import ServerRegistry
from dbfs.filesystem.common import create_placeholder
from dbfs.logger import log


class DirectorySynthesizer:
    """
    Recreates the placeholders of a custom query directory.

    Placeholders are recreated every time the directory is opened, so that added,
    removed and renamed query files are reflected in the listing.

    A reconciliation holds the writer side of a lock per server for its whole duration.
    Listings of the directory take the reader side, so they never observe a directory
    that is halfway through being recreated.
    """

    def __init__(self, servers: ServerRegistry):
        """Instantiate the synthesizer for the given servers."""
        self._servers = servers

        self._locks: Dict[str, fasteners.ReaderWriterLock] = {}
        self._locks_lock = threading.Lock()

    def lock(self, server: str) -> fasteners.ReaderWriterLock:
        """Return the lock that guards the custom query directory of a server."""
        with self._locks_lock:
            return self._locks.setdefault(server, fasteners.ReaderWriterLock())

    def reconcile(self, server_name: str, backing_dir: str) -> None:
        """Replace the placeholders in a backing directory with the current queries."""
        with self.lock(server_name).write_lock():
            self._remove_placeholders(backing_dir)
            self._create_placeholders(server_name, backing_dir)

    @staticmethod
    def _remove_placeholders(backing_dir: str) -> None:
        with os.scandir(backing_dir) as it:
            for entry in it:
                if entry.is_file(follow_symlinks=False):
                    os.unlink(entry.path)

    def _create_placeholders(self, server_name: str, backing_dir: str) -> None:
        server = self._servers.lookup(server_name)

        if server is None or server.custom_queries_path is None:
            return

        try:
            names = os.listdir(server.custom_queries_path)
        except OSError as e:
            log.error(f"failed to list custom queries of {server_name}: {e}")
            return

        created = 0

        for name in names:
            placeholder_path = os.path.join(backing_dir, name)

            # Directories were kept by the cleanup and can't be replaced by a file.
            if os.path.isdir(placeholder_path):
                log.warning(
                    f"custom query {name} of {server_name} clashes with a directory"
                )
                continue

            create_placeholder(placeholder_path)
            created += 1

        log.debug(f"synthesized {created} custom queries for {server_name}")
