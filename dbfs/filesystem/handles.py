"""Module that keeps track of the files and directories opened through FUSE."""

from dataclasses import dataclass
import errno
import itertools
import os
import stat
import threading
from typing import Dict, List, Optional

from dbfs.filesystem.common import os_error
from dbfs.filesystem.fuse import DirectoryEntry
from dbfs.filesystem.paths import VirtualPath


class DirectoryStream:
    """
    Open directory in the dump directory.

    The stream keeps the directory open between opendir() and releasedir() and can be
    rewound to list entries that were created after it was opened.
    """

    def __init__(self, path: str):
        """Open the directory at the given path."""
        self.path = path
        self.fd = os.open(path, os.O_RDONLY | os.O_DIRECTORY)

    def rewind(self) -> None:
        """Reset the stream to the first entry."""
        os.lseek(self.fd, 0, os.SEEK_SET)

    def entries(self) -> List[DirectoryEntry]:
        """List the entries from the current position, after . and .."""
        entries = [DirectoryEntry("."), DirectoryEntry("..")]

        with os.scandir(self.fd) as it:
            for entry in it:
                entries.append(
                    DirectoryEntry(entry.name, self._file_type(entry), entry.inode())
                )

        return entries

    def close(self) -> None:
        """Close the directory."""
        os.close(self.fd)

    @staticmethod
    def _file_type(entry: os.DirEntry) -> int:
        """Return the file type bits of a directory entry, or 0 if it's gone."""
        if entry.is_symlink():
            return stat.S_IFLNK
        elif entry.is_dir(follow_symlinks=False):
            return stat.S_IFDIR
        elif entry.is_file(follow_symlinks=False):
            return stat.S_IFREG

        # FIFOs, sockets and devices are only told apart by their stat.
        try:
            return stat.S_IFMT(entry.stat(follow_symlinks=False).st_mode)
        except FileNotFoundError:
            return 0


@dataclass
class OpenContext:
    """
    Resources owned by a single open() or opendir() until its release.

    The file descriptor belongs to the backing file or directory. The classification of
    the path is stored to decide what has to happen on release.
    """

    fd: int
    path: VirtualPath
    directory: Optional[DirectoryStream] = None


class HandleTable:
    """
    Thread-safe table of open contexts, keyed by the file handle that FUSE stores.

    Handles start at 1 and are never reused within a mount.
    """

    def __init__(self) -> None:
        """Instantiate an empty table."""
        self._lock = threading.Lock()
        self._contexts: Dict[int, OpenContext] = {}
        self._counter = itertools.count(1)

    def __len__(self) -> int:
        with self._lock:
            return len(self._contexts)

    def __contains__(self, fh: int) -> bool:
        with self._lock:
            return fh in self._contexts

    def add(self, context: OpenContext) -> int:
        """Register a context and return its new handle."""
        with self._lock:
            fh = next(self._counter)
            self._contexts[fh] = context

        return fh

    def get(self, fh: int) -> OpenContext:
        """Return the context of a handle, or raise EBADF if the handle is unknown."""
        with self._lock:
            try:
                return self._contexts[fh]
            except KeyError:
                raise os_error(errno.EBADF) from None

    def remove(self, fh: int) -> OpenContext:
        """Unregister a handle and return its context so that it can be closed."""
        with self._lock:
            try:
                return self._contexts.pop(fh)
            except KeyError:
                raise os_error(errno.EBADF) from None
