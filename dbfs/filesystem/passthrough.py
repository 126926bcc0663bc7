"""Module with the file system that forwards all calls to the dump directory."""

from contextlib import contextmanager
import errno
import os
import stat
from typing import Iterator, List, Optional, Tuple

from dbfs.filesystem.common import Attributes, logged, os_error
from dbfs.filesystem.fuse import DirectoryEntry, Operations
from dbfs.filesystem.handles import DirectoryStream, HandleTable, OpenContext
from dbfs.filesystem.paths import PathKind, PathTranslator, VirtualPath

# Classification of files opened by the passthrough file system itself.
PLAIN_FILE = VirtualPath(PathKind.OTHER)


class PassthroughFileSystem(Operations):
    """
    FUSE file system that mirrors the dump directory.

    Every path is translated to the dump directory and the call is forwarded to the
    corresponding os function. Native errors are passed on unchanged.
    """

    def __init__(self, dump_path: str):
        """Instantiate the file system on top of the given dump directory."""
        self._translator = PathTranslator(dump_path)
        self._handles = HandleTable()

    @property
    def dump_path(self) -> str:
        return self._translator.dump_path

    def _translate(self, path: str) -> str:
        return self._translator.translate(path)

    @contextmanager
    def _descriptor(self, path: str, fh: Optional[int], flags: int) -> Iterator[int]:
        """
        Provide the descriptor of an open file.

        If the call was made without an open file then a private descriptor is opened
        and closed again once the caller is done with it.
        """
        if fh is not None:
            yield self._handles.get(fh).fd
            return

        fd = os.open(self._translate(path), flags)

        try:
            yield fd
        finally:
            os.close(fd)

    #
    # File operations
    #

    @logged
    def open(self, path: str, flags: int) -> int:
        fd = os.open(self._translate(path), flags)
        return self._handles.add(OpenContext(fd, PLAIN_FILE))

    @logged
    def create(self, path: str, flags: int, mode: int) -> int:
        fd = os.open(self._translate(path), flags, mode)
        return self._handles.add(OpenContext(fd, PLAIN_FILE))

    @logged
    def read(self, path: str, fh: Optional[int], offset: int, size: int) -> bytes:
        with self._descriptor(path, fh, os.O_RDONLY) as fd:
            return os.pread(fd, size, offset)

    @logged
    def write(self, path: str, fh: Optional[int], offset: int, data: bytes) -> int:
        with self._descriptor(path, fh, os.O_WRONLY) as fd:
            return os.pwrite(fd, data, offset)

    @logged
    def lseek(self, path: str, fh: int, offset: int, whence: int) -> int:
        return os.lseek(self._handles.get(fh).fd, offset, whence)

    @logged
    def fsync(self, path: str, fh: int, datasync: bool) -> None:
        fd = self._handles.get(fh).fd

        if datasync:
            os.fdatasync(fd)
        else:
            os.fsync(fd)

    @logged
    def flush(self, path: str, fh: int) -> None:
        os.close(os.dup(self._handles.get(fh).fd))

    @logged
    def truncate(self, path: str, fh: Optional[int], size: int) -> None:
        if fh is not None and os.truncate in os.supports_fd:
            os.truncate(self._handles.get(fh).fd, size)
        else:
            os.truncate(self._translate(path), size)

    @logged
    def fallocate(
        self, path: str, fh: Optional[int], mode: int, offset: int, length: int
    ) -> None:
        # Only the default mode, which extends the file, is supported.
        if mode:
            raise os_error(errno.EOPNOTSUPP, path)

        with self._descriptor(path, fh, os.O_WRONLY) as fd:
            os.posix_fallocate(fd, offset, length)

    @logged
    def release(self, path: str, fh: int) -> None:
        os.close(self._handles.remove(fh).fd)

    #
    # Directory listing
    #

    @logged
    def opendir(self, path: str, flags: int) -> int:
        stream = DirectoryStream(self._translate(path))
        return self._handles.add(OpenContext(stream.fd, PLAIN_FILE, stream))

    @logged
    def readdir(self, path: str, fh: Optional[int]) -> List[DirectoryEntry]:
        if fh is not None:
            stream = self._handles.get(fh).directory

            if stream is None:
                raise os_error(errno.ENOTDIR, path)

            return stream.entries()

        stream = DirectoryStream(self._translate(path))

        try:
            return stream.entries()
        finally:
            stream.close()

    @logged
    def releasedir(self, path: str, fh: Optional[int]) -> None:
        if fh is None or fh not in self._handles:
            return

        context = self._handles.remove(fh)

        if context.directory is not None:
            context.directory.close()
        else:
            os.close(context.fd)

    #
    # Metadata access
    #

    def getattr(self, path: str, fh: Optional[int]) -> dict:
        # Not logged, lookups of nonexistent paths are very common.
        if fh is not None:
            st = os.stat(self._handles.get(fh).fd)
        else:
            st = os.lstat(self._translate(path))

        return Attributes.from_stat(st).__dict__

    @logged
    def readlink(self, path: str) -> str:
        return os.readlink(self._translate(path))

    @logged
    def access(self, path: str, mode: int) -> None:
        backing_path = self._translate(path)

        if not os.access(backing_path, mode):
            # os.access() doesn't tell why. Resolving the path like access(2) does
            # raises the native error for missing files, dangling links and loops.
            os.stat(backing_path)

            if mode & os.W_OK and os.statvfs(backing_path).f_flag & os.ST_RDONLY:
                raise os_error(errno.EROFS, path)

            raise os_error(errno.EACCES, path)

    @logged
    def statfs(self, path: str) -> dict:
        st = os.statvfs(self._translate(path))
        return {name: getattr(st, name) for name in dir(st) if name.startswith("f_")}

    #
    # Metadata modification
    #

    @logged
    def chmod(self, path: str, fh: Optional[int], mode: int) -> None:
        if fh is not None and os.chmod in os.supports_fd:
            os.chmod(self._handles.get(fh).fd, mode)
        else:
            if os.chmod in os.supports_follow_symlinks:
                os.chmod(self._translate(path), mode, follow_symlinks=False)
            else:
                os.chmod(self._translate(path), mode)

    @logged
    def chown(self, path: str, fh: Optional[int], uid: int, gid: int) -> None:
        if fh is not None and os.chown in os.supports_fd:
            os.chown(self._handles.get(fh).fd, uid, gid)
        else:
            os.chown(self._translate(path), uid, gid, follow_symlinks=False)

    @logged
    def utimens(self, path: str, fh: Optional[int], times: Tuple[int, int]) -> None:
        if fh is not None and os.utime in os.supports_fd:
            os.utime(self._handles.get(fh).fd, ns=times)
        else:
            # Never follow symlinks, a symlink's own timestamps are being changed.
            os.utime(self._translate(path), ns=times, follow_symlinks=False)

    #
    # Extended attributes
    #
    # These are not logged because tools like ls and cp probe for attributes that
    # usually don't exist.
    #

    def setxattr(self, path: str, name: str, value: bytes, flags: int) -> None:
        os.setxattr(self._translate(path), name, value, flags, follow_symlinks=False)

    def getxattr(self, path: str, name: str) -> bytes:
        return os.getxattr(self._translate(path), name, follow_symlinks=False)

    def listxattr(self, path: str) -> List[str]:
        return os.listxattr(self._translate(path), follow_symlinks=False)

    def removexattr(self, path: str, name: str) -> None:
        os.removexattr(self._translate(path), name, follow_symlinks=False)

    #
    # File system structure
    #

    @logged
    def link(self, path: str, target: str) -> None:
        os.link(self._translate(target), self._translate(path))

    @logged
    def symlink(self, path: str, target: str) -> None:
        # The target is relative to the dump directory, just like the link itself.
        os.symlink(self._translate(target), self._translate(path))

    @logged
    def mkdir(self, path: str, mode: int) -> None:
        os.mkdir(self._translate(path), mode)

    @logged
    def mknod(self, path: str, mode: int, rdev: int) -> None:
        backing_path = self._translate(path)

        if stat.S_ISREG(mode):
            os.close(os.open(backing_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, mode))
        elif stat.S_ISFIFO(mode):
            os.mkfifo(backing_path, mode)
        else:
            os.mknod(backing_path, mode, rdev)

    @logged
    def rename(self, old: str, new: str) -> None:
        os.rename(self._translate(old), self._translate(new))

    @logged
    def unlink(self, path: str) -> None:
        os.unlink(self._translate(path))

    @logged
    def rmdir(self, path: str) -> None:
        os.rmdir(self._translate(path))
