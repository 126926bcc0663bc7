"""Module with the FUSE file system that exposes the metadata of SQL Server instances."""

import errno
import os
from typing import Callable, List, Optional

from dbfs.config import ServerEntry, ServerRegistry
from dbfs.constants import CUSTOM_QUERY_FOLDER_NAME, DEFAULT_DIR_PERMISSIONS
from dbfs.filesystem.common import create_placeholder, logged, os_error
from dbfs.filesystem.fuse import DirectoryEntry
from dbfs.filesystem.handles import DirectoryStream, OpenContext
from dbfs.filesystem.materializer import ContentMaterializer
from dbfs.filesystem.passthrough import PassthroughFileSystem
from dbfs.filesystem.paths import classify, PathKind, VirtualPath
from dbfs.filesystem.synthesizer import DirectorySynthesizer
from dbfs.logger import log
from dbfs.query import QueryClient
from dbfs.views import view_file_names


class DatabaseFileSystem(PassthroughFileSystem):
    """
    Passthrough file system with virtual files for server metadata and custom queries.

    Only open, write, release, opendir and readdir behave differently for virtual
    paths. Everything else is forwarded to the dump directory as is.
    """

    def __init__(
        self,
        dump_path: str,
        servers: ServerRegistry,
        client: QueryClient,
        mount_callback: Optional[Callable] = None,
    ):
        """Instantiate the file system for the given servers."""
        super().__init__(dump_path)

        self._servers = servers
        self._materializer = ContentMaterializer(servers, client)
        self._synthesizer = DirectorySynthesizer(servers)
        self._mount_callback = mount_callback

    def _classify(self, path: str) -> VirtualPath:
        return classify(path, self._servers)

    #
    # Lifecycle
    #

    def setup(self) -> None:
        """
        Prepare the dump directory before the file system is mounted.

        This creates the dump directory itself and an empty placeholder for every
        metadata view of every server, so that their listings are complete before any
        file is opened. Failure to create the dump directory is raised to the caller.
        """
        try:
            os.mkdir(self.dump_path, DEFAULT_DIR_PERMISSIONS)
        except FileExistsError:
            if not os.path.isdir(self.dump_path):
                raise

        for server in self._servers.values():
            self._create_server_files(server)

    def _create_server_files(self, server: ServerEntry) -> None:
        server_path = os.path.join(self.dump_path, server.name)
        os.makedirs(server_path, DEFAULT_DIR_PERMISSIONS, exist_ok=True)

        names = view_file_names(server.version)

        for name in names:
            create_placeholder(os.path.join(server_path, name))

        if server.custom_queries_path is not None:
            os.makedirs(
                os.path.join(server_path, CUSTOM_QUERY_FOLDER_NAME),
                DEFAULT_DIR_PERMISSIONS,
                exist_ok=True,
            )

        log.debug(f"created {len(names)} metadata files for {server.name}")

    def init(self) -> None:
        """File system has been successfully mounted by FUSE."""
        log.info(f"serving {len(self._servers)} server(s) from {self.dump_path}")

        if self._mount_callback is not None:
            self._mount_callback()

    def destroy(self) -> None:
        # The dump directory is left in place, placeholders are reused by the next mount.
        log.info("file system unmounted")

    #
    # Virtual files
    #

    @logged
    def open(self, path: str, flags: int) -> int:
        virtual_path = self._classify(path)
        backing_path = self._translate(path)

        fd = os.open(backing_path, flags)

        try:
            self._materializer.materialize(virtual_path, backing_path)
        except BaseException:
            os.close(fd)
            raise

        return self._handles.add(OpenContext(fd, virtual_path))

    @logged
    def create(self, path: str, flags: int, mode: int) -> int:
        if self._classify(path).is_virtual_file:
            raise os_error(errno.EPERM, path)

        return super().create(path, flags, mode)

    @logged
    def write(self, path: str, fh: Optional[int], offset: int, data: bytes) -> int:
        if self._classify(path).is_virtual_file:
            raise os_error(errno.EPERM, path)

        return super().write(path, fh, offset, data)

    @logged
    def release(self, path: str, fh: int) -> None:
        context = self._handles.remove(fh)

        try:
            if context.path.is_virtual_file:
                # Discard the query result so that the next open runs the query again.
                os.truncate(self._translate(path), 0)
        finally:
            os.close(context.fd)

    #
    # Custom query directories
    #

    @logged
    def opendir(self, path: str, flags: int) -> int:
        virtual_path = self._classify(path)
        stream = DirectoryStream(self._translate(path))

        try:
            if virtual_path.kind == PathKind.CUSTOM_QUERY_DIR:
                assert virtual_path.server is not None

                self._synthesizer.reconcile(virtual_path.server, stream.path)
                stream.rewind()
        except BaseException:
            stream.close()
            raise

        return self._handles.add(OpenContext(stream.fd, virtual_path, stream))

    @logged
    def readdir(self, path: str, fh: Optional[int]) -> List[DirectoryEntry]:
        virtual_path = self._classify(path)

        if virtual_path.kind == PathKind.CUSTOM_QUERY_DIR:
            assert virtual_path.server is not None

            with self._synthesizer.lock(virtual_path.server).read_lock():
                return super().readdir(path, fh)

        return super().readdir(path, fh)
