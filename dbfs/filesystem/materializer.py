"""
Module that fills virtual files with query results when they are opened.

The contents of a virtual file only exist between open() and release(). Opening a file
runs its query and writes the complete result to the backing file before open()
returns, so reads are simply served from the dump directory. Releasing the file empties
the backing file again so the next open() runs the query again.

Opening the same virtual file from multiple threads at once runs the query once per
open and the last result to be written wins.
"""

import errno
import os

from dbfs.config import ServerEntry, ServerRegistry
from dbfs.filesystem.common import os_error
from dbfs.filesystem.paths import PathKind, VirtualPath
from dbfs.logger import log
from dbfs.query import OutputFormat, QueryClient, QueryError


def metadata_query(view: str, fmt: OutputFormat) -> str:
    """Return the query that selects the contents of a metadata view."""
    query = f"SELECT * FROM [master].[sys].[{view}]"

    if fmt == OutputFormat.JSON:
        query += " FOR JSON AUTO, ROOT('info')"

    return query


class ContentMaterializer:
    """Runs the query behind a virtual file and stores its result in the backing file."""

    def __init__(self, servers: ServerRegistry, client: QueryClient):
        """Instantiate the materializer for the given servers."""
        self._servers = servers
        self._client = client

    def materialize(self, path: VirtualPath, backing_path: str) -> None:
        """
        Fill the backing file of a virtual file with its contents.

        Errors are raised as OSError: ENOENT for unknown servers and EIO for failed
        queries and incomplete writes. Paths that aren't virtual files are left alone.
        """
        if path.kind == PathKind.METADATA_FILE:
            self._materialize_metadata(path, backing_path)
        elif path.kind == PathKind.CUSTOM_QUERY_FILE:
            self._materialize_custom_query(path, backing_path)

    def _server(self, path: VirtualPath) -> ServerEntry:
        assert path.server is not None

        server = self._servers.lookup(path.server)

        if server is None:
            raise os_error(errno.ENOENT, path.server)

        return server

    def _materialize_metadata(self, path: VirtualPath, backing_path: str) -> None:
        assert path.name is not None and path.format is not None

        server = self._server(path)
        query = metadata_query(path.name, path.format)

        try:
            payload = self._client.execute(query, server, path.format)
        except QueryError as e:
            log.error(f"failed to query {path.name} on {server.name}: {e}")
            raise os_error(errno.EIO, backing_path) from e

        # The descriptor of the caller may be read-only, so write through a new one.
        fd = os.open(backing_path, os.O_WRONLY)

        try:
            written = os.pwrite(fd, payload, 0)

            if written != len(payload):
                log.error(
                    f"short write of {path.name} ({written} of {len(payload)} bytes)"
                )
                raise os_error(errno.EIO, backing_path)

            # Drop the tail of a longer result written by a concurrent open().
            os.ftruncate(fd, len(payload))
        finally:
            os.close(fd)

    def _materialize_custom_query(self, path: VirtualPath, backing_path: str) -> None:
        assert path.name is not None

        server = self._server(path)

        if server.custom_queries_path is None:
            log.debug(f"{server.name} has no custom queries, leaving {path.name} empty")
            return

        query_path = os.path.join(server.custom_queries_path, path.name)

        try:
            self._client.execute_file(query_path, backing_path, server)
        except QueryError as e:
            log.error(f"failed to run custom query {query_path} on {server.name}: {e}")
            raise os_error(errno.EIO, backing_path) from e
