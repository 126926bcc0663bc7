"""
Module that maps paths in the mounted file system to the dump directory.

The mounted file system mirrors the dump directory one to one, so every path simply
gets the dump directory as its new root. The shape of a path additionally determines
whether it is a virtual file:

    /<server>                           server directory
    /<server>/<view>                    metadata view, tabular output
    /<server>/<view>.json               metadata view, JSON output
    /<server>/customQueries             custom query directory
    /<server>/customQueries/<file>      result of the custom query in <file>
"""

from dataclasses import dataclass
from enum import Enum
import errno
import os
from typing import Collection, Optional

from dbfs.constants import CUSTOM_QUERY_FOLDER_NAME, JSON_SUFFIX
from dbfs.query import OutputFormat


class InvalidPathError(OSError):
    """Raised for paths that don't have any valid virtual path shape."""

    def __init__(self, path: str):
        """Instantiate the error for the given path."""
        super().__init__(errno.EINVAL, os.strerror(errno.EINVAL), path)


class PathKind(Enum):
    """Shapes of paths within the mounted file system."""

    ROOT = "root"
    SERVER_ROOT = "server_root"
    METADATA_FILE = "metadata_file"
    CUSTOM_QUERY_DIR = "custom_query_dir"
    CUSTOM_QUERY_FILE = "custom_query_file"
    OTHER = "other"


@dataclass(frozen=True)
class VirtualPath:
    """
    Classification of a path.

    The server is set for every kind except ROOT and OTHER. The name is the view name
    (without .json suffix) of a metadata file or the query file name of a custom query
    file. The format is only set for metadata files.
    """

    kind: PathKind
    server: Optional[str] = None
    name: Optional[str] = None
    format: Optional[OutputFormat] = None

    @property
    def is_virtual_file(self) -> bool:
        """Check if the contents of this path are produced by a query."""
        return self.kind in (PathKind.METADATA_FILE, PathKind.CUSTOM_QUERY_FILE)


class PathTranslator:
    """Translates paths in the mounted file system to paths in the dump directory."""

    def __init__(self, dump_path: str):
        """Instantiate the translator for the given dump directory."""
        self.dump_path = os.path.abspath(dump_path)

    def translate(self, path: str) -> str:
        """Return the dump directory path that backs the given path."""
        relative = path.lstrip("/")

        if not relative:
            return self.dump_path

        return os.path.join(self.dump_path, relative)


def classify(path: str, servers: Optional[Collection[str]] = None) -> VirtualPath:
    """
    Determine the shape of a path within the mounted file system.

    If the names of the configured servers are given then paths outside of their
    directories are classified as OTHER. Raises InvalidPathError for malformed paths.
    """
    relative = path.strip("/")

    if not relative:
        return VirtualPath(PathKind.ROOT)

    segments = relative.split("/")

    if "" in segments:
        raise InvalidPathError(path)

    server = segments[0]

    if servers is not None and server not in servers:
        return VirtualPath(PathKind.OTHER)

    # The custom query folder can only exist within a server directory.
    if server == CUSTOM_QUERY_FOLDER_NAME:
        raise InvalidPathError(path)

    if len(segments) == 1:
        return VirtualPath(PathKind.SERVER_ROOT, server)

    if segments[1] == CUSTOM_QUERY_FOLDER_NAME:
        if len(segments) == 2:
            return VirtualPath(PathKind.CUSTOM_QUERY_DIR, server)
        else:
            return VirtualPath(PathKind.CUSTOM_QUERY_FILE, server, segments[2])

    name = segments[1]

    if name.endswith(JSON_SUFFIX):
        return VirtualPath(
            PathKind.METADATA_FILE,
            server,
            name[: -len(JSON_SUFFIX)],
            OutputFormat.JSON,
        )
    else:
        return VirtualPath(PathKind.METADATA_FILE, server, name, OutputFormat.TABULAR)
