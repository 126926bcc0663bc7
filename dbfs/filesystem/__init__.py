"""
Modules that implement the dbfs FUSE file system.

The mounted file system mirrors a dump directory on disk. Most calls are simply
forwarded to the corresponding file in the dump directory, but files within the
directory of a configured server are virtual: opening one runs a query against that
server and fills the backing file with the result before open() returns.

* paths: mapping from mounted paths to the dump directory and classification of paths.
* passthrough: the file system that forwards all calls to the dump directory.
* materializer: fills virtual files with query results on open().
* synthesizer: keeps the custom query directories in sync with the query files.
* filesystem: the complete file system that combines all of the above.
"""

from .filesystem import DatabaseFileSystem
from .passthrough import PassthroughFileSystem

__all__ = [
    "DatabaseFileSystem",
    "PassthroughFileSystem",
]
