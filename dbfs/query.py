"""
Module that runs queries against SQL Server instances.

Queries are executed by the sqlcmd command-line tool rather than by an in-process
driver. That keeps the connection handling (TDS versions, encryption, login timeouts)
in a tool that administrators already configure and trust, and it lets custom queries
write their output straight into the file that is exposed by the file system.
"""

from enum import Enum
import os
import subprocess
import threading
from typing import List, TYPE_CHECKING

from dbfs.logger import log, summarize

if TYPE_CHECKING:
    from dbfs.config import ServerEntry


class OutputFormat(Enum):
    """Format that query results are serialized in."""

    TABULAR = "tabular"
    JSON = "json"


class QueryError(Exception):
    """Raised when a query could not be run or was rejected by the server."""


def join_json_rows(output: bytes) -> bytes:
    """
    Reassemble the document returned by a FOR JSON query.

    SQL Server returns long JSON results as multiple rows of around 2 KB and sqlcmd
    prints every row on its own line. JSON text never contains raw line breaks, so
    removing them restores the original document.
    """
    return b"".join(output.splitlines())


class QueryClient:
    """
    Client that executes queries through sqlcmd.

    Every query blocks the calling thread until sqlcmd exits. The number of sqlcmd
    processes running at the same time is bounded by max_queries; callers beyond that
    wait for a slot.
    """

    def __init__(self, sqlcmd: str = "sqlcmd", timeout: int = 0, max_queries: int = 4):
        """
        Instantiate the client.

        The timeout is the query timeout in seconds that sqlcmd enforces, where 0 means
        that queries may run indefinitely.
        """
        self._sqlcmd = sqlcmd
        self._timeout = timeout
        self._slots = threading.BoundedSemaphore(max_queries)

    def execute(self, query: str, server: "ServerEntry", fmt: OutputFormat) -> bytes:
        """Run a query and return its serialized result."""
        # Without NOCOUNT sqlcmd appends a "(n rows affected)" line to the result.
        command = self._base_command(server) + ["-Q", f"SET NOCOUNT ON; {query}"]

        if fmt == OutputFormat.JSON:
            # No headers and no column width limit, otherwise sqlcmd truncates JSON.
            command.extend(["-h", "-1", "-y", "0"])
        else:
            command.extend(["-s", "\t", "-W"])

        output = self._run(command, server)

        if fmt == OutputFormat.JSON:
            return join_json_rows(output)

        return output

    def execute_file(
        self, query_path: str, output_path: str, server: "ServerEntry"
    ) -> None:
        """Run the query stored in a file and write its result to another file."""
        command = self._base_command(server) + ["-i", query_path, "-o", output_path]

        self._run(command, server)

    def _base_command(self, server: "ServerEntry") -> List[str]:
        command = [self._sqlcmd, "-S", server.hostname, "-U", server.username, "-b"]

        if self._timeout > 0:
            command.extend(["-t", str(self._timeout), "-l", str(self._timeout)])

        return command

    def _run(self, command: List[str], server: "ServerEntry") -> bytes:
        """Run sqlcmd and return its stdout, raising QueryError on failure."""
        env = dict(os.environ)
        env["TDSVER"] = "8.0"

        # The password is passed through the environment to keep it out of ps.
        if server.password is not None:
            env["SQLCMDPASSWORD"] = server.password

        log.debug(f"running query on {server.name}: {summarize(command)}")

        try:
            with self._slots:
                proc = subprocess.run(
                    command,
                    stdin=subprocess.DEVNULL,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.PIPE,
                    env=env,
                )
        except OSError as e:
            raise QueryError(f"failed to start {self._sqlcmd}: {e}") from e

        if proc.returncode != 0:
            output = proc.stderr or proc.stdout
            message = output.decode(errors="replace").strip()

            raise QueryError(
                f"query on {server.name} failed with exit code {proc.returncode}: "
                f"{summarize(message)}"
            )

        return proc.stdout
