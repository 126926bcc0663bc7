"""
Module implementing the command-line interface and invoking the main logic of dbfs.

dbfs reads the servers to expose from a config file, prepares the dump directory that
backs the file system and then mounts the file system until it is unmounted with
fusermount -u.
"""

import signal
import sys
from typing import List, NoReturn, Optional

import dbfs.constants as constants
from dbfs.logger import log, set_verbosity
import dbfs.operations as operations
from .args import Arguments


def main(arguments: Optional[List[str]] = None) -> NoReturn:
    """
    Mount the file system with the given arguments.

    Defaults to parsing command-line arguments from sys.argv if none are specified.
    """
    # Parse command-line arguments.
    args = Arguments.parse(arguments)

    set_verbosity(args.verbose)

    ops = operations.MountOperations(args)

    try:
        exit_code = ops.run()
    except KeyboardInterrupt:
        exit_code = 128 + signal.SIGINT
    except Exception as e:
        log.error(f"failed to mount: {e}")
        exit_code = constants.DBFS_ERROR_CODE

    # Exit with the return code of FUSE or DBFS_ERROR_CODE for dbfs failures.
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
