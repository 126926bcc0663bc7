"""Data structures and helpers used by multiple file system components."""

from __future__ import annotations

from dataclasses import dataclass
import functools
import os
from typing import Callable, Optional, TypeVar, Union

from dbfs.constants import DEFAULT_FILE_PERMISSIONS
from dbfs.logger import log

F = TypeVar("F", bound=Callable)


@dataclass
class Attributes:
    """Container of file system attributes (basically os.stat_result as a dataclass)."""

    st_mode: int
    st_ino: int
    st_dev: int
    st_nlink: int
    st_uid: int
    st_gid: int
    st_size: int
    st_atime_ns: int
    st_mtime_ns: int
    st_ctime_ns: int

    def __init__(self, **attribs: Union[int, float]) -> None:
        """
        Instantiate with the specified file system attributes.

        You must specify the attributes declared in this class, but you may include any
        number of extra attributes, like st_rdev or st_blocks.
        """
        for name, value in attribs.items():
            setattr(self, name, value)

    @staticmethod
    def from_stat(st: os.stat_result) -> Attributes:
        """Instantiate from the attributes contained within an os.stat_result object."""
        st_dict = {k: getattr(st, k) for k in dir(st) if k.startswith("st_")}
        return Attributes(**st_dict)


def os_error(code: int, path: Optional[str] = None) -> OSError:
    """Create an OSError (or the matching subclass) for an errno."""
    return OSError(code, os.strerror(code), path)


def logged(fn: F) -> F:
    """
    Log OSErrors raised by a file system operation before passing them on.

    Operations that fail routinely as part of normal lookups, like getattr, should not
    be decorated. An error is only logged once, even if it passes through an overridden
    operation that calls its decorated base implementation.
    """

    @functools.wraps(fn)
    def wrapper(self, path, *args, **kwargs):
        try:
            return fn(self, path, *args, **kwargs)
        except OSError as e:
            if not getattr(e, "logged", False):
                log.error(f"{fn.__name__} failed for {path}: {e}")
                setattr(e, "logged", True)

            raise

    return wrapper  # type: ignore


def create_placeholder(path: str) -> None:
    """Create an empty file, or empty an existing one."""
    fd = os.open(path, os.O_CREAT | os.O_WRONLY | os.O_TRUNC, DEFAULT_FILE_PERMISSIONS)
    os.close(fd)
