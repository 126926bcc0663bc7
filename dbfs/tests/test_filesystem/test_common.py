import errno
import os
import stat

import pytest

from dbfs.filesystem.common import (
    Attributes,
    create_placeholder,
    logged,
    os_error,
)


def test_attributes_from_stat(tmp_path):
    (tmp_path / "file").write_bytes(b"abc")

    st = os.lstat(tmp_path / "file")
    attribs = Attributes.from_stat(st)

    assert attribs.st_size == 3
    assert attribs.st_mtime_ns == st.st_mtime_ns
    assert stat.S_ISREG(attribs.st_mode)


def test_os_error():
    e = os_error(errno.ENOENT, "/a")

    assert isinstance(e, FileNotFoundError)
    assert e.errno == errno.ENOENT
    assert e.filename == "/a"


class Failing:
    @logged
    def fail(self, path):
        raise os_error(errno.EIO, path)

    @logged
    def nested(self, path):
        return self.fail(path)


def test_logged(caplog):
    with pytest.raises(OSError):
        Failing().fail("/a")

    assert "fail failed for /a" in caplog.text


def test_logged_once(caplog):
    with pytest.raises(OSError):
        Failing().nested("/a")

    assert caplog.text.count("failed for /a") == 1


def test_create_placeholder(tmp_path):
    create_placeholder(str(tmp_path / "file"))

    assert (tmp_path / "file").read_bytes() == b""

    (tmp_path / "file").write_bytes(b"abc")
    create_placeholder(str(tmp_path / "file"))

    assert (tmp_path / "file").read_bytes() == b""
