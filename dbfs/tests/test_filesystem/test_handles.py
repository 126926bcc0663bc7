import errno
import os
import stat

import pytest

from dbfs.filesystem.handles import DirectoryStream, HandleTable, OpenContext
from dbfs.filesystem.paths import PathKind, VirtualPath


def test_handle_table():
    table = HandleTable()
    context = OpenContext(123, VirtualPath(PathKind.OTHER))

    fh = table.add(context)

    assert fh >= 1
    assert fh in table
    assert len(table) == 1
    assert table.get(fh) is context

    assert table.remove(fh) is context
    assert fh not in table
    assert len(table) == 0


def test_handles_are_unique():
    table = HandleTable()
    context = OpenContext(123, VirtualPath(PathKind.OTHER))

    handles = [table.add(context) for _ in range(100)]

    assert len(set(handles)) == 100
    assert 0 not in handles

    # Handles aren't reused once released.
    table.remove(handles[-1])
    assert table.add(context) not in handles


def test_unknown_handle():
    table = HandleTable()

    with pytest.raises(OSError) as e:
        table.get(1)

    assert e.value.errno == errno.EBADF

    with pytest.raises(OSError) as e:
        table.remove(1)

    assert e.value.errno == errno.EBADF


def test_directory_stream(tmp_path):
    (tmp_path / "file").write_bytes(b"")
    os.mkdir(tmp_path / "dir")
    os.symlink(tmp_path / "file", tmp_path / "link")

    stream = DirectoryStream(str(tmp_path))

    try:
        entries = {entry.name: entry for entry in stream.entries()}
    finally:
        stream.close()

    assert sorted(entries) == sorted([".", "..", "file", "dir", "link"])

    assert entries["file"].st_mode == stat.S_IFREG
    assert entries["dir"].st_mode == stat.S_IFDIR
    assert entries["link"].st_mode == stat.S_IFLNK
    assert entries["file"].st_ino == os.lstat(tmp_path / "file").st_ino


def test_directory_stream_rewind(tmp_path):
    stream = DirectoryStream(str(tmp_path))

    try:
        assert [entry.name for entry in stream.entries()] == [".", ".."]

        (tmp_path / "new").write_bytes(b"")
        stream.rewind()

        assert "new" in [entry.name for entry in stream.entries()]
    finally:
        stream.close()


def test_directory_stream_not_a_directory(tmp_path):
    (tmp_path / "file").write_bytes(b"")

    with pytest.raises(NotADirectoryError):
        DirectoryStream(str(tmp_path / "file"))


def test_directory_stream_special_files(tmp_path):
    os.mkfifo(tmp_path / "fifo")

    stream = DirectoryStream(str(tmp_path))

    try:
        entries = {entry.name: entry for entry in stream.entries()}
    finally:
        stream.close()

    assert entries["fifo"].st_mode == stat.S_IFIFO
