import errno
import os
from unittest import mock

import pytest

from dbfs.config import ServerEntry, ServerRegistry
from dbfs.filesystem import DatabaseFileSystem
from dbfs.query import OutputFormat, QueryError
from dbfs.views import parse_version


@pytest.fixture
def queries(tmp_path):
    os.mkdir(tmp_path / "queries")
    return tmp_path / "queries"


@pytest.fixture
def servers(queries):
    return ServerRegistry(
        [
            ServerEntry(
                name="production",
                hostname="sql01",
                username="monitor",
                password="secret",
                version=parse_version("16"),
                custom_queries_path=str(queries),
            ),
            ServerEntry(
                name="legacy",
                hostname="sql02",
                username="monitor",
                password="secret",
                version=parse_version("11"),
            ),
        ]
    )


@pytest.fixture
def client():
    client = mock.Mock()
    client.execute.side_effect = lambda query, server, fmt: (
        f"{server.name}: {query}".encode()
    )

    return client


@pytest.fixture
def dump(tmp_path):
    return tmp_path / "dump"


@pytest.fixture
def fs(dump, servers, client):
    fs = DatabaseFileSystem(str(dump), servers, client)
    fs.setup()

    return fs


def _read_all(fs, path, flags=os.O_RDONLY):
    fh = fs.open(path, flags)

    try:
        return fs.read(path, fh, 0, 1024 * 1024)
    finally:
        fs.release(path, fh)


def test_setup(fs, dump):
    assert os.path.isdir(dump / "production")
    assert os.path.isfile(dump / "production" / "dm_exec_sessions")
    assert os.path.isfile(dump / "production" / "dm_exec_sessions.json")
    assert os.path.isdir(dump / "production" / "customQueries")

    # No JSON for servers before SQL Server 2016 and no custom queries without path.
    assert os.path.isfile(dump / "legacy" / "dm_exec_sessions")
    assert not os.path.exists(dump / "legacy" / "dm_exec_sessions.json")
    assert not os.path.exists(dump / "legacy" / "customQueries")

    assert os.lstat(dump / "production" / "dm_exec_sessions").st_size == 0


def test_setup_existing_dump(dump, servers, client):
    os.makedirs(dump / "production")
    (dump / "production" / "dm_exec_sessions").write_bytes(b"left over")

    DatabaseFileSystem(str(dump), servers, client).setup()

    assert os.lstat(dump / "production" / "dm_exec_sessions").st_size == 0


def test_setup_dump_is_file(dump, servers, client):
    dump.write_bytes(b"")

    with pytest.raises(FileExistsError):
        DatabaseFileSystem(str(dump), servers, client).setup()


def test_setup_dump_without_parent(tmp_path, servers, client):
    with pytest.raises(FileNotFoundError):
        DatabaseFileSystem(str(tmp_path / "a" / "b"), servers, client).setup()


def test_init_and_destroy(dump, servers, client):
    callback = mock.Mock()

    fs = DatabaseFileSystem(str(dump), servers, client, callback)
    fs.setup()
    fs.init()

    assert callback.called

    fs.destroy()

    # Unmounting leaves the dump directory alone.
    assert os.path.isfile(dump / "production" / "dm_exec_sessions")


def test_metadata_read(fs, client, servers):
    assert (
        _read_all(fs, "/production/dm_exec_sessions")
        == b"production: SELECT * FROM [master].[sys].[dm_exec_sessions]"
    )

    client.execute.assert_called_once_with(
        "SELECT * FROM [master].[sys].[dm_exec_sessions]",
        servers["production"],
        OutputFormat.TABULAR,
    )


def test_metadata_read_json(fs, client):
    assert _read_all(fs, "/production/dm_exec_sessions.json") == (
        b"production: SELECT * FROM [master].[sys].[dm_exec_sessions] "
        b"FOR JSON AUTO, ROOT('info')"
    )

    assert client.execute.call_args[0][2] == OutputFormat.JSON


def test_metadata_read_rdwr(fs, client):
    fh = fs.open("/production/dm_os_sys_info", os.O_RDWR)

    try:
        assert fs.read("/production/dm_os_sys_info", fh, 0, 12) == b"production: "
    finally:
        fs.release("/production/dm_os_sys_info", fh)


def test_metadata_write(fs, dump):
    fh = fs.open("/production/dm_exec_sessions", os.O_RDWR)

    try:
        with pytest.raises(OSError) as e:
            fs.write("/production/dm_exec_sessions", fh, 0, b"abc")

        assert e.value.errno == errno.EPERM
    finally:
        fs.release("/production/dm_exec_sessions", fh)

    # Writes without an open file are rejected as well.
    with pytest.raises(OSError) as e:
        fs.write("/production/dm_exec_sessions.json", None, 0, b"abc")

    assert e.value.errno == errno.EPERM


def test_custom_query_write(fs):
    with pytest.raises(PermissionError):
        fs.write("/production/customQueries/a.sql", None, 0, b"abc")


def test_create_virtual_file(fs, dump):
    with pytest.raises(PermissionError):
        fs.create("/production/dm_new_view", os.O_CREAT | os.O_WRONLY, 0o644)

    assert not os.path.exists(dump / "production" / "dm_new_view")


def test_release_truncates(fs, client, dump):
    fh = fs.open("/production/dm_exec_sessions", os.O_RDONLY)

    assert os.lstat(dump / "production" / "dm_exec_sessions").st_size > 0

    fs.release("/production/dm_exec_sessions", fh)

    assert os.lstat(dump / "production" / "dm_exec_sessions").st_size == 0

    # Opening the file again runs the query again.
    _read_all(fs, "/production/dm_exec_sessions")

    assert client.execute.call_count == 2


def test_query_failure(fs, client, dump):
    client.execute.side_effect = QueryError("Login failed")

    with pytest.raises(OSError) as e:
        fs.open("/production/dm_exec_sessions", os.O_RDONLY)

    assert e.value.errno == errno.EIO
    assert len(fs._handles) == 0
    assert os.lstat(dump / "production" / "dm_exec_sessions").st_size == 0


def test_open_nonexistent(fs, client):
    with pytest.raises(FileNotFoundError):
        fs.open("/production/dm_nonexistent", os.O_RDONLY)

    assert not client.execute.called


def test_open_invalid_path(fs, caplog):
    with pytest.raises(OSError) as e:
        fs.open("/production//dm_exec_sessions", os.O_RDONLY)

    assert e.value.errno == errno.EINVAL
    assert "open failed for /production//dm_exec_sessions" in caplog.text


def test_open_directory(fs, client):
    fh = fs.open("/production", os.O_RDONLY | os.O_DIRECTORY)
    fs.release("/production", fh)

    assert not client.execute.called


def test_custom_queries_listing(fs, queries, dump):
    (queries / "a.sql").write_text("SELECT 1")
    (queries / "b.sql").write_text("SELECT 2")
    (dump / "production" / "customQueries" / "old.sql").write_bytes(b"")

    fh = fs.opendir("/production/customQueries", os.O_RDONLY)

    try:
        names = [e.name for e in fs.readdir("/production/customQueries", fh)]
    finally:
        fs.releasedir("/production/customQueries", fh)

    assert sorted(names) == sorted([".", "..", "a.sql", "b.sql"])
    assert names[:2] == [".", ".."]

    assert sorted(os.listdir(dump / "production" / "customQueries")) == [
        "a.sql",
        "b.sql",
    ]
    assert os.lstat(dump / "production" / "customQueries" / "a.sql").st_size == 0


def test_custom_queries_follow_source(fs, queries):
    def listing():
        fh = fs.opendir("/production/customQueries", os.O_RDONLY)

        try:
            return sorted(
                e.name for e in fs.readdir("/production/customQueries", fh)
            )[2:]
        finally:
            fs.releasedir("/production/customQueries", fh)

    (queries / "a.sql").write_text("SELECT 1")
    assert listing() == ["a.sql"]

    os.rename(queries / "a.sql", queries / "c.sql")
    assert listing() == ["c.sql"]


def test_custom_query_read(fs, client, queries, dump, servers):
    (queries / "a.sql").write_text("SELECT 1")

    def execute_file(query_path, output_path, server):
        with open(output_path, "wb") as f:
            f.write(b"result of " + os.path.basename(query_path).encode())

    client.execute_file.side_effect = execute_file

    fh = fs.opendir("/production/customQueries", os.O_RDONLY)
    fs.releasedir("/production/customQueries", fh)

    assert _read_all(fs, "/production/customQueries/a.sql") == b"result of a.sql"

    client.execute_file.assert_called_once_with(
        str(queries / "a.sql"),
        str(dump / "production" / "customQueries" / "a.sql"),
        servers["production"],
    )

    assert os.lstat(dump / "production" / "customQueries" / "a.sql").st_size == 0


def test_custom_query_failure(fs, client, queries):
    (queries / "a.sql").write_text("SELEC 1")
    client.execute_file.side_effect = QueryError("Incorrect syntax")

    fh = fs.opendir("/production/customQueries", os.O_RDONLY)
    fs.releasedir("/production/customQueries", fh)

    with pytest.raises(OSError) as e:
        fs.open("/production/customQueries/a.sql", os.O_RDONLY)

    assert e.value.errno == errno.EIO


def test_readdir_server(fs):
    fh = fs.opendir("/production", os.O_RDONLY)

    try:
        entries = {e.name: e for e in fs.readdir("/production", fh)}
    finally:
        fs.releasedir("/production", fh)

    assert "dm_exec_sessions" in entries
    assert "dm_exec_sessions.json" in entries
    assert "customQueries" in entries


def test_fallocate_unsupported_mode(fs, dump):
    (dump / "notes.txt").write_bytes(b"abc")

    with pytest.raises(OSError) as e:
        fs.fallocate("/notes.txt", None, 1, 0, 4096)

    assert e.value.errno == errno.EOPNOTSUPP
    assert (dump / "notes.txt").read_bytes() == b"abc"


def test_getattr_missing(fs, caplog):
    with pytest.raises(OSError) as e:
        fs.getattr("/production/dm_nonexistent", None)

    assert e.value.errno == errno.ENOENT
    assert caplog.text == ""


def test_getattr_virtual_file(fs, client):
    assert fs.getattr("/production/dm_exec_sessions", None)["st_size"] == 0
    assert not client.execute.called


def test_other_files(fs, dump, client):
    fh = fs.create("/notes.txt", os.O_CREAT | os.O_RDWR, 0o644)

    try:
        assert fs.write("/notes.txt", fh, 3, b"abc") == 3
        assert fs.read("/notes.txt", fh, 3, 3) == b"abc"
    finally:
        fs.release("/notes.txt", fh)

    # Files outside of the virtual namespace keep their contents.
    assert (dump / "notes.txt").read_bytes() == b"\0\0\0abc"
    assert not client.execute.called


def test_unknown_server_files(fs, dump, client):
    fs.mkdir("/staging", 0o755)

    fh = fs.create("/staging/dm_exec_sessions", os.O_CREAT | os.O_RDWR, 0o644)

    try:
        fs.write("/staging/dm_exec_sessions", fh, 0, b"abc")
    finally:
        fs.release("/staging/dm_exec_sessions", fh)

    assert _read_all(fs, "/staging/dm_exec_sessions") == b"abc"
    assert not client.execute.called


def test_handles_released(fs, queries):
    (queries / "a.sql").write_text("SELECT 1")

    _read_all(fs, "/production/dm_exec_sessions")

    fh = fs.opendir("/production/customQueries", os.O_RDONLY)
    fs.releasedir("/production/customQueries", fh)

    assert len(fs._handles) == 0


def test_custom_queries_outside_server(fs, dump, client):
    fs.mkdir("/customQueries", 0o755)

    fh = fs.create("/customQueries/notes", os.O_CREAT | os.O_RDWR, 0o644)

    try:
        assert fs.write("/customQueries/notes", fh, 0, b"abc") == 3
    finally:
        fs.release("/customQueries/notes", fh)

    assert _read_all(fs, "/customQueries/notes") == b"abc"
    assert (dump / "customQueries" / "notes").read_bytes() == b"abc"
    assert not client.execute_file.called
