import os
import threading

from dbfs.config import ServerEntry, ServerRegistry
from dbfs.filesystem.synthesizer import DirectorySynthesizer
from dbfs.views import parse_version


def _registry(custom_queries_path):
    return ServerRegistry(
        [
            ServerEntry(
                name="production",
                hostname="sql01",
                username="monitor",
                password="secret",
                version=parse_version("16"),
                custom_queries_path=custom_queries_path,
            )
        ]
    )


def test_reconcile(tmp_path):
    os.mkdir(tmp_path / "queries")
    os.mkdir(tmp_path / "backing")

    (tmp_path / "queries" / "a.sql").write_text("SELECT 1")
    (tmp_path / "queries" / "b.sql").write_text("SELECT 2")
    (tmp_path / "backing" / "old.sql").write_bytes(b"stale result")

    synthesizer = DirectorySynthesizer(_registry(str(tmp_path / "queries")))
    synthesizer.reconcile("production", str(tmp_path / "backing"))

    assert sorted(os.listdir(tmp_path / "backing")) == ["a.sql", "b.sql"]
    assert (tmp_path / "backing" / "a.sql").read_bytes() == b""

    # The query files themselves are untouched.
    assert (tmp_path / "queries" / "a.sql").read_text() == "SELECT 1"


def test_reconcile_keeps_subdirectories(tmp_path):
    os.mkdir(tmp_path / "queries")
    os.makedirs(tmp_path / "backing" / "subdir")

    synthesizer = DirectorySynthesizer(_registry(str(tmp_path / "queries")))
    synthesizer.reconcile("production", str(tmp_path / "backing"))

    assert os.listdir(tmp_path / "backing") == ["subdir"]


def test_reconcile_missing_source(tmp_path, caplog):
    os.mkdir(tmp_path / "backing")
    (tmp_path / "backing" / "old.sql").write_bytes(b"")

    synthesizer = DirectorySynthesizer(_registry(str(tmp_path / "nonexistent")))
    synthesizer.reconcile("production", str(tmp_path / "backing"))

    assert os.listdir(tmp_path / "backing") == []
    assert "failed to list custom queries of production" in caplog.text


def test_reconcile_is_idempotent(tmp_path):
    os.mkdir(tmp_path / "queries")
    os.mkdir(tmp_path / "backing")

    (tmp_path / "queries" / "a.sql").write_text("SELECT 1")

    synthesizer = DirectorySynthesizer(_registry(str(tmp_path / "queries")))

    for _ in range(3):
        synthesizer.reconcile("production", str(tmp_path / "backing"))

    assert os.listdir(tmp_path / "backing") == ["a.sql"]


def test_lock_per_server(tmp_path):
    synthesizer = DirectorySynthesizer(_registry(None))

    assert synthesizer.lock("production") is synthesizer.lock("production")
    assert synthesizer.lock("production") is not synthesizer.lock("staging")


def test_concurrent_reconcile(tmp_path):
    os.mkdir(tmp_path / "queries")
    os.mkdir(tmp_path / "backing")

    names = [f"{i}.sql" for i in range(50)]

    for name in names:
        (tmp_path / "queries" / name).write_text("SELECT 1")

    synthesizer = DirectorySynthesizer(_registry(str(tmp_path / "queries")))
    errors = []

    def reconcile():
        try:
            synthesizer.reconcile("production", str(tmp_path / "backing"))
        except OSError as e:
            errors.append(e)

    threads = [threading.Thread(target=reconcile) for _ in range(8)]

    for t in threads:
        t.start()

    for t in threads:
        t.join()

    assert errors == []
    assert sorted(os.listdir(tmp_path / "backing")) == sorted(names)


def test_reconcile_name_of_subdirectory(tmp_path, caplog):
    os.mkdir(tmp_path / "queries")
    os.makedirs(tmp_path / "backing" / "a.sql")

    (tmp_path / "queries" / "a.sql").write_text("SELECT 1")
    (tmp_path / "queries" / "b.sql").write_text("SELECT 2")

    synthesizer = DirectorySynthesizer(_registry(str(tmp_path / "queries")))
    synthesizer.reconcile("production", str(tmp_path / "backing"))

    assert os.path.isdir(tmp_path / "backing" / "a.sql")
    assert os.path.isfile(tmp_path / "backing" / "b.sql")
    assert "a.sql of production clashes with a directory" in caplog.text
