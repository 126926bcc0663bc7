import pytest

from dbfs.args import Arguments
from dbfs.constants import DEFAULT_DUMP_PATH, VERSION


def test_no_args():
    with pytest.raises(SystemExit):
        Arguments.parse([])


def test_missing_mount_path():
    with pytest.raises(SystemExit):
        Arguments.parse(["-c", "config"])


def test_basic_usage():
    args = Arguments.parse(["-c", "config", "-m", "/mnt/dbfs"])

    assert args.config == "config"
    assert args.mount_path == "/mnt/dbfs"
    assert args.dump_path == DEFAULT_DUMP_PATH

    assert not args.foreground
    assert not args.verbose


def test_long_options():
    args = Arguments.parse(
        [
            "--config=config",
            "--mount-path=/mnt/dbfs",
            "--dump-path=/var/tmp/dump",
            "--foreground",
            "--verbose",
        ]
    )

    assert args.config == "config"
    assert args.mount_path == "/mnt/dbfs"
    assert args.dump_path == "/var/tmp/dump"

    assert args.foreground
    assert args.verbose


def test_sqlcmd():
    args = Arguments.parse(["-c", "config", "-m", "mnt"])
    assert args.sqlcmd == "sqlcmd"

    args = Arguments.parse(["-c", "config", "-m", "mnt", "--sqlcmd=/opt/bin/sqlcmd"])
    assert args.sqlcmd == "/opt/bin/sqlcmd"


def test_timeout():
    args = Arguments.parse(["-c", "config", "-m", "mnt"])
    assert args.timeout == 0

    args = Arguments.parse(["-c", "config", "-m", "mnt", "--timeout=30"])
    assert args.timeout == 30

    with pytest.raises(SystemExit):
        Arguments.parse(["-c", "config", "-m", "mnt", "--timeout=-1"])

    with pytest.raises(SystemExit):
        Arguments.parse(["-c", "config", "-m", "mnt", "--timeout=abc"])


def test_max_queries():
    args = Arguments.parse(["-c", "config", "-m", "mnt"])
    assert args.max_queries == 4

    args = Arguments.parse(["-c", "config", "-m", "mnt", "--max-queries=16"])
    assert args.max_queries == 16

    with pytest.raises(SystemExit):
        Arguments.parse(["-c", "config", "-m", "mnt", "--max-queries=0"])


def test_version(capsys):
    with pytest.raises(SystemExit):
        Arguments.parse(["--version"])

    assert VERSION in capsys.readouterr().out
