import pytest

from stash import config
from stash.cli import ServerOptions, parse_bind_target


@pytest.mark.parametrize("target,port,expected", [
    (None, None, (config.DEFAULT_HOST, config.DEFAULT_PORT)),
    ("8080", None, (config.DEFAULT_HOST, 8080)),
    ("0.0.0.0", None, ("0.0.0.0", config.DEFAULT_PORT)),
    ("0.0.0.0", "8080", ("0.0.0.0", 8080)),
    ("example.org", "not-a-port", ("example.org", config.DEFAULT_PORT)),
    ("http://0.0.0.0:9000", None, ("0.0.0.0", 9000)),
    ("http://localhost", None, ("localhost", config.DEFAULT_PORT)),
])
def test_parse_bind_target(target, port, expected):
    assert parse_bind_target(target, port) == expected


def test_from_args_defaults():
    options = ServerOptions.from_args([])
    assert options.host == config.DEFAULT_HOST
    assert options.port == config.DEFAULT_PORT
    assert options.storage_root == config.STORAGE_ROOT
    assert options.max_age_minutes == options.interval_minutes


def test_from_args_overrides(tmp_path):
    options = ServerOptions.from_args([
        "127.0.0.1", "8081",
        "--root", str(tmp_path),
        "--max-bytes", "1024",
        "--interval", "10",
        "--max-age", "5",
    ])
    assert (options.host, options.port) == ("127.0.0.1", 8081)
    assert options.storage_root == str(tmp_path)
    assert options.max_write_bytes == 1024
    assert options.interval_minutes == 10
    assert options.max_age_minutes == 5


def test_max_age_follows_interval():
    options = ServerOptions.from_args(["--interval", "30"])
    assert options.max_age_minutes == 30


def test_invalid_interval_is_rejected():
    with pytest.raises(SystemExit):
        ServerOptions.from_args(["--interval", "0"])


def test_apply_updates_config(tmp_path, monkeypatch):
    for name in ("STORAGE_ROOT", "MAX_WRITE_BYTES", "CLEAN_INTERVAL_MINUTES", "MAX_AGE_MINUTES"):
        monkeypatch.setattr(config, name, getattr(config, name))

    ServerOptions.from_args(["--root", str(tmp_path), "--max-bytes", "5", "--interval", "2"]).apply()

    assert config.STORAGE_ROOT == str(tmp_path)
    assert config.MAX_WRITE_BYTES == 5
    assert config.CLEAN_INTERVAL_MINUTES == 2
    assert config.MAX_AGE_MINUTES == 2
