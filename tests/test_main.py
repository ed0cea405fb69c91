"""Tests for the command line interface."""

import pytest
import yaml

from tamperguard.core.hash_store import open_hash_store
from tamperguard.core.monitor import service_id_for
from tamperguard.main import build_parser, main


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.yml"
    path.write_text(
        yaml.safe_dump(
            {
                "general": {"state_dir": str(tmp_path / "state"), "storage_mode": "sqlite3"},
                "notifications": {"syslog": {"enabled": False}},
            }
        )
    )
    return path


def test_parser_accepts_options_after_subcommand():
    args = build_parser().parse_args(["monitor", "-c", "x.yml", "--instance", "etc_ssh"])
    assert args.command == "monitor"
    assert args.config == "x.yml"
    assert args.instance is True
    assert args.watch_dir == "etc_ssh"


def test_subcommand_required():
    with pytest.raises(SystemExit):
        build_parser().parse_args([])


def test_filesystem_root_rejected(config_file):
    assert main(["monitor", "-c", str(config_file), "/"]) == 1


def test_init_baseline(tmp_path, config_file, capsys):
    data = tmp_path / "data"
    data.mkdir()
    (data / "one").write_text("1")
    (data / "two").write_text("2")

    assert main(["init-baseline", "-c", str(config_file), str(data)]) == 0

    store = open_hash_store("sqlite3", tmp_path / "state", service_id_for(str(data)))
    assert len(store) == 2
    assert f"Calculating initial hash values for {data}" in capsys.readouterr().out
