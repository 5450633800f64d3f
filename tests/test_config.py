import json
import os
from pathlib import Path

import pytest

from node_keeper.config import DEFAULT_RELEASE_URL, Config, DataPathStore

ENV_VARS = [
    "NODE_KEEPER_HOME",
    "NODE_KEEPER_RELEASE_URL",
    "NODE_KEEPER_EXECUTABLE",
    "NODE_KEEPER_ASSET",
    "NODE_KEEPER_STOP_TIMEOUT",
    "NODE_KEEPER_POLL_INTERVAL",
    "NODE_KEEPER_HTTP_TIMEOUT",
    "NODE_KEEPER_PORT",
    "NODE_KEEPER_LOG_LEVEL",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    yield
    # load_dotenv writes straight into os.environ
    for name in ENV_VARS:
        os.environ.pop(name, None)


def test_from_env_defaults(tmp_path, monkeypatch):
    monkeypatch.setenv("NODE_KEEPER_HOME", str(tmp_path))
    config = Config.from_env(tmp_path / "missing.env")

    assert config.home == tmp_path
    assert config.release_url == DEFAULT_RELEASE_URL
    assert config.stop_timeout == 5.0
    assert config.status_poll_interval == 5.0
    assert config.port == 8901
    assert config.asset_name == config.executable_name
    assert config.settings_path == tmp_path / "settings.json"
    assert config.default_data_path == tmp_path / "data"


def test_from_env_reads_dotenv_file(tmp_path):
    env = tmp_path / ".env"
    env.write_text(
        f"NODE_KEEPER_HOME={tmp_path / 'home'}\n"
        "NODE_KEEPER_EXECUTABLE=mynode\n"
        "NODE_KEEPER_STOP_TIMEOUT=2.5\n"
        "NODE_KEEPER_PORT=9000\n"
        "NODE_KEEPER_LOG_LEVEL=debug\n",
        encoding="utf-8",
    )
    config = Config.from_env(env)

    assert config.home == tmp_path / "home"
    assert config.executable_name == "mynode"
    assert config.asset_name == "mynode"
    assert config.stop_timeout == 2.5
    assert config.port == 9000
    assert config.log_level == "DEBUG"


def test_data_path_defaults_until_set(tmp_path):
    store = DataPathStore(tmp_path / "settings.json", tmp_path / "data")

    assert store.current() == str(tmp_path / "data")
    assert store.default() == str(tmp_path / "data")


def test_data_path_survives_restart(tmp_path):
    settings = tmp_path / "settings.json"
    DataPathStore(settings, tmp_path / "data").set(str(tmp_path / "custom"))

    reloaded = DataPathStore(settings, tmp_path / "data")
    assert reloaded.current() == str(tmp_path / "custom")
    assert json.loads(settings.read_text(encoding="utf-8")) == {"data_path": str(tmp_path / "custom")}


def test_data_path_rejects_blank(tmp_path):
    store = DataPathStore(tmp_path / "settings.json", tmp_path / "data")
    with pytest.raises(ValueError):
        store.set("  ")


def test_corrupt_settings_are_moved_aside(tmp_path):
    settings = tmp_path / "settings.json"
    settings.write_text("{not json", encoding="utf-8")

    store = DataPathStore(settings, tmp_path / "data")

    assert store.current() == str(tmp_path / "data")
    assert not settings.exists()
    assert Path(tmp_path / "settings.invalid.json").exists()


def test_undecodable_settings_are_moved_aside(tmp_path):
    settings = tmp_path / "settings.json"
    settings.write_bytes(b'{"data_path": "\xff\xfe"}')

    store = DataPathStore(settings, tmp_path / "data")

    assert store.current() == str(tmp_path / "data")
    assert not settings.exists()
    assert (tmp_path / "settings.invalid.json").read_bytes().startswith(b'{"data_path"')
