import os

import pytest

from gops import config


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    monkeypatch.delenv(config.CONFIG_DIR_ENV, raising=False)
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
    monkeypatch.setenv("AppData", str(tmp_path / "appdata"))
    return tmp_path


def test_config_dir_default_base_is_gops(clean_env):
    assert os.path.basename(config.config_dir()) == "gops"


def test_config_dir_env_override(clean_env, monkeypatch):
    monkeypatch.setenv(config.CONFIG_DIR_ENV, "foo-bar")
    assert config.config_dir() == "foo-bar"


def test_config_dir_empty_env_ignored(clean_env, monkeypatch):
    monkeypatch.setenv(config.CONFIG_DIR_ENV, "")
    assert os.path.basename(config.config_dir()) == "gops"


def test_config_dir_under_home(clean_env):
    result = config.config_dir()
    assert result.startswith(str(clean_env))


def test_pid_file_joins_pid(monkeypatch, tmp_path):
    monkeypatch.setenv(config.CONFIG_DIR_ENV, str(tmp_path))
    assert config.pid_file(123) == os.path.join(str(tmp_path), "123")


def test_get_port_trims_whitespace(monkeypatch, tmp_path):
    monkeypatch.setenv(config.CONFIG_DIR_ENV, str(tmp_path))
    (tmp_path / "4321").write_text(" 4242\n", encoding="utf-8")
    assert config.get_port(4321) == "4242"


def test_get_port_missing_file(monkeypatch, tmp_path):
    monkeypatch.setenv(config.CONFIG_DIR_ENV, str(tmp_path))
    with pytest.raises(FileNotFoundError):
        config.get_port(99999999)